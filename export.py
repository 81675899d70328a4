# ABOUTME: Production build job: denormalizes courses/lessons/content into one JSON blob
# ABOUTME: and flat vocabulary/grammar SQLite databases for offline mobile use
from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

import store
from storage import LocalObjectStorage

logger = logging.getLogger("lingodino-media.export")

COURSES_JSON_KEY = "production/courses.json"
VOCAB_SQLITE_KEY = "production/vocabulary.sqlite"
GRAMMAR_SQLITE_KEY = "production/grammar.sqlite"

FETCH_LIMITS = {
    "courses": 1000,
    "lessons": 10000,
    "vocabulary_collections": 1000,
    "vocabulary_items": 100000,
    "grammar_collections": 1000,
    "grammar_items": 100000,
    "conversations": 10000,
}

VOCAB_SCHEMA = """
CREATE TABLE collections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    photo TEXT,
    item_count INTEGER DEFAULT 0
);

CREATE TABLE items (
    id TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL,
    simplified TEXT,
    traditional TEXT,
    pinyin TEXT,
    pinyin_numeric TEXT,
    bopomofo TEXT,
    meanings TEXT,
    pos TEXT,
    classifiers TEXT,
    examples TEXT,
    radical TEXT,
    frequency INTEGER DEFAULT 0,
    item_order INTEGER DEFAULT 0,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE INDEX idx_items_collection ON items(collection_id);
CREATE INDEX idx_items_simplified ON items(simplified);
CREATE INDEX idx_items_pinyin ON items(pinyin);
"""

GRAMMAR_SCHEMA = """
CREATE TABLE collections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    photo TEXT,
    item_count INTEGER DEFAULT 0
);

CREATE TABLE items (
    id TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL,
    code TEXT,
    name TEXT,
    grammar TEXT,
    examples TEXT,
    item_order INTEGER DEFAULT 0,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE INDEX idx_items_collection ON items(collection_id);
CREATE INDEX idx_items_code ON items(code);
"""

VOCAB_ITEM_FIELDS = ["id", "simplified", "traditional", "pinyin", "pinyinNumeric", "bopomofo", "meanings",
                     "pos", "classifiers", "examples", "radical", "frequency", "order"]
GRAMMAR_ITEM_FIELDS = ["id", "code", "name", "grammar", "examples", "order"]
CONVERSATION_FIELDS = ["id", "name", "description", "participants", "sentences", "audioKey", "videoKey",
                       "subtitleKey", "duration", "alignment"]


def _str(value) -> str | None:
    return None if value is None else str(value)


def _num(value) -> float | int:
    if value is None:
        return 0
    try:
        return int(value) if float(value).is_integer() else float(value)
    except (TypeError, ValueError):
        return 0


def _pick(doc: dict, fields: list[str]) -> dict:
    return {f: doc.get(f) for f in fields}


def build_courses_tree(
    courses: list[dict],
    lessons: list[dict],
    vocab_items: list[dict],
    grammar_items: list[dict],
    conversations: list[dict],
) -> list[dict]:
    """Nest lessons under courses and inline each lesson's referenced content."""
    vocab_by_id = {str(i["id"]): i for i in vocab_items}
    grammar_by_id = {str(i["id"]): i for i in grammar_items}
    conversations_by_id = {str(c["id"]): c for c in conversations}

    tree = []
    for course in courses:
        course_id = str(course["id"])
        course_lessons = sorted(
            (lesson for lesson in lessons if str(lesson.get("courseId")) == course_id),
            key=lambda lesson: lesson.get("order") or 0,
        )
        nested_lessons = []
        for lesson in course_lessons:
            conversation = conversations_by_id.get(str(lesson.get("conversationId")))
            nested_lessons.append({
                "id": lesson["id"],
                "name": lesson.get("name"),
                "description": lesson.get("description"),
                "order": lesson.get("order"),
                "vocabulary": [
                    _pick(vocab_by_id[str(i)], VOCAB_ITEM_FIELDS)
                    for i in lesson.get("vocabularyIds") or [] if str(i) in vocab_by_id
                ],
                "grammar": [
                    _pick(grammar_by_id[str(i)], GRAMMAR_ITEM_FIELDS)
                    for i in lesson.get("grammarIds") or [] if str(i) in grammar_by_id
                ],
                "conversation": _pick(conversation, CONVERSATION_FIELDS) if conversation else None,
            })
        tree.append({
            "id": course["id"],
            "name": course.get("name"),
            "description": course.get("description"),
            "lessons": nested_lessons,
        })
    return tree


async def _insert_collections(db: aiosqlite.Connection, collections: list[dict]):
    await db.executemany(
        "INSERT INTO collections (id, name, description, photo, item_count) VALUES (?, ?, ?, ?, ?)",
        [
            (_str(c.get("id")), _str(c.get("name")) or "", _str(c.get("description")),
             _str(c.get("photo")), _num(c.get("itemCount")))
            for c in collections
        ],
    )


async def write_vocabulary_db(path: Path, collections: list[dict], items: list[dict]):
    async with aiosqlite.connect(path) as db:
        await db.executescript(VOCAB_SCHEMA)
        await _insert_collections(db, collections)
        await db.executemany(
            """INSERT INTO items (id, collection_id, simplified, traditional, pinyin, pinyin_numeric, bopomofo,
                                  meanings, pos, classifiers, examples, radical, frequency, item_order)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    _str(i.get("id")), _str(i.get("collectionId")), _str(i.get("simplified")),
                    _str(i.get("traditional")), _str(i.get("pinyin")), _str(i.get("pinyinNumeric")),
                    _str(i.get("bopomofo")),
                    json.dumps(i.get("meanings") or [], ensure_ascii=False),
                    json.dumps(i.get("pos") or [], ensure_ascii=False),
                    json.dumps(i.get("classifiers") or [], ensure_ascii=False),
                    json.dumps(i.get("examples") or [], ensure_ascii=False),
                    _str(i.get("radical")), _num(i.get("frequency")), _num(i.get("order")),
                )
                for i in items
            ],
        )
        await db.commit()


async def write_grammar_db(path: Path, collections: list[dict], items: list[dict]):
    async with aiosqlite.connect(path) as db:
        await db.executescript(GRAMMAR_SCHEMA)
        await _insert_collections(db, collections)
        await db.executemany(
            """INSERT INTO items (id, collection_id, code, name, grammar, examples, item_order)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    _str(i.get("id")), _str(i.get("collectionId")), _str(i.get("code")), _str(i.get("name")),
                    _str(i.get("grammar")), json.dumps(i.get("examples") or [], ensure_ascii=False),
                    _num(i.get("order")),
                )
                for i in items
            ],
        )
        await db.commit()


async def build_production(
    db_path: str,
    storage: LocalObjectStorage,
    public_url: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Build and upload courses.json, vocabulary.sqlite and grammar.sqlite."""
    now = now or datetime.now(timezone.utc)
    version = now.strftime("%Y%m%d")
    build_time = now.isoformat()

    # Independent reads: fan out, then join
    names = list(FETCH_LIMITS)
    results = await asyncio.gather(*(
        store.list_documents(db_path, name, limit=FETCH_LIMITS[name]) for name in names
    ))
    data = dict(zip(names, results))
    logger.info("Export: loaded %s", ", ".join(f"{n}={len(d)}" for n, d in data.items()))

    courses_blob = json.dumps({
        "version": version,
        "buildTime": build_time,
        "courses": build_courses_tree(
            data["courses"], data["lessons"], data["vocabulary_items"],
            data["grammar_items"], data["conversations"],
        ),
    }, ensure_ascii=False, indent=2).encode("utf-8")
    await storage.upload(COURSES_JSON_KEY, courses_blob, "application/json")

    with tempfile.TemporaryDirectory(prefix="lingodino-export-") as tmp:
        vocab_path = Path(tmp) / "vocabulary.sqlite"
        await write_vocabulary_db(vocab_path, data["vocabulary_collections"], data["vocabulary_items"])
        vocab_bytes = vocab_path.read_bytes()
        await storage.upload(VOCAB_SQLITE_KEY, vocab_bytes, "application/x-sqlite3")

        grammar_path = Path(tmp) / "grammar.sqlite"
        await write_grammar_db(grammar_path, data["grammar_collections"], data["grammar_items"])
        grammar_bytes = grammar_path.read_bytes()
        await storage.upload(GRAMMAR_SQLITE_KEY, grammar_bytes, "application/x-sqlite3")

    def url(key: str) -> str | None:
        return f"{public_url.rstrip('/')}/{key}" if public_url else None

    logger.info("Export %s complete", version)
    return {
        "courses": {
            "key": COURSES_JSON_KEY,
            "url": url(COURSES_JSON_KEY),
            "size": len(courses_blob),
            "count": len(data["courses"]),
            "lessonsCount": len(data["lessons"]),
        },
        "vocabulary": {
            "key": VOCAB_SQLITE_KEY,
            "url": url(VOCAB_SQLITE_KEY),
            "size": len(vocab_bytes),
            "collectionsCount": len(data["vocabulary_collections"]),
            "itemsCount": len(data["vocabulary_items"]),
        },
        "grammar": {
            "key": GRAMMAR_SQLITE_KEY,
            "url": url(GRAMMAR_SQLITE_KEY),
            "size": len(grammar_bytes),
            "collectionsCount": len(data["grammar_collections"]),
            "itemsCount": len(data["grammar_items"]),
        },
        "version": version,
        "buildTime": build_time,
    }
