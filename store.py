# ABOUTME: SQLite-backed async document store for conversations and course content
# ABOUTME: JSON documents keyed by id; find-by-id, conditional update, pagination
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import aiosqlite

DB_PATH = "data/lingodino.db"

COLLECTIONS = (
    "conversations",
    "courses",
    "lessons",
    "vocabulary_collections",
    "vocabulary_items",
    "grammar_collections",
    "grammar_items",
)

SCHEMA = "\n".join(
    f"""
CREATE TABLE IF NOT EXISTS {name} (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created_at TEXT,
    updated_at TEXT
);"""
    for name in COLLECTIONS
)


def _check(collection: str):
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")


def new_id() -> str:
    return uuid.uuid4().hex[:24]


async def init_db(db_path: str = DB_PATH):
    """Create tables if they don't exist."""
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA)
        await db.commit()


async def insert_document(db_path: str, collection: str, doc: dict) -> dict:
    """Insert a document, assigning an id if it has none."""
    _check(collection)
    doc = dict(doc)
    doc.setdefault("id", new_id())
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            f"INSERT INTO {collection} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (doc["id"], json.dumps(doc), now, now),
        )
        await db.commit()
    return doc


async def find_by_id(db_path: str, collection: str, doc_id: str) -> dict | None:
    _check(collection)
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(f"SELECT data FROM {collection} WHERE id = ?", (doc_id,)) as cursor:
            row = await cursor.fetchone()
            return json.loads(row[0]) if row else None


async def update_document(
    db_path: str,
    collection: str,
    doc_id: str,
    changes: dict,
    unless: dict | None = None,
) -> dict | None:
    """Merge `changes` into a document and return the updated document.

    Returns None when the document is missing, or when any `unless` field
    currently holds the given value (the update is skipped).
    """
    _check(collection)
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(db_path) as db:
        # Write lock up front so the read-check-write is atomic across connections
        await db.execute("BEGIN IMMEDIATE")
        async with db.execute(f"SELECT data FROM {collection} WHERE id = ?", (doc_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            await db.rollback()
            return None
        doc = json.loads(row[0])
        if unless and any(doc.get(k) == v for k, v in unless.items()):
            await db.rollback()
            return None
        doc.update(changes)
        doc["id"] = doc_id
        await db.execute(
            f"UPDATE {collection} SET data=?, updated_at=? WHERE id=?",
            (json.dumps(doc), now, doc_id),
        )
        await db.commit()
    return doc


async def list_documents(db_path: str, collection: str, limit: int = 1000, offset: int = 0) -> list[dict]:
    """One page of documents in insertion order."""
    _check(collection)
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            f"SELECT data FROM {collection} ORDER BY created_at, rowid LIMIT ? OFFSET ?",
            (limit, offset),
        ) as cursor:
            return [json.loads(row[0]) async for row in cursor]


async def count_documents(db_path: str, collection: str) -> int:
    _check(collection)
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(f"SELECT COUNT(*) FROM {collection}") as cursor:
            row = await cursor.fetchone()
            return row[0]


async def delete_document(db_path: str, collection: str, doc_id: str):
    _check(collection)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(f"DELETE FROM {collection} WHERE id = ?", (doc_id,))
        await db.commit()
