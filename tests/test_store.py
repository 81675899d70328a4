# ABOUTME: Tests for the aiosqlite document store
# ABOUTME: Insert/find, merge updates, conditional updates, pagination order
from __future__ import annotations

import asyncio

import pytest

import store


def test_insert_assigns_id_and_find_returns_document(db_path):
    doc = asyncio.run(store.insert_document(db_path, "courses", {"title": "HSK 1"}))

    assert len(doc["id"]) == 24
    assert asyncio.run(store.find_by_id(db_path, "courses", doc["id"])) == doc


def test_find_missing_returns_none(db_path):
    assert asyncio.run(store.find_by_id(db_path, "conversations", "nope")) is None


def test_update_merges_fields(db_path):
    asyncio.run(store.insert_document(db_path, "conversations", {"id": "c1", "name": "A", "status": "draft"}))

    updated = asyncio.run(store.update_document(db_path, "conversations", "c1", {"status": "completed"}))

    assert updated == {"id": "c1", "name": "A", "status": "completed"}
    assert asyncio.run(store.find_by_id(db_path, "conversations", "c1"))["status"] == "completed"


def test_update_missing_document_returns_none(db_path):
    assert asyncio.run(store.update_document(db_path, "conversations", "ghost", {"a": 1})) is None


def test_conditional_update_is_skipped_when_guard_matches(db_path):
    asyncio.run(store.insert_document(db_path, "conversations", {"id": "c1", "status": "generating"}))

    result = asyncio.run(store.update_document(
        db_path, "conversations", "c1", {"status": "generating", "x": 1}, unless={"status": "generating"},
    ))

    assert result is None
    assert "x" not in asyncio.run(store.find_by_id(db_path, "conversations", "c1"))


def test_concurrent_guarded_updates_admit_one_winner(db_path):
    asyncio.run(store.insert_document(db_path, "conversations", {"id": "c1", "status": "draft"}))

    async def race():
        return await asyncio.gather(*[
            store.update_document(db_path, "conversations", "c1", {"status": "generating"},
                                  unless={"status": "generating"})
            for _ in range(5)
        ])

    results = asyncio.run(race())

    assert sum(r is not None for r in results) == 1


def test_list_and_count_paginate_in_insertion_order(db_path):
    async def seed():
        for i in range(5):
            await store.insert_document(db_path, "lessons", {"id": f"l{i}", "order": i})

    asyncio.run(seed())

    page = asyncio.run(store.list_documents(db_path, "lessons", limit=2, offset=1))
    assert [d["id"] for d in page] == ["l1", "l2"]
    assert asyncio.run(store.count_documents(db_path, "lessons")) == 5


def test_delete_removes_document(db_path):
    asyncio.run(store.insert_document(db_path, "grammar_items", {"id": "g1"}))

    asyncio.run(store.delete_document(db_path, "grammar_items", "g1"))

    assert asyncio.run(store.find_by_id(db_path, "grammar_items", "g1")) is None


def test_unknown_collection_is_rejected(db_path):
    with pytest.raises(ValueError):
        asyncio.run(store.find_by_id(db_path, "users; DROP TABLE x", "1"))
