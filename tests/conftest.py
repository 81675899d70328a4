# ABOUTME: Shared fixtures: temp document store, local object storage, sample conversation
# ABOUTME: Fakes for the speech backend and renderer live in fakes.py
from __future__ import annotations

import asyncio

import pytest

import store
from fakes import make_conversation
from models import Conversation
from storage import LocalObjectStorage


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "test.db")
    asyncio.run(store.init_db(path))
    return path


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "objects", "http://media.test", "test-secret")


@pytest.fixture
def conversation() -> Conversation:
    return make_conversation()
