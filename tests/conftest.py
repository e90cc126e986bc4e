"""
Shared pytest fixtures for kbase tests.

Every store lives under tmp_path: real files, real SQLite.
"""

from pathlib import Path

import pytest

from kbase.api import KnowledgeBase
from kbase.file_store import FileStore
from kbase.index_store import IndexStore


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def kb(store_path):
    """A fresh knowledge base, closed after the test."""
    kb = KnowledgeBase(store_path)
    yield kb
    kb.close()


@pytest.fixture
def index(tmp_path):
    store = IndexStore(tmp_path / "index.db")
    yield store
    store.close()


@pytest.fixture
def files(tmp_path) -> FileStore:
    return FileStore(tmp_path / "files")


@pytest.fixture
def write_item_file(store_path):
    """Drop a hand-written item file into the store."""
    def write(relpath: str, text: str) -> Path:
        path = store_path / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path
    return write
