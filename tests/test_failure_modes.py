"""Tests for partial failures of the file-then-index write.

Covers:
- index projection fails after the file write (file wins, rebuild reconciles)
- tag registration fails after a successful write (logged, not raised)
- the file write itself fails (nothing reaches the index)
"""

import logging
import sqlite3

import pytest

from kbase.api import KnowledgeBase
from kbase.backend import create_stores
from kbase.config import load_or_create_config
from kbase.errors import IndexProjectionError, InternalError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Wrapper:
    """Delegates everything to a real collaborator unless told to fail."""

    def __init__(self, real):
        self._real = real
        self.fail = False

    def __getattr__(self, name):
        return getattr(self._real, name)


class FailingIndex(_Wrapper):
    """Index whose projection raises, as a locked or corrupt database would."""

    def project(self, item):
        if self.fail:
            raise sqlite3.OperationalError("database is locked")
        return self._real.project(item)


class FailingTags(_Wrapper):
    def ensure_exist(self, names):
        if self.fail:
            raise sqlite3.OperationalError("disk I/O error")
        return self._real.ensure_exist(names)


class FailingFiles(_Wrapper):
    def save(self, *args, **kwargs):
        if self.fail:
            raise PermissionError("read-only file system")
        return self._real.save(*args, **kwargs)


@pytest.fixture
def make_kb(store_path):
    """Build a KnowledgeBase with one collaborator wrapped."""
    opened = []

    def make(**wrappers):
        config = load_or_create_config(store_path)
        stores = create_stores(config)
        replaced = {name: wrap(getattr(stores, name)) for name, wrap in wrappers.items()}
        kb = KnowledgeBase(config=config, stores=stores._replace(**replaced))
        opened.append(kb)
        return kb, replaced

    yield make
    for kb in opened:
        kb.close()


# ---------------------------------------------------------------------------
# Index projection failures
# ---------------------------------------------------------------------------

class TestIndexFailure:

    def test_create_keeps_file_and_raises(self, make_kb):
        kb, wrapped = make_kb(index=FailingIndex)
        wrapped["index"].fail = True

        with pytest.raises(IndexProjectionError) as exc_info:
            kb.create_item("issues", "Saved anyway", content="x")
        assert isinstance(exc_info.value, InternalError)
        assert "rebuild" in str(exc_info.value)

        assert kb.get_item("issues", "1").title == "Saved anyway"
        assert kb.list_items("issues") == []

    def test_rebuild_reconciles(self, make_kb):
        kb, wrapped = make_kb(index=FailingIndex)
        wrapped["index"].fail = True
        with pytest.raises(IndexProjectionError):
            kb.create_item("issues", "Saved anyway", content="x", tags=["late"])

        wrapped["index"].fail = False
        assert kb.rebuild("issues") == {"issues": 1}
        assert [r.title for r in kb.list_items("issues")] == ["Saved anyway"]
        assert [r.id for r in kb.search_by_tag("late")] == ["1"]

    def test_failed_update_leaves_stale_row_until_rebuild(self, make_kb):
        kb, wrapped = make_kb(index=FailingIndex)
        kb.create_item("docs", "Before", content="x")

        wrapped["index"].fail = True
        with pytest.raises(IndexProjectionError):
            kb.update_item("docs", "1", title="After")
        assert kb.get_item("docs", "1").title == "After"
        assert kb.list_items("docs")[0].title == "Before"

        wrapped["index"].fail = False
        kb.rebuild("docs")
        assert kb.list_items("docs")[0].title == "After"

    def test_sequence_not_reused_after_failure(self, make_kb):
        kb, wrapped = make_kb(index=FailingIndex)
        wrapped["index"].fail = True
        with pytest.raises(IndexProjectionError):
            kb.create_item("issues", "a", content="x")
        wrapped["index"].fail = False
        assert kb.create_item("issues", "b", content="x").id == "2"


# ---------------------------------------------------------------------------
# Tag registration failures
# ---------------------------------------------------------------------------

class TestTagRegistrationFailure:

    def test_write_succeeds_with_warning(self, make_kb, caplog):
        kb, wrapped = make_kb(tags=FailingTags)
        wrapped["tags"].fail = True

        with caplog.at_level(logging.WARNING, logger="kbase"):
            item = kb.create_item("docs", "d", content="x", tags=["ops"])
        assert "Tag registration failed" in caplog.text

        assert kb.get_item("docs", item.id).tags == ["ops"]
        assert [r.id for r in kb.search_by_tag("ops")] == [item.id]
        assert kb.list_tags() == []

    def test_next_write_registers_the_tag(self, make_kb):
        kb, wrapped = make_kb(tags=FailingTags)
        wrapped["tags"].fail = True
        item = kb.create_item("docs", "d", content="x", tags=["ops"])

        wrapped["tags"].fail = False
        kb.update_item("docs", item.id, title="d2")
        assert [(t.name, t.usage_count) for t in kb.list_tags()] == [("ops", 1)]


# ---------------------------------------------------------------------------
# File write failures
# ---------------------------------------------------------------------------

class TestFileWriteFailure:

    def test_nothing_reaches_the_index(self, make_kb):
        kb, wrapped = make_kb(files=FailingFiles)
        wrapped["files"].fail = True

        with pytest.raises(InternalError) as exc_info:
            kb.create_item("issues", "t", content="x", tags=["never"])
        assert not isinstance(exc_info.value, IndexProjectionError)
        assert kb.list_items("issues") == []
        assert kb.list_tags() == []

    def test_failed_update_keeps_previous_version(self, make_kb):
        kb, wrapped = make_kb(files=FailingFiles)
        kb.create_item("docs", "Before", content="x")

        wrapped["files"].fail = True
        with pytest.raises(InternalError):
            kb.update_item("docs", "1", title="After")
        assert kb.get_item("docs", "1").title == "Before"
        assert kb.list_items("docs")[0].title == "Before"
