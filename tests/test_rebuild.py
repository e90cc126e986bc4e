"""Tests for rebuilding the index from the item files."""

import logging
from datetime import datetime

import pytest

from kbase.errors import InvalidRequestError
from kbase.file_store import layout_for
from kbase.types import BaseKind


def _snapshot(kb, refs):
    return {ref: kb.stores.index.get_row(*ref) for ref in refs}


class TestRebuildType:

    def test_rows_identical_after_rebuild(self, kb):
        issue = kb.create_item("issues", "Login", content="x", tags=["auth"],
                               related=["docs-1"], start_date="2025-07-01")
        kb.update_item("issues", issue.id, status="Review", priority="low")
        doc = kb.create_item("docs", "Setup", description="How to", content="pip install")
        daily = kb.create_item("dailies", "Mon", content="x", date="2025-07-28")
        session = kb.create_item("sessions", "Pairing", datetime=datetime(2025, 7, 28, 9))
        refs = [(i.type, i.id) for i in (issue, doc, daily, session)]
        before = _snapshot(kb, refs)

        counts = kb.rebuild()

        assert _snapshot(kb, refs) == before
        assert counts["issues"] == 1
        assert counts["sessions"] == 1
        assert kb.search("install")[0].id == doc.id
        assert {t.name: t.usage_count for t in kb.list_tags()} == {"auth": 1}

    def test_hand_edit_is_picked_up(self, kb):
        doc = kb.create_item("docs", "Old title", content="x")
        path = kb.stores.files.path_for(layout_for("docs"), doc.id)
        path.write_text(path.read_text().replace("Old title", "New title"))
        assert kb.list_items("docs")[0].title == "Old title"

        assert kb.rebuild("docs") == {"docs": 1}
        assert kb.list_items("docs")[0].title == "New title"

    def test_file_without_title_is_skipped(self, kb, write_item_file, caplog):
        write_item_file("issues/issues-7.md", "---\npriority: high\n---\n\nbody\n")
        with caplog.at_level(logging.WARNING, logger="kbase"):
            assert kb.rebuild("issues") == {"issues": 0}
        assert "no title" in caplog.text
        assert kb.list_items("issues") == []

    def test_rows_without_files_are_purged(self, kb):
        doc = kb.create_item("docs", "d", content="x", tags=["gone"])
        kb.stores.files.path_for(layout_for("docs"), doc.id).unlink()
        kb.rebuild("docs")
        assert kb.list_items("docs") == []
        assert kb.search_by_tag("gone") == []
        assert kb.delete_tag("gone") is True

    def test_sequence_raised_past_files(self, kb, write_item_file):
        write_item_file("issues/issues-42.md", "---\ntitle: Imported\n---\n\nx\n")
        kb.rebuild("issues")
        assert kb.create_item("issues", "next", content="x").id == "43"

    def test_sequence_never_lowered(self, kb):
        for i in range(3):
            kb.create_item("plans", f"p{i}", content="x")
        kb.delete_item("plans", "3")
        kb.rebuild("plans")
        assert kb.create_item("plans", "p", content="x").id == "4"

    def test_unknown_type(self, kb):
        with pytest.raises(InvalidRequestError):
            kb.rebuild("widgets")

    def test_status_resolved_from_name_only_files(self, kb, write_item_file):
        write_item_file("issues/issues-1.md",
                        "---\ntitle: t\nstatus: Completed\n---\n\nx\n")
        kb.rebuild("issues")
        assert kb.list_items("issues") == []
        [row] = kb.list_items("issues", include_closed=True)
        assert row.status == "Completed"

    def test_rebuild_refreshes_renamed_status(self, kb):
        kb.create_item("issues", "t", content="x")
        kb.update_status(kb.stores.statuses.by_name("Open").id, name="Triage")
        assert kb.list_items("issues")[0].status == "Open"
        kb.rebuild("issues")
        assert kb.list_items("issues")[0].status == "Triage"


class TestRebuildAll:

    def test_discovers_unregistered_types(self, kb, write_item_file):
        write_item_file("recipes/recipes-1.md",
                        "---\nid: 1\ntitle: Soup\nbase: documents\n---\n\nBoil water\n")
        write_item_file("chores/chores-3.md",
                        "---\ntitle: Dishes\npriority: low\nstatus: Open\n---\n\nx\n")
        write_item_file("notes/notes-1.md", "---\ntitle: Plain\n---\n\nx\n")

        counts = kb.rebuild()

        assert counts["recipes"] == counts["chores"] == counts["notes"] == 1
        kinds = {t.name: t.base_kind for t in kb.list_types()}
        assert kinds["recipes"] is BaseKind.DOCUMENTS
        assert kinds["chores"] is BaseKind.TASKS
        assert kinds["notes"] is BaseKind.DOCUMENTS
        assert kb.get_item("chores", "3").priority == "low"
        assert kb.create_item("chores", "Laundry", content="x").id == "4"

    def test_ignores_directories_that_are_not_type_names(self, kb, write_item_file):
        write_item_file("My Notes/My Notes-1.md", "---\ntitle: x\n---\n\nx\n")
        kb.rebuild()
        assert "My Notes" not in {t.name for t in kb.list_types()}

    def test_recovers_from_lost_index(self, kb, store_path):
        kb.create_item("issues", "a", content="x", tags=["t"])
        kb.create_item("knowledge", "b", content="x")
        kb.stores.index.clear_items()
        assert kb.list_items("issues") == []

        kb.rebuild()
        assert [r.title for r in kb.list_items("issues")] == ["a"]
        assert [r.title for r in kb.search_by_tag("t")] == ["a"]
        assert len(kb.list_items("knowledge")) == 1
