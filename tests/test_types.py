"""Tests for value helpers in kbase.types."""

import re
from datetime import datetime, timezone

import pytest

from kbase.types import (
    BaseKind,
    Item,
    clean_string,
    clean_tags,
    session_id_for,
    split_ref,
    utc_now,
    validate_date,
    validate_type_name,
)


class TestBaseKind:

    def test_required_fields(self):
        assert BaseKind.TASKS.required_fields == {"title", "content"}
        assert BaseKind.DOCUMENTS.requires_content
        assert not BaseKind.SESSIONS.requires_content

    def test_from_string(self):
        assert BaseKind("documents") is BaseKind.DOCUMENTS


class TestTimestamps:

    def test_utc_now_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_now())

    def test_session_id_naive(self):
        moment = datetime(2025, 7, 28, 10, 15, 3, 42_000)
        assert session_id_for(moment) == "2025-07-28-10.15.03.042"

    def test_session_id_aware_is_local(self):
        moment = datetime(2025, 7, 28, 10, 0, tzinfo=timezone.utc)
        expected = moment.astimezone().strftime("%Y-%m-%d-%H.%M.%S.000")
        assert session_id_for(moment) == expected


class TestValidateDate:

    def test_valid(self):
        assert validate_date("2024-02-29") == "2024-02-29"

    @pytest.mark.parametrize("value", ["2024-2-01", "20240201", "2024/02/01", "", "tomorrow"])
    def test_bad_format(self, value):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            validate_date(value, "start_date")

    def test_impossible_date(self):
        with pytest.raises(ValueError, match="Invalid date: 2024-02-30"):
            validate_date("2024-02-30")

    def test_not_leap_year(self):
        with pytest.raises(ValueError):
            validate_date("2023-02-29")


class TestStrings:

    def test_clean_string_collapses(self):
        assert clean_string("  Hello   World \n") == "Hello World"

    def test_clean_tags(self):
        assert clean_tags([" a", "b ", "", "a", "  "]) == ["a", "b"]
        assert clean_tags(None) == []


class TestRefs:

    def test_split_session_ref(self):
        assert split_ref("sessions-2025-07-28-10.00.00.000") == (
            "sessions", "2025-07-28-10.00.00.000"
        )

    def test_split_plain(self):
        assert split_ref(" issues-12 ") == ("issues", "12")

    @pytest.mark.parametrize("ref", ["issues", "issues-", "-12"])
    def test_invalid(self, ref):
        with pytest.raises(ValueError, match="Invalid reference format"):
            split_ref(ref)

    def test_empty(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            split_ref("  ")


class TestTypeNames:

    @pytest.mark.parametrize("name", ["recipes", "bug_reports", "a1"])
    def test_valid(self, name):
        validate_type_name(name)

    @pytest.mark.parametrize("name", ["", "Recipes", "1abc", "with-hyphen", "x" * 51])
    def test_invalid(self, name):
        with pytest.raises(ValueError):
            validate_type_name(name)


def test_item_ref_and_date():
    issue = Item(type="issues", id="3", title="t")
    assert issue.ref == "issues-3"
    assert issue.date is None
    daily = Item(type="dailies", id="2025-07-28", title="t", start_date="2025-07-28")
    assert daily.date == "2025-07-28"
