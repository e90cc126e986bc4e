"""Tests for the type, tag and status registries."""

import pytest

from kbase.errors import ConflictError, InvalidRequestError, NotFoundError
from kbase.status_registry import DEFAULT_STATUSES, StatusRegistry
from kbase.tag_registry import TagRegistry
from kbase.type_registry import TypeRegistry
from kbase.types import BaseKind, IdScheme, Item


@pytest.fixture
def types(index):
    return TypeRegistry(index)


@pytest.fixture
def tags(index):
    return TagRegistry(index)


@pytest.fixture
def statuses(index):
    return StatusRegistry(index)


class TestTypeRegistry:

    def test_builtins(self, types):
        names = {t.name for t in types.list_types()}
        assert names == {"issues", "plans", "docs", "knowledge"}
        assert types.base_kind_of("plans") is BaseKind.TASKS
        assert types.base_kind_of("knowledge") is BaseKind.DOCUMENTS

    def test_date_types_are_built_in_but_not_rows(self, types, index):
        assert types.get_type("sessions").id_scheme is IdScheme.TIMESTAMP
        assert types.get_type("dailies").id_scheme is IdScheme.DATE
        assert index.query_one("SELECT 1 FROM sequences WHERE type = 'sessions'") is None
        listed = {t.name for t in types.list_types(include_builtin_dates=True)}
        assert {"sessions", "dailies"} <= listed

    def test_seeding_is_idempotent(self, types, index):
        types.next_sequence_value("issues")
        TypeRegistry(index)
        assert types.get_type("issues").current_value == 1

    def test_sequence_is_monotonic(self, types):
        assert [types.next_sequence_value("plans") for _ in range(3)] == [1, 2, 3]

    def test_sequence_unknown_type(self, types):
        with pytest.raises(NotFoundError):
            types.next_sequence_value("sessions")

    def test_ensure_sequence_never_lowers(self, types):
        types.ensure_sequence_at_least("issues", 10)
        types.ensure_sequence_at_least("issues", 4)
        assert types.next_sequence_value("issues") == 11

    def test_register_custom_type(self, types):
        type_def = types.register_type("recipes", "documents", "Cooking")
        assert type_def.base_kind is BaseKind.DOCUMENTS
        assert types.type_exists("recipes")
        fields = [f.field_name for f in types.get_fields("recipes")]
        assert "priority" not in fields
        assert fields[:4] == ["id", "title", "description", "content"]

    def test_task_kind_fields(self, types):
        fields = {f.field_name: f for f in types.get_fields("issues")}
        assert fields["priority"].default_value == "medium"
        assert fields["status"].default_value == "Open"
        assert fields["content"].required

    @pytest.mark.parametrize("name,kind", [
        ("Bad-Name", "tasks"),
        ("sessions", "tasks"),
        ("dailies", "documents"),
        ("issues", "tasks"),
        ("things", "sessions"),
        ("things", "widgets"),
    ])
    def test_register_rejected(self, types, name, kind):
        with pytest.raises(InvalidRequestError):
            types.register_type(name, kind)

    def test_update_type_description(self, types):
        types.register_type("recipes", BaseKind.DOCUMENTS)
        assert types.update_type("recipes", "Cooking").description == "Cooking"
        with pytest.raises(NotFoundError):
            types.update_type("nothing", "x")

    def test_delete_type(self, types, index):
        types.register_type("recipes", BaseKind.DOCUMENTS)
        index.project(Item(type="recipes", id="1", title="Soup",
                           created_at="x", updated_at="x"))
        with pytest.raises(ConflictError):
            types.delete_type("recipes")
        index.remove("recipes", "1")
        types.delete_type("recipes")
        assert not types.type_exists("recipes")
        with pytest.raises(NotFoundError):
            types.get_fields("recipes")

    def test_delete_builtin_rejected(self, types):
        with pytest.raises(InvalidRequestError):
            types.delete_type("issues")
        with pytest.raises(InvalidRequestError):
            types.delete_type("sessions")

    def test_delete_unknown(self, types):
        with pytest.raises(NotFoundError):
            types.delete_type("nothing")


class TestTagRegistry:

    def test_ensure_exist_is_idempotent(self, tags):
        tags.ensure_exist(["a", "b"])
        tags.ensure_exist(["b", " c ", ""])
        assert sorted(t.name for t in tags.all()) == ["a", "b", "c"]

    def test_get_or_create_id_is_stable(self, tags):
        first = tags.get_or_create_id("x")
        assert tags.get_or_create_id(" x ") == first

    def test_create_duplicate(self, tags):
        tags.create("x")
        with pytest.raises(InvalidRequestError, match="already exists"):
            tags.create("x")

    def test_usage_counts_follow_edges(self, tags, index):
        tags.ensure_exist(["x", "y"])
        index.project(Item(type="issues", id="1", title="t", tags=["x"],
                           created_at="x", updated_at="x"))
        assert tags.get("x").usage_count == 1
        assert tags.all()[0].name == "x"
        assert tags.usage_count("y") == 0

    def test_delete_in_use_conflicts(self, tags, index):
        tags.ensure_exist(["x"])
        index.project(Item(type="issues", id="1", title="t", tags=["x"],
                           created_at="x", updated_at="x"))
        with pytest.raises(ConflictError):
            tags.delete("x")
        index.remove("issues", "1")
        assert tags.delete("x") is True
        assert tags.delete("x") is False

    def test_delete_trims_name(self, tags):
        tags.create("ops")
        assert tags.delete(" ops ") is True
        assert tags.get("ops") is None
        with pytest.raises(InvalidRequestError):
            tags.delete("  ")

    def test_search_escapes_wildcards(self, tags):
        tags.ensure_exist(["100%", "1000", "snake_case", "snakecase"])
        assert [t.name for t in tags.search("0%")] == ["100%"]
        assert [t.name for t in tags.search("e_c")] == ["snake_case"]
        assert {t.name for t in tags.search("SNAKE")} == {"snake_case", "snakecase"}


class TestStatusRegistry:

    def test_defaults_seeded_once(self, statuses, index):
        assert [s.name for s in statuses.all()] == [n for n, _ in DEFAULT_STATUSES]
        StatusRegistry(index)
        assert len(statuses.all()) == len(DEFAULT_STATUSES)

    def test_closed_flags(self, statuses):
        closed = {s.name for s in statuses.all() if s.is_closed}
        assert closed == {"Completed", "Closed", "Canceled", "Rejected"}

    def test_create_and_lookup(self, statuses):
        status = statuses.create("Blocked")
        assert statuses.by_id(status.id) == status
        assert statuses.by_name("Blocked") == status
        with pytest.raises(InvalidRequestError):
            statuses.create("Blocked")
        with pytest.raises(InvalidRequestError):
            statuses.create("  ")

    def test_update(self, statuses):
        status = statuses.create("Blocked")
        assert statuses.update(status.id, name="Stuck", is_closed=True)
        assert statuses.by_id(status.id) == type(status)(status.id, "Stuck", True)
        with pytest.raises(InvalidRequestError):
            statuses.update(status.id, name="Open")
        assert statuses.update(9999, name="Nope") is False

    def test_delete(self, statuses):
        status = statuses.create("Blocked")
        assert statuses.delete(status.id) is True
        assert statuses.by_id(status.id) is None
        assert statuses.delete(status.id) is False
