"""
Type registry: item types, their base kinds, id sequences and fields.

Registry types live in the ``sequences`` table (one row per type, holding
its counter) with their field definitions in ``type_fields``. The two
date-keyed types, sessions and dailies, are built in and never stored.
"""

import logging
import threading
from typing import Optional

from .errors import ConflictError, InvalidRequestError, NotFoundError
from .index_store import IndexStore
from .types import (
    CUSTOM_TYPE_KINDS,
    DAILIES_TYPE,
    DATE_KEYED_TYPES,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    SESSIONS_TYPE,
    BaseKind,
    FieldDefinition,
    IdScheme,
    TypeDefinition,
    validate_type_name,
)

logger = logging.getLogger(__name__)


BUILTIN_TYPES: dict[str, tuple[BaseKind, str]] = {
    "issues": (BaseKind.TASKS, "Bug reports, feature requests and other trackable work"),
    "plans": (BaseKind.TASKS, "Project plans with start and end dates"),
    "docs": (BaseKind.DOCUMENTS, "Technical documentation"),
    "knowledge": (BaseKind.DOCUMENTS, "Knowledge base entries"),
}

_DATE_TYPES: dict[str, TypeDefinition] = {
    SESSIONS_TYPE: TypeDefinition(
        SESSIONS_TYPE, BaseKind.SESSIONS, IdScheme.TIMESTAMP,
        description="Work sessions, keyed by start time",
    ),
    DAILIES_TYPE: TypeDefinition(
        DAILIES_TYPE, BaseKind.DOCUMENTS, IdScheme.DATE,
        description="Daily summaries, one per date",
    ),
}


def _f(name, field_type, required=False, default=None, description=None):
    return FieldDefinition(name, field_type, required, default, description)


def fields_for_kind(kind: BaseKind, *, dated: bool = False) -> list[FieldDefinition]:
    """
    Field definitions a type of the given kind declares, in file order.

    Args:
        kind: Base kind of the type
        dated: Add a start_date field holding the item's own date
            (dailies; sessions always have one)
    """
    content_required = kind.requires_content
    fields = [
        _f("id", "id", True, description="Identifier"),
        _f("title", "string", True, description="Title"),
        _f("description", "string", description="One-line description"),
        _f("content", "text", content_required, description="Body text"),
    ]
    if kind is BaseKind.TASKS:
        fields += [
            _f("priority", "priority", False, DEFAULT_PRIORITY, "high, medium or low"),
            _f("status", "status", False, DEFAULT_STATUS, "Workflow status name"),
            _f("start_date", "date", description="Start date"),
            _f("end_date", "date", description="End date"),
        ]
    elif kind is BaseKind.SESSIONS or dated:
        fields.append(_f("start_date", "date", description="The item's date"))
    fields += [
        _f("tags", "tags", False, "[]", "Tag names"),
        _f("related", "related", False, "[]", "type-id references"),
        _f("created_at", "datetime", True, description="Creation time"),
        _f("updated_at", "datetime", True, description="Last update time"),
    ]
    return fields


_DATE_TYPE_FIELDS: dict[str, list[FieldDefinition]] = {
    SESSIONS_TYPE: fields_for_kind(BaseKind.SESSIONS),
    DAILIES_TYPE: fields_for_kind(BaseKind.DOCUMENTS, dated=True),
}


class TypeRegistry:
    """
    Lookup and administration of item types.

    Field definitions are loaded once per type and cached; registering
    or deleting a type invalidates its entry.
    """

    def __init__(self, index: IndexStore):
        self._index = index
        self._fields_cache: dict[str, list[FieldDefinition]] = {}
        self._cache_lock = threading.Lock()
        self._seed_builtins()

    def _seed_builtins(self) -> None:
        with self._index.transaction() as conn:
            for name, (kind, description) in BUILTIN_TYPES.items():
                cur = conn.execute("""
                    INSERT OR IGNORE INTO sequences (type, current_value, base_type, description)
                    VALUES (?, 0, ?, ?)
                """, (name, kind.value, description))
                if cur.rowcount:
                    self._insert_fields(conn, name, fields_for_kind(kind))

    @staticmethod
    def _insert_fields(conn, type_name: str, fields: list[FieldDefinition]) -> None:
        conn.executemany("""
            INSERT OR REPLACE INTO type_fields
                (type, position, field_name, field_type, required, default_value, description)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            (type_name, pos, f.field_name, f.field_type, int(f.required),
             f.default_value, f.description)
            for pos, f in enumerate(fields)
        ])

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_type(self, name: str) -> Optional[TypeDefinition]:
        if name in _DATE_TYPES:
            return _DATE_TYPES[name]
        row = self._index.query_one(
            "SELECT type, current_value, base_type, description FROM sequences WHERE type = ?",
            (name,),
        )
        if row is None:
            return None
        return TypeDefinition(
            name=row["type"],
            base_kind=BaseKind(row["base_type"]),
            id_scheme=IdScheme.SEQUENTIAL,
            current_value=row["current_value"],
            description=row["description"],
        )

    def type_exists(self, name: str) -> bool:
        return self.get_type(name) is not None

    def base_kind_of(self, name: str) -> Optional[BaseKind]:
        type_def = self.get_type(name)
        return type_def.base_kind if type_def else None

    def id_scheme_of(self, name: str) -> Optional[IdScheme]:
        type_def = self.get_type(name)
        return type_def.id_scheme if type_def else None

    def list_types(self, include_builtin_dates: bool = False) -> list[TypeDefinition]:
        """All types, grouped by base kind then name."""
        rows = self._index.query(
            "SELECT type, current_value, base_type, description FROM sequences "
            "ORDER BY base_type, type"
        )
        types = [
            TypeDefinition(
                name=r["type"],
                base_kind=BaseKind(r["base_type"]),
                current_value=r["current_value"],
                description=r["description"],
            )
            for r in rows
        ]
        if include_builtin_dates:
            types.extend(_DATE_TYPES.values())
        return types

    def get_fields(self, name: str) -> list[FieldDefinition]:
        """
        Field definitions of a type, in file order.

        Raises:
            NotFoundError: unknown type
        """
        with self._cache_lock:
            cached = self._fields_cache.get(name)
        if cached is not None:
            return cached

        if name in _DATE_TYPE_FIELDS:
            fields = _DATE_TYPE_FIELDS[name]
        else:
            rows = self._index.query("""
                SELECT field_name, field_type, required, default_value, description
                FROM type_fields WHERE type = ? ORDER BY position
            """, (name,))
            if not rows:
                if not self.type_exists(name):
                    raise NotFoundError(f"Unknown type: {name}")
                # Registered without field rows (e.g. an older index)
                fields = fields_for_kind(self.base_kind_of(name))
            else:
                fields = [
                    FieldDefinition(r[0], r[1], bool(r[2]), r[3], r[4]) for r in rows
                ]

        with self._cache_lock:
            self._fields_cache[name] = fields
        return fields

    # -------------------------------------------------------------------------
    # Sequences
    # -------------------------------------------------------------------------

    def next_sequence_value(self, name: str) -> int:
        """
        Atomically increment and return a type's sequence counter.

        Raises:
            NotFoundError: the type has no sequence (unknown or date-keyed)
        """
        with self._index.transaction() as conn:
            rows = conn.execute("""
                UPDATE sequences SET current_value = current_value + 1
                WHERE type = ?
                RETURNING current_value
            """, (name,)).fetchall()
        if not rows:
            raise NotFoundError(f"No sequence for type: {name}")
        return rows[0][0]

    def ensure_sequence_at_least(self, name: str, value: int) -> None:
        """Raise a counter so the next id is above value (never lowers it)."""
        self._index.execute("""
            UPDATE sequences SET current_value = MAX(current_value, ?)
            WHERE type = ?
        """, (value, name))

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def register_type(
        self,
        name: str,
        kind: BaseKind | str,
        description: Optional[str] = None,
    ) -> TypeDefinition:
        """
        Register a custom type.

        Args:
            name: Lowercase letters, digits and underscores, starting
                with a letter, at most 50 characters
            kind: ``tasks`` or ``documents``
            description: Free text

        Raises:
            InvalidRequestError: bad name or kind, reserved or existing name
        """
        try:
            validate_type_name(name)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from None
        if name in DATE_KEYED_TYPES:
            raise InvalidRequestError(f"Type name is reserved: {name}")
        try:
            kind = BaseKind(kind)
        except ValueError:
            raise InvalidRequestError(f"Invalid base type: {kind}") from None
        if kind not in CUSTOM_TYPE_KINDS:
            raise InvalidRequestError(
                f"Base type must be one of: {', '.join(k.value for k in CUSTOM_TYPE_KINDS)}"
            )

        with self._index.transaction() as conn:
            cur = conn.execute("""
                INSERT OR IGNORE INTO sequences (type, current_value, base_type, description)
                VALUES (?, 0, ?, ?)
            """, (name, kind.value, description))
            if cur.rowcount == 0:
                raise InvalidRequestError(f"Type already exists: {name}")
            self._insert_fields(conn, name, fields_for_kind(kind))

        self._invalidate(name)
        logger.info("Registered type %s (%s)", name, kind.value)
        return TypeDefinition(name, kind, IdScheme.SEQUENTIAL, 0, description)

    def update_type(self, name: str, description: Optional[str]) -> TypeDefinition:
        """Change a type's description (the only mutable attribute)."""
        if name in DATE_KEYED_TYPES:
            raise InvalidRequestError(f"Cannot modify built-in type: {name}")
        updated = self._index.execute(
            "UPDATE sequences SET description = ? WHERE type = ?", (description, name)
        )
        if not updated:
            raise NotFoundError(f"Unknown type: {name}")
        return self.get_type(name)

    def delete_type(self, name: str) -> None:
        """
        Remove a custom type.

        Raises:
            InvalidRequestError: built-in type
            NotFoundError: unknown type
            ConflictError: items of the type are still indexed
        """
        if name in DATE_KEYED_TYPES or name in BUILTIN_TYPES:
            raise InvalidRequestError(f"Cannot delete built-in type: {name}")
        with self._index.transaction() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM items WHERE type = ?", (name,)
            ).fetchone()[0]
            if count:
                raise ConflictError(
                    f"Cannot delete type {name}: {count} item(s) still exist",
                    {"type": name, "count": count},
                )
            deleted = conn.execute("DELETE FROM sequences WHERE type = ?", (name,)).rowcount
            if not deleted:
                raise NotFoundError(f"Unknown type: {name}")
            conn.execute("DELETE FROM type_fields WHERE type = ?", (name,))
        self._invalidate(name)
        logger.info("Deleted type %s", name)

    def _invalidate(self, name: str) -> None:
        with self._cache_lock:
            self._fields_cache.pop(name, None)
