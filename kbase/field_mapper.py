"""
Mapping between Item and the generic metadata block of an item file.

Each type declares an ordered list of field definitions; the mapper walks
that list in both directions, so custom types share the storage code of
the built-in ones. Fields a type does not declare are never written and
read back as empty.
"""

import logging
from typing import Any, Callable, Optional

from .types import (
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    PRIORITIES,
    BaseKind,
    FieldDefinition,
    IdScheme,
    Item,
    clean_tags,
    dedupe,
    split_ref,
)

logger = logging.getLogger(__name__)

# (status_id, status_name) -> (status_id, status_name), either side may be None
StatusResolver = Callable[[Optional[int], Optional[str]], tuple[Optional[int], Optional[str]]]
KindLookup = Callable[[str], Optional[BaseKind]]

# Keys carried by files written before `related` replaced the two lists
LEGACY_RELATED_KEYS = ("related_tasks", "related_documents")


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return []


class FieldMapper:
    """
    Converts one type's items to and from file metadata.

    Args:
        type_name: The type this mapper serves
        fields: The type's field definitions, in file order
        base_kind: The type's base kind
        id_scheme: How the type's ids are minted
        kind_of: Base kind lookup for referenced types (splits `related`
            into its task and document views)
        emit_base: Write a ``base`` key so a rebuild can rediscover the
            type from its files alone
    """

    def __init__(
        self,
        type_name: str,
        fields: list[FieldDefinition],
        base_kind: BaseKind,
        id_scheme: IdScheme,
        kind_of: KindLookup,
        *,
        emit_base: bool = False,
    ):
        self.type_name = type_name
        self.fields = fields
        self.base_kind = base_kind
        self.id_scheme = id_scheme
        self._kind_of = kind_of
        self._emit_base = emit_base
        self._declared = {f.field_name for f in fields}
        self._defaults = {f.field_name: f.default_value for f in fields}

    def declares(self, field_name: str) -> bool:
        return field_name in self._declared

    # -------------------------------------------------------------------------
    # Item -> file
    # -------------------------------------------------------------------------

    def to_storage(self, item: Item) -> tuple[dict[str, Any], str]:
        """
        Build the metadata block and body for an item.

        Returns:
            (metadata, body) tuple
        """
        metadata: dict[str, Any] = {}
        for f in self.fields:
            name = f.field_name
            if name == "id":
                if self.id_scheme is IdScheme.SEQUENTIAL and item.id.isdigit():
                    metadata["id"] = int(item.id)
                else:
                    metadata["id"] = item.id
            elif name == "content":
                continue  # the body
            elif name == "status":
                if item.status is not None:
                    metadata["status"] = item.status
                if item.status_id is not None:
                    metadata["status_id"] = item.status_id
            elif name in ("tags", "related"):
                metadata[name] = list(getattr(item, name))
            else:
                value = getattr(item, name, None)
                if value is not None:
                    metadata[name] = value
        if self._emit_base:
            metadata["base"] = self.base_kind.value
        return metadata, item.content or ""

    # -------------------------------------------------------------------------
    # File -> Item
    # -------------------------------------------------------------------------

    def from_storage(
        self,
        item_id: str,
        metadata: dict[str, Any],
        content: str,
        resolve_status: StatusResolver,
    ) -> Item:
        """
        Rebuild an Item from a file's metadata block and body.

        The id comes from the file name. The status is re-resolved through
        resolve_status (status_id first, then the name).
        """
        values: dict[str, Any] = {"type": self.type_name, "id": item_id}
        for f in self.fields:
            name = f.field_name
            if name == "id":
                continue
            elif name == "title":
                values["title"] = _opt_str(metadata.get("title")) or ""
            elif name == "content":
                values["content"] = content if content else None
            elif name == "priority":
                priority = metadata.get("priority")
                values["priority"] = priority if priority in PRIORITIES else (
                    self._defaults.get("priority") or DEFAULT_PRIORITY
                )
            elif name == "status":
                status_id = metadata.get("status_id")
                if not isinstance(status_id, int) or isinstance(status_id, bool):
                    status_id = None
                status_name = _opt_str(metadata.get("status"))
                if status_id is None and status_name is None:
                    status_name = self._defaults.get("status") or DEFAULT_STATUS
                values["status_id"], values["status"] = resolve_status(status_id, status_name)
            elif name == "start_date":
                values["start_date"] = self._start_date(item_id, metadata)
            elif name == "tags":
                values["tags"] = clean_tags(_str_list(metadata.get("tags")))
            elif name == "related":
                values.update(self._related(metadata))
            elif name in ("created_at", "updated_at"):
                values[name] = _opt_str(metadata.get(name)) or ""
            else:
                values[name] = _opt_str(metadata.get(name))
        return Item(**values)

    def _start_date(self, item_id: str, metadata: dict[str, Any]) -> Optional[str]:
        # Date-keyed ids carry their own date
        if self.id_scheme is IdScheme.DATE:
            return item_id
        if self.id_scheme is IdScheme.TIMESTAMP:
            return _opt_str(metadata.get("start_date")) or item_id[:10]
        return _opt_str(metadata.get("start_date"))

    def _related(self, metadata: dict[str, Any]) -> dict[str, list[str]]:
        if "related" in metadata:
            refs = _str_list(metadata.get("related"))
        else:
            refs = []
            for key in LEGACY_RELATED_KEYS:
                refs.extend(_str_list(metadata.get(key)))

        related = []
        for ref in dedupe(r.strip() for r in refs):
            try:
                split_ref(ref)
            except ValueError:
                logger.warning("Dropping invalid reference %r in %s", ref, self.type_name)
                continue
            related.append(ref)
        return self.related_views(related)

    def related_views(self, related: list[str]) -> dict[str, list[str]]:
        """`related` plus its task and document views."""
        tasks, documents = [], []
        for ref in related:
            kind = self._kind_of(split_ref(ref)[0])
            if kind is BaseKind.TASKS:
                tasks.append(ref)
            elif kind is BaseKind.DOCUMENTS:
                documents.append(ref)
        return {
            "related": list(related),
            "related_tasks": tasks,
            "related_documents": documents,
        }
