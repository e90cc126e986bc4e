"""
Protocol definitions for KnowledgeBase and its storage backends.

Defines interface contracts at two levels:
- KnowledgeBaseProtocol: the public API (CLI, protocol adapters)
- FileStoreProtocol / IndexStoreProtocol: the two storage representations
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from .file_store import StorageLayout, StoredItem
from .types import Item, ListItem, Status, Tag, TypeDefinition


@runtime_checkable
class KnowledgeBaseProtocol(Protocol):
    """The public interface for knowledge base operations."""

    # -- Write operations --

    def create_item(self, type: str, title: str, **fields: Any) -> Item: ...

    def update_item(self, type: str, id: str, **fields: Any) -> Item: ...

    def delete_item(self, type: str, id: str) -> bool: ...

    # -- Query operations --

    def get_item(self, type: str, id: str) -> Item: ...

    def list_items(self, type: str, **filters: Any) -> list[ListItem]: ...

    def search(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ListItem]: ...

    def search_by_tag(
        self, tag: str, *, types: Optional[Sequence[str]] = None
    ) -> list[ListItem]: ...

    def search_suggest(
        self, query: str, *, types: Optional[Sequence[str]] = None, limit: int = 10
    ) -> list[str]: ...

    def get_latest_session(self) -> Optional[Item]: ...

    # -- Registries --

    def list_tags(self) -> list[Tag]: ...

    def list_statuses(self) -> list[Status]: ...

    def list_types(self, include_builtin_dates: bool = False) -> list[TypeDefinition]: ...

    # -- Recovery --

    def rebuild(self, type: Optional[str] = None) -> dict[str, int]: ...

    def close(self) -> None: ...


@runtime_checkable
class FileStoreProtocol(Protocol):
    """Authoritative per-item file storage."""

    @property
    def root(self) -> Path: ...

    def save(
        self,
        layout: StorageLayout,
        item_id: str,
        metadata: dict[str, Any],
        content: str,
        *,
        exclusive: bool = False,
    ) -> Path: ...

    def load(self, layout: StorageLayout, item_id: str) -> Optional[StoredItem]: ...

    def delete(self, layout: StorageLayout, item_id: str) -> bool: ...

    def list(self, layout: StorageLayout, partition: Optional[str] = None) -> list[str]: ...

    def exists(self, layout: StorageLayout, item_id: str) -> bool: ...

    def list_partitions(self, layout: StorageLayout) -> list[str]: ...

    def list_type_dirs(self) -> list[str]: ...

    def remove_type_dir(self, layout: StorageLayout) -> bool: ...


@runtime_checkable
class IndexStoreProtocol(Protocol):
    """Derived relational index over the item files."""

    def transaction(self) -> AbstractContextManager: ...

    def query(self, sql: str, params: Sequence[Any] = ()) -> list: ...

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Any: ...

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int: ...

    def project(self, item: Item) -> None: ...

    def remove(self, type_name: str, item_id: str) -> bool: ...

    def purge_missing(self, type_name: str, keep_ids: set[str]) -> int: ...

    def clear_items(self) -> None: ...

    def list_items(
        self,
        type_name: str,
        *,
        include_closed: bool = False,
        statuses: Optional[Sequence[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ListItem]: ...

    def search(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ListItem]: ...

    def suggest_titles(
        self, prefix: str, *, types: Optional[Sequence[str]] = None, limit: int = 10
    ) -> list[str]: ...

    def items_with_tag(
        self, tag: str, types: Optional[Sequence[str]] = None
    ) -> list[ListItem]: ...

    def referencing(self, type_name: str, item_id: str) -> list[tuple[str, str]]: ...

    def close(self) -> None: ...
