"""
Core API for the knowledge base.

KnowledgeBase wires a store directory together: configuration, the item
files, the SQLite index and its registries, and the synchronizer that
keeps files and index in step.

    kb = KnowledgeBase("/path/to/store")
    issue = kb.create_item("issues", "Login fails", content="Steps...")
    kb.list_items("issues")
"""

import logging
from pathlib import Path
from typing import Any, Optional, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from .backend import StoreBundle, create_stores
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .errors import ConflictError, InvalidRequestError, NotFoundError
from .file_store import layout_for
from .params import CreateItemParams, ListItemsParams, UpdateItemParams
from .synchronizer import DEFAULT_SEARCH_LIMIT, DEFAULT_SUGGEST_LIMIT, ItemSynchronizer
from .types import (
    BaseKind,
    CUSTOM_TYPE_KINDS,
    Item,
    ListItem,
    Status,
    Tag,
    TypeDefinition,
    validate_type_name,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

# Files inspected per unregistered directory when guessing its base kind
_DISCOVERY_SAMPLE = 5


def _params(model: type[P], **kwargs: Any) -> P:
    """Build a parameter object, turning shape errors into InvalidRequestError."""
    try:
        return model(**kwargs)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid parameters: {problems}") from None


class KnowledgeBase:
    """
    Typed knowledge base: markdown files as the record, SQLite as the index.

    Example:
        kb = KnowledgeBase()
        kb.create_item("docs", "Setup", content="pip install kbase")
        kb.search("install")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        stores: Optional[StoreBundle] = None,
    ) -> None:
        """
        Initialize or open a store.

        Args:
            store_path: Path to store directory. Uses KBASE_STORE_PATH or
                ./.kbase if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            stores: Injected storage backends (skips default backend creation).
        """
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).resolve() if store_path is not None else get_default_store_path()
            self._config = load_or_create_config(path)
        self._store_path = self._config.path

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path, self._config.log_level)

        # --- Storage backends (injected or factory-created) ---
        self._stores = stores if stores is not None else create_stores(self._config)
        self._sync = ItemSynchronizer(
            self._stores.files,
            self._stores.index,
            self._stores.types,
            self._stores.tags,
            self._stores.statuses,
        )
        logger.debug("Opened store at %s", self._store_path)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def stores(self) -> StoreBundle:
        return self._stores

    @property
    def synchronizer(self) -> ItemSynchronizer:
        return self._sync

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def create_item(self, type: str, title: str, **fields: Any) -> Item:
        """
        Create an item.

        Args:
            type: Type name
            title: Title (whitespace is normalized)
            **fields: description, content, priority, status, start_date,
                end_date, tags, related, related_tasks, related_documents;
                for sessions ``id`` or ``datetime``, for dailies ``date``
        """
        return self._sync.create(_params(CreateItemParams, type=type, title=title, **fields))

    def update_item(self, type: str, id: str, **fields: Any) -> Item:
        """Update only the given fields. Passing None clears an optional field."""
        return self._sync.update(_params(UpdateItemParams, type=type, id=id, **fields))

    def delete_item(self, type: str, id: str) -> bool:
        return self._sync.delete(type, id)

    def get_item(self, type: str, id: str) -> Item:
        return self._sync.get(type, id)

    def list_items(self, type: str, **filters: Any) -> list[ListItem]:
        """
        List a type from the index, newest first.

        Args:
            type: Type name
            **filters: include_closed, statuses, start_date, end_date, limit
        """
        return self._sync.list(_params(ListItemsParams, type=type, **filters))

    def search(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[ListItem]:
        return self._sync.search(query, types=types, limit=limit, offset=offset)

    def search_by_tag(
        self, tag: str, *, types: Optional[Sequence[str]] = None
    ) -> list[ListItem]:
        return self._sync.search_by_tag(tag, types=types)

    def search_suggest(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_SUGGEST_LIMIT,
    ) -> list[str]:
        """Titles that complete a partial query, for type-ahead."""
        return self._sync.search_suggest(query, types=types, limit=limit)

    def get_latest_session(self) -> Optional[Item]:
        return self._sync.get_latest_session()

    def change_item_type(self, from_type: str, id: str, to_type: str) -> tuple[Item, int]:
        return self._sync.change_type(from_type, id, to_type)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def list_tags(self) -> list[Tag]:
        return self._stores.tags.all()

    def search_tags(self, pattern: str) -> list[Tag]:
        return self._stores.tags.search(pattern)

    def create_tag(self, name: str) -> Tag:
        return self._stores.tags.create(name)

    def delete_tag(self, name: str) -> bool:
        return self._stores.tags.delete(name)

    # -------------------------------------------------------------------------
    # Statuses
    # -------------------------------------------------------------------------

    def list_statuses(self) -> list[Status]:
        return self._stores.statuses.all()

    def create_status(self, name: str, is_closed: bool = False) -> Status:
        return self._stores.statuses.create(name, is_closed)

    def update_status(
        self, status_id: int, name: Optional[str] = None, is_closed: Optional[bool] = None
    ) -> bool:
        return self._stores.statuses.update(status_id, name, is_closed)

    def delete_status(self, status_id: int) -> bool:
        return self._stores.statuses.delete(status_id)

    # -------------------------------------------------------------------------
    # Types
    # -------------------------------------------------------------------------

    def list_types(self, include_builtin_dates: bool = False) -> list[TypeDefinition]:
        return self._stores.types.list_types(include_builtin_dates)

    def register_type(
        self, name: str, base_kind: BaseKind | str = BaseKind.TASKS,
        description: Optional[str] = None,
    ) -> TypeDefinition:
        type_def = self._stores.types.register_type(name, base_kind, description)
        self._sync.forget_type(name)
        return type_def

    def update_type(self, name: str, description: Optional[str]) -> TypeDefinition:
        return self._stores.types.update_type(name, description)

    def delete_type(self, name: str) -> None:
        """
        Delete a custom type that has no items left.

        Raises:
            ConflictError: files of the type still exist
        """
        if self._stores.types.get_type(name) is None:
            raise NotFoundError(f"Unknown type: {name}")
        layout = layout_for(name)
        remaining = self._stores.files.list(layout)
        if remaining:
            raise ConflictError(
                f"Cannot delete type {name}: {len(remaining)} item(s) still exist",
                {"type": name, "count": len(remaining)},
            )
        self._stores.types.delete_type(name)
        self._stores.files.remove_type_dir(layout)
        self._sync.forget_type(name)

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def rebuild(self, type: Optional[str] = None) -> dict[str, int]:
        """
        Rebuild the index from the item files.

        Args:
            type: Rebuild one type; all types (with discovery of
                unregistered type directories) when omitted

        Returns:
            Items indexed, per type
        """
        if type is not None:
            return {type: self._sync.rebuild(type)}
        return self.rebuild_all()

    def rebuild_all(self) -> dict[str, int]:
        """
        Clear every item-derived index row and rebuild all types.

        Directories that look like item types but are not registered are
        registered first; their base kind comes from the files' ``base``
        key, or is inferred (priority and status mean tasks).
        """
        self._stores.index.clear_items()
        for name, kind in self._discover_types():
            logger.info("Registering discovered type %s (%s)", name, kind.value)
            self.register_type(name, kind, "Discovered during rebuild")

        counts = {}
        for type_def in self.list_types(include_builtin_dates=True):
            counts[type_def.name] = self._sync.rebuild(type_def.name)
        logger.info("Rebuilt index: %d items in %d types",
                    sum(counts.values()), len(counts))
        return counts

    def _discover_types(self) -> list[tuple[str, BaseKind]]:
        files = self._stores.files
        found = []
        for name in files.list_type_dirs():
            if self._stores.types.type_exists(name):
                continue
            try:
                validate_type_name(name)
            except ValueError:
                continue
            layout = layout_for(name)
            ids = files.list(layout)
            if not ids:
                continue
            found.append((name, self._guess_kind(layout, ids[:_DISCOVERY_SAMPLE])))
        return found

    def _guess_kind(self, layout, ids: list[str]) -> BaseKind:
        for item_id in ids:
            stored = self._stores.files.load(layout, item_id)
            if stored is None:
                continue
            base = stored.metadata.get("base")
            if base in {k.value for k in CUSTOM_TYPE_KINDS}:
                return BaseKind(base)
            if "priority" in stored.metadata and "status" in stored.metadata:
                return BaseKind.TASKS
        return BaseKind.DOCUMENTS

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the index and detach the operations log."""
        if getattr(self, "_stores", None) is not None:
            self._stores.index.close()
        from .logging_config import remove_ops_log
        remove_ops_log(getattr(self, "_ops_log_handler", None))
        self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
