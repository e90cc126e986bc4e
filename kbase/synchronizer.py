"""
Item synchronizer: keeps the item files and the SQLite index in step.

Every write is a two-step saga:

1. Write the item file (authoritative). A failure here aborts the
   operation before the index is touched.
2. Project the item into the index in one transaction: row, full-text
   shadow, tag edges, relation edges. A failure here leaves the file as
   the source of truth and raises IndexProjectionError; rebuild()
   reconciles.

Tag registration follows as a best-effort side effect. Single-item reads
come from the files; listing and search come from the index.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import sqlite3
import threading
from datetime import datetime, timedelta
from typing import Optional, Sequence

from .errors import (
    IndexProjectionError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
)
from .field_mapper import FieldMapper
from .file_store import FileStore, StorageLayout, layout_for
from .index_store import IndexStore
from .params import CreateItemParams, ListItemsParams, UpdateItemParams
from .status_registry import StatusRegistry
from .tag_registry import TagRegistry
from .type_registry import TypeRegistry
from .types import (
    DATE_KEYED_TYPES,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    MAX_LIST_LIMIT,
    MAX_TITLE_LENGTH,
    SESSIONS_TYPE,
    IdScheme,
    Item,
    ListItem,
    TypeDefinition,
    clean_string,
    clean_tags,
    dedupe,
    local_today,
    make_ref,
    session_id_for,
    split_ref,
    utc_now,
    validate_date,
)

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 1000
DEFAULT_SEARCH_LIMIT = 20
MAX_SUGGEST_LIMIT = 100
DEFAULT_SUGGEST_LIMIT = 10

# Derived session ids are millisecond timestamps; on a collision the
# next millisecond is tried
SESSION_ID_ATTEMPTS = 50

_SESSION_ID_RE = re.compile(r'^(\d{4}-\d{2}-\d{2})(?:-[0-9A-Za-z._-]+)?$')

_LOCK_STRIPES = 64


class ItemSynchronizer:
    """
    Create, update, delete, read, list and rebuild items across the
    file store and the index.

    Thread-safe. Writes to the same item are serialized so the file and
    the index row always end on the same writer's version.
    """

    def __init__(
        self,
        files: FileStore,
        index: IndexStore,
        types: TypeRegistry,
        tags: TagRegistry,
        statuses: StatusRegistry,
    ):
        self._files = files
        self._index = index
        self._types = types
        self._tags = tags
        self._statuses = statuses
        self._mappers: dict[str, FieldMapper] = {}
        self._mappers_lock = threading.Lock()
        self._item_locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    # -------------------------------------------------------------------------
    # Type plumbing
    # -------------------------------------------------------------------------

    def _type(self, type_name: str) -> TypeDefinition:
        type_def = self._types.get_type(type_name)
        if type_def is None:
            raise InvalidRequestError(f"Unknown type: {type_name}")
        return type_def

    def mapper_for(self, type_name: str) -> FieldMapper:
        """The (cached) field mapper of a type."""
        with self._mappers_lock:
            mapper = self._mappers.get(type_name)
        if mapper is not None:
            return mapper
        type_def = self._type(type_name)
        mapper = FieldMapper(
            type_name,
            self._types.get_fields(type_name),
            type_def.base_kind,
            type_def.id_scheme,
            self._types.base_kind_of,
            emit_base=type_def.id_scheme is IdScheme.SEQUENTIAL,
        )
        with self._mappers_lock:
            self._mappers[type_name] = mapper
        return mapper

    def forget_type(self, type_name: str) -> None:
        """Drop a cached mapper after the type was registered or deleted."""
        with self._mappers_lock:
            self._mappers.pop(type_name, None)

    def _lock_for(self, type_name: str, item_id: str) -> threading.Lock:
        return self._item_locks[hash((type_name, item_id)) % _LOCK_STRIPES]

    def _resolve_status(
        self, status_id: Optional[int], name: Optional[str]
    ) -> tuple[Optional[int], Optional[str]]:
        # The id wins: a renamed status reads back under its current name
        if status_id is not None:
            status = self._statuses.by_id(status_id)
            if status is not None:
                return status.id, status.name
        if name:
            status = self._statuses.by_name(name)
            if status is not None:
                return status.id, status.name
        # Status was deleted since the file was written: keep what it says
        return status_id, name

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_title(title: Optional[str]) -> str:
        title = clean_string(title or "")
        if not title:
            raise InvalidRequestError("Title cannot be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidRequestError(
                f"Title must be {MAX_TITLE_LENGTH} characters or less"
            )
        return title

    @staticmethod
    def _check_date(value: Optional[str], field_name: str) -> Optional[str]:
        if value is None:
            return None
        try:
            return validate_date(value, field_name)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from None

    @staticmethod
    def _merge_related(*ref_lists: Optional[Sequence[str]]) -> list[str]:
        refs = []
        for refs_in in ref_lists:
            for ref in refs_in or ():
                try:
                    type_name, item_id = split_ref(ref)
                except ValueError as e:
                    raise InvalidRequestError(str(e)) from None
                refs.append(make_ref(type_name, item_id))
        return dedupe(refs)

    @staticmethod
    def _check_not_self(type_name: str, item_id: str, related: list[str]) -> None:
        if make_ref(type_name, item_id) in related:
            raise InvalidRequestError("Items cannot reference themselves")

    def _check_status(self, name: str):
        status = self._statuses.by_name(name)
        if status is None:
            raise InvalidRequestError(f"Invalid status: {name}")
        return status

    # -------------------------------------------------------------------------
    # Write saga
    # -------------------------------------------------------------------------

    def _write(
        self,
        mapper: FieldMapper,
        layout: StorageLayout,
        item: Item,
        *,
        exclusive: bool = False,
    ) -> Item:
        """
        Write the file, then project into the index.

        Returns the item as a subsequent get() will read it.
        """
        metadata, body = mapper.to_storage(item)
        try:
            self._files.save(layout, item.id, metadata, body, exclusive=exclusive)
        except FileExistsError:
            raise
        except OSError as e:
            logger.error("Failed to write %s: %s", item.ref, e)
            raise InternalError(f"Failed to write {item.ref}: {e}") from e

        stored = mapper.from_storage(item.id, metadata, body, self._resolve_status)
        self._project(stored)
        self._register_tags(stored.tags)
        return stored

    def _project(self, item: Item) -> None:
        try:
            self._index.project(item)
        except sqlite3.Error as e:
            logger.error("Index projection failed for %s: %s", item.ref, e)
            raise IndexProjectionError(item.type, item.id, e) from e

    def _register_tags(self, tags: list[str]) -> None:
        if not tags:
            return
        try:
            self._tags.ensure_exist(tags)
        except sqlite3.Error as e:
            # The item is saved and its tag edges are indexed; only the
            # registry rows are missing until the next write or rebuild
            logger.warning("Tag registration failed for %s: %s", tags, e)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create(self, params: CreateItemParams) -> Item:
        """
        Create an item.

        Validation happens before any side effect; a sequential id may be
        consumed by a request that then fails the self-reference check.

        Raises:
            InvalidRequestError: unknown type, missing content, bad title,
                date, status or reference, duplicate date-keyed item
            InternalError: the file could not be written
            IndexProjectionError: the file was written, the index was not
        """
        type_def = self._type(params.type)
        mapper = self.mapper_for(params.type)
        kind = type_def.base_kind

        content = params.content or None
        if kind.requires_content and not content:
            raise InvalidRequestError(f"Content is required for {params.type}")
        title = self._check_title(params.title)
        start_date = self._check_date(params.start_date, "start_date")
        end_date = self._check_date(params.end_date, "end_date")
        tags = clean_tags(params.tags)
        related = self._merge_related(
            params.related, params.related_tasks, params.related_documents
        )

        status = None
        if mapper.declares("status"):
            status = self._check_status(params.status or DEFAULT_STATUS)
        priority = None
        if mapper.declares("priority"):
            priority = params.priority or DEFAULT_PRIORITY

        now = utc_now()
        template = Item(
            type=params.type,
            id="",
            title=title,
            description=params.description,
            content=content,
            priority=priority,
            status=status.name if status else None,
            status_id=status.id if status else None,
            start_date=start_date if mapper.declares("start_date") else None,
            end_date=end_date if mapper.declares("end_date") else None,
            tags=tags,
            related=related,
            created_at=now,
            updated_at=now,
        )

        layout = layout_for(params.type)
        if type_def.id_scheme is IdScheme.TIMESTAMP:
            item = self._create_session(mapper, layout, template, params)
        elif type_def.id_scheme is IdScheme.DATE:
            item = self._create_daily(mapper, layout, template, params)
        else:
            item_id = str(self._types.next_sequence_value(params.type))
            self._check_not_self(params.type, item_id, related)
            item = dataclasses.replace(template, id=item_id)
            with self._lock_for(item.type, item.id):
                item = self._write(mapper, layout, item)

        logger.info("Created %s: %s", item.ref, item.title)
        return item

    def _create_session(
        self,
        mapper: FieldMapper,
        layout: StorageLayout,
        template: Item,
        params: CreateItemParams,
    ) -> Item:
        if params.id:
            match = _SESSION_ID_RE.match(params.id)
            if not match:
                raise InvalidRequestError(
                    f"Invalid session id: {params.id!r} (must start with YYYY-MM-DD)"
                )
            self._check_date(match.group(1), "session id")
            candidates = [params.id]
        else:
            moment = params.datetime or datetime.now()
            attempts = 1 if params.datetime else SESSION_ID_ATTEMPTS
            candidates = [
                session_id_for(moment + timedelta(milliseconds=n))
                for n in range(attempts)
            ]

        for item_id in candidates:
            self._check_not_self(template.type, item_id, template.related)
            item = dataclasses.replace(template, id=item_id, start_date=item_id[:10])
            try:
                with self._lock_for(item.type, item.id):
                    return self._write(mapper, layout, item, exclusive=True)
            except FileExistsError:
                continue
            except ValueError as e:
                raise InvalidRequestError(str(e)) from None
        raise InvalidRequestError(
            f"Session {candidates[-1]} already exists. Use update instead."
        )

    def _create_daily(
        self,
        mapper: FieldMapper,
        layout: StorageLayout,
        template: Item,
        params: CreateItemParams,
    ) -> Item:
        day = self._check_date(params.date, "date") or local_today()
        self._check_not_self(template.type, day, template.related)
        item = dataclasses.replace(
            template, id=day, start_date=day, created_at=f"{day}T00:00:00.000Z"
        )
        try:
            with self._lock_for(item.type, item.id):
                return self._write(mapper, layout, item, exclusive=True)
        except FileExistsError:
            raise InvalidRequestError(
                f"Daily summary for {day} already exists. Use update instead.",
                {"type": item.type, "id": day},
            ) from None

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def update(self, params: UpdateItemParams) -> Item:
        """
        Apply a partial update.

        Only the fields the caller set change; `related` is recomputed as
        the union of `related` and the two view lists. The index row and
        all edges are replaced, not diffed.

        Raises:
            NotFoundError: no such item
            InvalidRequestError: unknown type or invalid merged values
        """
        type_def = self._type(params.type)
        mapper = self.mapper_for(params.type)
        supplied = params.supplied()
        layout = layout_for(params.type)

        with self._lock_for(params.type, params.id):
            current = self.get(params.type, params.id)
            changes: dict = {}

            if "title" in supplied:
                changes["title"] = self._check_title(params.title)
            if "description" in supplied:
                changes["description"] = params.description
            if "content" in supplied:
                content = params.content or None
                if type_def.base_kind.requires_content and not content:
                    raise InvalidRequestError(f"Content is required for {params.type}")
                changes["content"] = content
            if "priority" in supplied and mapper.declares("priority"):
                changes["priority"] = params.priority or DEFAULT_PRIORITY
            if "status" in supplied and params.status and mapper.declares("status"):
                status = self._check_status(params.status)
                changes["status"], changes["status_id"] = status.name, status.id
            # Date-keyed types derive their date from the id
            if params.type not in DATE_KEYED_TYPES:
                for field_name in ("start_date", "end_date"):
                    if field_name in supplied and mapper.declares(field_name):
                        changes[field_name] = self._check_date(
                            getattr(params, field_name), field_name
                        )
            if "tags" in supplied:
                changes["tags"] = clean_tags(params.tags)

            if supplied & {"related", "related_tasks", "related_documents"}:
                if "related" in supplied:
                    base = params.related or []
                else:
                    replaced = set()
                    if "related_tasks" in supplied:
                        replaced.update(current.related_tasks)
                    if "related_documents" in supplied:
                        replaced.update(current.related_documents)
                    base = [r for r in current.related if r not in replaced]
                related = self._merge_related(
                    base,
                    params.related_tasks if "related_tasks" in supplied else None,
                    params.related_documents if "related_documents" in supplied else None,
                )
                self._check_not_self(params.type, params.id, related)
                changes.update(mapper.related_views(related))

            changes["updated_at"] = utc_now()
            item = self._write(mapper, layout, dataclasses.replace(current, **changes))

        logger.info("Updated %s (%s)", item.ref, ", ".join(sorted(supplied)) or "touch")
        return item

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete(self, type_name: str, item_id: str) -> bool:
        """
        Delete an item's file and, if it existed, its index row, full-text
        shadow, tag edges and outgoing relation edges.

        Items that reference the deleted one keep their (now dangling)
        references.

        Returns:
            True if a file was deleted
        """
        self._type(type_name)
        layout = layout_for(type_name)
        with self._lock_for(type_name, item_id):
            try:
                deleted = self._files.delete(layout, item_id)
            except ValueError:
                return False
            except OSError as e:
                raise InternalError(f"Failed to delete {type_name}-{item_id}: {e}") from e
            if deleted:
                try:
                    self._index.remove(type_name, item_id)
                except sqlite3.Error as e:
                    raise IndexProjectionError(type_name, item_id, e) from e
        if deleted:
            logger.info("Deleted %s-%s", type_name, item_id)
        return deleted

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, type_name: str, item_id: str) -> Item:
        """
        Read an item from its file.

        Raises:
            InvalidRequestError: unknown type
            NotFoundError: no such item
        """
        mapper = self.mapper_for(type_name)
        try:
            stored = self._files.load(layout_for(type_name), item_id)
        except ValueError:
            stored = None
        if stored is None:
            raise NotFoundError(
                f"{type_name}-{item_id} not found", {"type": type_name, "id": item_id}
            )
        return mapper.from_storage(item_id, stored.metadata, stored.content, self._resolve_status)

    def list(self, params: ListItemsParams) -> list[ListItem]:
        """
        List one type from the index, newest first.

        Closed statuses are excluded unless include_closed is set or an
        explicit status list is given.
        """
        self._type(params.type)
        start_date = self._check_date(params.start_date, "start_date")
        end_date = self._check_date(params.end_date, "end_date")
        limit = min(params.limit or MAX_LIST_LIMIT, MAX_LIST_LIMIT)
        return self._index.list_items(
            params.type,
            include_closed=params.include_closed,
            statuses=params.statuses,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )

    def search(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[ListItem]:
        """Full-text search over title, description, content and tags."""
        if not query or not query.strip():
            raise InvalidRequestError("Search query cannot be empty")
        if limit < 1 or offset < 0:
            raise InvalidRequestError("limit must be positive and offset non-negative")
        for type_name in types or ():
            self._type(type_name)
        return self._index.search(
            query, types=types, limit=min(limit, MAX_SEARCH_LIMIT), offset=offset
        )

    def search_by_tag(
        self, tag: str, *, types: Optional[Sequence[str]] = None
    ) -> list[ListItem]:
        """Items carrying a tag."""
        cleaned = clean_tags([tag])
        if not cleaned:
            raise InvalidRequestError("Tag name cannot be empty")
        for type_name in types or ():
            self._type(type_name)
        return self._index.items_with_tag(cleaned[0], types=types)

    def search_suggest(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_SUGGEST_LIMIT,
    ) -> list[str]:
        """
        Complete a partial query to item titles.

        The last word of the query matches as a prefix, so "inst" suggests
        "Install guide". Titles are distinct, best match first.
        """
        if not query or not query.strip():
            return []
        for type_name in types or ():
            self._type(type_name)
        limit = min(max(1, limit), MAX_SUGGEST_LIMIT)
        return self._index.suggest_titles(query, types=types, limit=limit)

    def get_latest_session(self) -> Optional[Item]:
        """The session that started last, read from its file; None if there are none."""
        layout = layout_for(SESSIONS_TYPE)
        # Partitions are dates and ids start with their partition's date
        for partition in reversed(self._files.list_partitions(layout)):
            ids = self._files.list(layout, partition)
            if ids:
                return self.get(SESSIONS_TYPE, max(ids))
        return None

    # -------------------------------------------------------------------------
    # Type change
    # -------------------------------------------------------------------------

    def change_type(self, from_type: str, item_id: str, to_type: str) -> tuple[Item, int]:
        """
        Move an item to another type of the same base kind.

        The item is recreated under a new id, every item that referenced
        it is rewritten to point at the new id, and the original is
        deleted.

        Returns:
            (new item, number of referencing items rewritten)
        """
        source_def = self._type(from_type)
        target_def = self._type(to_type)
        if from_type in DATE_KEYED_TYPES or to_type in DATE_KEYED_TYPES:
            raise InvalidRequestError("Sessions and dailies cannot change type")
        if source_def.base_kind is not target_def.base_kind:
            raise InvalidRequestError(
                f"Cannot change between different base types: "
                f"{source_def.base_kind.value} -> {target_def.base_kind.value}"
            )
        if from_type == to_type:
            raise InvalidRequestError("Source and target types are the same")

        original = self.get(from_type, item_id)
        new_item = self.create(CreateItemParams(
            type=to_type,
            title=original.title,
            description=original.description,
            content=original.content,
            priority=original.priority,
            status=original.status,
            start_date=original.start_date,
            end_date=original.end_date,
            tags=original.tags,
            related=original.related,
        ))

        old_ref, new_ref = original.ref, new_item.ref
        rewritten = 0
        for source_type, source_id in self._index.referencing(from_type, item_id):
            try:
                referrer = self.get(source_type, source_id)
            except (NotFoundError, InvalidRequestError):
                continue
            related = [new_ref if r == old_ref else r for r in referrer.related]
            self.update(UpdateItemParams(type=source_type, id=source_id, related=related))
            rewritten += 1

        self.delete(from_type, item_id)
        logger.info("Changed %s to %s (%d references updated)", old_ref, new_ref, rewritten)
        return new_item, rewritten

    # -------------------------------------------------------------------------
    # Rebuild
    # -------------------------------------------------------------------------

    def rebuild(self, type_name: str) -> int:
        """
        Re-derive a type's index rows from its files.

        Files without a title are skipped with a warning. Rows whose file
        is gone are purged. The sequence counter is raised above the
        largest numeric id found.

        Returns:
            Number of items indexed
        """
        type_def = self._type(type_name)
        self.forget_type(type_name)
        mapper = self.mapper_for(type_name)
        layout = layout_for(type_name)

        indexed: set[str] = set()
        all_tags: list[str] = []
        for item_id in self._files.list(layout):
            try:
                stored = self._files.load(layout, item_id)
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Skipping %s-%s: unreadable file: %s", type_name, item_id, e)
                continue
            if stored is None:
                continue
            item = mapper.from_storage(item_id, stored.metadata, stored.content, self._resolve_status)
            if not item.title:
                logger.warning("Skipping %s-%s: no title", type_name, item_id)
                continue
            try:
                self._index.project(item)
            except (sqlite3.Error, ValueError) as e:
                logger.error("Skipping %s-%s: index projection failed: %s", type_name, item_id, e)
                continue
            indexed.add(item_id)
            all_tags.extend(item.tags)

        self._index.purge_missing(type_name, indexed)
        self._register_tags(dedupe(all_tags))

        if type_def.id_scheme is IdScheme.SEQUENTIAL:
            numeric = [int(i) for i in indexed if i.isdigit()]
            if numeric:
                self._types.ensure_sequence_at_least(type_name, max(numeric))

        logger.info("Rebuilt %s index: %d items", type_name, len(indexed))
        return len(indexed)
