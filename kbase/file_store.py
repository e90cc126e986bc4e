"""
File store: one markdown file per item.

The files are the authoritative record. Layout under the store root:

    issues/issues-1.md
    docs/docs-4.md
    sessions/2025-07-28/sessions-2025-07-28-10.15.00.000.md
    sessions/dailies/dailies-2025-07-28.md
    <custom>/<custom>-1.md

Overwrites go through a temp file and os.replace so a reader never sees
a half-written file. Exclusive creates use O_EXCL so "already exists" is
decided by the filesystem, not by an earlier check.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import frontmatter
from .types import DAILIES_TYPE, SESSIONS_TYPE

logger = logging.getLogger(__name__)

FILE_EXTENSION = ".md"

_PARTITION_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
# Ids end up in file names: no separators, no leading dot
_UNSAFE_ID_RE = re.compile(r'[/\\\x00]|^\.')


@dataclass(frozen=True)
class StorageLayout:
    """Where a type's files live."""
    base_dir: str
    prefix: str
    date_partitioned: bool = False

    def partition_of(self, item_id: str) -> Optional[str]:
        """Date subdirectory for an id (first three hyphen parts)."""
        if not self.date_partitioned:
            return None
        return "-".join(item_id.split("-")[:3])


def layout_for(type_name: str) -> StorageLayout:
    """Storage layout for a type name."""
    if type_name == SESSIONS_TYPE:
        return StorageLayout("sessions", "sessions-", date_partitioned=True)
    if type_name == DAILIES_TYPE:
        return StorageLayout("sessions/dailies", "dailies-")
    return StorageLayout(type_name, f"{type_name}-")


# Directories under the store root that never hold a registry type
RESERVED_DIRS = frozenset({SESSIONS_TYPE})


@dataclass
class StoredItem:
    """Raw file contents: the metadata block and the body."""
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""


class FileStore:
    """
    Filesystem-backed item files.

    Thread-safe: every write lands through an atomic rename or an
    exclusive create, so concurrent writers never interleave bytes.
    """

    def __init__(self, root: Path):
        """
        Args:
            root: Store directory; type directories are created beneath it
        """
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, layout: StorageLayout, item_id: str) -> Path:
        """Absolute path of the file for an id."""
        if not item_id or _UNSAFE_ID_RE.search(item_id):
            raise ValueError(f"Invalid item id: {item_id!r}")
        directory = self._root / layout.base_dir
        partition = layout.partition_of(item_id)
        if partition:
            directory = directory / partition
        return directory / f"{layout.prefix}{item_id}{FILE_EXTENSION}"

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def save(
        self,
        layout: StorageLayout,
        item_id: str,
        metadata: dict[str, Any],
        content: str,
        *,
        exclusive: bool = False,
    ) -> Path:
        """
        Write an item file.

        Args:
            layout: The type's storage layout
            item_id: Item identifier
            metadata: Flat metadata block (scalars and lists)
            content: Body text
            exclusive: Fail if the file already exists

        Returns:
            Path of the written file

        Raises:
            FileExistsError: exclusive=True and the file exists
            OSError: on any other write failure
        """
        path = self.path_for(layout, item_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = frontmatter.render(metadata, content)

        if exclusive:
            with open(path, "x", encoding="utf-8", newline="") as f:
                f.write(text)
            return path

        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return path

    def delete(self, layout: StorageLayout, item_id: str) -> bool:
        """Delete an item file. Returns False if there was nothing to delete."""
        try:
            self.path_for(layout, item_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def remove_type_dir(self, layout: StorageLayout) -> bool:
        """Remove a type's directory if it is empty."""
        directory = self._root / layout.base_dir
        try:
            directory.rmdir()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not remove %s: %s", directory, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def load(self, layout: StorageLayout, item_id: str) -> Optional[StoredItem]:
        """Read an item file, or None if it does not exist."""
        path = self.path_for(layout, item_id)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            return None
        metadata, body = frontmatter.parse(text)
        return StoredItem(metadata=metadata, content=body)

    def exists(self, layout: StorageLayout, item_id: str) -> bool:
        return self.path_for(layout, item_id).is_file()

    def list(self, layout: StorageLayout, partition: Optional[str] = None) -> list[str]:
        """
        List the ids of a type's files.

        For date-partitioned layouts, lists one partition when given,
        otherwise all of them.
        """
        base = self._root / layout.base_dir
        if layout.date_partitioned:
            partitions = [partition] if partition else self.list_partitions(layout)
            ids: list[str] = []
            for p in partitions:
                ids.extend(self._ids_in(base / p, layout.prefix))
            return ids
        return self._ids_in(base, layout.prefix)

    def list_partitions(self, layout: StorageLayout) -> list[str]:
        """Date subdirectories of a partitioned layout, sorted."""
        if not layout.date_partitioned:
            return []
        base = self._root / layout.base_dir
        if not base.is_dir():
            return []
        return sorted(
            entry.name for entry in base.iterdir()
            if entry.is_dir() and _PARTITION_RE.match(entry.name)
        )

    def list_type_dirs(self) -> list[str]:
        """Top-level directories that could hold a registry type."""
        return sorted(
            entry.name for entry in self._root.iterdir()
            if entry.is_dir()
            and not entry.name.startswith(".")
            and entry.name not in RESERVED_DIRS
        )

    @staticmethod
    def _ids_in(directory: Path, prefix: str) -> list[str]:
        if not directory.is_dir():
            return []
        ids = []
        for entry in directory.iterdir():
            name = entry.name
            if (entry.is_file() and name.startswith(prefix)
                    and name.endswith(FILE_EXTENSION)):
                item_id = name[len(prefix):-len(FILE_EXTENSION)]
                if item_id:
                    ids.append(item_id)
        return sorted(ids, key=_id_sort_key)


def _id_sort_key(item_id: str) -> tuple:
    # Numeric ids in numeric order, everything else lexically after
    return (0, int(item_id), "") if item_id.isdigit() else (1, 0, item_id)
