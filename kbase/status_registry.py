"""
Status registry: named workflow states with an open/closed flag.

Deleting a status that items still reference is allowed; their index
rows keep the cached name.
"""

import logging
import sqlite3
from typing import Optional

from .errors import InvalidRequestError
from .index_store import IndexStore
from .types import Status, clean_string, utc_now

logger = logging.getLogger(__name__)

# (name, is_closed) in display order
DEFAULT_STATUSES = (
    ("Open", False),
    ("Specification", False),
    ("Waiting", False),
    ("Ready", False),
    ("In Progress", False),
    ("Review", False),
    ("Testing", False),
    ("Pending", False),
    ("Completed", True),
    ("Closed", True),
    ("Canceled", True),
    ("Rejected", True),
)


def _to_status(row) -> Status:
    return Status(id=row["id"], name=row["name"], is_closed=bool(row["is_closed"]))


class StatusRegistry:
    """Workflow statuses, seeded with the defaults on first use."""

    def __init__(self, index: IndexStore):
        self._index = index
        self._seed_defaults()

    def _seed_defaults(self) -> None:
        with self._index.transaction() as conn:
            if conn.execute("SELECT COUNT(*) FROM statuses").fetchone()[0]:
                return
            now = utc_now()
            conn.executemany("""
                INSERT INTO statuses (name, is_closed, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, [(name, int(closed), now, now) for name, closed in DEFAULT_STATUSES])

    def all(self) -> list[Status]:
        rows = self._index.query("SELECT id, name, is_closed FROM statuses ORDER BY id")
        return [_to_status(r) for r in rows]

    def by_id(self, status_id: int) -> Optional[Status]:
        row = self._index.query_one(
            "SELECT id, name, is_closed FROM statuses WHERE id = ?", (status_id,)
        )
        return _to_status(row) if row else None

    def by_name(self, name: str) -> Optional[Status]:
        row = self._index.query_one(
            "SELECT id, name, is_closed FROM statuses WHERE name = ?", (name,)
        )
        return _to_status(row) if row else None

    def create(self, name: str, is_closed: bool = False) -> Status:
        """
        Add a status.

        Raises:
            InvalidRequestError: empty or duplicate name
        """
        name = clean_string(name or "")
        if not name:
            raise InvalidRequestError("Status name cannot be empty")
        now = utc_now()
        with self._index.transaction() as conn:
            cur = conn.execute("""
                INSERT OR IGNORE INTO statuses (name, is_closed, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (name, int(is_closed), now, now))
            if cur.rowcount == 0:
                raise InvalidRequestError(f"Status already exists: {name}")
            status_id = cur.lastrowid
        logger.info("Created status %s (closed=%s)", name, is_closed)
        return Status(status_id, name, is_closed)

    def update(
        self,
        status_id: int,
        name: Optional[str] = None,
        is_closed: Optional[bool] = None,
    ) -> bool:
        """
        Rename a status or flip its closed flag.

        Items read back under the new name. Index rows keep the old name
        until the item is rewritten or the index rebuilt.

        Returns:
            False if no such status
        """
        sets, params = [], []
        if name is not None:
            name = clean_string(name)
            if not name:
                raise InvalidRequestError("Status name cannot be empty")
            sets.append("name = ?")
            params.append(name)
        if is_closed is not None:
            sets.append("is_closed = ?")
            params.append(int(is_closed))
        if not sets:
            return self.by_id(status_id) is not None
        sets.append("updated_at = ?")
        params.extend([utc_now(), status_id])
        try:
            updated = self._index.execute(
                f"UPDATE statuses SET {', '.join(sets)} WHERE id = ?", params
            )
        except sqlite3.IntegrityError:
            raise InvalidRequestError(f"Status already exists: {name}") from None
        return bool(updated)

    def delete(self, status_id: int) -> bool:
        deleted = self._index.execute("DELETE FROM statuses WHERE id = ?", (status_id,))
        if deleted:
            logger.info("Deleted status %d", status_id)
        return bool(deleted)
