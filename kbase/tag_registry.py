"""
Tag registry.

Tag rows record known names; usage counts are computed from the
item_tags edges at read time, so a count always matches the edges that
justify it.
"""

import logging
from typing import Iterable, Optional

from .errors import ConflictError, InvalidRequestError
from .index_store import IndexStore
from .types import Tag, clean_tags, utc_now

logger = logging.getLogger(__name__)

_TAGS_WITH_COUNTS = """
    SELECT t.name AS name, COUNT(it.tag_name) AS usage_count
    FROM tags t
    LEFT JOIN item_tags it ON it.tag_name = t.name
"""


class TagRegistry:
    """Known tags and their usage."""

    def __init__(self, index: IndexStore):
        self._index = index

    def ensure_exist(self, names: Iterable[str]) -> None:
        """Register tag names (idempotent)."""
        cleaned = clean_tags(names)
        if not cleaned:
            return
        now = utc_now()
        with self._index.transaction() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO tags (name, created_at) VALUES (?, ?)",
                [(name, now) for name in cleaned],
            )

    def get_or_create_id(self, name: str) -> int:
        name = self._clean(name)
        with self._index.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO tags (name, created_at) VALUES (?, ?)",
                (name, utc_now()),
            )
            return conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()[0]

    def create(self, name: str) -> Tag:
        """
        Register a tag explicitly.

        Raises:
            InvalidRequestError: empty name or tag already exists
        """
        name = self._clean(name)
        inserted = self._index.execute(
            "INSERT OR IGNORE INTO tags (name, created_at) VALUES (?, ?)",
            (name, utc_now()),
        )
        if not inserted:
            raise InvalidRequestError(f'Tag "{name}" already exists')
        return self.get(name)

    def get(self, name: str) -> Optional[Tag]:
        row = self._index.query_one(
            _TAGS_WITH_COUNTS + " WHERE t.name = ? GROUP BY t.name", (name,)
        )
        return Tag(row["name"], row["usage_count"]) if row else None

    def usage_count(self, name: str) -> int:
        row = self._index.query_one(
            "SELECT COUNT(*) FROM item_tags WHERE tag_name = ?", (name,)
        )
        return row[0]

    def delete(self, name: str) -> bool:
        """
        Delete a tag.

        Returns:
            False if no such tag

        Raises:
            ConflictError: items still carry the tag
            InvalidRequestError: empty name
        """
        name = self._clean(name)
        with self._index.transaction() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM item_tags WHERE tag_name = ?", (name,)
            ).fetchone()[0]
            if count:
                raise ConflictError(
                    f'Cannot delete tag "{name}": used by {count} item(s)',
                    {"tag": name, "usage_count": count},
                )
            deleted = conn.execute("DELETE FROM tags WHERE name = ?", (name,)).rowcount
        if deleted:
            logger.info("Deleted tag %s", name)
        return bool(deleted)

    def search(self, pattern: str) -> list[Tag]:
        """Tags whose name contains pattern (case-insensitive)."""
        escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._index.query(
            _TAGS_WITH_COUNTS + " WHERE t.name LIKE ? ESCAPE '\\' "
            "GROUP BY t.name ORDER BY t.name",
            (f"%{escaped}%",),
        )
        return [Tag(r["name"], r["usage_count"]) for r in rows]

    def all(self) -> list[Tag]:
        """All tags with usage counts, most used first."""
        rows = self._index.query(
            _TAGS_WITH_COUNTS + " GROUP BY t.name ORDER BY usage_count DESC, t.name"
        )
        return [Tag(r["name"], r["usage_count"]) for r in rows]

    @staticmethod
    def _clean(name: str) -> str:
        cleaned = clean_tags([name])
        if not cleaned:
            raise InvalidRequestError("Tag name cannot be empty")
        return cleaned[0]
