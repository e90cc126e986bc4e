"""
Secondary index using SQLite.

A derived, rebuildable projection of the item files. It holds:
- one row per item (listing and filtering)
- a full-text shadow table keyed to the item row (FTS5)
- item/tag membership and item/item relation edges
- the tag, status, sequence and type-field registries

Every multi-statement write runs inside a BEGIN IMMEDIATE transaction
on a single shared connection, guarded by a re-entrant lock so the
registries can compose their statements into the synchronizer's
transactions.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from .types import DATE_KEYED_TYPES, Item, ListItem, split_ref

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    type TEXT NOT NULL,
    id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    content TEXT,
    priority TEXT,
    status_id INTEGER,
    status TEXT,
    start_date TEXT,
    end_date TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    related TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (type, id)
);
CREATE INDEX IF NOT EXISTS idx_items_created ON items(type, created_at);
CREATE INDEX IF NOT EXISTS idx_items_updated ON items(type, updated_at);
CREATE INDEX IF NOT EXISTS idx_items_start_date ON items(type, start_date);

CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
    type UNINDEXED, title, description, content, tags,
    tokenize = 'unicode61'
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS item_tags (
    item_type TEXT NOT NULL,
    item_id TEXT NOT NULL,
    tag_name TEXT NOT NULL,
    PRIMARY KEY (item_type, item_id, tag_name)
);
CREATE INDEX IF NOT EXISTS idx_item_tags_name ON item_tags(tag_name);

CREATE TABLE IF NOT EXISTS related_items (
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id TEXT NOT NULL,
    PRIMARY KEY (source_type, source_id, target_type, target_id)
);
CREATE INDEX IF NOT EXISTS idx_related_target ON related_items(target_type, target_id);

CREATE TABLE IF NOT EXISTS statuses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    is_closed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sequences (
    type TEXT PRIMARY KEY,
    current_value INTEGER NOT NULL DEFAULT 0,
    base_type TEXT NOT NULL,
    description TEXT
);

CREATE TABLE IF NOT EXISTS type_fields (
    type TEXT NOT NULL,
    position INTEGER NOT NULL,
    field_name TEXT NOT NULL,
    field_type TEXT NOT NULL,
    required INTEGER NOT NULL DEFAULT 0,
    default_value TEXT,
    description TEXT,
    PRIMARY KEY (type, field_name)
);
"""

# Tables derived from item files; cleared by a full rebuild
ITEM_TABLES = ("items", "items_fts", "item_tags", "related_items")


def _fts_phrase(query: str) -> str:
    """Quote a user query as a single FTS5 phrase."""
    cleaned = query.replace('"', " ").replace("'", " ").strip()
    return f'"{cleaned}"'


class IndexStore:
    """
    SQLite-backed secondary index.

    Safe to share between threads: the connection is opened with
    check_same_thread=False and every access holds the store lock.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for multi-statement writes
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.executescript(_SCHEMA)
        self._conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Connection helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run statements in one IMMEDIATE transaction.

        Nested use joins the outer transaction.
        """
        with self._lock:
            if self._conn.in_transaction:
                yield self._conn
                return
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a single write statement. Returns the affected row count."""
        with self._lock:
            return self._conn.execute(sql, params).rowcount

    # -------------------------------------------------------------------------
    # Item projection
    # -------------------------------------------------------------------------

    def project(self, item: Item) -> None:
        """
        Project an item into the index.

        Upserts the row (keeping its rowid), rewrites the full-text shadow,
        and replaces the item's tag and relation edges.
        """
        tags_json = json.dumps(item.tags, ensure_ascii=False)
        related_json = json.dumps(item.related, ensure_ascii=False)
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO items
                    (type, id, title, description, content, priority,
                     status_id, status, start_date, end_date, tags, related,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(type, id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    content = excluded.content,
                    priority = excluded.priority,
                    status_id = excluded.status_id,
                    status = excluded.status,
                    start_date = excluded.start_date,
                    end_date = excluded.end_date,
                    tags = excluded.tags,
                    related = excluded.related,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at
            """, (
                item.type, item.id, item.title, item.description, item.content,
                item.priority, item.status_id, item.status, item.start_date,
                item.end_date, tags_json, related_json,
                item.created_at, item.updated_at,
            ))
            rowid = conn.execute(
                "SELECT rowid FROM items WHERE type = ? AND id = ?",
                (item.type, item.id),
            ).fetchone()[0]

            conn.execute("DELETE FROM items_fts WHERE rowid = ?", (rowid,))
            conn.execute("""
                INSERT INTO items_fts (rowid, type, title, description, content, tags)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                rowid, item.type, item.title, item.description or "",
                item.content or "", " ".join(item.tags),
            ))

            conn.execute(
                "DELETE FROM item_tags WHERE item_type = ? AND item_id = ?",
                (item.type, item.id),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO item_tags (item_type, item_id, tag_name) VALUES (?, ?, ?)",
                [(item.type, item.id, tag) for tag in item.tags],
            )

            conn.execute(
                "DELETE FROM related_items WHERE source_type = ? AND source_id = ?",
                (item.type, item.id),
            )
            edges = []
            for ref in item.related:
                target_type, target_id = split_ref(ref)
                edges.append((item.type, item.id, target_type, target_id))
            conn.executemany("""
                INSERT OR IGNORE INTO related_items
                    (source_type, source_id, target_type, target_id)
                VALUES (?, ?, ?, ?)
            """, edges)

    def remove(self, type_name: str, item_id: str) -> bool:
        """
        Remove an item's row, full-text shadow, tag edges and outgoing
        relation edges. Incoming edges from other items are left alone.
        """
        with self.transaction() as conn:
            return self._remove(conn, type_name, item_id)

    @staticmethod
    def _remove(conn: sqlite3.Connection, type_name: str, item_id: str) -> bool:
        row = conn.execute(
            "SELECT rowid FROM items WHERE type = ? AND id = ?",
            (type_name, item_id),
        ).fetchone()
        if row is not None:
            conn.execute("DELETE FROM items_fts WHERE rowid = ?", (row[0],))
            conn.execute(
                "DELETE FROM items WHERE type = ? AND id = ?", (type_name, item_id)
            )
        conn.execute(
            "DELETE FROM item_tags WHERE item_type = ? AND item_id = ?",
            (type_name, item_id),
        )
        conn.execute(
            "DELETE FROM related_items WHERE source_type = ? AND source_id = ?",
            (type_name, item_id),
        )
        return row is not None

    def purge_missing(self, type_name: str, keep_ids: set[str]) -> int:
        """Remove index rows of a type whose ids are not in keep_ids."""
        with self.transaction() as conn:
            ids = [r[0] for r in conn.execute(
                "SELECT id FROM items WHERE type = ?", (type_name,)
            )]
            stale = [i for i in ids if i not in keep_ids]
            for item_id in stale:
                self._remove(conn, type_name, item_id)
        if stale:
            logger.info("Purged %d stale %s rows", len(stale), type_name)
        return len(stale)

    def clear_items(self) -> None:
        """Drop every item-derived row (rows, full text, edges)."""
        with self.transaction() as conn:
            for table in ITEM_TABLES:
                conn.execute(f"DELETE FROM {table}")

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_row(self, type_name: str, item_id: str) -> Optional[dict[str, Any]]:
        """Raw index row for an item, tags and related decoded."""
        row = self.query_one(
            "SELECT * FROM items WHERE type = ? AND id = ?", (type_name, item_id)
        )
        if row is None:
            return None
        data = dict(row)
        data["tags"] = json.loads(data["tags"])
        data["related"] = json.loads(data["related"])
        return data

    def count(self, type_name: str) -> int:
        row = self.query_one("SELECT COUNT(*) FROM items WHERE type = ?", (type_name,))
        return row[0]

    def max_numeric_id(self, type_name: str) -> int:
        """Largest all-digit id of a type, 0 when there is none."""
        row = self.query_one("""
            SELECT MAX(CAST(id AS INTEGER)) FROM items
            WHERE type = ? AND id NOT GLOB '*[^0-9]*' AND id != ''
        """, (type_name,))
        return row[0] or 0

    def list_items(
        self,
        type_name: str,
        *,
        include_closed: bool = False,
        statuses: Optional[Sequence[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ListItem]:
        """
        Filtered listing of one type, newest first.

        Args:
            type_name: Type to list
            include_closed: Include items whose status is closed
            statuses: Only these status names as the registry names them now
                (overrides the closed filter); an empty sequence matches nothing
            start_date: Inclusive lower date bound (YYYY-MM-DD)
            end_date: Inclusive upper date bound (YYYY-MM-DD)
            limit: Maximum rows
        """
        if statuses is not None and len(statuses) == 0:
            return []

        sql = """
            SELECT i.* FROM items i
            LEFT JOIN statuses s ON i.status_id = s.id
            WHERE i.type = ?
        """
        params: list[Any] = [type_name]

        # Current registry name, or the cached one if the status was deleted
        if statuses is not None:
            sql += f" AND COALESCE(s.name, i.status) IN ({','.join('?' * len(statuses))})"
            params.extend(statuses)
        elif not include_closed:
            sql += " AND COALESCE(s.is_closed, 0) = 0"

        # Date-keyed types filter on their own date, others on updated_at
        if type_name in DATE_KEYED_TYPES:
            if start_date:
                sql += " AND i.start_date >= ?"
                params.append(start_date)
            if end_date:
                sql += " AND i.start_date <= ?"
                params.append(end_date)
        else:
            if start_date:
                sql += " AND i.updated_at >= ?"
                params.append(f"{start_date}T00:00:00.000Z")
            if end_date:
                sql += " AND i.updated_at <= ?"
                params.append(f"{end_date}T23:59:59.999Z")

        sql += " ORDER BY i.created_at DESC, i.rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return [self._to_list_item(r) for r in self.query(sql, params)]

    def search(
        self,
        query: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ListItem]:
        """Full-text phrase search, best bm25 match first."""
        phrase = _fts_phrase(query)
        if phrase == '""':
            return []
        sql = """
            SELECT i.* FROM items_fts
            JOIN items i ON i.rowid = items_fts.rowid
            WHERE items_fts MATCH ?
        """
        params: list[Any] = [phrase]
        if types:
            sql += f" AND i.type IN ({','.join('?' * len(types))})"
            params.extend(types)
        sql += " ORDER BY bm25(items_fts), i.type, i.id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [self._to_list_item(r) for r in self.query(sql, params)]

    def suggest_titles(
        self,
        prefix: str,
        *,
        types: Optional[Sequence[str]] = None,
        limit: int = 10,
    ) -> list[str]:
        """Distinct titles matching a phrase whose last word is a prefix."""
        phrase = _fts_phrase(prefix)
        if phrase == '""':
            return []
        sql = """
            SELECT i.title AS title, bm25(items_fts) AS rank FROM items_fts
            JOIN items i ON i.rowid = items_fts.rowid
            WHERE items_fts MATCH ?
        """
        params: list[Any] = [f"title : {phrase}*"]
        if types:
            sql += f" AND i.type IN ({','.join('?' * len(types))})"
            params.extend(types)
        rows = self.query(
            f"SELECT title FROM ({sql}) GROUP BY title ORDER BY MIN(rank), title LIMIT ?",
            [*params, limit],
        )
        return [r["title"] for r in rows]

    def items_with_tag(
        self, tag: str, types: Optional[Sequence[str]] = None
    ) -> list[ListItem]:
        """Items carrying a tag, newest first."""
        sql = """
            SELECT i.* FROM items i
            JOIN item_tags t ON t.item_type = i.type AND t.item_id = i.id
            WHERE t.tag_name = ?
        """
        params: list[Any] = [tag]
        if types:
            sql += f" AND i.type IN ({','.join('?' * len(types))})"
            params.extend(types)
        sql += " ORDER BY i.created_at DESC, i.rowid DESC"
        return [self._to_list_item(r) for r in self.query(sql, params)]

    def referencing(self, type_name: str, item_id: str) -> list[tuple[str, str]]:
        """(type, id) of items whose related list points at the given item."""
        rows = self.query("""
            SELECT DISTINCT source_type, source_id FROM related_items
            WHERE target_type = ? AND target_id = ?
            ORDER BY source_type, source_id
        """, (type_name, item_id))
        return [(r[0], r[1]) for r in rows]

    def related_of(self, type_name: str, item_id: str) -> list[tuple[str, str]]:
        """Outgoing relation edges of an item."""
        rows = self.query("""
            SELECT target_type, target_id FROM related_items
            WHERE source_type = ? AND source_id = ?
            ORDER BY target_type, target_id
        """, (type_name, item_id))
        return [(r[0], r[1]) for r in rows]

    @staticmethod
    def _to_list_item(row: sqlite3.Row) -> ListItem:
        type_name = row["type"]
        return ListItem(
            type=type_name,
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            tags=json.loads(row["tags"]),
            updated_at=row["updated_at"],
            date=row["start_date"] if type_name in DATE_KEYED_TYPES else None,
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
