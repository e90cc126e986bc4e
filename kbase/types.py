"""
Data types for the knowledge base.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, Optional


class BaseKind(str, Enum):
    """Structural category of an item type.

    The kind decides which fields a type declares and which of them are
    required. Custom types may only be ``tasks`` or ``documents``.
    """
    TASKS = "tasks"
    DOCUMENTS = "documents"
    SESSIONS = "sessions"

    @property
    def required_fields(self) -> frozenset[str]:
        return REQUIRED_FIELDS[self]

    @property
    def requires_content(self) -> bool:
        return "content" in REQUIRED_FIELDS[self]


class IdScheme(str, Enum):
    """How identifiers are minted for a type."""
    SEQUENTIAL = "sequential"   # 1, 2, 3 ... from the type's sequence counter
    TIMESTAMP = "timestamp"     # YYYY-MM-DD-HH.MM.SS.mmm
    DATE = "date"               # YYYY-MM-DD, at most one item per date


REQUIRED_FIELDS: dict[BaseKind, frozenset[str]] = {
    BaseKind.TASKS: frozenset({"title", "content"}),
    BaseKind.DOCUMENTS: frozenset({"title", "content"}),
    BaseKind.SESSIONS: frozenset({"title"}),
}

# Kinds a user may register a custom type under
CUSTOM_TYPE_KINDS = (BaseKind.TASKS, BaseKind.DOCUMENTS)

SESSIONS_TYPE = "sessions"
DAILIES_TYPE = "dailies"
DATE_KEYED_TYPES = frozenset({SESSIONS_TYPE, DAILIES_TYPE})

PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
DEFAULT_STATUS = "Open"

MAX_TITLE_LENGTH = 500
MAX_TYPE_NAME_LENGTH = 50
MAX_LIST_LIMIT = 10000

_TYPE_NAME_RE = re.compile(r'^[a-z][a-z0-9_]*$')
_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_WHITESPACE_RE = re.compile(r'\s+')


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ.

    Millisecond precision with a Z suffix, the format every created_at
    and updated_at value in files and index rows uses.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def local_today() -> str:
    """Today's date in the local timezone (YYYY-MM-DD)."""
    return date.today().isoformat()


def session_id_for(moment: Optional[datetime] = None) -> str:
    """Derive a session identifier (YYYY-MM-DD-HH.MM.SS.mmm) in local time."""
    if moment is None:
        moment = datetime.now()
    elif moment.tzinfo is not None:
        moment = moment.astimezone()
    return (moment.strftime("%Y-%m-%d-%H.%M.%S.")
            + f"{moment.microsecond // 1000:03d}")


def clean_string(value: str) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    return _WHITESPACE_RE.sub(" ", value).strip()


def validate_date(value: str, field_name: str = "date") -> str:
    """Validate a calendar date string strictly.

    Pattern-valid but impossible dates (2024-02-30) are rejected too.

    Raises:
        ValueError: if the value is not a real YYYY-MM-DD date
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValueError(
            f"Invalid {field_name} format. Date must be in YYYY-MM-DD format"
        )
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date: {value}") from None
    return value


def validate_type_name(name: str) -> None:
    """Validate a custom type name."""
    if not name or len(name) > MAX_TYPE_NAME_LENGTH:
        raise ValueError(
            f"Type name must be 1-{MAX_TYPE_NAME_LENGTH} characters: {name!r}"
        )
    if not _TYPE_NAME_RE.match(name):
        raise ValueError(
            "Type name must start with a lowercase letter and contain only "
            f"lowercase letters, numbers, and underscores: {name!r}"
        )


def dedupe(values: Iterable[str]) -> list[str]:
    """Deduplicate while keeping first-seen order."""
    seen: set[str] = set()
    result = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


def clean_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Trim tags, drop empties, deduplicate."""
    if not tags:
        return []
    return dedupe(t.strip() for t in tags if isinstance(t, str) and t.strip())


def split_ref(ref: str) -> tuple[str, str]:
    """Split a ``type-id`` reference into its parts.

    Splits on the first hyphen only, so session references like
    ``sessions-2025-07-28-10.00.00.000`` keep their full id.

    Raises:
        ValueError: if the reference has no type or no id
    """
    if not isinstance(ref, str) or not ref.strip():
        raise ValueError("Related item references cannot be empty")
    type_name, sep, item_id = ref.strip().partition("-")
    if not sep or not type_name or not item_id:
        raise ValueError(f"Invalid reference format: {ref!r} (expected type-id)")
    return type_name, item_id


def make_ref(type_name: str, item_id: str) -> str:
    return f"{type_name}-{item_id}"


@dataclass(frozen=True)
class FieldDefinition:
    """One declared field of an item type."""
    field_name: str
    field_type: str
    required: bool = False
    default_value: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class TypeDefinition:
    """A registered (or built-in) item type."""
    name: str
    base_kind: BaseKind
    id_scheme: IdScheme = IdScheme.SEQUENTIAL
    current_value: int = 0
    description: Optional[str] = None


@dataclass(frozen=True)
class Status:
    """A named workflow state."""
    id: int
    name: str
    is_closed: bool = False


@dataclass(frozen=True)
class Tag:
    """A tag name and the number of items that carry it."""
    name: str
    usage_count: int = 0


@dataclass(frozen=True)
class Item:
    """
    A knowledge base item, as read from its file.

    This is a read-only snapshot; the synchronizer returns a new Item for
    every create or update.

    Attributes:
        type: Type name (issues, docs, sessions, a custom type, ...)
        id: Identifier, unique within the type
        related: ``type-id`` references to other items
        related_tasks: View over ``related``: references to task-kind types
        related_documents: View over ``related``: references to document-kind types
        created_at: UTC ISO timestamp, millisecond precision, Z suffix
    """
    type: str
    id: str
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    status_id: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    related: list[str] = field(default_factory=list)
    related_tasks: list[str] = field(default_factory=list)
    related_documents: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @property
    def ref(self) -> str:
        return make_ref(self.type, self.id)

    @property
    def date(self) -> Optional[str]:
        """The item's own date, for date-keyed types."""
        if self.type in DATE_KEYED_TYPES:
            return self.start_date
        return None

    def __str__(self) -> str:
        return f"{self.ref}: {self.title[:60]}"


@dataclass(frozen=True)
class ListItem:
    """Summary row returned by list and search queries (index only)."""
    type: str
    id: str
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    updated_at: str = ""
    date: Optional[str] = None
