"""
kbase

A typed knowledge base. Every item is a markdown file with a YAML metadata
block; a SQLite index beside the files serves listing, filtering, tag and
full-text queries, and can be rebuilt from the files at any time.

Quick Start:
    from kbase import KnowledgeBase

    kb = KnowledgeBase()  # uses .kbase/ in the working directory
    issue = kb.create_item("issues", "Login fails", content="Steps...", tags=["auth"])
    kb.update_item("issues", issue.id, status="In Progress")
    kb.list_items("issues")
    kb.search("login")

CLI Usage:
    kbase create docs "Setup" --content "pip install kbase"
    kbase list issues --all
    kbase rebuild

Default Store:
    .kbase/ in the working directory (created automatically).
    Override with KBASE_STORE_PATH or an explicit path argument.

Environment Variables:
    KBASE_STORE_PATH  - Override default store location
    KBASE_VERBOSE     - Set to 1 for debug logging on the command line
"""

from .api import KnowledgeBase
from .errors import (
    ConflictError,
    IndexProjectionError,
    InternalError,
    InvalidRequestError,
    KBaseError,
    NotFoundError,
)
from .types import BaseKind, Item, ListItem, Status, Tag, TypeDefinition

__version__ = "0.3.0"
__all__ = [
    "KnowledgeBase",
    "Item",
    "ListItem",
    "Status",
    "Tag",
    "TypeDefinition",
    "BaseKind",
    "KBaseError",
    "NotFoundError",
    "InvalidRequestError",
    "ConflictError",
    "InternalError",
    "IndexProjectionError",
]
