"""
Error types and error logging for kbase.

Operations raise typed errors so callers (CLI, protocol adapters) can map
them onto their own envelopes. The CLI logs full stack traces to a file
while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class KBaseError(Exception):
    """Base class for all knowledge base errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(KBaseError):
    """An item, status or type is absent when required."""


class InvalidRequestError(KBaseError):
    """The request is invalid: unknown type, bad title or date, self reference..."""


class ConflictError(KBaseError):
    """The operation conflicts with existing state (e.g. deleting a tag in use)."""


class InternalError(KBaseError):
    """Unexpected I/O failure."""


class IndexProjectionError(InternalError):
    """The file was written but the index projection failed.

    The file remains the source of truth; rebuild the type's index to
    reconcile.
    """

    def __init__(self, type_name: str, item_id: str, cause: BaseException):
        super().__init__(
            f"Saved {type_name}-{item_id} but failed to update the index: {cause}. "
            f"Run rebuild to reconcile.",
            {"type": type_name, "id": item_id},
        )


def _error_log_path() -> Path:
    """Resolve error log path, respecting KBASE_STORE_PATH."""
    store = os.environ.get("KBASE_STORE_PATH")
    if store:
        return Path(store) / "kbase-errors.log"
    return Path.cwd() / ".kbase" / "kbase-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # the error log itself is unwritable; the caller still reports exc
    return log_path
