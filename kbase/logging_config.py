"""
Logging configuration for kbase.

Quiet by default on the command line; a rotating operations log in each
store records every write.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "kbase-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose output.

    Args:
        quiet: If True, silence library warnings and keep kbase at WARNING.
            If False, leave everything as configured.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        kbase_logger = logging.getLogger("kbase")
        if kbase_logger.level == logging.NOTSET:
            kbase_logger.setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("kbase").setLevel(logging.DEBUG)


def configure_ops_log(store_path, level: str = "INFO"):
    """Configure a persistent operations log for a store.

    Writes to {store_path}/kbase-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(store_path / OPS_LOG_FILENAME),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    kbase_logger = logging.getLogger("kbase")
    kbase_logger.addHandler(handler)
    # Let INFO through to the ops log even in quiet mode
    if kbase_logger.level == logging.NOTSET or kbase_logger.level > handler.level:
        kbase_logger.setLevel(handler.level)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger("kbase").removeHandler(handler)
    handler.close()
