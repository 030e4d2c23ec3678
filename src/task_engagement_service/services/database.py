"""Shared SQLite connection setup and error translation."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from task_engagement_service.core.exceptions import StorageError
from task_engagement_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator


def connect(db_path: str) -> sqlite3.Connection:
    """Open a WAL-mode connection shared across threads (guarded by the caller's lock)."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    db.row_factory = sqlite3.Row
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA foreign_keys=ON")
    db.execute("PRAGMA busy_timeout=5000")
    return db


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """
    Translate low-level SQLite failures into StorageError.

    IntegrityError is left alone; callers map constraint violations to
    domain errors themselves.
    """
    try:
        yield
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as exc:
        get_logger(__name__).error(
            "Storage operation failed",
            extra={"operation": operation, "error": str(exc)},
        )
        raise StorageError() from exc
