"""SQLite-backed storage for tasks, bids, bookings, and checklists."""

from __future__ import annotations

import contextlib
import sqlite3
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_engagement_service.domain import (
    ACTIVE_BOOKING_STATUSES,
    Bid,
    BidStatus,
    Booking,
    BookingStatus,
    ChecklistCompletion,
    ChecklistItem,
    Task,
    TaskStatus,
)
from task_engagement_service.services.database import connect, now_iso, storage_errors

if TYPE_CHECKING:
    from collections.abc import Iterator


class BidConflictError(Exception):
    """Raised when a (task_id, bidder_id) pair already has a bid."""


class BookingConflictError(Exception):
    """Raised when a task already has an active (pending or accepted) booking."""


class CompletionConflictError(Exception):
    """Raised when a (item_id, booking_id) pair already has a completion."""


class BidAcceptanceConflict(Exception):
    """Raised inside accept_bid when the bid can no longer be accepted."""

    def __init__(self, current_status: str | None) -> None:
        super().__init__(current_status)
        self.current_status = current_status


_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    location TEXT NOT NULL,
    pay_amount_cents INTEGER NOT NULL CHECK (pay_amount_cents > 0),
    budget_type TEXT NOT NULL,
    status TEXT NOT NULL,
    scheduled_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
    bidder_id TEXT NOT NULL,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    message TEXT,
    estimated_hours REAL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    superseded_by TEXT,
    UNIQUE(task_id, bidder_id)
);

CREATE TABLE IF NOT EXISTS bookings (
    booking_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(task_id),
    owner_id TEXT NOT NULL,
    worker_id TEXT NOT NULL,
    bid_id TEXT,
    hire_amount_cents INTEGER NOT NULL CHECK (hire_amount_cents > 0),
    message TEXT,
    status TEXT NOT NULL,
    worker_decision TEXT NOT NULL,
    decline_reason TEXT,
    decided_at TEXT,
    completed_at TEXT,
    cancelled_at TEXT,
    cancelled_by TEXT,
    cancellation_reason TEXT,
    refund_cents INTEGER,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_active_booking_per_task
    ON bookings(task_id)
    WHERE status IN ('pending', 'accepted');

CREATE TABLE IF NOT EXISTS checklist_items (
    item_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
    created_by TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    requires_photo INTEGER NOT NULL,
    requires_approval INTEGER NOT NULL,
    display_order INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS checklist_completions (
    completion_id TEXT PRIMARY KEY,
    item_id TEXT NOT NULL REFERENCES checklist_items(item_id),
    booking_id TEXT NOT NULL REFERENCES bookings(booking_id),
    completed_by TEXT NOT NULL,
    photo_ref TEXT,
    notes TEXT,
    status TEXT NOT NULL,
    rejection_reason TEXT,
    reviewed_by TEXT,
    reviewed_at TEXT,
    completed_at TEXT NOT NULL,
    UNIQUE(item_id, booking_id)
);

CREATE INDEX IF NOT EXISTS ix_bids_task_amount ON bids(task_id, amount_cents);
CREATE INDEX IF NOT EXISTS ix_items_task_order ON checklist_items(task_id, display_order);
CREATE INDEX IF NOT EXISTS ix_completions_booking ON checklist_completions(booking_id);
"""

_TASK_COLUMNS: tuple[str, ...] = (
    "task_id",
    "owner_id",
    "title",
    "description",
    "category",
    "location",
    "pay_amount_cents",
    "budget_type",
    "status",
    "scheduled_at",
    "created_at",
    "updated_at",
)
_BID_COLUMNS: tuple[str, ...] = (
    "bid_id",
    "task_id",
    "bidder_id",
    "amount_cents",
    "message",
    "estimated_hours",
    "status",
    "created_at",
    "updated_at",
)
_BOOKING_COLUMNS: tuple[str, ...] = (
    "booking_id",
    "task_id",
    "owner_id",
    "worker_id",
    "bid_id",
    "hire_amount_cents",
    "message",
    "status",
    "worker_decision",
    "decline_reason",
    "decided_at",
    "completed_at",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason",
    "refund_cents",
    "created_at",
)
_ITEM_COLUMNS: tuple[str, ...] = (
    "item_id",
    "task_id",
    "created_by",
    "title",
    "description",
    "requires_photo",
    "requires_approval",
    "display_order",
    "created_at",
)
_COMPLETION_COLUMNS: tuple[str, ...] = (
    "completion_id",
    "item_id",
    "booking_id",
    "completed_by",
    "photo_ref",
    "notes",
    "status",
    "rejection_reason",
    "reviewed_by",
    "reviewed_at",
    "completed_at",
)


def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608


def _select_sql(table: str, columns: tuple[str, ...]) -> str:
    return f"SELECT {', '.join(columns)} FROM {table}"  # nosec B608


class EngagementStore:
    """
    SQLite-backed persistence gateway for the engagement lifecycle.

    Every status-changing write takes the status the caller expects the row
    to be in and reports how many rows actually moved, so the caller can
    turn a lost race into an InvalidStateTransitionError.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        with self._lock:
            self._db.executescript(_SCHEMA)

    @contextlib.contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a BEGIN IMMEDIATE transaction; roll back on any error."""
        with self._lock, storage_errors(operation):
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
                self._db.execute("COMMIT")
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def _fetch_one(self, query: str, params: tuple[object, ...]) -> sqlite3.Row | None:
        with self._lock, storage_errors("fetch_one"):
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
        return row

    def _fetch_all(self, query: str, params: tuple[object, ...]) -> list[sqlite3.Row]:
        with self._lock, storage_errors("fetch_all"):
            return list(self._db.execute(query, params).fetchall())

    def _conditional_update(
        self,
        table: str,
        key_column: str,
        key: str,
        allowed_columns: tuple[str, ...],
        updates: dict[str, Any],
        expected_statuses: tuple[str, ...] | None,
    ) -> int:
        if len(updates) == 0:
            return 0
        if any(column not in allowed_columns for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [*updates.values(), key]
        query = f"UPDATE {table} SET {set_clause} WHERE {key_column} = ?"  # nosec B608
        if expected_statuses is not None:
            query += f" AND status IN ({', '.join('?' for _ in expected_statuses)})"
            params.extend(expected_statuses)

        with self._lock, storage_errors(f"update_{table}"):
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> Task:
        """Insert a new task row and return it."""
        values = tuple(task_data[column] for column in _TASK_COLUMNS)
        with self._transaction("insert_task") as db:
            db.execute(_insert_sql("tasks", _TASK_COLUMNS), values)
        return Task.from_row(dict(zip(_TASK_COLUMNS, values, strict=True)))

    def get_task(self, task_id: str) -> Task | None:
        """Fetch a task by ID."""
        row = self._fetch_one(_select_sql("tasks", _TASK_COLUMNS) + " WHERE task_id = ?", (task_id,))
        return Task.from_row(dict(row)) if row is not None else None

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | tuple[str, ...] | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        expected = (expected_status,) if isinstance(expected_status, str) else expected_status
        return self._conditional_update(
            "tasks", "task_id", task_id, _TASK_COLUMNS, updates, expected
        )

    def list_tasks(
        self,
        status: str | None,
        owner_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[Task]:
        """List tasks with optional filters, newest first."""
        query = _select_sql("tasks", _TASK_COLUMNS)
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        return [Task.from_row(dict(row)) for row in self._fetch_all(query, tuple(params))]

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid_data: dict[str, Any]) -> Bid:
        """Insert a bid; raises BidConflictError for a second bid by the same bidder."""
        values = tuple(bid_data[column] for column in _BID_COLUMNS)
        try:
            with self._transaction("insert_bid") as db:
                db.execute(_insert_sql("bids", _BID_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise BidConflictError("This bidder already bid on this task") from exc
            raise
        return Bid.from_row(dict(zip(_BID_COLUMNS, values, strict=True)))

    def get_bid(self, bid_id: str) -> Bid | None:
        """Fetch a bid by ID."""
        row = self._fetch_one(_select_sql("bids", _BID_COLUMNS) + " WHERE bid_id = ?", (bid_id,))
        return Bid.from_row(dict(row)) if row is not None else None

    def list_bids(self, task_id: str) -> list[Bid]:
        """Bids for a task, lowest amount first; ties keep submission order."""
        rows = self._fetch_all(
            _select_sql("bids", _BID_COLUMNS)
            + " WHERE task_id = ? ORDER BY amount_cents ASC, created_at ASC, rowid ASC",
            (task_id,),
        )
        return [Bid.from_row(dict(row)) for row in rows]

    def list_reopened_bids(self, bid_id: str) -> list[Bid]:
        """Pending bids that were rejected when bid_id won and later reopened."""
        rows = self._fetch_all(
            _select_sql("bids", _BID_COLUMNS)
            + " WHERE superseded_by = ? AND status = ? ORDER BY amount_cents ASC, rowid ASC",
            (bid_id, BidStatus.PENDING),
        )
        return [Bid.from_row(dict(row)) for row in rows]

    def update_bid(self, bid_id: str, updates: dict[str, Any], *, expected_status: str) -> int:
        """Update bid columns while the bid is in the expected status."""
        return self._conditional_update(
            "bids", "bid_id", bid_id, _BID_COLUMNS, updates, (expected_status,)
        )

    def delete_bid(self, bid_id: str, *, expected_status: str) -> int:
        """Delete a bid while it is in the expected status."""
        with self._lock, storage_errors("delete_bid"):
            cursor = self._db.execute(
                "DELETE FROM bids WHERE bid_id = ? AND status = ?",
                (bid_id, expected_status),
            )
        return int(cursor.rowcount)

    def accept_bid(self, bid_id: str, booking_data: dict[str, Any]) -> str:
        """
        Accept one bid, reject its siblings and settle the booking atomically.

        Safe to re-run for a bid that is already accepted: sibling rejection
        is re-derived and the existing booking id is returned.

        Raises:
            BidAcceptanceConflict: bid missing, not pending, or another bid won
            BookingConflictError: the task's active booking belongs to something else
        """
        task_id = booking_data["task_id"]
        now = booking_data["created_at"]

        try:
            with self._transaction("accept_bid") as db:
                row = db.execute(
                    "SELECT status FROM bids WHERE bid_id = ? AND task_id = ?",
                    (bid_id, task_id),
                ).fetchone()
                if row is None:
                    raise BidAcceptanceConflict(None)
                current = str(row["status"])

                winner = db.execute(
                    "SELECT bid_id FROM bids WHERE task_id = ? AND status = ? AND bid_id != ?",
                    (task_id, BidStatus.ACCEPTED, bid_id),
                ).fetchone()
                if winner is not None or current == BidStatus.REJECTED:
                    raise BidAcceptanceConflict(current)

                previous = db.execute(
                    "SELECT booking_id, status FROM bookings WHERE bid_id = ? "
                    "ORDER BY created_at DESC LIMIT 1",
                    (bid_id,),
                ).fetchone()
                if previous is not None and previous["status"] not in ACTIVE_BOOKING_STATUSES:
                    raise BidAcceptanceConflict(current)

                # Any active booking on the task must be the one this bid created.
                active = db.execute(
                    "SELECT booking_id, bid_id FROM bookings "
                    "WHERE task_id = ? AND status IN (?, ?)",
                    (task_id, *ACTIVE_BOOKING_STATUSES),
                ).fetchone()
                if active is not None and active["bid_id"] != bid_id:
                    raise BookingConflictError("Task already has an active booking")

                if current == BidStatus.PENDING:
                    db.execute(
                        "UPDATE bids SET status = ?, updated_at = ? "
                        "WHERE bid_id = ? AND status = ?",
                        (BidStatus.ACCEPTED, now, bid_id, BidStatus.PENDING),
                    )

                db.execute(
                    "UPDATE bids SET status = ?, superseded_by = ?, updated_at = ? "
                    "WHERE task_id = ? AND bid_id != ? AND status = ?",
                    (BidStatus.REJECTED, bid_id, now, task_id, bid_id, BidStatus.PENDING),
                )

                if active is not None:
                    booking_id = str(active["booking_id"])
                else:
                    booking_id = str(booking_data["booking_id"])
                    values = tuple(booking_data[column] for column in _BOOKING_COLUMNS)
                    db.execute(_insert_sql("bookings", _BOOKING_COLUMNS), values)

                db.execute(
                    "UPDATE tasks SET status = ?, updated_at = ? WHERE task_id = ? AND status = ?",
                    (TaskStatus.IN_PROGRESS, now, task_id, TaskStatus.OPEN),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise BookingConflictError("Task already has an active booking") from exc
            raise

        return booking_id

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def insert_booking(self, booking_data: dict[str, Any]) -> Booking:
        """Insert a booking; raises BookingConflictError if the task has an active one."""
        values = tuple(booking_data[column] for column in _BOOKING_COLUMNS)
        try:
            with self._transaction("insert_booking") as db:
                db.execute(_insert_sql("bookings", _BOOKING_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise BookingConflictError("Task already has an active booking") from exc
            raise
        return Booking.from_row(dict(zip(_BOOKING_COLUMNS, values, strict=True)))

    def get_booking(self, booking_id: str) -> Booking | None:
        """Fetch a booking by ID."""
        row = self._fetch_one(
            _select_sql("bookings", _BOOKING_COLUMNS) + " WHERE booking_id = ?",
            (booking_id,),
        )
        return Booking.from_row(dict(row)) if row is not None else None

    def get_active_booking(self, task_id: str) -> Booking | None:
        """The task's pending or accepted booking, if any."""
        row = self._fetch_one(
            _select_sql("bookings", _BOOKING_COLUMNS) + " WHERE task_id = ? AND status IN (?, ?)",
            (task_id, *ACTIVE_BOOKING_STATUSES),
        )
        return Booking.from_row(dict(row)) if row is not None else None

    def list_bookings(self, task_id: str) -> list[Booking]:
        """All bookings for a task, oldest first."""
        rows = self._fetch_all(
            _select_sql("bookings", _BOOKING_COLUMNS) + " WHERE task_id = ? ORDER BY created_at",
            (task_id,),
        )
        return [Booking.from_row(dict(row)) for row in rows]

    def transition_booking(
        self,
        booking_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: tuple[str, ...],
        task_id: str | None = None,
        task_updates: dict[str, Any] | None = None,
        task_expected_statuses: tuple[str, ...] | None = None,
        release_bid_id: str | None = None,
    ) -> int:
        """
        Move a booking out of one of the expected statuses.

        When task_updates are given, the task row is updated in the same
        transaction, but only if the booking moved. release_bid_id marks
        the booking's winning bid rejected and puts the bids it beat back
        to pending so the owner can pick again once the task re-opens.
        Returns the number of booking rows changed (0 or 1).
        """
        if any(column not in _BOOKING_COLUMNS for column in updates):
            msg = "Attempted to update unknown bookings column"
            raise ValueError(msg)
        if task_updates and any(column not in _TASK_COLUMNS for column in task_updates):
            msg = "Attempted to update unknown tasks column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        status_placeholders = ", ".join("?" for _ in expected_statuses)
        query = (
            f"UPDATE bookings SET {set_clause} "  # nosec B608
            f"WHERE booking_id = ? AND status IN ({status_placeholders})"
        )
        params: list[object] = [*updates.values(), booking_id, *expected_statuses]

        with self._transaction("transition_booking") as db:
            changed = int(db.execute(query, params).rowcount)
            if changed > 0 and task_id is not None and task_updates:
                task_set = ", ".join(f"{column} = ?" for column in task_updates)
                task_query = f"UPDATE tasks SET {task_set} WHERE task_id = ?"  # nosec B608
                task_params: list[object] = [*task_updates.values(), task_id]
                if task_expected_statuses is not None:
                    task_query += (
                        f" AND status IN ({', '.join('?' for _ in task_expected_statuses)})"
                    )
                    task_params.extend(task_expected_statuses)
                db.execute(task_query, task_params)
            if changed > 0 and release_bid_id is not None:
                released_at = now_iso()
                db.execute(
                    "UPDATE bids SET status = ?, updated_at = ? WHERE bid_id = ? AND status = ?",
                    (BidStatus.REJECTED, released_at, release_bid_id, BidStatus.ACCEPTED),
                )
                db.execute(
                    "UPDATE bids SET status = ?, updated_at = ? "
                    "WHERE superseded_by = ? AND status = ?",
                    (BidStatus.PENDING, released_at, release_bid_id, BidStatus.REJECTED),
                )
        return changed

    def count_bookings_by_status(self) -> dict[str, int]:
        """Count bookings grouped by status."""
        rows = self._fetch_all("SELECT status, COUNT(*) FROM bookings GROUP BY status", ())
        return {str(row[0]): int(row[1]) for row in rows}

    def count_tasks(self) -> int:
        """Count total tasks."""
        row = self._fetch_one("SELECT COUNT(*) FROM tasks", ())
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Checklist items
    # ------------------------------------------------------------------

    def insert_item(self, item_data: dict[str, Any]) -> ChecklistItem:
        """Insert a checklist item at the end of the task's list."""
        with self._transaction("insert_item") as db:
            row = db.execute(
                "SELECT COALESCE(MAX(display_order) + 1, 0) FROM checklist_items WHERE task_id = ?",
                (item_data["task_id"],),
            ).fetchone()
            item_data = {**item_data, "display_order": int(row[0])}
            values = tuple(item_data[column] for column in _ITEM_COLUMNS)
            db.execute(_insert_sql("checklist_items", _ITEM_COLUMNS), values)
        return ChecklistItem.from_row(dict(zip(_ITEM_COLUMNS, values, strict=True)))

    def get_item(self, item_id: str) -> ChecklistItem | None:
        """Fetch a checklist item by ID."""
        row = self._fetch_one(
            _select_sql("checklist_items", _ITEM_COLUMNS) + " WHERE item_id = ?",
            (item_id,),
        )
        return ChecklistItem.from_row(dict(row)) if row is not None else None

    def list_items(self, task_id: str) -> list[ChecklistItem]:
        """Checklist items for a task in display order."""
        rows = self._fetch_all(
            _select_sql("checklist_items", _ITEM_COLUMNS)
            + " WHERE task_id = ? ORDER BY display_order ASC, rowid ASC",
            (task_id,),
        )
        return [ChecklistItem.from_row(dict(row)) for row in rows]

    def delete_item_without_completions(self, item_id: str) -> int:
        """Delete an item only if no completion references it."""
        with self._lock, storage_errors("delete_item"):
            cursor = self._db.execute(
                "DELETE FROM checklist_items WHERE item_id = ? AND NOT EXISTS "
                "(SELECT 1 FROM checklist_completions WHERE item_id = ?)",
                (item_id, item_id),
            )
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Checklist completions
    # ------------------------------------------------------------------

    def insert_completion(self, completion_data: dict[str, Any]) -> ChecklistCompletion:
        """Insert a completion; raises CompletionConflictError if one already exists."""
        values = tuple(completion_data[column] for column in _COMPLETION_COLUMNS)
        try:
            with self._transaction("insert_completion") as db:
                db.execute(_insert_sql("checklist_completions", _COMPLETION_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise CompletionConflictError("Item already completed for this booking") from exc
            raise
        return ChecklistCompletion.from_row(dict(zip(_COMPLETION_COLUMNS, values, strict=True)))

    def get_completion(self, completion_id: str) -> ChecklistCompletion | None:
        """Fetch a completion by ID."""
        row = self._fetch_one(
            _select_sql("checklist_completions", _COMPLETION_COLUMNS) + " WHERE completion_id = ?",
            (completion_id,),
        )
        return ChecklistCompletion.from_row(dict(row)) if row is not None else None

    def find_completion(self, item_id: str, booking_id: str) -> ChecklistCompletion | None:
        """Fetch the completion for an (item, booking) pair."""
        row = self._fetch_one(
            _select_sql("checklist_completions", _COMPLETION_COLUMNS)
            + " WHERE item_id = ? AND booking_id = ?",
            (item_id, booking_id),
        )
        return ChecklistCompletion.from_row(dict(row)) if row is not None else None

    def list_completions(self, booking_id: str) -> list[ChecklistCompletion]:
        """All completions recorded within a booking."""
        rows = self._fetch_all(
            _select_sql("checklist_completions", _COMPLETION_COLUMNS)
            + " WHERE booking_id = ? ORDER BY completed_at",
            (booking_id,),
        )
        return [ChecklistCompletion.from_row(dict(row)) for row in rows]

    def update_completion(
        self,
        completion_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str,
    ) -> int:
        """Update a completion while it is in the expected status."""
        return self._conditional_update(
            "checklist_completions",
            "completion_id",
            completion_id,
            _COMPLETION_COLUMNS,
            updates,
            (expected_status,),
        )

    def delete_completion(self, completion_id: str, *, expected_status: str) -> int:
        """Delete a completion while it is in the expected status."""
        with self._lock, storage_errors("delete_completion"):
            cursor = self._db.execute(
                "DELETE FROM checklist_completions WHERE completion_id = ? AND status = ?",
                (completion_id, expected_status),
            )
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
