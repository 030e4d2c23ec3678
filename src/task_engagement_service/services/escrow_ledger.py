"""Escrow ledger: per-booking fund holds, payouts, refunds, and wallets."""

from __future__ import annotations

import sqlite3
import uuid
from threading import RLock
from typing import Any

from task_engagement_service.core.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from task_engagement_service.domain import EscrowStatus
from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import connect, now_iso, storage_errors

logger = get_logger(__name__)


class EscrowLedger:
    """
    Holds the hire amount for each booking until it is released or refunded.

    Funds are captured from the owner when the hold is placed. Releasing
    pays the worker the hire amount minus the platform fee; refunding
    credits the owner's wallet. Every wallet credit and its transaction
    log entry are written in a single database transaction.
    """

    def __init__(self, db_path: str, platform_fee_pct: int) -> None:
        self._lock = RLock()
        self._platform_fee_pct = platform_fee_pct
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS escrow (
                    escrow_id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL UNIQUE,
                    payer_id TEXT NOT NULL,
                    payee_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    platform_fee_cents INTEGER NOT NULL DEFAULT 0,
                    payout_cents INTEGER NOT NULL DEFAULT 0,
                    refunded_cents INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS wallets (
                    user_id TEXT PRIMARY KEY,
                    balance_cents INTEGER NOT NULL DEFAULT 0 CHECK (balance_cents >= 0),
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS wallet_transactions (
                    tx_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES wallets(user_id),
                    type TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    balance_after INTEGER NOT NULL,
                    reference TEXT NOT NULL,
                    description TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_wallet_tx_user_created
                    ON wallet_transactions(user_id, created_at, tx_id);
                """
            )

    def _new_escrow_id(self) -> str:
        """Generate a new escrow ID."""
        return f"esc-{uuid.uuid4()}"

    def _new_tx_id(self) -> str:
        """Generate a new transaction ID."""
        return f"tx-{uuid.uuid4()}"

    @staticmethod
    def _escrow_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "escrow_id": row["escrow_id"],
            "booking_id": row["booking_id"],
            "payer_id": row["payer_id"],
            "payee_id": row["payee_id"],
            "amount_cents": row["amount_cents"],
            "platform_fee_cents": row["platform_fee_cents"],
            "payout_cents": row["payout_cents"],
            "refunded_cents": row["refunded_cents"],
            "status": row["status"],
            "created_at": row["created_at"],
            "resolved_at": row["resolved_at"],
        }

    def _credit_wallet(
        self,
        user_id: str,
        amount_cents: int,
        tx_type: str,
        reference: str,
        description: str,
        now: str,
    ) -> None:
        """Credit a wallet and append its transaction. Caller holds the transaction."""
        self._db.execute(
            "INSERT INTO wallets (user_id, balance_cents, updated_at) VALUES (?, 0, ?) "
            "ON CONFLICT(user_id) DO NOTHING",
            (user_id, now),
        )
        self._db.execute(
            "UPDATE wallets SET balance_cents = balance_cents + ?, updated_at = ? "
            "WHERE user_id = ?",
            (amount_cents, now, user_id),
        )
        balance_row = self._db.execute(
            "SELECT balance_cents FROM wallets WHERE user_id = ?", (user_id,)
        ).fetchone()
        self._db.execute(
            "INSERT INTO wallet_transactions "
            "(tx_id, user_id, type, amount_cents, balance_after, reference, description, "
            "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                self._new_tx_id(),
                user_id,
                tx_type,
                amount_cents,
                int(balance_row[0]),
                reference,
                description,
                now,
            ),
        )

    def platform_fee(self, amount_cents: int) -> int:
        """Platform fee retained on release, rounded down to whole cents."""
        return amount_cents * self._platform_fee_pct // 100

    def hold(
        self,
        booking_id: str,
        payer_id: str,
        payee_id: str,
        amount_cents: int,
    ) -> dict[str, Any]:
        """
        Place the hire amount in escrow for a booking.

        Idempotent per booking: repeating the same hold returns the existing
        record.

        Raises:
            ValidationError: amount_cents is not positive
            ServiceError: ESCROW_CONFLICT if the booking already holds a different amount
        """
        if amount_cents <= 0:
            raise ValidationError("Escrow amount must be a positive integer")

        with self._lock, storage_errors("escrow_hold"):
            existing = self._db.execute(
                "SELECT * FROM escrow WHERE booking_id = ?", (booking_id,)
            ).fetchone()
            if existing is not None:
                if int(existing["amount_cents"]) != amount_cents:
                    raise ServiceError(
                        "ESCROW_CONFLICT",
                        "Booking already has escrow for a different amount",
                        409,
                        {"booking_id": booking_id},
                    )
                return self._escrow_dict(existing)

            now = now_iso()
            escrow_id = self._new_escrow_id()
            self._db.execute(
                "INSERT INTO escrow "
                "(escrow_id, booking_id, payer_id, payee_id, amount_cents, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    escrow_id,
                    booking_id,
                    payer_id,
                    payee_id,
                    amount_cents,
                    EscrowStatus.HELD,
                    now,
                ),
            )
            row = self._db.execute(
                "SELECT * FROM escrow WHERE escrow_id = ?", (escrow_id,)
            ).fetchone()

        logger.info(
            "Escrow held",
            extra={"booking_id": booking_id, "escrow_id": escrow_id, "amount_cents": amount_cents},
        )
        return self._escrow_dict(row)

    def _load_held(self, booking_id: str, action: str) -> sqlite3.Row:
        row = self._db.execute("SELECT * FROM escrow WHERE booking_id = ?", (booking_id,)).fetchone()
        if row is None:
            raise NotFoundError("escrow", booking_id)
        if row["status"] != EscrowStatus.HELD:
            raise InvalidStateTransitionError("escrow", row["status"], EscrowStatus.HELD, action)
        return row

    def release(self, booking_id: str) -> dict[str, Any]:
        """
        Pay out a held escrow to the worker, less the platform fee.

        Raises:
            NotFoundError: no escrow exists for the booking
            InvalidStateTransitionError: escrow is no longer held
        """
        with self._lock, storage_errors("escrow_release"):
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._load_held(booking_id, "release")
                amount = int(row["amount_cents"])
                fee = self.platform_fee(amount)
                payout = amount - fee
                now = now_iso()
                if payout > 0:
                    self._credit_wallet(
                        row["payee_id"],
                        payout,
                        "payout",
                        booking_id,
                        "Payout for completed booking",
                        now,
                    )
                self._db.execute(
                    "UPDATE escrow SET status = ?, platform_fee_cents = ?, payout_cents = ?, "
                    "resolved_at = ? WHERE escrow_id = ?",
                    (EscrowStatus.RELEASED, fee, payout, now, row["escrow_id"]),
                )
                self._db.execute("COMMIT")
            except Exception:
                self._db.execute("ROLLBACK")
                raise
            resolved = self._db.execute(
                "SELECT * FROM escrow WHERE booking_id = ?", (booking_id,)
            ).fetchone()

        logger.info(
            "Escrow released",
            extra={"booking_id": booking_id, "payout_cents": payout, "platform_fee_cents": fee},
        )
        return self._escrow_dict(resolved)

    def refund(self, booking_id: str, refund_cents: int, reason: str) -> dict[str, Any]:
        """
        Return part or all of a held escrow to the owner.

        A refund smaller than the held amount leaves the remainder as a
        cancellation fee and marks the escrow partially_refunded.

        Raises:
            ValidationError: refund_cents is negative or above the held amount
            NotFoundError: no escrow exists for the booking
            InvalidStateTransitionError: escrow is no longer held
        """
        if refund_cents < 0:
            raise ValidationError("Refund amount must not be negative")

        with self._lock, storage_errors("escrow_refund"):
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._load_held(booking_id, "refund")
                amount = int(row["amount_cents"])
                if refund_cents > amount:
                    raise ValidationError(
                        "Refund amount exceeds the escrowed amount",
                        {"amount_cents": amount, "refund_cents": refund_cents},
                    )
                now = now_iso()
                if refund_cents > 0:
                    self._credit_wallet(row["payer_id"], refund_cents, "refund", booking_id, reason, now)
                status = (
                    EscrowStatus.REFUNDED if refund_cents == amount else EscrowStatus.PARTIALLY_REFUNDED
                )
                self._db.execute(
                    "UPDATE escrow SET status = ?, refunded_cents = ?, "
                    "platform_fee_cents = ?, resolved_at = ? WHERE escrow_id = ?",
                    (status, refund_cents, amount - refund_cents, now, row["escrow_id"]),
                )
                self._db.execute("COMMIT")
            except Exception:
                self._db.execute("ROLLBACK")
                raise
            resolved = self._db.execute(
                "SELECT * FROM escrow WHERE booking_id = ?", (booking_id,)
            ).fetchone()

        logger.info(
            "Escrow refunded",
            extra={"booking_id": booking_id, "refund_cents": refund_cents, "status": str(status)},
        )
        return self._escrow_dict(resolved)

    def get_escrow(self, booking_id: str) -> dict[str, Any] | None:
        """Look up the escrow record for a booking. Returns None if not found."""
        with self._lock, storage_errors("get_escrow"):
            row = self._db.execute(
                "SELECT * FROM escrow WHERE booking_id = ?", (booking_id,)
            ).fetchone()
        return self._escrow_dict(row) if row is not None else None

    def get_wallet(self, user_id: str) -> dict[str, Any]:
        """Wallet balance and transaction history, newest first. Unknown users have zero."""
        with self._lock, storage_errors("get_wallet"):
            wallet = self._db.execute(
                "SELECT balance_cents FROM wallets WHERE user_id = ?", (user_id,)
            ).fetchone()
            rows = self._db.execute(
                "SELECT tx_id, type, amount_cents, balance_after, reference, description, "
                "created_at FROM wallet_transactions WHERE user_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()

        return {
            "user_id": user_id,
            "balance_cents": int(wallet[0]) if wallet is not None else 0,
            "transactions": [dict(row) for row in rows],
        }

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
