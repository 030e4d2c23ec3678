"""Typed domain records parsed from persistence rows."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any, TypeVar

from task_engagement_service.core.exceptions import StorageError


class TaskStatus(StrEnum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BudgetType(StrEnum):
    FIXED = "fixed"
    HOURLY = "hourly"


class BidStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class BookingStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WorkerDecision(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CompletionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EscrowStatus(StrEnum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Bookings in these statuses occupy the task's single active engagement slot.
ACTIVE_BOOKING_STATUSES: tuple[str, ...] = (BookingStatus.PENDING, BookingStatus.ACCEPTED)

_E = TypeVar("_E", bound=StrEnum)


def _parse_enum(enum_type: type[_E], value: object, field_name: str) -> _E:
    try:
        return enum_type(str(value))
    except ValueError as exc:
        raise StorageError(f"Unexpected {field_name} value in storage: {value!r}") from exc


@dataclass
class Task:
    """A unit of work posted by an owner."""

    task_id: str
    owner_id: str
    title: str
    description: str
    category: str
    location: str
    pay_amount_cents: int
    budget_type: BudgetType
    status: TaskStatus
    scheduled_at: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Task:
        return cls(
            task_id=str(row["task_id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            category=str(row["category"]),
            location=str(row["location"]),
            pay_amount_cents=int(row["pay_amount_cents"]),
            budget_type=_parse_enum(BudgetType, row["budget_type"], "budget_type"),
            status=_parse_enum(TaskStatus, row["status"], "task status"),
            scheduled_at=row["scheduled_at"],
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Bid:
    """A worker's priced proposal against an open task."""

    bid_id: str
    task_id: str
    bidder_id: str
    amount_cents: int
    message: str | None
    estimated_hours: float | None
    status: BidStatus
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Bid:
        hours = row["estimated_hours"]
        return cls(
            bid_id=str(row["bid_id"]),
            task_id=str(row["task_id"]),
            bidder_id=str(row["bidder_id"]),
            amount_cents=int(row["amount_cents"]),
            message=row["message"],
            estimated_hours=float(hours) if hours is not None else None,
            status=_parse_enum(BidStatus, row["status"], "bid status"),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Booking:
    """The engagement between a task owner and a worker."""

    booking_id: str
    task_id: str
    owner_id: str
    worker_id: str
    bid_id: str | None
    hire_amount_cents: int
    message: str | None
    status: BookingStatus
    worker_decision: WorkerDecision
    decline_reason: str | None
    decided_at: str | None
    completed_at: str | None
    cancelled_at: str | None
    cancelled_by: str | None
    cancellation_reason: str | None
    refund_cents: int | None
    created_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Booking:
        refund = row["refund_cents"]
        return cls(
            booking_id=str(row["booking_id"]),
            task_id=str(row["task_id"]),
            owner_id=str(row["owner_id"]),
            worker_id=str(row["worker_id"]),
            bid_id=row["bid_id"],
            hire_amount_cents=int(row["hire_amount_cents"]),
            message=row["message"],
            status=_parse_enum(BookingStatus, row["status"], "booking status"),
            worker_decision=_parse_enum(WorkerDecision, row["worker_decision"], "worker decision"),
            decline_reason=row["decline_reason"],
            decided_at=row["decided_at"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
            cancelled_by=row["cancelled_by"],
            cancellation_reason=row["cancellation_reason"],
            refund_cents=int(refund) if refund is not None else None,
            created_at=str(row["created_at"]),
        )

    @property
    def is_in_progress(self) -> bool:
        """Accepted bookings are in progress until completed."""
        return self.status == BookingStatus.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["in_progress"] = self.is_in_progress
        return data


@dataclass
class ChecklistItem:
    """An owner-defined completion criterion attached to a task."""

    item_id: str
    task_id: str
    created_by: str
    title: str
    description: str | None
    requires_photo: bool
    requires_approval: bool
    display_order: int
    created_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ChecklistItem:
        return cls(
            item_id=str(row["item_id"]),
            task_id=str(row["task_id"]),
            created_by=str(row["created_by"]),
            title=str(row["title"]),
            description=row["description"],
            requires_photo=bool(row["requires_photo"]),
            requires_approval=bool(row["requires_approval"]),
            display_order=int(row["display_order"]),
            created_at=str(row["created_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChecklistCompletion:
    """A worker's fulfillment record for one checklist item within one booking."""

    completion_id: str
    item_id: str
    booking_id: str
    completed_by: str
    photo_ref: str | None
    notes: str | None
    status: CompletionStatus
    rejection_reason: str | None
    reviewed_by: str | None
    reviewed_at: str | None
    completed_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ChecklistCompletion:
        return cls(
            completion_id=str(row["completion_id"]),
            item_id=str(row["item_id"]),
            booking_id=str(row["booking_id"]),
            completed_by=str(row["completed_by"]),
            photo_ref=row["photo_ref"],
            notes=row["notes"],
            status=_parse_enum(CompletionStatus, row["status"], "completion status"),
            rejection_reason=row["rejection_reason"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=row["reviewed_at"],
            completed_at=str(row["completed_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
