from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .clock import format_timestamp, parse_timestamp, utcnow
from .errors import InvalidField, InvalidOperation
from .validation import NOTES_MAX, REASON_MAX, optional_text, require_id, require_ordered, require_positive, require_text


class LoanStatus(str, Enum):
    REQUESTED = "requested"
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({LoanStatus.RETURNED, LoanStatus.CANCELLED})


@dataclass(frozen=True)
class LoanPeriod:
    """Start of the loan and the date the borrower committed to return it by."""

    start: datetime
    committed_end: datetime

    @classmethod
    def create(cls, start: datetime, committed_end: datetime) -> "LoanPeriod":
        require_ordered(start, committed_end, "start", "committed_end")
        return cls(start, committed_end)

    def is_overdue(self, reference: datetime) -> bool:
        return reference > self.committed_end

    def extended(self, days: int) -> "LoanPeriod":
        require_positive(days, "days")
        return LoanPeriod(self.start, self.committed_end + timedelta(days=days))

    @property
    def length_days(self) -> float:
        return (self.committed_end - self.start).total_seconds() / 86400


class Loan:
    """Loan of one copy of a book to one borrower.

    Lifecycle::

        REQUESTED --activate--> ACTIVE --mark_overdue--> OVERDUE
        ACTIVE/OVERDUE --return_loan--> RETURNED
        REQUESTED/ACTIVE --cancel--> CANCELLED

    RETURNED and CANCELLED are terminal. Every guard is checked before any
    attribute is written, so a rejected call leaves the loan untouched.
    """

    def __init__(self, loan_id: str, book_id: str, borrower_id: str, period: LoanPeriod,
                 status: LoanStatus = LoanStatus.REQUESTED,
                 returned_at: Optional[datetime] = None, notes: Optional[str] = None,
                 created_at: Optional[datetime] = None, updated_at: Optional[datetime] = None,
                 version: int = 0) -> None:
        self._id = loan_id
        self._book_id = book_id
        self._borrower_id = borrower_id
        self._period = period
        self._status = LoanStatus(status)
        self._returned_at = returned_at
        self._notes = notes
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at
        self.version = version

    @classmethod
    def request(cls, book_id: str, borrower_id: str, period: LoanPeriod) -> "Loan":
        book_id = require_id(book_id, "book_id")
        borrower_id = require_id(borrower_id, "borrower_id")
        return cls(str(uuid.uuid4()), book_id, borrower_id, period)

    @property
    def id(self) -> str:
        return self._id

    @property
    def book_id(self) -> str:
        return self._book_id

    @property
    def borrower_id(self) -> str:
        return self._borrower_id

    @property
    def period(self) -> LoanPeriod:
        return self._period

    @property
    def status(self) -> LoanStatus:
        return self._status

    @property
    def returned_at(self) -> Optional[datetime]:
        return self._returned_at

    @property
    def notes(self) -> Optional[str]:
        return self._notes

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    @property
    def holds_copy(self) -> bool:
        """Requested, active and overdue loans keep a copy checked out."""
        return not self.is_terminal

    def days_late(self, at: datetime) -> int:
        """Whole days (rounded up) past the committed end, 0 when on time."""
        late = (at - self._period.committed_end).total_seconds()
        return max(0, math.ceil(late / 86400))

    # ------------------------------------------------------------ transitions
    def activate(self) -> None:
        if self._status != LoanStatus.REQUESTED:
            raise InvalidOperation(f"Only a requested loan can be activated (loan is {self._status.value}).")
        self._status = LoanStatus.ACTIVE
        self._touch()

    def mark_overdue(self, now: datetime) -> bool:
        """Flag an active loan whose committed end has passed. Safe to call repeatedly."""
        if self._status != LoanStatus.ACTIVE or not self._period.is_overdue(now):
            return False
        self._status = LoanStatus.OVERDUE
        self._touch()
        return True

    def return_loan(self, actual_return_time: datetime, notes: Optional[str] = None) -> None:
        if self._status not in (LoanStatus.ACTIVE, LoanStatus.OVERDUE):
            raise InvalidOperation(f"Only active or overdue loans can be returned (loan is {self._status.value}).")
        if actual_return_time is None:
            raise InvalidField("actual_return_time is required.", "actual_return_time")
        cleaned = optional_text(notes, NOTES_MAX, "notes")
        self._status = LoanStatus.RETURNED
        self._returned_at = actual_return_time
        self._notes = cleaned
        self._touch()

    def cancel(self, reason: str) -> None:
        if self._status not in (LoanStatus.REQUESTED, LoanStatus.ACTIVE):
            raise InvalidOperation(f"Only requested or active loans can be cancelled (loan is {self._status.value}).")
        cleaned = require_text(reason, REASON_MAX, "reason")
        self._status = LoanStatus.CANCELLED
        self._notes = cleaned
        self._touch()

    def extend(self, days: int) -> None:
        if self._status != LoanStatus.ACTIVE:
            raise InvalidOperation(f"Only active loans can be extended (loan is {self._status.value}).")
        self._period = self._period.extended(days)
        self._touch()

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def __repr__(self) -> str:
        return f"Loan(id={self._id!r}, book_id={self._book_id!r}, status={self._status.value!r})"

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "book_id": self._book_id,
            "borrower_id": self._borrower_id,
            "start": format_timestamp(self._period.start),
            "committed_end": format_timestamp(self._period.committed_end),
            "status": self._status.value,
            "returned_at": format_timestamp(self._returned_at),
            "notes": self._notes,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            loan_id=data["id"],
            book_id=data["book_id"],
            borrower_id=data["borrower_id"],
            period=LoanPeriod(parse_timestamp(data["start"]), parse_timestamp(data["committed_end"])),
            status=LoanStatus(data["status"]),
            returned_at=parse_timestamp(data.get("returned_at")),
            notes=data.get("notes"),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )
