from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .clock import format_timestamp, parse_timestamp, utcnow
from .errors import InvalidField
from .validation import REASON_MAX, optional_text, require_id, require_non_negative, require_ordered, require_text

EARLY_CLOSURE_SEPARATOR = " | Early closure: "


def _as_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except ArithmeticError as e:
        raise InvalidField(f"amount must be a number, got {value!r}.", "amount") from e
    if not amount.is_finite():
        raise InvalidField(f"amount must be a finite number, got {value!r}.", "amount")
    return amount


class Penalty:
    """Time-bound restriction on a borrower, optionally caused by a loan.

    A penalty starts active and is deactivated exactly once, either when the
    window ends (``check_expiry``) or by ``close_early``. It never reactivates.
    """

    def __init__(self, penalty_id: str, borrower_id: str, loan_id: Optional[str], amount: Decimal,
                 start: datetime, end: datetime, reason: str, active: bool = True,
                 created_at: Optional[datetime] = None, updated_at: Optional[datetime] = None,
                 version: int = 0) -> None:
        self._id = penalty_id
        self._borrower_id = borrower_id
        self._loan_id = loan_id
        self._amount = amount
        self._start = start
        self._end = end
        self._reason = reason
        self._active = active
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at
        self.version = version

    @classmethod
    def open(cls, borrower_id: str, loan_id: Optional[str], amount, start: datetime, end: datetime,
             reason: str) -> "Penalty":
        borrower_id = require_id(borrower_id, "borrower_id")
        loan_id = optional_text(loan_id, 64, "loan_id")
        amount = require_non_negative(_as_decimal(amount), "amount")
        require_ordered(start, end, "start", "end")
        reason = require_text(reason, REASON_MAX, "reason")
        return cls(str(uuid.uuid4()), borrower_id, loan_id, amount, start, end, reason)

    @property
    def id(self) -> str:
        return self._id

    @property
    def borrower_id(self) -> str:
        return self._borrower_id

    @property
    def loan_id(self) -> Optional[str]:
        return self._loan_id

    @property
    def amount(self) -> Decimal:
        return self._amount

    @property
    def start(self) -> datetime:
        return self._start

    @property
    def end(self) -> datetime:
        return self._end

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def active(self) -> bool:
        return self._active

    def check_expiry(self, now: datetime) -> bool:
        """Deactivate once the window has ended. Returns True only on the call that deactivates."""
        if not self._active or now < self._end:
            return False
        self._active = False
        self._touch()
        return True

    def close_early(self, reason: str) -> None:
        if not self._active:
            return
        if reason is None or not reason.strip():
            raise InvalidField("reason is required.", "reason")
        combined = f"{self._reason}{EARLY_CLOSURE_SEPARATOR}{reason.strip()}"
        if len(combined) > REASON_MAX:
            raise InvalidField(f"reason cannot exceed {REASON_MAX} characters.", "reason")
        self._reason = combined
        self._active = False
        self._touch()

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def __repr__(self) -> str:
        return f"Penalty(id={self._id!r}, borrower_id={self._borrower_id!r}, active={self._active})"

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "borrower_id": self._borrower_id,
            "loan_id": self._loan_id,
            "amount": str(self._amount),
            "start": format_timestamp(self._start),
            "end": format_timestamp(self._end),
            "reason": self._reason,
            "active": self._active,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: dict) -> "Penalty":
        return Penalty(
            penalty_id=data["id"],
            borrower_id=data["borrower_id"],
            loan_id=data.get("loan_id"),
            amount=Decimal(str(data["amount"])),
            start=parse_timestamp(data["start"]),
            end=parse_timestamp(data["end"]),
            reason=data["reason"],
            active=bool(data["active"]),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )
