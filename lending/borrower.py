from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from .clock import format_timestamp, parse_timestamp, utcnow
from .penalty import Penalty
from .validation import EMAIL_MAX, NAME_MAX, optional_text, require_text


class Borrower:
    """Someone who can take books out. Only the fields lending needs are kept."""

    def __init__(self, borrower_id: str, name: str, email: Optional[str] = None, active: bool = True,
                 created_at: Optional[datetime] = None, updated_at: Optional[datetime] = None,
                 version: int = 0) -> None:
        self._id = borrower_id
        self._name = name
        self._email = email
        self._active = active
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at
        self.version = version

    @classmethod
    def register(cls, name: str, email: Optional[str] = None) -> "Borrower":
        name = require_text(name, NAME_MAX, "name")
        email = optional_text(email, EMAIL_MAX, "email")
        return cls(str(uuid.uuid4()), name, email.lower() if email else None)

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def email(self) -> Optional[str]:
        return self._email

    @property
    def active(self) -> bool:
        return self._active

    def deactivate(self) -> None:
        self._active = False
        self.updated_at = utcnow()

    def reactivate(self) -> None:
        self._active = True
        self.updated_at = utcnow()

    def __repr__(self) -> str:
        return f"Borrower(id={self._id!r}, name={self._name!r})"

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "name": self._name,
            "email": self._email,
            "active": self._active,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: dict) -> "Borrower":
        return Borrower(
            borrower_id=data["id"],
            name=data["name"],
            email=data.get("email"),
            active=bool(data.get("active", True)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )


@dataclass(frozen=True)
class BorrowerStanding:
    """Snapshot of the facts the eligibility gate looks at."""

    borrower_id: str
    active_loan_count: int
    active_penalties: Tuple[Penalty, ...] = field(default_factory=tuple)

    @property
    def has_active_penalty(self) -> bool:
        return any(p.active for p in self.active_penalties)
