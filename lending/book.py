from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .clock import format_timestamp, parse_date, parse_timestamp, utcnow
from .errors import InvalidOperation
from .validation import (
    AUTHOR_MAX,
    ISBN_MAX,
    LOCATION_MAX,
    TITLE_MAX,
    optional_text,
    require_positive,
    require_text,
)


class BookStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    LOANED = "loaned"
    DAMAGED = "damaged"
    INACTIVE = "inactive"


# Flags that survive copy-count changes until explicitly cleared.
STICKY_STATUSES = frozenset({BookStatus.RESERVED, BookStatus.DAMAGED, BookStatus.INACTIVE})


class Book:
    """A catalog title with a fixed number of loanable copies.

    Use ``Book.create`` for new books; the constructor restores stored state
    as-is. Status follows the copy count (``LOANED`` when no copy is left,
    ``AVAILABLE`` otherwise) only while it is ``AVAILABLE`` or ``LOANED``;
    ``RESERVED``, ``DAMAGED`` and ``INACTIVE`` are sticky and only change
    through the explicit reserve/damage/deactivate/restore operations.
    """

    def __init__(self, book_id: str, title: str, author: str, total_copies: int,
                 available_copies: int, status: BookStatus = BookStatus.AVAILABLE,
                 isbn: str | None = None, location: str | None = None,
                 publication_date: date | None = None,
                 created_at: datetime | None = None, updated_at: datetime | None = None,
                 version: int = 0) -> None:
        self._id = book_id
        self._title = title
        self._author = author
        self._isbn = isbn
        self._location = location
        self._total_copies = total_copies
        self._available_copies = available_copies
        self._status = BookStatus(status)
        self._publication_date = publication_date
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at
        self.version = version

    @classmethod
    def create(cls, title: str, author: str, total_copies: int, isbn: Optional[str] = None,
               location: Optional[str] = None, publication_date: Optional[date] = None) -> "Book":
        title = require_text(title, TITLE_MAX, "title")
        author = require_text(author, AUTHOR_MAX, "author")
        isbn = optional_text(isbn, ISBN_MAX, "isbn")
        location = optional_text(location, LOCATION_MAX, "location")
        require_positive(total_copies, "total_copies")
        return cls(
            book_id=str(uuid.uuid4()),
            title=title,
            author=author,
            total_copies=total_copies,
            available_copies=total_copies,
            isbn=isbn,
            location=location,
            publication_date=publication_date,
        )

    # ------------------------------------------------------------ properties
    @property
    def id(self) -> str:
        return self._id

    @property
    def title(self) -> str:
        return self._title

    @property
    def author(self) -> str:
        return self._author

    @property
    def isbn(self) -> Optional[str]:
        return self._isbn

    @property
    def location(self) -> Optional[str]:
        return self._location

    @property
    def total_copies(self) -> int:
        return self._total_copies

    @property
    def available_copies(self) -> int:
        return self._available_copies

    @property
    def status(self) -> BookStatus:
        return self._status

    @property
    def publication_date(self) -> Optional[date]:
        return self._publication_date

    @property
    def is_loanable(self) -> bool:
        return self._status == BookStatus.AVAILABLE and self._available_copies > 0

    @property
    def copies_on_loan(self) -> int:
        return self._total_copies - self._available_copies

    # ------------------------------------------------------------ copy tracking
    def checkout(self) -> None:
        """Hand out one copy."""
        if self._available_copies == 0:
            raise InvalidOperation(f"No copies of '{self._title}' are available for loan.")
        if self._status in STICKY_STATUSES:
            raise InvalidOperation(f"Book '{self._title}' is {self._status.value} and cannot be loaned.")
        self._available_copies -= 1
        self._derive_status()
        self._touch()

    def return_copy(self) -> None:
        """Take one copy back."""
        if self._available_copies >= self._total_copies:
            raise InvalidOperation(f"No copies of '{self._title}' are on loan.")
        self._available_copies += 1
        self._derive_status()
        self._touch()

    def _derive_status(self) -> None:
        if self._status in STICKY_STATUSES:
            return
        self._status = BookStatus.LOANED if self._available_copies == 0 else BookStatus.AVAILABLE

    # ------------------------------------------------------------ sticky flags
    def reserve(self) -> None:
        if self._status == BookStatus.RESERVED:
            return
        if not self.is_loanable:
            raise InvalidOperation("Only an available book with free copies can be reserved.")
        self._status = BookStatus.RESERVED
        self._touch()

    def release_reservation(self) -> None:
        if self._status != BookStatus.RESERVED:
            raise InvalidOperation("Book is not reserved.")
        self._status = BookStatus.AVAILABLE
        self._touch()

    def mark_damaged(self) -> None:
        self._require_all_copies_in("damaged")
        self._status = BookStatus.DAMAGED
        self._touch()

    def mark_inactive(self) -> None:
        self._require_all_copies_in("inactive")
        self._status = BookStatus.INACTIVE
        self._touch()

    def restore_availability(self) -> None:
        if self._available_copies == 0:
            raise InvalidOperation("Book has no copies on the shelf to make available.")
        self._status = BookStatus.AVAILABLE
        self._touch()

    def _require_all_copies_in(self, target: str) -> None:
        if self._available_copies != self._total_copies:
            raise InvalidOperation(
                f"Book cannot be marked {target} while {self.copies_on_loan} copies are on loan."
            )

    # ------------------------------------------------------------ metadata
    def update_metadata(self, title: Optional[str] = None, author: Optional[str] = None,
                        isbn: Optional[str] = None, publication_date: Optional[date] = None) -> None:
        """Replace the non-blank fields given; blank or missing ones are kept."""
        new_title = require_text(title, TITLE_MAX, "title") if title and title.strip() else self._title
        new_author = require_text(author, AUTHOR_MAX, "author") if author and author.strip() else self._author
        new_isbn = optional_text(isbn, ISBN_MAX, "isbn") or self._isbn
        self._title = new_title
        self._author = new_author
        self._isbn = new_isbn
        if publication_date is not None:
            self._publication_date = publication_date
        self._touch()

    def update_location(self, location: Optional[str]) -> None:
        self._location = optional_text(location, LOCATION_MAX, "location")
        self._touch()

    def _touch(self) -> None:
        self.updated_at = utcnow()

    # ------------------------------------------------------------ serialization
    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self._title} by {self._author} ({self._available_copies}/{self._total_copies} available)"

    def __repr__(self) -> str:
        return f"Book(id={self._id!r}, title={self._title!r}, status={self._status.value!r})"

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "title": self._title,
            "author": self._author,
            "isbn": self._isbn,
            "location": self._location,
            "total_copies": self._total_copies,
            "available_copies": self._available_copies,
            "status": self._status.value,
            "publication_date": self._publication_date.isoformat() if self._publication_date else None,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            book_id=data["id"],
            title=data["title"],
            author=data["author"],
            total_copies=int(data["total_copies"]),
            available_copies=int(data["available_copies"]),
            status=BookStatus(data["status"]),
            isbn=data.get("isbn"),
            location=data.get("location"),
            publication_date=parse_date(data.get("publication_date")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )
