"""SQLite-backed stores for the lending entities.

Each repository works on a connection handed in by the caller so several of
them can share one transaction. ``update`` is optimistic: it only writes when
the stored ``version`` still matches the one the entity was loaded with.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from .book import Book, BookStatus
from .borrower import Borrower
from .clock import format_timestamp
from .errors import ConcurrencyConflict, NotFound
from .loan import Loan, LoanStatus
from .penalty import Penalty

T = TypeVar("T")

# Loan states that still hold a copy or count against the borrower's limit.
OPEN_LOAN_STATUSES = (LoanStatus.REQUESTED.value, LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)


class _Repository(Generic[T]):
    table: str = ""
    entity_name: str = ""
    columns: Sequence[str] = ()
    factory: Callable[[dict], Any]

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _to_entity(self, row: sqlite3.Row) -> T:
        return type(self).factory(dict(row))

    def _select(self, where: str = "", params: Sequence[Any] = (), order_by: str = "") -> List[T]:
        sql = f"SELECT * FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return [self._to_entity(r) for r in self.conn.execute(sql, tuple(params)).fetchall()]

    def _count(self, where: str, params: Sequence[Any] = ()) -> int:
        row = self.conn.execute(f"SELECT COUNT(*) FROM {self.table} WHERE {where}", tuple(params)).fetchone()
        return int(row[0])

    def _values(self, entity: T) -> List[Any]:
        data = entity.to_dict()
        return [data[c] for c in self.columns]

    def get(self, entity_id: str) -> Optional[T]:
        row = self.conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,)).fetchone()
        return self._to_entity(row) if row else None

    def require(self, entity_id: str) -> T:
        entity = self.get(entity_id)
        if entity is None:
            raise NotFound(self.entity_name, entity_id)
        return entity

    def list_all(self) -> List[T]:
        return self._select(order_by="created_at")

    def add(self, entity: T) -> None:
        cols = ", ".join(f'"{c}"' for c in self.columns)
        marks = ", ".join("?" for _ in self.columns)
        self.conn.execute(
            f'INSERT INTO {self.table} ({cols}, "version") VALUES ({marks}, ?)',
            (*self._values(entity), entity.version),
        )

    def update(self, entity: T) -> None:
        assignments = ", ".join(f'"{c}" = ?' for c in self.columns if c != "id")
        values = [v for c, v in zip(self.columns, self._values(entity)) if c != "id"]
        cursor = self.conn.execute(
            f'UPDATE {self.table} SET {assignments}, "version" = "version" + 1 WHERE id = ? AND "version" = ?',
            (*values, entity.id, entity.version),
        )
        if cursor.rowcount == 0:
            if self.get(entity.id) is None:
                raise NotFound(self.entity_name, entity.id)
            raise ConcurrencyConflict(self.entity_name, entity.id)
        entity.version += 1


class BookRepository(_Repository[Book]):
    table = "books"
    entity_name = "Book"
    columns = ("id", "title", "author", "isbn", "location", "total_copies", "available_copies",
               "status", "publication_date", "created_at", "updated_at")
    factory = Book.from_dict

    def search_by_title(self, text: str) -> List[Book]:
        return self._select("title LIKE ? COLLATE NOCASE", (f"%{text}%",), order_by="title")

    def search_by_author(self, text: str) -> List[Book]:
        return self._select("author LIKE ? COLLATE NOCASE", (f"%{text}%",), order_by="author")

    def count_loanable(self) -> int:
        return self._count("status = ? AND available_copies > 0", (BookStatus.AVAILABLE.value,))

    def count_by_status(self, status: BookStatus) -> int:
        return self._count("status = ?", (BookStatus(status).value,))


class BorrowerRepository(_Repository[Borrower]):
    table = "borrowers"
    entity_name = "Borrower"
    columns = ("id", "name", "email", "active", "created_at", "updated_at")
    factory = Borrower.from_dict

    def get_by_email(self, email: str) -> Optional[Borrower]:
        found = self._select("email = ?", (email.strip().lower(),))
        return found[0] if found else None


class LoanRepository(_Repository[Loan]):
    table = "loans"
    entity_name = "Loan"
    columns = ("id", "book_id", "borrower_id", "start", "committed_end", "status", "returned_at",
               "notes", "created_at", "updated_at")
    factory = Loan.from_dict

    def list_by_borrower(self, borrower_id: str) -> List[Loan]:
        return self._select("borrower_id = ?", (borrower_id,), order_by="created_at DESC")

    def list_holding_book(self, book_id: str) -> List[Loan]:
        """Loans currently out for a book (active or overdue)."""
        return self._select(
            "book_id = ? AND status IN (?, ?)",
            (book_id, LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value),
            order_by="committed_end",
        )

    def list_overdue(self, reference: datetime) -> List[Loan]:
        """Active loans whose committed end is before ``reference`` and have not been flagged yet."""
        return self._select(
            "status = ? AND committed_end < ?",
            (LoanStatus.ACTIVE.value, format_timestamp(reference)),
            order_by="committed_end",
        )

    def list_past_due(self, reference: datetime) -> List[Loan]:
        return self._select(
            "status IN (?, ?) AND committed_end < ?",
            (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value, format_timestamp(reference)),
            order_by="committed_end",
        )

    def count_active_by_borrower(self, borrower_id: str) -> int:
        return self._count("borrower_id = ? AND status IN (?, ?, ?)", (borrower_id, *OPEN_LOAN_STATUSES))

    def count_by_status(self, status: LoanStatus) -> int:
        return self._count("status = ?", (LoanStatus(status).value,))


class PenaltyRepository(_Repository[Penalty]):
    table = "penalties"
    entity_name = "Penalty"
    columns = ("id", "borrower_id", "loan_id", "amount", "start", "end", "reason", "active",
               "created_at", "updated_at")
    factory = Penalty.from_dict

    def list_active_by_borrower(self, borrower_id: str) -> List[Penalty]:
        return self._select("borrower_id = ? AND active = 1", (borrower_id,), order_by='"end"')

    def list_active(self) -> List[Penalty]:
        return self._select("active = 1", order_by='"end"')

    def list_by_borrower(self, borrower_id: str) -> List[Penalty]:
        return self._select("borrower_id = ?", (borrower_id,), order_by="created_at DESC")
