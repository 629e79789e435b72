"""Lending catalog - core package.

This package contains:
- Domain model: books (book.py), loans (loan.py), penalties (penalty.py),
  borrowers (borrower.py) and the eligibility rule (eligibility.py)
- Shared field validation (validation.py) and errors (errors.py)
- SQLite persistence (database.py, repositories.py)
- Lending workflows (library.py)
"""

from .book import Book, BookStatus
from .borrower import Borrower, BorrowerStanding
from .eligibility import can_request_loan, ensure_can_borrow
from .errors import ConcurrencyConflict, DomainError, InvalidField, InvalidOperation, NotFound
from .loan import Loan, LoanPeriod, LoanStatus
from .penalty import Penalty

__all__ = [
    "Book",
    "BookStatus",
    "Borrower",
    "BorrowerStanding",
    "can_request_loan",
    "ensure_can_borrow",
    "ConcurrencyConflict",
    "DomainError",
    "InvalidField",
    "InvalidOperation",
    "NotFound",
    "Loan",
    "LoanPeriod",
    "LoanStatus",
    "Penalty",
]
