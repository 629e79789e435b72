"""Rule deciding whether a borrower may start a new loan."""

from __future__ import annotations

from .borrower import BorrowerStanding
from .errors import InvalidOperation


def can_request_loan(has_active_penalty: bool, active_loan_count: int, max_active_loans: int) -> None:
    """Raise ``InvalidOperation`` when a new loan must be refused.

    ``max_active_loans`` is a policy value handed in by the caller (see
    ``Settings.max_active_loans``).
    """
    if has_active_penalty:
        raise InvalidOperation("Borrower has an unresolved penalty.")
    if active_loan_count >= max_active_loans:
        raise InvalidOperation(
            f"Borrower exceeds maximum active loans ({active_loan_count} of {max_active_loans})."
        )


def ensure_can_borrow(standing: BorrowerStanding, max_active_loans: int) -> None:
    can_request_loan(standing.has_active_penalty, standing.active_loan_count, max_active_loans)
