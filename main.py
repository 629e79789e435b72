import subprocess
import sys
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation as DecimalError
from functools import wraps
from typing import Optional

import typer

from config import settings
from lending.book import BookStatus
from lending.clock import utcnow
from lending.errors import ConcurrencyConflict, DomainError, NotFound
from lending.library import Library
from ui_helpers import print_books, print_loans, print_penalties, print_stats_result, set_output_mode

APP_NAME = "Lending CLI"
DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]

_library: Optional[Library] = None


def get_library() -> Library:
    """Return the shared Library instance, creating it on first use."""
    global _library
    if _library is None:
        _library = Library()
    return _library


def handle_errors(func):
    """Print lending errors as 'Error: ...' and exit with status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (DomainError, NotFound, ConcurrencyConflict) as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


# ------------------------- Catalog ------------------------- #
@app.command("add-book")
@handle_errors
def cli_add_book(
    title: str,
    author: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of loanable copies"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Shelf location"),
):
    """Add a book to the catalog."""
    book = get_library().add_book(title, author, copies, isbn=isbn, location=location)
    print(f"Added book {book.id}: {book.title} by {book.author} ({book.total_copies} copies)")


@app.command("list")
def cli_list():
    """List every book in the catalog."""
    print_books(get_library().list_books())


@app.command("search")
@handle_errors
def cli_search(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title substring"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author substring"),
):
    """Search the catalog by title or author."""
    print_books(get_library().search_books(title=title, author=author))


@app.command("show")
def cli_show(book_id: str):
    """Show a book and the loans currently out against it."""
    lib = get_library()
    book = lib.get_book(book_id)
    if not book:
        print(f"Book {book_id} not found.")
        raise typer.Exit(code=1)
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"ISBN: {book.isbn or '-'}")
    print(f"Location: {book.location or '-'}")
    print(f"Status: {book.status.value}")
    print(f"Copies: {book.available_copies}/{book.total_copies} available")
    print_loans(lib.active_loans_for_book(book.id))


@app.command("status")
@handle_errors
def cli_status(book_id: str, status: BookStatus):
    """Reserve, damage, deactivate or restore a book."""
    book = get_library().change_book_status(book_id, status)
    print(f"Book {book.id} is now {book.status.value}.")


@app.command("stats")
def cli_stats():
    """Show catalog statistics."""
    print_stats_result(get_library().get_statistics())


# ------------------------- Borrowers ------------------------- #
@app.command("register")
@handle_errors
def cli_register(name: str, email: Optional[str] = typer.Option(None, "--email", "-e")):
    """Register a borrower."""
    borrower = get_library().register_borrower(name, email)
    print(f"Registered borrower {borrower.id}: {borrower.name}")


@app.command("loans")
def cli_loans(borrower_id: str):
    """List a borrower's loans, newest first."""
    print_loans(get_library().loans_for_borrower(borrower_id))


# ------------------------- Loans ------------------------- #
@app.command("borrow")
@handle_errors
def cli_borrow(
    book_id: str,
    borrower_id: str,
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
    pending: bool = typer.Option(False, "--pending", help="Leave the loan requested instead of active"),
):
    """Lend a copy of a book to a borrower."""
    loan = get_library().request_loan(book_id, borrower_id, start, end, activate=not pending)
    print(f"Loan {loan.id} {loan.status.value}, due {loan.period.committed_end.isoformat()}")


@app.command("activate")
@handle_errors
def cli_activate(loan_id: str):
    """Activate a requested loan."""
    loan = get_library().activate_loan(loan_id)
    print(f"Loan {loan.id} is now {loan.status.value}.")


@app.command("return")
@handle_errors
def cli_return(
    loan_id: str,
    at: Optional[datetime] = typer.Option(None, "--at", formats=DATE_FORMATS, help="Return time (default: now)"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n"),
):
    """Record the return of a loan."""
    loan = get_library().return_loan(loan_id, at, notes)
    print(f"Loan {loan.id} returned at {loan.returned_at.isoformat()}.")


@app.command("cancel")
@handle_errors
def cli_cancel(loan_id: str, reason: str):
    """Cancel a requested or active loan."""
    loan = get_library().cancel_loan(loan_id, reason)
    print(f"Loan {loan.id} cancelled.")


@app.command("extend")
@handle_errors
def cli_extend(loan_id: str, days: int):
    """Push back the committed return date of an active loan."""
    loan = get_library().extend_loan(loan_id, days)
    print(f"Loan {loan.id} now due {loan.period.committed_end.isoformat()}.")


@app.command("overdue")
def cli_overdue(as_of: Optional[datetime] = typer.Option(None, "--as-of", formats=DATE_FORMATS)):
    """List loans past their committed return date."""
    print_loans(get_library().overdue_loans(as_of))


@app.command("mark-overdue")
def cli_mark_overdue(now: Optional[datetime] = typer.Option(None, "--now", formats=DATE_FORMATS)):
    """Flag active loans past their committed return date as overdue."""
    flagged = get_library().mark_overdue_loans(now)
    print(f"{len(flagged)} loan(s) marked overdue.")


# ------------------------- Penalties ------------------------- #
@app.command("penalize")
@handle_errors
def cli_penalize(
    borrower_id: str,
    amount: str,
    reason: str,
    days: int = typer.Option(7, "--days", "-d", help="Length of the penalty window"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    loan_id: Optional[str] = typer.Option(None, "--loan"),
):
    """Open a penalty against a borrower."""
    try:
        value = Decimal(amount)
    except DecimalError:
        print(f"Error: amount must be a number, got {amount!r}")
        raise typer.Exit(code=1)
    lib = get_library()
    begins = start or utcnow()
    penalty = lib.open_penalty(borrower_id, value, begins, begins + timedelta(days=days), reason, loan_id=loan_id)
    print(f"Penalty {penalty.id} opened until {penalty.end.isoformat()}.")


@app.command("penalties")
def cli_penalties(borrower_id: str, active_only: bool = typer.Option(False, "--active")):
    """List a borrower's penalties."""
    lib = get_library()
    if active_only:
        print_penalties(lib.active_penalties(borrower_id))
    else:
        print_penalties(lib.penalties_for_borrower(borrower_id))


@app.command("close-penalty")
@handle_errors
def cli_close_penalty(penalty_id: str, reason: str):
    """Close an active penalty before its window ends."""
    penalty = get_library().close_penalty_early(penalty_id, reason)
    print(f"Penalty {penalty.id} closed.")


@app.command("expire-penalties")
def cli_expire_penalties(now: Optional[datetime] = typer.Option(None, "--now", formats=DATE_FORMATS)):
    """Deactivate penalties whose window has ended."""
    expired = get_library().expire_penalties(now)
    print(f"{len(expired)} penalty(ies) expired.")


# ------------------------- Server ------------------------- #
@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
):
    """Start the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    subprocess.run(args, check=False)


if __name__ == "__main__":
    app()
