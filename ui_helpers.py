import os
import json
from typing import Any, Dict, List, Sequence, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable controlling CLI output mode.
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LENDING_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_rows(title: str, columns: Sequence[Tuple[str, str]], items: List[Dict[str, Any]],
                empty_message: str, plain_format: str) -> None:
    """Print dict rows as plain lines, a JSON array, or a rich table.

    ``columns`` pairs a dict key with its table header; ``plain_format`` is a
    ``str.format`` template applied to each row in plain mode.
    """
    mode = get_output_mode()
    if not items:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(items, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for key, header in columns:
            table.add_column(header, style="magenta" if key == "id" else "white", no_wrap=key == "id")
        for item in items:
            table.add_row(*("" if item.get(key) is None else str(item.get(key)) for key, _ in columns))
        _console.print(table)
    else:
        for item in items:
            print(plain_format.format(**item))


def print_books(books: List[Any]) -> None:
    _print_rows(
        "Books",
        [("id", "ID"), ("title", "Title"), ("author", "Author"), ("available_copies", "Available"),
         ("total_copies", "Total"), ("status", "Status")],
        [b.to_dict() for b in books],
        "No books in catalog.",
        "{id} - {title} by {author} [{status}, {available_copies}/{total_copies} available]",
    )


def print_loans(loans: List[Any]) -> None:
    _print_rows(
        "Loans",
        [("id", "ID"), ("book_id", "Book"), ("borrower_id", "Borrower"), ("status", "Status"),
         ("committed_end", "Due"), ("returned_at", "Returned")],
        [l.to_dict() for l in loans],
        "No loans found.",
        "{id} - book {book_id} [{status}] due {committed_end}",
    )


def print_penalties(penalties: List[Any]) -> None:
    _print_rows(
        "Penalties",
        [("id", "ID"), ("borrower_id", "Borrower"), ("amount", "Amount"), ("end", "Until"),
         ("active", "Active"), ("reason", "Reason")],
        [p.to_dict() for p in penalties],
        "No penalties found.",
        "{id} - {amount} until {end} [{active}] {reason}",
    )


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print catalog statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(
            [
                f"[bold]Total Books:[/] {stats['total_books']}",
                f"[bold]Total Copies:[/] {stats['total_copies']}",
                f"[bold]Available Copies:[/] {stats['available_copies']}",
                f"[bold]Borrowers:[/] {stats['borrowers']}",
                f"[bold]Active Penalties:[/] {stats['active_penalties']}",
            ]
        )
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        print(f"Total Books: {stats['total_books']}")
        print(f"Total Copies: {stats['total_copies']}")
        print(f"Available Copies: {stats['available_copies']}")
        print(f"Borrowers: {stats['borrowers']}")
        print(f"Active Penalties: {stats['active_penalties']}")
        loans = ", ".join(f"{k}={v}" for k, v in stats.get("loans_by_status", {}).items())
        print(f"Loans: {loans}")
