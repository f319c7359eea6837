import json
import os
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable providing the default CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"
OUTPUT_MODES = {"plain", "json", "rich"}

_console = Console()
_output_mode = os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def set_output_mode(mode: str) -> None:
    global _output_mode
    mode = (mode or "").lower().strip()
    if mode in OUTPUT_MODES:
        _output_mode = mode


def get_output_mode() -> str:
    return _output_mode


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def print_books(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: '<id> - Title by Author (year) [available|on loan]' lines, or 'No books in library.'
    - json: array of book snapshots
    - rich: Rich table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        _print_json([b.to_dict() for b in books])
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Year", style="white")
        table.add_column("Available", justify="center")
        for b in books:
            table.add_row(str(b.id), b.title, b.author, str(b.year), "✓" if b.is_available() else "✗")
        _console.print(table)
    else:
        for b in books:
            state = "available" if b.is_available() else "on loan"
            print(f"{b.id} - {b.title} by {b.author} ({b.year}) [{state}]")


def print_patrons(patrons: List[Any]) -> None:
    if not patrons:
        print("No patrons registered.")
        return

    mode = get_output_mode()
    if mode == "json":
        _print_json([p.to_dict() for p in patrons])
    elif mode == "rich":
        table = Table(title="👥 Patrons", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        for p in patrons:
            table.add_row(str(p.id), p.name)
        _console.print(table)
    else:
        for p in patrons:
            print(f"{p.id} - {p.name}")


def print_loans(loans: List[Any]) -> None:
    if not loans:
        print("No loans found.")
        return

    mode = get_output_mode()
    if mode == "json":
        _print_json([loan.to_dict() for loan in loans])
    elif mode == "rich":
        table = Table(title="🔄 Loans", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Patron")
        table.add_column("Loaned")
        table.add_column("Returned")
        for loan in loans:
            table.add_row(str(loan.id), str(loan.book_id), str(loan.patron_id),
                          loan.loan_date, loan.return_date or "-")
        _console.print(table)
    else:
        for loan in loans:
            print(f"{loan.id} - book {loan.book_id} to patron {loan.patron_id} [{loan.status}]")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print catalog statistics in the current output mode."""
    total = stats.get("total_books", 0)
    available = stats.get("available_count", 0)
    active = stats.get("active_loan_count", 0)

    mode = get_output_mode()
    if mode == "json":
        _print_json({"total_books": total, "available_count": available, "active_loan_count": active})
    elif mode == "rich":
        content = (f"[bold]Total Books:[/] {total}\n"
                   f"[bold]Available:[/] {available}\n"
                   f"[bold]Active Loans:[/] {active}")
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        print(f"Total Books: {total}")
        print(f"Available: {available}")
        print(f"Active Loans: {active}")
