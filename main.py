import logging
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from config import settings
from database import JsonFileStorage, StorageError
from library import Library, OperationResult
from utils.ui_helpers import (
    OUTPUT_MODE_ENV,
    print_books,
    print_loans,
    print_patrons,
    print_stats_result,
    set_output_mode,
)

console = Console()

app = typer.Typer(help="Library catalog CLI")


def _log_level(name: str) -> int:
    """Numeric level for a level name, WARNING when the name is unknown."""
    level = logging.getLevelName((name or "").upper())
    return level if isinstance(level, int) else logging.WARNING


def _get_library(ctx: typer.Context) -> Library:
    return ctx.obj["library"]


def _storage_failure(exc: StorageError) -> None:
    console.print(f"[bold red]Storage error: {escape(str(exc))}[/]")
    raise typer.Exit(code=2)


def _report(result: OperationResult) -> None:
    """Print an operation outcome; refused operations exit with code 1."""
    print(result.message)
    if not result.ok:
        raise typer.Exit(code=1)


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: str = typer.Option(
        "plain",
        "--output",
        "-o",
        envvar=OUTPUT_MODE_ENV,
        help="Output format: plain | json | rich",
    ),
    data_file: Optional[str] = typer.Option(
        None,
        "--data-file",
        help="Snapshot file to use instead of LIBRARY_DATA_FILE",
    ),
):
    """Global options shared by every command."""
    logging.basicConfig(level=_log_level(settings.log_level))
    set_output_mode(output)
    storage = JsonFileStorage(data_file or settings.data_file, strict=settings.strict_load)
    try:
        ctx.obj = {"library": Library(storage=storage)}
    except StorageError as exc:
        _storage_failure(exc)


@app.command("add-book")
def cli_add_book(ctx: typer.Context, title: str, author: str, year: int):
    """Add a book to the catalog."""
    try:
        book = _get_library(ctx).create_book(title, author, year)
    except StorageError as exc:
        _storage_failure(exc)
    print(f"Added book {book.id}: {book.title} by {book.author}")


@app.command("add-patron")
def cli_add_patron(ctx: typer.Context, name: str):
    """Register a patron."""
    try:
        patron = _get_library(ctx).create_patron(name)
    except StorageError as exc:
        _storage_failure(exc)
    print(f"Added patron {patron.id}: {patron.name}")


@app.command("books")
def cli_books(ctx: typer.Context):
    """List all books."""
    print_books(_get_library(ctx).list_books())


@app.command("patrons")
def cli_patrons(ctx: typer.Context):
    """List all patrons."""
    print_patrons(_get_library(ctx).list_patrons())


@app.command("lend")
def cli_lend(ctx: typer.Context, book_id: int, patron_id: int):
    """Lend a book to a patron."""
    try:
        result = _get_library(ctx).lend_book(book_id, patron_id)
    except StorageError as exc:
        _storage_failure(exc)
    if result.ok:
        print(f"Loan {result.loan.id} created")
    _report(result)


@app.command("return")
def cli_return(ctx: typer.Context, loan_id: int):
    """Return the book of a loan."""
    try:
        result = _get_library(ctx).return_book(loan_id)
    except StorageError as exc:
        _storage_failure(exc)
    _report(result)


@app.command("loans")
def cli_loans(
    ctx: typer.Context,
    active: bool = typer.Option(False, "--active", help="Only show loans not yet returned"),
):
    """List loans."""
    print_loans(_get_library(ctx).list_loans(active_only=active))


@app.command("stats")
def cli_stats(ctx: typer.Context):
    """Show catalog statistics."""
    print_stats_result(_get_library(ctx).statistics().to_dict())


@app.command("demo")
def cli_demo(ctx: typer.Context):
    """Seed sample data, lend a book, return it and show the statistics."""
    lib = _get_library(ctx)
    try:
        if not lib.list_books():
            lib.create_book("Cien años de soledad", "Gabriel García Márquez", 1967)
            lib.create_book("Don Quijote de la Mancha", "Miguel de Cervantes", 1605)
            lib.create_book("El Quijote", "Miguel de Cervantes", 1605)
        if not lib.list_patrons():
            lib.create_patron("Ana Pérez")
            lib.create_patron("Carlos López")
            lib.create_patron("María García")

        print_books(lib.list_books())
        print_patrons(lib.list_patrons())

        book = next((b for b in lib.list_books() if b.is_available()), None)
        patron = lib.list_patrons()[0]
        if book is None:
            print("No available books to lend.")
        else:
            lent = lib.lend_book(book.id, patron.id)
            print(f"Lend '{book.title}' to {patron.name}: {lent.message}")
            print_loans(lib.list_loans(active_only=True))
            if lent.ok:
                returned = lib.return_book(lent.loan.id)
                print(f"Return loan {lent.loan.id}: {returned.message}")
    except StorageError as exc:
        _storage_failure(exc)

    print_stats_result(lib.statistics().to_dict())


if __name__ == "__main__":
    app()
