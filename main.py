import asyncio
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from config import configure_logging, settings
from database import initialize_database
from errors import LibraryError
from importer import import_from_catalog
from library import Library
from services.http_client import cleanup_http_client
from services.open_library_service import OpenLibraryService
from sessions import SessionManager
from users import SQLiteUserStore

console = Console()

app = typer.Typer(help="Personal library administration")


@app.callback()
def _global_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Options shared by every command."""
    configure_logging("DEBUG" if verbose else None)


def _db_option():
    return typer.Option(None, "--db", help="SQLite database file (defaults to LIBRARY_DB_FILE)")


@app.command("init-db")
def cli_init_db(db: Optional[str] = _db_option()):
    """Create the database tables."""
    db_file = db or settings.database_file
    initialize_database(db_file)
    console.print(f"Database initialized at {db_file}")


async def _seed_master(library: Library, query: str) -> int:
    try:
        return await import_from_catalog(library, OpenLibraryService(), query, None)
    finally:
        await cleanup_http_client()


@app.command("seed-master")
def cli_seed_master(
    query: Optional[str] = typer.Argument(None, help="Open Library search query"),
    db: Optional[str] = _db_option(),
):
    """Import Open Library search results into the shared master list."""
    query = query or settings.openlibrary_default_query
    library = Library(db or settings.database_file)
    try:
        imported = asyncio.run(_seed_master(library, query))
    except LibraryError as e:
        console.print(f"[bold red]Import failed:[/] {e.message}")
        raise typer.Exit(code=1)
    console.print(f"Imported {imported} books into the master list for query '{query}'.")


@app.command("list-master")
def cli_list_master(db: Optional[str] = _db_option()):
    """Show the master list that new users are seeded from."""
    books = Library(db or settings.database_file).list_master_books()
    if not books:
        console.print("Master list is empty.")
        return
    table = Table(title=f"Master list ({len(books)} books)", box=box.SIMPLE)
    table.add_column("Key")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Year", justify="right")
    table.add_column("ISBN")
    for book in books:
        table.add_row(
            book.ol_key,
            book.title,
            book.author or "",
            str(book.first_publish_year or ""),
            book.isbn or "",
        )
    console.print(table)


@app.command("purge-sessions")
def cli_purge_sessions(db: Optional[str] = _db_option()):
    """Delete expired sessions."""
    db_file = db or settings.database_file
    initialize_database(db_file)
    manager = SessionManager(db_file, SQLiteUserStore(db_file), settings.session_ttl_seconds)
    removed = manager.purge_expired()
    console.print(f"Removed {removed} expired sessions.")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the API with uvicorn."""
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not start `uvicorn`. Is it installed?")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
