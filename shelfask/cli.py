"""
Command-line interface for operating a Shelfask library database.
Provides commands to create the database, import books and try questions locally.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import settings
from .datastore import RowScopedLibrary, insert_books, insert_profile, open_for_write
from .models import QueryContext
from .qa import generate_answer
from .retriever import LibraryRetriever, SemanticRanker
from .safety import enforce_output_safety

app = typer.Typer(
    name="shelfask",
    help="Manage and query a Shelfask library database",
    add_completion=False
)

console = Console()

DB_OPTION = typer.Option(
    None,
    "--db",
    help="DuckDB file (default: LIBRARY_DB_PATH)"
)


def _db_path(db: Optional[Path]) -> Path:
    return db or settings.LIBRARY_DB_PATH


@app.command("init-db")
def init_db(db: Optional[Path] = DB_OPTION) -> None:
    """Create the profiles and books tables."""
    path = _db_path(db)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_for_write(path)
    conn.close()
    console.print(f"[green]Schema ready in[/] {path}")


@app.command("import-books")
def import_books(
    source: Path = typer.Argument(
        ...,
        help='JSON file: {"profile": {...}, "books": [...]}'
    ),
    db: Optional[Path] = DB_OPTION,
) -> None:
    """
    Import one user's profile and books from a JSON export.

    Args:
        source: JSON file with a profile object and a books array
        db: DuckDB file to write to
    """
    if not source.exists():
        console.print(f"[red]Error:[/] {source} not found")
        sys.exit(1)

    with open(source, "r", encoding="utf-8") as f:
        data = json.load(f)

    profile = data.get("profile")
    if not profile or "id" not in profile or "username" not in profile:
        console.print("[red]Error:[/] export needs a profile with id and username")
        sys.exit(1)

    conn = open_for_write(_db_path(db))
    try:
        insert_profile(conn, profile)
        count = insert_books(conn, profile["id"], data.get("books", []))
    finally:
        conn.close()

    console.print(f"[green]Imported {count} books for[/] {profile['username']}")


@app.command("rank")
def rank(
    user_id: str = typer.Argument(..., help="Owner whose library is searched"),
    question: str = typer.Argument(..., help="Question text"),
    semantic: bool = typer.Option(
        False,
        "--semantic",
        help="Let the completion model pick books when possible"
    ),
    db: Optional[Path] = DB_OPTION,
) -> None:
    """Show which books retrieval would hand to the answer generator."""
    store = RowScopedLibrary(_db_path(db), user_id)
    retriever = LibraryRetriever(store, semantic=SemanticRanker() if semantic else None)
    context = QueryContext(caller_id=user_id, target_owner_id=user_id, is_own_library=True)

    result = retriever.retrieve(question, context)
    if not result.ok:
        console.print(f"[red]Error:[/] {result.message}")
        sys.exit(1)

    table = Table(title=f"Top books for: {question}")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Terms", justify="right")
    table.add_column("Score", justify="right")
    for i, candidate in enumerate(result.value, 1):
        table.add_row(
            str(i),
            candidate.book.title,
            candidate.book.author,
            str(candidate.matched_terms),
            f"{candidate.relevance_score:g}",
        )
    console.print(table)


@app.command("ask")
def ask(
    user_id: str = typer.Argument(..., help="Owner whose library is searched"),
    question: str = typer.Argument(..., help="Question text"),
    db: Optional[Path] = DB_OPTION,
) -> None:
    """
    Answer a question from a local library, skipping the session and entitlement gates.
    """
    store = RowScopedLibrary(_db_path(db), user_id)
    retriever = LibraryRetriever(store, semantic=SemanticRanker())
    context = QueryContext(caller_id=user_id, target_owner_id=user_id, is_own_library=True)

    candidates = retriever.retrieve(question, context)
    if not candidates.ok:
        console.print(f"[red]Error:[/] {candidates.message}")
        sys.exit(1)
    if not candidates.value:
        console.print("[yellow]No matching books.[/]")
        return

    answer = generate_answer(question, candidates.value)
    if not answer.ok:
        console.print(f"[red]Error:[/] generation failed ({answer.message})")
        sys.exit(1)

    reply = enforce_output_safety(answer.value, candidates.value)
    titles = "\n".join(f"- {c.book.title} by {c.book.author}" for c in candidates.value)
    console.print(Panel(
        f"{reply}\n\n[dim]Context books:\n{titles}[/]",
        title="Shelfask",
        border_style="green"
    ))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
