"""
DuckDB access to the profiles and books tables.

Two access levels are exposed. ``RowScopedLibrary`` is bound to the caller and
can only ever see the caller's own rows. ``ElevatedLibrary`` can read any
owner's approved books and profiles, and is opened read-only. Every query
method returns a Result so datastore errors stay inside the pipeline.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import duckdb

from .models import BookRecord, Profile
from .result import DEPENDENCY, Failure, Ok, Result

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id                     TEXT PRIMARY KEY,
        username               TEXT UNIQUE NOT NULL,
        display_name           TEXT,
        profile_bio            TEXT,
        subscription_tier      TEXT DEFAULT 'free',
        subscription_status    TEXT DEFAULT 'active',
        subscription_ends_at   TIMESTAMP,
        public_profile_enabled BOOLEAN DEFAULT FALSE,
        created_at             TIMESTAMP DEFAULT current_timestamp
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS books (
        id          TEXT NOT NULL,
        user_id     TEXT NOT NULL,
        title       TEXT,
        author      TEXT,
        subtitle    TEXT,
        description TEXT,
        categories  TEXT[],
        status      TEXT DEFAULT 'pending',
        read_at     TIMESTAMP,
        scanned_at  TIMESTAMP DEFAULT current_timestamp,
        PRIMARY KEY (user_id, id)
    )
    """,
]

_BOOK_COLUMNS = "id, user_id, title, author, subtitle, description, categories, status, read_at"
_PROFILE_COLUMNS = (
    "id, username, display_name, subscription_tier, subscription_status, "
    "subscription_ends_at, public_profile_enabled"
)


def open_for_write(db_path: Union[str, Path]) -> duckdb.DuckDBPyConnection:
    """Open a writable connection and make sure the schema exists (CLI and fixtures only)."""
    conn = duckdb.connect(str(db_path))
    for statement in SCHEMA:
        conn.execute(statement)
    return conn


def insert_profile(conn: duckdb.DuckDBPyConnection, profile: Dict[str, Any]) -> None:
    conn.execute(
        """
        INSERT INTO profiles (id, username, display_name, subscription_tier,
                              subscription_status, subscription_ends_at, public_profile_enabled)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            profile["id"],
            profile["username"].lower(),
            profile.get("display_name"),
            profile.get("subscription_tier", "free"),
            profile.get("subscription_status", "active"),
            profile.get("subscription_ends_at"),
            bool(profile.get("public_profile_enabled", False)),
        ),
    )


def insert_books(conn: duckdb.DuckDBPyConnection, user_id: str, books: Sequence[Dict[str, Any]]) -> int:
    for book in books:
        conn.execute(
            """
            INSERT INTO books (id, user_id, title, author, subtitle, description,
                               categories, status, read_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(book["id"]),
                user_id,
                book.get("title"),
                book.get("author"),
                book.get("subtitle"),
                book.get("description"),
                list(book.get("categories") or []),
                book.get("status", "approved"),
                book.get("read_at"),
            ),
        )
    return len(books)


def _book_from_row(row: Sequence[Any]) -> BookRecord:
    return BookRecord(
        id=str(row[0]),
        owner_id=row[1],
        title=row[2] or "",
        author=row[3] or "",
        subtitle=row[4],
        description=row[5] or "",
        categories=list(row[6] or []),
        status=row[7] or "",
        read_at=row[8],
    )


def _profile_from_row(row: Sequence[Any]) -> Profile:
    return Profile(
        id=row[0],
        username=row[1],
        display_name=row[2],
        subscription_tier=row[3],
        subscription_status=row[4],
        subscription_ends_at=row[5],
        public_profile_enabled=bool(row[6]),
    )


class _ReadOnlyStore:
    """Opens a short-lived read-only connection per query."""

    access_level = ""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)

    def _query(self, sql: str, params: Sequence[Any]) -> Result[List[tuple]]:
        try:
            conn = duckdb.connect(self.db_path, read_only=True)
        except duckdb.Error as e:
            logger.error(f"Could not open {self.access_level} store at {self.db_path}: {e}")
            return Failure(DEPENDENCY, str(e))
        try:
            return Ok(conn.execute(sql, params).fetchall())
        except duckdb.Error as e:
            logger.error(f"{self.access_level} query failed: {e}")
            return Failure(DEPENDENCY, str(e))
        finally:
            conn.close()

    def _books(self, owner_id: str, limit: int) -> Result[List[BookRecord]]:
        rows = self._query(
            f"""
            SELECT {_BOOK_COLUMNS}
            FROM books
            WHERE user_id = ? AND status = 'approved'
            ORDER BY scanned_at DESC NULLS LAST, id
            LIMIT ?
            """,
            (owner_id, limit),
        )
        if not rows.ok:
            return rows
        return Ok([_book_from_row(r) for r in rows.value])

    def _profile_where(self, column: str, value: str) -> Result[Optional[Profile]]:
        rows = self._query(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE {column} = ? LIMIT 1",
            (value,),
        )
        if not rows.ok:
            return rows
        return Ok(_profile_from_row(rows.value[0]) if rows.value else None)


class RowScopedLibrary(_ReadOnlyStore):
    """The caller's own view of the datastore. Every query is filtered by the caller id."""

    access_level = "row-scoped"

    def __init__(self, db_path: Union[str, Path], caller_id: str):
        super().__init__(db_path)
        self.caller_id = caller_id

    def own_profile(self) -> Result[Optional[Profile]]:
        return self._profile_where("id", self.caller_id)

    def approved_books(self, limit: int) -> Result[List[BookRecord]]:
        return self._books(self.caller_id, limit)


class ElevatedLibrary(_ReadOnlyStore):
    """Cross-library read access, restricted to profiles and approved books."""

    access_level = "elevated-readonly"

    def profile_by_username(self, username: str) -> Result[Optional[Profile]]:
        return self._profile_where("username", username.lower())

    def approved_books(self, owner_id: str, limit: int) -> Result[List[BookRecord]]:
        return self._books(owner_id, limit)
