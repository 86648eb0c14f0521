"""
Public profile view: a user's approved books plus simple reading stats.
"""

from collections import Counter
from typing import Any, Dict, List

from . import settings
from .datastore import ElevatedLibrary
from .models import BookRecord
from .result import NOT_FOUND, Failure, Ok, Result

TOP_AUTHORS = 5


def library_stats(books: List[BookRecord]) -> Dict[str, Any]:
    """Totals, read/unread split and the most common authors."""
    read = sum(1 for b in books if b.read_at is not None)
    authors = Counter(b.author for b in books if b.author)
    return {
        "totalBooks": len(books),
        "readBooks": read,
        "unreadBooks": len(books) - read,
        "topAuthors": [
            {"author": author, "count": count}
            for author, count in authors.most_common(TOP_AUTHORS)
        ],
    }


def public_profile(elevated: ElevatedLibrary, username: str) -> Result[Dict[str, Any]]:
    """
    Build the public profile payload for a username.

    Missing and non-public profiles are both not-found.
    """
    lookup = elevated.profile_by_username(username)
    if not lookup.ok:
        return lookup
    profile = lookup.value
    if profile is None or not profile.public_profile_enabled:
        return Failure(NOT_FOUND, f"no public profile for {username.lower()}")

    books = elevated.approved_books(profile.id, settings.BULK_FETCH_LIMIT)
    if not books.ok:
        return books

    return Ok({
        "profile": {
            "id": profile.id,
            "username": profile.username,
            "displayName": profile.display_name or profile.username,
        },
        "books": [
            {
                "id": b.id,
                "title": b.title,
                "author": b.author,
                "description": b.description,
                "categories": b.categories,
                "readStatus": b.read_status,
            }
            for b in books.value
        ],
        "stats": library_stats(books.value),
    })
