"""
Shared fixtures: a temporary DuckDB library, bearer tokens and mocked OpenAI completions.
"""

import base64
import hashlib
import hmac
import json
import sys
import time
import unittest.mock
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import openai

sys.path.insert(0, str(Path(__file__).parent.parent))

from shelfask import settings
from shelfask.classifier import CLASSIFIER_PROMPT
from shelfask.datastore import insert_books, insert_profile, open_for_write
from shelfask.retriever import SEMANTIC_PROMPT

DINOSAUR_DESCRIPTION = (
    "The story of Sue, the most complete dinosaur skeleton ever found. Follows the "
    "dinosaur from excavation to museum, and what one dinosaur can teach us."
)

PROFILES = [
    {"id": "user-reader", "username": "reader", "subscription_tier": "pro",
     "subscription_status": "active", "public_profile_enabled": True},
    {"id": "user-owner", "username": "founder", "subscription_tier": "owner",
     "subscription_status": "active"},
    {"id": "user-free", "username": "freeloader", "subscription_tier": "free",
     "subscription_status": "active"},
    {"id": "user-expired", "username": "lapsed", "subscription_tier": "pro",
     "subscription_status": "active", "subscription_ends_at": datetime(2020, 1, 1)},
    {"id": "user-cancelled", "username": "quitter", "subscription_tier": "pro",
     "subscription_status": "cancelled"},
    {"id": "user-friend", "username": "bookfriend", "display_name": "Book Friend",
     "subscription_tier": "free", "public_profile_enabled": True},
    {"id": "user-hermit", "username": "hermit", "subscription_tier": "free",
     "public_profile_enabled": False},
]

READER_BOOKS = [
    {"id": "b1", "title": "Sue: The T. Rex Story", "author": "Pete Larson",
     "description": DINOSAUR_DESCRIPTION, "categories": ["Science", "Paleontology"]},
    {"id": "b2", "title": "The Rise and Fall of the Dinosaurs", "author": "Steve Brusatte",
     "description": "A new history of a lost world.", "categories": ["Science"],
     "read_at": datetime(2023, 5, 1)},
    {"id": "b3", "title": "Band of Brothers", "author": "Stephen E. Ambrose",
     "description": "Easy Company from Normandy to Hitler's Eagle's Nest in World War II.",
     "categories": ["History", "Military"]},
    {"id": "b4", "title": "Dune", "author": "Frank Herbert",
     "description": "A desert planet, a noble family and a precious spice.",
     "categories": ["Fiction", "Science Fiction"]},
    {"id": "b5", "title": "Unreviewed Dinosaur Atlas", "author": "Nobody",
     "description": "dinosaur dinosaur dinosaur", "categories": ["Science"], "status": "pending"},
]

FRIEND_BOOKS = [
    {"id": "f1", "title": "Jurassic Park", "author": "Michael Crichton",
     "description": "Cloned dinosaurs escape on a remote island park.",
     "categories": ["Fiction", "Thriller"]},
    {"id": "f2", "title": "The Hobbit", "author": "J. R. R. Tolkien",
     "description": "A reluctant hobbit joins a quest for dragon treasure.",
     "categories": ["Fantasy"], "read_at": datetime(2021, 1, 1)},
    {"id": "f3", "title": "Secret Draft", "author": "Book Friend",
     "description": "dinosaurs", "categories": [], "status": "rejected"},
]


@pytest.fixture(autouse=True)
def unsigned_tokens(monkeypatch):
    """Tests decode tokens without a signing secret unless they set one."""
    monkeypatch.setattr(settings, "JWT_SECRET", None)


@pytest.fixture
def openai_key(monkeypatch):
    monkeypatch.setattr(openai, "api_key", "sk-test")


@pytest.fixture
def library_db(tmp_path, monkeypatch):
    """Populated library database wired into settings."""
    db_path = tmp_path / "library.duckdb"
    conn = open_for_write(db_path)
    for profile in PROFILES:
        insert_profile(conn, profile)
    insert_books(conn, "user-reader", READER_BOOKS)
    insert_books(conn, "user-friend", FRIEND_BOOKS)
    conn.close()

    monkeypatch.setattr(settings, "LIBRARY_DB_PATH", db_path)
    monkeypatch.setattr(settings, "ELEVATED_DB_PATH", str(db_path))
    return db_path


def _b64url(data: Dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def make_token(sub: Optional[str] = "user-reader", exp: Optional[float] = None,
               secret: Optional[str] = None, **claims: Any) -> str:
    """Build a bearer token the way the account system issues them."""
    payload = {"role": "authenticated", "exp": exp if exp is not None else int(time.time()) + 3600}
    if sub is not None:
        payload["sub"] = sub
    payload.update(claims)
    signing_input = f"{_b64url({'alg': 'HS256', 'typ': 'JWT'})}.{_b64url(payload)}"
    if secret:
        digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        signature = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    else:
        signature = "x" * 43
    return f"{signing_input}.{signature}"


def bearer(sub: str = "user-reader", **kwargs: Any) -> str:
    return f"Bearer {make_token(sub, **kwargs)}"


def chat_response(content: Optional[str]) -> unittest.mock.MagicMock:
    response = unittest.mock.MagicMock()
    response.choices = [
        unittest.mock.MagicMock(message=unittest.mock.MagicMock(content=content))
    ]
    return response


def routed_completions(classifier: Any = '{"is_library": true}', ranker: Any = '{"book_ids": []}',
                       answer: Any = "I couldn't find related books in your library."):
    """
    side_effect for openai.chat.completions.create that answers per pipeline stage.

    Each stage value is the completion text, or an exception instance to raise.
    """
    def create(**kwargs):
        system = kwargs["messages"][0]["content"]
        if system == CLASSIFIER_PROMPT:
            outcome = classifier
        elif system == SEMANTIC_PROMPT:
            outcome = ranker
        else:
            outcome = answer
        if isinstance(outcome, Exception):
            raise outcome
        return chat_response(outcome)
    return create


def timeout_error() -> openai.APITimeoutError:
    import httpx
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
