"""
Global settings and configuration for the Shelfask application.
"""

import os
from pathlib import Path
from typing import List

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

CLASSIFIER_MODEL = os.getenv("SHELFASK_CLASSIFIER_MODEL", "gpt-4o-mini")
RANKER_MODEL = os.getenv("SHELFASK_RANKER_MODEL", "gpt-4o-mini")
ANSWER_MODEL = os.getenv("SHELFASK_ANSWER_MODEL", "gpt-4o")

# Per-stage timeouts (seconds)
CLASSIFIER_TIMEOUT = float(os.getenv("SHELFASK_CLASSIFIER_TIMEOUT", "10"))
RANKER_TIMEOUT = float(os.getenv("SHELFASK_RANKER_TIMEOUT", "10"))
ANSWER_TIMEOUT = float(os.getenv("SHELFASK_ANSWER_TIMEOUT", "30"))

# Request limits
MAX_MESSAGE_CHARS = 2000
MAX_TURN_CHARS = 4000
MAX_CONVERSATION_TURNS = 6

# Retrieval limits
BULK_FETCH_LIMIT = 1000
NO_TERMS_CANDIDATES = 100
SEMANTIC_CANDIDATE_LIMIT = 200
MAX_MATCHED_BOOKS = 20

# Subscription tiers that unlock the assistant
PAID_TIERS = ("pro", "owner")

# Directory Paths
PROJECT_ROOT = Path(__file__).parent.parent

# Datastore - the elevated (read-only) connection points at the same file by default
LIBRARY_DB_PATH = Path(os.getenv("LIBRARY_DB_PATH", PROJECT_ROOT / "data" / "library.duckdb"))
ELEVATED_DB_PATH = os.getenv("ELEVATED_DB_PATH") or str(LIBRARY_DB_PATH)

# When set, bearer tokens must carry a valid HS256 signature
JWT_SECRET = os.getenv("SHELFASK_JWT_SECRET")

# CORS
ALLOWED_ORIGINS = os.getenv("SHELFASK_ALLOWED_ORIGINS", "*").split(",")


def missing_configuration(elevated: bool = False) -> List[str]:
    """
    List the settings the ask pipeline cannot run without.

    Args:
        elevated: Whether the request needs the elevated (cross-library) store

    Returns:
        Names of missing settings, empty when fully configured
    """
    missing = []
    if not LIBRARY_DB_PATH.exists():
        missing.append("LIBRARY_DB_PATH")
    if elevated and not Path(ELEVATED_DB_PATH).exists():
        missing.append("ELEVATED_DB_PATH")
    return missing
