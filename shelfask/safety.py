"""
Post-generation checks. Either check failing replaces the reply with the refusal.
"""

import logging
from typing import List

from .models import RetrievalCandidate

logger = logging.getLogger(__name__)

REFUSAL = (
    "I can only answer questions about your library. Try asking which of your books cover a "
    "topic, or ask for recommendations from your collection."
)

# Phrases that suggest the model followed injected instructions or leaked its rules
LEAK_PHRASES = (
    "system prompt",
    "developer message",
    "ignore previous",
    "i am an admin",
    "as an ai language model",
)

NOT_FOUND_PHRASES = ("couldn't find", "could not find", "no books")

MIN_GROUNDING_TITLE_CHARS = 4


def is_suspicious_output(reply: str) -> bool:
    lower = reply.lower()
    if any(phrase in lower for phrase in LEAK_PHRASES):
        return True
    # refusal followed by a reversal
    return "i cannot" in lower and "however" in lower


def is_grounded(reply: str, candidates: List[RetrievalCandidate]) -> bool:
    """True if the reply names a retrieved title or is itself a not-found answer."""
    lower = reply.lower()
    titles = [c.book.title.lower() for c in candidates]
    if any(t in lower for t in titles if len(t) >= MIN_GROUNDING_TITLE_CHARS):
        return True
    return any(phrase in lower for phrase in NOT_FOUND_PHRASES)


def enforce_output_safety(reply: str, candidates: List[RetrievalCandidate]) -> str:
    """
    Return ``reply`` if it passes both checks, else the refusal sentence.

    Args:
        reply: Generated answer
        candidates: Books the answer was supposed to be grounded in

    Returns:
        The reply or REFUSAL
    """
    if not reply or not reply.strip():
        return REFUSAL
    if is_suspicious_output(reply):
        logger.warning("Reply looked like an injection or policy leak, refusing")
        return REFUSAL
    if not is_grounded(reply, candidates):
        logger.warning("Reply mentions no retrieved title, refusing")
        return REFUSAL
    return reply
