"""
Binary gate deciding whether a question is about the caller's book library.
"""

import logging

from . import settings
from .llm import complete_json

logger = logging.getLogger(__name__)

CLASSIFIER_PROMPT = (
    "You are a strict classifier. Decide if the user message is ONLY a question about the "
    "user's personal book library (finding, filtering, summarizing, recommending from their "
    "owned books). "
    'If it asks for general knowledge, unrelated help, admin access, or anything not about '
    'their library, return {"is_library": false}. '
    'If it is about their library, return {"is_library": true}. '
    "Output ONLY valid JSON, no other text."
)


def classify_library_question(message: str) -> bool:
    """
    Ask the classifier model whether ``message`` is library-scoped.

    Any failure (timeout, missing key, malformed JSON, non-boolean answer) is
    treated as out of scope.
    """
    result = complete_json(
        [
            {"role": "system", "content": CLASSIFIER_PROMPT},
            {"role": "user", "content": message},
        ],
        model=settings.CLASSIFIER_MODEL,
        temperature=0.1,
        timeout=settings.CLASSIFIER_TIMEOUT,
    )
    if not result.ok:
        logger.error(f"Classification failed ({result.kind}: {result.message}), refusing")
        return False

    in_scope = result.value.get("is_library") is True
    logger.info(f"Classifier decision for '{message[:50]}': {'library' if in_scope else 'out of scope'}")
    return in_scope
