"""
Request body validation for the ask endpoint.
"""

import logging
from typing import Any, List, Optional

from . import settings
from .models import AskRequest, ConversationTurn
from .result import INVALID_REQUEST, Failure, Ok, Result

logger = logging.getLogger(__name__)

# "caller" is accepted as a synonym for the chat "user" role
_ROLE_NAMES = {"user": "user", "caller": "user", "assistant": "assistant"}


def _valid_turns(raw_turns: List[Any]) -> List[ConversationTurn]:
    turns = []
    for turn in raw_turns[-settings.MAX_CONVERSATION_TURNS:]:
        if not isinstance(turn, dict):
            continue
        role = turn.get("role")
        role = _ROLE_NAMES.get(role) if isinstance(role, str) else None
        content = turn.get("content")
        if role is None or not isinstance(content, str) or len(content) > settings.MAX_TURN_CHARS:
            continue
        turns.append(ConversationTurn(role=role, content=content))
    return turns


def validate_request_body(body: Any) -> Result[AskRequest]:
    """
    Normalize a raw JSON body into an AskRequest.

    Only a bad ``message`` (or a non-array ``conversation``) rejects the request;
    malformed conversation entries are dropped and the target username is kept
    as trimmed text.

    Args:
        body: Decoded JSON body

    Returns:
        Ok(AskRequest) or Failure(invalid_request)
    """
    if not isinstance(body, dict):
        return Failure(INVALID_REQUEST, "body is not a JSON object")

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return Failure(INVALID_REQUEST, "message missing or empty")
    message = message.strip()
    if len(message) > settings.MAX_MESSAGE_CHARS:
        return Failure(INVALID_REQUEST, f"message longer than {settings.MAX_MESSAGE_CHARS} characters")

    conversation = body.get("conversation")
    turns: List[ConversationTurn] = []
    if conversation is not None:
        if not isinstance(conversation, list):
            return Failure(INVALID_REQUEST, "conversation is not an array")
        turns = _valid_turns(conversation)
        if len(turns) < min(len(conversation), settings.MAX_CONVERSATION_TURNS):
            logger.info("Dropped malformed conversation turns")

    target: Optional[str] = body.get("targetUsername", body.get("target_username"))
    if isinstance(target, str) and target.strip():
        target = target.strip()
    else:
        target = None

    return Ok(AskRequest(message=message, conversation=turns, target_username=target))
