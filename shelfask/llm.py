"""
Thin wrapper around OpenAI chat completions.

Every call has its own timeout and returns a Result; nothing here raises.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import openai

from . import settings
from .result import CONFIGURATION, DEPENDENCY, Failure, Ok, Result

logger = logging.getLogger(__name__)

# Initialize OpenAI client. Each stage owns its timeout, so one attempt per call.
openai.api_key = settings.OPENAI_API_KEY
openai.max_retries = 0


def complete(
    messages: List[Dict[str, str]],
    *,
    model: str,
    temperature: float,
    timeout: float,
    max_tokens: Optional[int] = None,
    json_mode: bool = False,
) -> Result[str]:
    """
    Submit a chat completion and return the text of the first choice.

    Args:
        messages: Chat messages (role/content dicts)
        model: Model name
        temperature: Sampling temperature
        timeout: Seconds before the request is abandoned
        max_tokens: Optional completion length cap
        json_mode: Ask for a JSON object response

    Returns:
        Ok(text) or Failure(configuration / dependency)
    """
    if not openai.api_key:
        return Failure(CONFIGURATION, "OPENAI_API_KEY not configured")

    kwargs: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "timeout": timeout,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = openai.chat.completions.create(**kwargs)
        content = response.choices[0].message.content
    except openai.APITimeoutError:
        logger.error(f"{model} completion timed out after {timeout}s")
        return Failure(DEPENDENCY, "timeout")
    except Exception as e:
        logger.error(f"{model} completion failed: {e}")
        return Failure(DEPENDENCY, str(e))

    if not content or not content.strip():
        return Failure(DEPENDENCY, "empty completion")
    return Ok(content.strip())


def complete_json(messages: List[Dict[str, str]], **kwargs: Any) -> Result[Dict[str, Any]]:
    """Like ``complete`` in JSON mode, parsing the object."""
    text = complete(messages, json_mode=True, **kwargs)
    if not text.ok:
        return text
    try:
        parsed = json.loads(text.value)
    except json.JSONDecodeError as e:
        logger.warning(f"Malformed JSON from model: {e}")
        return Failure(DEPENDENCY, "malformed JSON")
    if not isinstance(parsed, dict):
        return Failure(DEPENDENCY, "JSON is not an object")
    return Ok(parsed)
