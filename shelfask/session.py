"""
Caller identity from an already-issued bearer token.

Tokens are issued by the external account system. When ``SHELFASK_JWT_SECRET``
is configured the HS256 signature is checked; otherwise the payload is only
decoded and the issuer is trusted.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from . import settings
from .result import SESSION_EXPIRED, UNAUTHORIZED, Failure, Ok, Result

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 50

_warned_unverified = False


@dataclass(frozen=True)
class Session:
    caller_id: str
    expires_at: Optional[float] = None


def _b64url_decode(segment: str) -> bytes:
    padding = -len(segment) % 4
    return base64.urlsafe_b64decode(segment + "=" * padding)


def _signature_valid(token: str, secret: str) -> bool:
    header_b64, payload_b64, signature_b64 = token.split(".")
    try:
        header = json.loads(_b64url_decode(header_b64))
        signature = _b64url_decode(signature_b64)
    except (binascii.Error, ValueError):
        return False
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        return False
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{header_b64}.{payload_b64}".encode("ascii"),
        hashlib.sha256,
    ).digest()
    return hmac.compare_digest(expected, signature)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a ``Bearer <token>`` header, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


def decode_claims(token: str) -> Dict[str, Any]:
    """
    Decode the payload segment of a three-part token.

    Raises:
        ValueError: If the token is not three segments of base64url JSON
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("token is not three dot-separated segments")
    try:
        claims = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"undecodable payload: {e}") from e
    if not isinstance(claims, dict):
        raise ValueError("payload is not a JSON object")
    return claims


def resolve_session(authorization: Optional[str], now: Optional[float] = None) -> Result[Session]:
    """
    Extract the caller id and expiry from an Authorization header.

    Args:
        authorization: Raw ``Authorization`` header value
        now: Current unix time, for tests

    Returns:
        Ok(Session), or Failure(unauthorized / session_expired)
    """
    global _warned_unverified

    token = bearer_token(authorization)
    if token is None:
        return Failure(UNAUTHORIZED, "no bearer token")
    if len(token) < MIN_TOKEN_LENGTH:
        return Failure(UNAUTHORIZED, f"token too short ({len(token)} characters)")

    try:
        claims = decode_claims(token)
    except ValueError as e:
        return Failure(UNAUTHORIZED, str(e))

    if settings.JWT_SECRET:
        if not _signature_valid(token, settings.JWT_SECRET):
            return Failure(UNAUTHORIZED, "bad token signature")
    elif not _warned_unverified:
        logger.warning("SHELFASK_JWT_SECRET not set, trusting token claims without signature check")
        _warned_unverified = True

    exp = claims.get("exp")
    if exp is not None:
        if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not math.isfinite(exp):
            return Failure(UNAUTHORIZED, "non-numeric exp claim")
        current = time.time() if now is None else now
        if exp < current:
            return Failure(SESSION_EXPIRED, f"token expired at {exp}")

    caller_id = claims.get("sub")
    if not caller_id or not isinstance(caller_id, str):
        return Failure(UNAUTHORIZED, "no sub claim")

    return Ok(Session(caller_id=caller_id, expires_at=exp))
