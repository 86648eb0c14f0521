"""
Decides whose library a request targets and with which access level.
"""

import logging
from typing import Optional

from .datastore import ElevatedLibrary
from .models import ELEVATED_READONLY, ROW_SCOPED, QueryContext
from .result import CONFIGURATION, NOT_FOUND, Failure, Ok, Result

logger = logging.getLogger(__name__)


def resolve_target(
    caller_id: str,
    target_username: Optional[str],
    elevated: Optional[ElevatedLibrary],
) -> Result[QueryContext]:
    """
    Build the QueryContext for a request.

    Without a username the caller's own library is read row-scoped. A username
    is looked up (lower-cased) through the elevated store; a missing or
    non-public profile is a not-found failure.

    Args:
        caller_id: Authenticated caller
        target_username: Optional username of another library
        elevated: Elevated read-only store, None when not configured

    Returns:
        Ok(QueryContext) or Failure(not_found / configuration / dependency)
    """
    if not target_username:
        return Ok(QueryContext(
            caller_id=caller_id,
            target_owner_id=caller_id,
            is_own_library=True,
            access_level=ROW_SCOPED,
        ))

    if elevated is None:
        return Failure(CONFIGURATION, "elevated store not configured")

    username = target_username.lower()
    lookup = elevated.profile_by_username(username)
    if not lookup.ok:
        return lookup

    profile = lookup.value
    if profile is not None and profile.id == caller_id:
        return resolve_target(caller_id, None, elevated)
    if profile is None or not profile.public_profile_enabled:
        logger.info(f"No public profile for username '{username}'")
        return Failure(NOT_FOUND, f"no public profile for {username}")

    return Ok(QueryContext(
        caller_id=caller_id,
        target_owner_id=profile.id,
        is_own_library=False,
        access_level=ELEVATED_READONLY,
    ))
