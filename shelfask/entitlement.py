"""
Subscription check: only active paid tiers may use the assistant.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from . import settings
from .datastore import RowScopedLibrary
from .models import Profile

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_entitled(profile: Optional[Profile], now: Optional[datetime] = None) -> bool:
    """True only for a paid tier with an active, unexpired subscription."""
    if profile is None:
        return False
    if profile.subscription_tier not in settings.PAID_TIERS:
        return False
    if profile.subscription_status != "active":
        return False
    if profile.subscription_ends_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return _as_utc(profile.subscription_ends_at) > _as_utc(now)


def has_active_entitlement(store: RowScopedLibrary, now: Optional[datetime] = None) -> bool:
    """
    Look up the caller's profile and decide entitlement, failing closed.

    Args:
        store: The caller's row-scoped store
        now: Current time, for tests

    Returns:
        True if the caller may use the assistant
    """
    profile = store.own_profile()
    if not profile.ok:
        logger.error(f"Entitlement lookup failed for {store.caller_id}: {profile.message}")
        return False
    entitled = is_entitled(profile.value, now)
    if not entitled:
        logger.info(f"Caller {store.caller_id} has no active paid subscription")
    return entitled
