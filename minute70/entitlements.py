import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from minute70.store import StorageError

logger = logging.getLogger("minute70")

PROMO_CODE = "ELMPARC2FREE"
PROMO_MAX_ATTEMPTS = 3
PROMO_DURATION_DAYS = 28
PROMO_WEEKLY_SESSIONS = 3

PAID_STATUSES = ("trial", "pro_monthly", "pro_season")


@dataclass
class CanStartResult:
    allowed: bool
    reason: str
    entitlement_status: str


def start_of_week(moment: datetime) -> datetime:
    """Most recent Monday 00:00 UTC at or before ``moment``."""
    moment = moment.astimezone(timezone.utc)
    monday = moment - timedelta(days=moment.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_start_session(store, user_id: str, now: Optional[datetime] = None) -> CanStartResult:
    """Decide whether ``user_id`` may start a coached session.

    Promo entitlements consume one unit of the weekly quota when allowed.
    Never raises: storage failures come back as ``server_error``.
    """
    now = now or _utcnow()
    try:
        return _resolve(store, user_id, now)
    except StorageError:
        logger.exception("Entitlement check failed for user %s", user_id)
        return CanStartResult(False, "server_error", "none")


def _resolve(store, user_id: str, now: datetime) -> CanStartResult:
    ent = store.latest_entitlement(user_id)
    if ent is None:
        return CanStartResult(False, "no_entitlement", "none")

    status = ent.status

    if status == "free":
        return CanStartResult(False, "free_tier", "free")

    if status in PAID_STATUSES:
        if ent.end_at and now > ent.end_at:
            return CanStartResult(False, "expired", status)
        return CanStartResult(True, "pro_active", status)

    if status == "promo":
        if ent.end_at and now > ent.end_at:
            _mark_promo_expired(store, user_id)
            return CanStartResult(False, "promo_expired", "promo")

        remaining = store.consume_promo_session(
            ent.id, start_of_week(now), PROMO_WEEKLY_SESSIONS, now
        )
        if remaining is None:
            logger.info("Weekly promo limit reached for user %s", user_id)
            return CanStartResult(False, "weekly_limit_reached", "promo")
        return CanStartResult(True, "promo_active", "promo")

    logger.warning("Unknown entitlement status %r for user %s", status, user_id)
    return CanStartResult(False, "unknown_status", "none")


def _mark_promo_expired(store, user_id: str) -> None:
    try:
        store.mark_redemption_expired(user_id, PROMO_CODE)
    except StorageError:
        logger.warning("Could not mark promo expired for user %s", user_id, exc_info=True)
