"""Promo code redemption.

A redemption record is unique per (user, code). Re-submitting a code that is
still active is a success, as is losing the race for the first insert.

``attempts`` is written as 1 and never incremented, so the max-attempts
branch only fires for rows whose counter was raised outside this service.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from minute70.entitlements import (
    PROMO_CODE,
    PROMO_DURATION_DAYS,
    PROMO_MAX_ATTEMPTS,
    PROMO_WEEKLY_SESSIONS,
)
from minute70.masking import mask_email
from minute70.store import DuplicateRecord, StorageError

logger = logging.getLogger("minute70")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class RedeemResult:
    ok: bool
    status_code: int = 200
    expires_at: Optional[datetime] = None
    already_redeemed: bool = False
    error: Optional[str] = None

    def to_response(self) -> dict:
        if not self.ok:
            return {"ok": False, "error": self.error}
        body = {
            "ok": True,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "sessionsPerWeek": PROMO_WEEKLY_SESSIONS,
        }
        if self.already_redeemed:
            body["alreadyRedeemed"] = True
        return body


def _fail(status_code: int, error: str) -> RedeemResult:
    return RedeemResult(ok=False, status_code=status_code, error=error)


def _mark_expired(store, user_id: str, code: str, email: str) -> None:
    try:
        store.mark_redemption_expired(user_id, code)
    except StorageError:
        logger.warning("Could not mark promo %s expired for %s", code, mask_email(email), exc_info=True)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def redeem(store, user_id: str, email: Optional[str], code: Optional[str], now: Optional[datetime] = None) -> RedeemResult:
    now = now or datetime.now(timezone.utc)
    email = (email or "").strip().lower()
    code = normalize_code(code)

    if not email:
        return _fail(400, "Email is required.")
    if not EMAIL_RE.match(email):
        return _fail(400, "Invalid email address.")
    if code != PROMO_CODE:
        return _fail(400, "Invalid promo code.")

    try:
        existing = store.get_promo_redemption(user_id, code)
        if existing is not None:
            if existing.attempts >= PROMO_MAX_ATTEMPTS or existing.status == "exhausted":
                return _fail(403, "Maximum redemption attempts reached.")
            if now > existing.expires_at or existing.status == "expired":
                _mark_expired(store, user_id, code, email)
                return _fail(403, "Promo code has expired.")
            if existing.status == "active":
                return RedeemResult(ok=True, expires_at=existing.expires_at, already_redeemed=True)

        expires_at = now + timedelta(days=PROMO_DURATION_DAYS)
        try:
            store.create_promo_grant(user_id, email, code, now, expires_at, PROMO_WEEKLY_SESSIONS)
        except DuplicateRecord:
            # Lost the race to a concurrent first redemption: report the winner's grant.
            winner = store.get_promo_redemption(user_id, code)
            if winner is not None:
                expires_at = winner.expires_at
            return RedeemResult(ok=True, expires_at=expires_at, already_redeemed=True)
    except StorageError:
        logger.exception("Promo redemption failed for %s", mask_email(email))
        return _fail(500, "Failed to redeem code.")

    logger.info("Promo %s redeemed by %s until %s", code, mask_email(email), expires_at.isoformat())
    return RedeemResult(ok=True, expires_at=expires_at)
