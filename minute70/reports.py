"""Weekly report submission gate.

Free-tier emails get one report per rolling 7 days. The lookback here is a
fast path; the ``weekly_report_requests`` insert trigger is the final word,
and its ``rate_limited:`` rejection is translated into the same outcome.
"""
import logging
import math
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from minute70.entitlements import PROMO_CODE
from minute70.masking import mask_email
from minute70.store import RateLimitedInsert, StorageError

logger = logging.getLogger("minute70")

TEAMMATE_CODE = PROMO_CODE
RATE_LIMIT_DAYS = 7
FOLLOWUP_DELAY_DAYS = 7
TIER_HEADER = "x-minute70-tier"

VALID_MATCH_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
VALID_LEGS = ("Fresh", "Medium", "Heavy", "Tweaky")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class WeeklyReport:
    email: str
    match_day: str
    training_days: int
    legs_status: str
    teammate_code: Optional[str] = None
    email_reminder: Optional[bool] = None


@dataclass
class ReportOutcome:
    ok: bool
    status_code: int
    source: str
    reason: Optional[str] = None
    error: Optional[str] = None
    days_remaining: Optional[int] = None
    followup_scheduled: bool = False
    report: Optional[WeeklyReport] = None

    def to_response(self) -> dict:
        if self.ok:
            return {
                "ok": True,
                "source": self.source,
                "followupScheduled": self.followup_scheduled,
                "matchDay": self.report.match_day,
                "trainingDays": self.report.training_days,
                "legsStatus": self.report.legs_status,
            }
        body = {"ok": False, "reason": self.reason, "error": self.error}
        if self.reason == "limit":
            body["source"] = self.source
            body["daysRemaining"] = self.days_remaining
        return body


def validate_report(email, match_day, training_days, legs_status) -> Optional[str]:
    """Return a user-facing message for the first invalid field, or None."""
    if not email or not match_day or training_days is None or not legs_status:
        return "Email, match day, training days, and legs status are required."
    if not EMAIL_RE.match(email):
        return "Invalid email address."
    if match_day not in VALID_MATCH_DAYS:
        return "Invalid match day."
    if isinstance(training_days, bool) or not isinstance(training_days, int) or not 0 <= training_days <= 7:
        return "Training days must be 0-7."
    if legs_status not in VALID_LEGS:
        return "Invalid legs status."
    return None


def tier_override_enabled() -> bool:
    return os.getenv("APP_ENV", "development").lower() != "production"


def is_privileged(teammate_code: Optional[str], tier_header: Optional[str] = None) -> bool:
    if teammate_code and teammate_code.strip().upper() == TEAMMATE_CODE:
        return True
    if tier_header and tier_override_enabled():
        return tier_header.strip().lower() == "paid"
    return False


def days_until_next(last_created_at: datetime, now: datetime) -> int:
    next_allowed = last_created_at + timedelta(days=RATE_LIMIT_DAYS)
    return math.ceil((next_allowed - now).total_seconds() / 86400)


def _limited(source: str, days_remaining: int, now: datetime) -> ReportOutcome:
    next_allowed = (now + timedelta(days=days_remaining)).date().isoformat()
    return ReportOutcome(
        ok=False,
        status_code=429,
        source=source,
        reason="limit",
        days_remaining=days_remaining,
        error=f"You already submitted a report recently. You can submit again after {next_allowed}.",
    )


def _server_error(source: str, error: str) -> ReportOutcome:
    return ReportOutcome(ok=False, status_code=500, source=source, reason="error", error=error)


def check_and_record(store, report: WeeklyReport, privileged: bool, now: Optional[datetime] = None) -> ReportOutcome:
    now = now or datetime.now(timezone.utc)
    email = report.email.strip().lower()
    report.email = email
    source = "teammate" if privileged else "public"

    if not privileged:
        try:
            last = store.latest_report_at(email, since=now - timedelta(days=RATE_LIMIT_DAYS))
        except StorageError:
            logger.exception("Rate-limit lookup failed for %s", mask_email(email))
            return _server_error(source, "Server error.")
        if last is not None:
            days_remaining = days_until_next(last, now)
            logger.info("[rate-limit] blocked %s, %sd remaining", mask_email(email), days_remaining)
            return _limited(source, days_remaining, now)

    teammate_code = TEAMMATE_CODE if report.teammate_code and is_privileged(report.teammate_code) else None
    try:
        report_id = store.insert_report(
            email,
            report.match_day,
            report.training_days,
            report.legs_status,
            "paid" if privileged else "free",
            teammate_code,
            now,
        )
    except RateLimitedInsert:
        return _limited(source, _days_remaining_after_rejection(store, email, now), now)
    except StorageError:
        logger.exception("Report insert failed for %s", mask_email(email))
        return _server_error(source, "Failed to save report.")

    followup_scheduled = False
    if privileged and report.email_reminder is not False:
        send_at = now + timedelta(days=FOLLOWUP_DELAY_DAYS)
        try:
            store.schedule_followup(email, send_at, report_id)
            followup_scheduled = True
            logger.info("[followup] scheduled for %s, send_at=%s", mask_email(email), send_at.isoformat())
        except StorageError:
            logger.error("Follow-up insert failed for %s", mask_email(email), exc_info=True)

    logger.info("[report] saved for %s, source=%s", mask_email(email), source)
    return ReportOutcome(
        ok=True,
        status_code=200,
        source=source,
        followup_scheduled=followup_scheduled,
        report=report,
    )


def _days_remaining_after_rejection(store, email: str, now: datetime) -> int:
    try:
        last = store.latest_report_at(email)
    except StorageError:
        logger.warning("Could not read prior report for %s", mask_email(email), exc_info=True)
        last = None
    if last is None:
        return RATE_LIMIT_DAYS
    return max(0, min(RATE_LIMIT_DAYS, days_until_next(last, now)))
