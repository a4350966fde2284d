import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictInt

from minute70.auth import AuthError, verify_bearer
from minute70.entitlements import can_start_session
from minute70.masking import mask_email
from minute70.promo import redeem
from minute70.rate_limit import SlidingWindowLimiter, client_ip
from minute70.reports import EMAIL_RE, TIER_HEADER, WeeklyReport, check_and_record, is_privileged, validate_report
from minute70.store import PgStore, StorageError

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("minute70")

app = FastAPI(title="minute70 API")

origins = os.getenv("ALLOWED_ORIGINS", "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins.split(",")] if origins != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    latency_ms = int((time.time() - start) * 1000)
    logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, latency_ms)
    return response


store = PgStore()
limiter = SlidingWindowLimiter()

EVENTS_MAX_REQUESTS = 30
REPORT_EVENTS_MAX_REQUESTS = 20
WAITLIST_MAX_REQUESTS = 5
EVENTS_WINDOW_MS = 60 * 1000
MAX_EVENT_PROPS_BYTES = 4096
ALLOWED_REPORT_EVENTS = ("report_generated", "mode_overridden")


def get_store() -> PgStore:
    return store


def get_limiter() -> SlidingWindowLimiter:
    return limiter


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, **extra):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra


class RedeemIn(BaseModel):
    code: Optional[str] = None
    email: Optional[str] = None


class WeeklyReportIn(BaseModel):
    email: Optional[str] = None
    matchDay: Optional[str] = None
    trainingDays: Optional[StrictInt] = None
    legsStatus: Optional[str] = None
    teammateCode: Optional[str] = None
    emailReminder: Optional[bool] = None


class CompleteIn(BaseModel):
    completed_moves: Optional[list] = None


class WaitlistIn(BaseModel):
    email: Optional[str] = None


class EventIn(BaseModel):
    event_type: Optional[str] = None
    event_props: Optional[dict] = None


class ReportEventIn(BaseModel):
    eventType: Optional[str] = None
    payload: Optional[dict] = None


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    headers = None
    if "retryAfterMs" in exc.extra:
        headers = {"Retry-After": str(max(1, -(-exc.extra["retryAfterMs"] // 1000)))}
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.error, **exc.extra},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "reason": "validation", "error": "Invalid request body."},
    )


@app.exception_handler(Exception)
async def all_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": "Internal server error."})


def current_user(authorization: Optional[str] = Header(None)) -> str:
    try:
        return verify_bearer(authorization)
    except AuthError as exc:
        raise ApiError(exc.status_code, exc.message)


def _enforce_rate_limit(request: Request, limiter: SlidingWindowLimiter, bucket: str, max_requests: int) -> None:
    decision = limiter.check(f"{bucket}:{client_ip(request)}", max_requests, EVENTS_WINDOW_MS)
    if not decision.allowed:
        raise ApiError(429, "Too many requests.", retryAfterMs=decision.retry_after_ms)


def _record_session_event(db: PgStore, session_id: str, event_type: str, payload: Optional[dict] = None) -> None:
    try:
        db.add_session_event(session_id, event_type, payload)
    except StorageError:
        logger.warning("Session event %s for %s was not recorded", event_type, session_id, exc_info=True)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/api/entitlements/check")
def entitlements_check(user_id: str = Depends(current_user), db: PgStore = Depends(get_store)):
    result = can_start_session(db, user_id)
    if result.reason == "server_error":
        raise ApiError(500, "Server error.", reason=result.reason)
    return {
        "ok": True,
        "allowed": result.allowed,
        "reason": result.reason,
        "entitlementStatus": result.entitlement_status,
    }


@app.post("/api/promo/redeem")
def promo_redeem(body: RedeemIn, user_id: str = Depends(current_user), db: PgStore = Depends(get_store)):
    result = redeem(db, user_id, body.email, body.code)
    return JSONResponse(status_code=result.status_code, content=result.to_response())


@app.post("/api/weekly-report")
def weekly_report(
    body: WeeklyReportIn,
    tier: Optional[str] = Header(None, alias=TIER_HEADER),
    db: PgStore = Depends(get_store),
):
    problem = validate_report(body.email, body.matchDay, body.trainingDays, body.legsStatus)
    if problem:
        raise ApiError(400, problem, reason="validation")

    report = WeeklyReport(
        email=body.email,
        match_day=body.matchDay,
        training_days=body.trainingDays,
        legs_status=body.legsStatus,
        teammate_code=body.teammateCode,
        email_reminder=body.emailReminder,
    )
    outcome = check_and_record(db, report, is_privileged(body.teammateCode, tier))
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())


def _owned_session(db: PgStore, session_id: str, user_id: str) -> dict:
    try:
        uuid.UUID(session_id)
    except ValueError:
        raise ApiError(404, "Session not found.")
    try:
        session = db.get_owned_session(session_id, user_id)
    except StorageError:
        logger.exception("Session lookup failed for %s", session_id)
        raise ApiError(500, "Server error.")
    if not session:
        raise ApiError(404, "Session not found.")
    return session


@app.post("/api/sessions/{session_id}/start")
def start_session(
    session_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    db: PgStore = Depends(get_store),
):
    session = _owned_session(db, session_id, user_id)
    if session["status"] != "scheduled":
        raise ApiError(400, f"Session is already {session['status']}.")

    check = can_start_session(db, user_id)
    if check.reason == "server_error":
        raise ApiError(500, "Server error.", reason=check.reason)
    if not check.allowed:
        return JSONResponse(
            status_code=403,
            content={"ok": False, "reason": check.reason, "paywallRequired": True},
        )

    background_tasks.add_task(_record_session_event, db, str(session["id"]), "started")
    return {
        "ok": True,
        "session": {
            "id": str(session["id"]),
            "moves": session.get("moves") or [],
            "duration_minutes": session.get("duration_minutes"),
        },
    }


@app.post("/api/sessions/{session_id}/complete")
def complete_session(
    session_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[CompleteIn] = None,
    user_id: str = Depends(current_user),
    db: PgStore = Depends(get_store),
):
    session = _owned_session(db, session_id, user_id)
    if session["status"] == "completed":
        raise ApiError(400, "Session already completed.")

    completed_at = datetime.now(timezone.utc)
    try:
        updated = db.complete_session(str(session["id"]), completed_at)
    except StorageError:
        logger.exception("Completing session %s failed", session_id)
        raise ApiError(500, "Failed to complete session.")
    if not updated:
        raise ApiError(400, "Session already completed.")

    moves = (body.completed_moves if body else None) or []
    background_tasks.add_task(
        _record_session_event, db, str(session["id"]), "completed", {"completed_moves": moves}
    )
    return {"ok": True, "completedAt": completed_at.isoformat()}


@app.post("/api/events")
def log_event(
    body: EventIn,
    request: Request,
    user_id: str = Depends(current_user),
    db: PgStore = Depends(get_store),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
):
    _enforce_rate_limit(request, limiter, "events", EVENTS_MAX_REQUESTS)

    event_type = (body.event_type or "").strip()
    if not event_type:
        raise ApiError(400, "event_type is required.")
    props = body.event_props or {}
    if len(json.dumps(props)) >= MAX_EVENT_PROPS_BYTES:
        raise ApiError(400, "event_props too large.")

    try:
        db.insert_event(user_id, event_type, props)
    except StorageError:
        logger.exception("Event insert failed for user %s", user_id)
        raise ApiError(500, "Something went wrong.")
    return {"ok": True}


@app.post("/api/events/report")
def log_report_event(
    body: ReportEventIn,
    request: Request,
    db: PgStore = Depends(get_store),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
):
    _enforce_rate_limit(request, limiter, "report-events", REPORT_EVENTS_MAX_REQUESTS)

    event_type = (body.eventType or "").strip()
    if event_type not in ALLOWED_REPORT_EVENTS:
        raise ApiError(400, "Invalid event type.")
    # oversized payloads are dropped, not rejected
    payload = body.payload if body.payload and len(json.dumps(body.payload)) < MAX_EVENT_PROPS_BYTES else {}

    try:
        db.insert_event(None, event_type, payload)
    except StorageError:
        logger.exception("Report event insert failed")
        raise ApiError(500, "Something went wrong.")
    return {"ok": True}


@app.post("/api/waitlist")
def join_waitlist(
    body: WaitlistIn,
    request: Request,
    db: PgStore = Depends(get_store),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
):
    _enforce_rate_limit(request, limiter, "waitlist", WAITLIST_MAX_REQUESTS)

    email = (body.email or "").strip().lower()
    if not email:
        raise ApiError(400, "Email is required.")
    if not EMAIL_RE.match(email):
        raise ApiError(400, "Please enter a valid email.")

    try:
        status = db.add_waitlist_signup(email)
    except StorageError:
        logger.exception("Waitlist signup failed for %s", mask_email(email))
        raise ApiError(500, "Something went wrong.")
    logger.info("[waitlist] %s %s", mask_email(email), status)
    return {"ok": True, "status": status}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("minute70.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
