from datetime import datetime, timedelta, timezone

import pytest

from minute70.reports import (
    WeeklyReport,
    check_and_record,
    days_until_next,
    is_privileged,
    validate_report,
)
from minute70.masking import mask_email
from minute70.store import StorageError


NOW = datetime(2026, 3, 11, 15, 30, tzinfo=timezone.utc)


def make_report(email="runner@example.com", **overrides):
    fields = dict(email=email, match_day="Saturday", training_days=3, legs_status="Fresh")
    fields.update(overrides)
    return WeeklyReport(**fields)


def test_first_public_report_is_saved(memory_store):
    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW)

    assert outcome.ok is True
    assert outcome.status_code == 200
    assert outcome.source == "public"
    assert outcome.followup_scheduled is False
    assert memory_store.reports[0]["tier"] == "free"
    assert memory_store.reports[0]["teammate_code"] is None
    assert memory_store.followups == []
    assert outcome.to_response() == {
        "ok": True,
        "source": "public",
        "followupScheduled": False,
        "matchDay": "Saturday",
        "trainingDays": 3,
        "legsStatus": "Fresh",
    }


def test_second_report_within_window_is_limited(memory_store):
    check_and_record(memory_store, make_report(), privileged=False, now=NOW)

    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW + timedelta(days=2))

    assert outcome.ok is False
    assert outcome.status_code == 429
    assert outcome.reason == "limit"
    assert outcome.days_remaining == 5
    assert "2026-03-18" in outcome.error
    body = outcome.to_response()
    assert body["source"] == "public"
    assert body["daysRemaining"] == 5
    assert len(memory_store.reports) == 1


def test_email_is_case_insensitive(memory_store):
    check_and_record(memory_store, make_report("Runner@Example.com"), privileged=False, now=NOW)
    outcome = check_and_record(memory_store, make_report("runner@EXAMPLE.com"), privileged=False, now=NOW)
    assert outcome.status_code == 429
    assert memory_store.reports[0]["email"] == "runner@example.com"


def test_report_allowed_again_after_window(memory_store):
    check_and_record(memory_store, make_report(), privileged=False, now=NOW)
    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW + timedelta(days=7))
    assert outcome.ok is True
    assert len(memory_store.reports) == 2


def test_days_remaining_rounds_up():
    assert days_until_next(NOW, NOW + timedelta(hours=1)) == 7
    assert days_until_next(NOW, NOW + timedelta(days=6, hours=23)) == 1


def test_insert_rejection_is_reported_as_limit(memory_store):
    check_and_record(memory_store, make_report(), privileged=False, now=NOW - timedelta(days=3))
    memory_store.hide_recent_reports = True

    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW)

    assert outcome.status_code == 429
    assert outcome.reason == "limit"
    assert outcome.days_remaining == 4
    assert len(memory_store.reports) == 1


def test_insert_rejection_falls_back_to_full_window(memory_store, monkeypatch):
    check_and_record(memory_store, make_report(), privileged=False, now=NOW)
    memory_store.hide_recent_reports = True
    original = memory_store.latest_report_at

    def lookup(email, since=None):
        if since is None:
            raise StorageError("read failed")
        return original(email, since=since)

    monkeypatch.setattr(memory_store, "latest_report_at", lookup)
    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW)

    assert outcome.status_code == 429
    assert outcome.days_remaining == 7


def test_teammate_code_bypasses_limit_and_schedules_followup(memory_store):
    check_and_record(memory_store, make_report(), privileged=False, now=NOW)

    report = make_report(teammate_code="elmparc2free")
    outcome = check_and_record(memory_store, report, privileged=is_privileged(report.teammate_code), now=NOW)

    assert outcome.ok is True
    assert outcome.source == "teammate"
    assert outcome.followup_scheduled is True
    assert memory_store.reports[-1]["tier"] == "paid"
    assert memory_store.reports[-1]["teammate_code"] == "ELMPARC2FREE"
    followup = memory_store.followups[0]
    assert followup["send_at"] == NOW + timedelta(days=7)
    assert followup["report_request_id"] == memory_store.reports[-1]["id"]


def test_privileged_reports_are_never_limited(memory_store):
    for i in range(3):
        outcome = check_and_record(memory_store, make_report(), privileged=True, now=NOW + timedelta(hours=i))
        assert outcome.ok is True
    assert len(memory_store.reports) == 3


def test_followup_opt_out(memory_store):
    outcome = check_and_record(memory_store, make_report(email_reminder=False), privileged=True, now=NOW)
    assert outcome.ok is True
    assert outcome.followup_scheduled is False
    assert memory_store.followups == []


def test_followup_failure_does_not_fail_report(memory_store):
    memory_store.failing.add("schedule_followup")
    outcome = check_and_record(memory_store, make_report(), privileged=True, now=NOW)
    assert outcome.ok is True
    assert outcome.followup_scheduled is False
    assert len(memory_store.reports) == 1


@pytest.mark.parametrize("failing, error", [("latest_report_at", "Server error."), ("insert_report", "Failed to save report.")])
def test_storage_failures(memory_store, failing, error):
    memory_store.failing.add(failing)
    outcome = check_and_record(memory_store, make_report(), privileged=False, now=NOW)
    assert (outcome.status_code, outcome.reason, outcome.error) == (500, "error", error)


def test_tier_header_honoured_outside_production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")
    assert is_privileged(None, "paid") is True
    assert is_privileged(None, "PAID") is True
    assert is_privileged(None, "free") is False


def test_tier_header_ignored_in_production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    assert is_privileged(None, "paid") is False
    assert is_privileged("ELMPARC2FREE", None) is True


def test_wrong_teammate_code_is_not_privileged():
    assert is_privileged("NOTACODE") is False
    assert is_privileged("") is False


@pytest.mark.parametrize(
    "fields, message",
    [
        (dict(email=""), "Email, match day, training days, and legs status are required."),
        (dict(training_days=None), "Email, match day, training days, and legs status are required."),
        (dict(email="nope"), "Invalid email address."),
        (dict(match_day="Funday"), "Invalid match day."),
        (dict(training_days=8), "Training days must be 0-7."),
        (dict(training_days=-1), "Training days must be 0-7."),
        (dict(training_days=True), "Training days must be 0-7."),
        (dict(legs_status="Wobbly"), "Invalid legs status."),
    ],
)
def test_validation_messages(fields, message):
    values = dict(email="a@b.co", match_day="Monday", training_days=0, legs_status="Heavy")
    values.update(fields)
    assert validate_report(**values) == message


def test_valid_report_passes_validation():
    assert validate_report("a@b.co", "Sunday", 7, "Tweaky") is None


@pytest.mark.parametrize(
    "email, masked",
    [("alice@gmail.com", "al*****@gmail.com"), ("a@x.io", "a*****@x.io"), ("no-at-sign", "*****"), (None, "*****")],
)
def test_mask_email(email, masked):
    assert mask_email(email) == masked
