from __future__ import annotations

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from sqlalchemy.orm import Session

from loyalty_core.models.internal_job import InternalJob
from loyalty_core.services import ledger_service, membership_service, notification_service, redemption_service
from loyalty_core.services.clock import utcnow
from loyalty_core.services.errors import ValidationError


def _membership_reminders(db: Session, *, now: datetime, dry_run: bool) -> dict:
    return notification_service.process_expiring_memberships(db, dry_run=dry_run, now=now).as_dict()


def _reactivation(db: Session, *, now: datetime, dry_run: bool) -> dict:
    return notification_service.process_inactive_patients(db, dry_run=dry_run, now=now).as_dict()


def _expire_tokens(db: Session, *, now: datetime, dry_run: bool) -> dict:
    return ledger_service.expire_tokens(db, now).as_dict()


def _expire_redemptions(db: Session, *, now: datetime, dry_run: bool) -> dict:
    return redemption_service.expire_redemptions(db, now).as_dict()


def _expire_memberships(db: Session, *, now: datetime, dry_run: bool) -> dict:
    return membership_service.expire_memberships(db, now).as_dict()


JOB_TYPES: dict[str, Callable[..., dict]] = {
    "membership_reminders": _membership_reminders,
    "reactivation": _reactivation,
    "expire_tokens": _expire_tokens,
    "expire_redemptions": _expire_redemptions,
    "expire_memberships": _expire_memberships,
}

# sweeps have no side effect worth previewing
DRY_RUN_JOB_TYPES = {"membership_reminders", "reactivation"}


def _as_utc_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo("UTC"))
    return dt.astimezone(ZoneInfo("UTC"))


def _to_utc_naive(dt: datetime) -> datetime:
    return _as_utc_aware(dt).replace(tzinfo=None)


def validate_job(*, job_type: str, schedule: dict | None, dry_run: bool = False) -> None:
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Unsupported job_type: {job_type}")
    if dry_run and job_type not in DRY_RUN_JOB_TYPES:
        raise ValidationError(f"{job_type} does not support dry_run")
    try:
        compute_next_run_at_from_schedule(base_utc=utcnow(), schedule=schedule)
    except (ValueError, KeyError) as e:
        raise ValidationError(f"Invalid schedule: {e}")


def compute_next_run_at_from_schedule(*, base_utc: datetime, schedule: dict | None) -> datetime | None:
    if not schedule or not isinstance(schedule, dict):
        return None
    if schedule.get("type") != "cron":
        raise ValueError("Unsupported schedule.type (expected 'cron')")

    cron_expr = schedule.get("cron")
    if not cron_expr:
        raise ValueError("schedule.cron is required")

    tz_name = schedule.get("timezone") or "UTC"
    tz = ZoneInfo(tz_name)

    base_local = _as_utc_aware(base_utc).astimezone(tz)
    it = croniter(cron_expr, base_local)
    next_local: datetime = it.get_next(datetime)
    return _to_utc_naive(next_local)


def run_internal_job_once(
    db: Session,
    *,
    job: InternalJob,
    now: datetime | None = None,
    dry_run: bool | None = None,
) -> dict:
    """Run the job's task and return its stats (``processed/sent/errors`` or ``processed/updated/errors``)."""
    if now is None:
        now = utcnow()

    task = JOB_TYPES.get(job.job_type)
    if task is None:
        raise ValidationError(f"Unsupported job_type: {job.job_type}")

    if dry_run is None:
        dry_run = bool(job.dry_run)

    return task(db, now=now, dry_run=dry_run)
