from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from loyalty_core.db import SessionLocal
from loyalty_core.models.internal_job import InternalJob
from loyalty_core.services.clock import utcnow
from loyalty_core.services.internal_job_runner import compute_next_run_at_from_schedule, run_internal_job_once


logger = logging.getLogger(__name__)


def _claim_due_jobs(
    db: Session,
    *,
    now: datetime,
    worker_id: str,
    batch_size: int,
    lock_ttl_seconds: int,
):
    lock_expired_before = now - timedelta(seconds=int(lock_ttl_seconds))

    q = (
        db.query(InternalJob)
        .filter(InternalJob.active.is_(True))
        .filter(InternalJob.schedule.isnot(None))
        .filter(InternalJob.next_run_at.isnot(None))
        .filter(InternalJob.next_run_at <= now)
        .filter(or_(InternalJob.locked_at.is_(None), InternalJob.locked_at < lock_expired_before))
        .order_by(InternalJob.next_run_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )

    jobs = q.all()
    for job in jobs:
        job.locked_at = now
        job.locked_by = worker_id

    return jobs


def _next_due(db: Session, *, now: datetime, lock_ttl_seconds: int) -> datetime | None:
    row = (
        db.query(InternalJob.next_run_at)
        .filter(InternalJob.active.is_(True))
        .filter(InternalJob.schedule.isnot(None))
        .filter(InternalJob.next_run_at.isnot(None))
        .filter(or_(InternalJob.locked_at.is_(None), InternalJob.locked_at < (now - timedelta(seconds=int(lock_ttl_seconds)))))
        .order_by(InternalJob.next_run_at.asc())
        .first()
    )
    return row[0] if row else None


def execute_job(db: Session, job: InternalJob, *, run_now: datetime | None = None) -> dict | None:
    """
    Run one claimed job and record the outcome on its row.

    A failing job is marked FAILED and rescheduled for its next cron slot;
    the exception does not leave this function.
    """
    run_now = run_now or utcnow()
    stats = None
    try:
        logger.info(
            "running internal job",
            extra={
                "job_id": str(job.id),
                "job_key": job.job_key,
                "job_type": job.job_type,
                "dry_run": job.dry_run,
                "run_now": run_now.isoformat(),
            },
        )
        stats = run_internal_job_once(db, job=job, now=run_now)
        job.last_status = "SUCCESS"
        job.last_error = None
        job.last_stats = stats

        job.last_run_at = run_now
        job.next_run_at = compute_next_run_at_from_schedule(base_utc=run_now, schedule=job.schedule)

        logger.info(
            "internal job success",
            extra={
                "job_id": str(job.id),
                "job_key": job.job_key,
                **stats,
                "next_run_at": (job.next_run_at.isoformat() if job.next_run_at else None),
            },
        )

    except Exception as e:
        db.rollback()
        job.last_status = "FAILED"
        job.last_error = str(e)[:2000]
        job.last_run_at = run_now

        # On failure, keep moving next_run_at forward to avoid a tight retry loop.
        job.next_run_at = compute_next_run_at_from_schedule(base_utc=run_now, schedule=job.schedule)

        logger.exception(
            "internal job failed",
            extra={
                "job_id": str(job.id),
                "job_key": job.job_key,
                "next_run_at": (job.next_run_at.isoformat() if job.next_run_at else None),
            },
        )

    finally:
        job.locked_at = None
        job.locked_by = None
        db.commit()

    return stats


def run_due_jobs(
    db: Session,
    *,
    now: datetime,
    worker_id: str,
    batch_size: int = 5,
    lock_ttl_seconds: int = 600,
) -> int:
    jobs = _claim_due_jobs(
        db,
        now=now,
        worker_id=worker_id,
        batch_size=batch_size,
        lock_ttl_seconds=lock_ttl_seconds,
    )
    db.commit()

    if jobs:
        logger.info("claimed due internal jobs", extra={"count": len(jobs), "now": now.isoformat()})

    for job in jobs:
        execute_job(db, job, run_now=now)

    return len(jobs)


def run_scheduler_loop(
    *,
    worker_id: str | None = None,
    batch_size: int = 5,
    lock_ttl_seconds: int = 600,
    idle_sleep_seconds: int = 5,
    max_sleep_seconds: int = 30,
):
    if worker_id is None:
        worker_id = os.getenv("INTERNAL_JOB_WORKER_ID") or os.getenv("HOSTNAME") or "worker"

    logger.info(
        "internal job scheduler started",
        extra={
            "worker_id": worker_id,
            "batch_size": batch_size,
            "lock_ttl_seconds": lock_ttl_seconds,
            "idle_sleep_seconds": idle_sleep_seconds,
            "max_sleep_seconds": max_sleep_seconds,
        },
    )

    while True:
        now = utcnow()

        db = SessionLocal()
        try:
            ran = run_due_jobs(
                db,
                now=now,
                worker_id=worker_id,
                batch_size=batch_size,
                lock_ttl_seconds=lock_ttl_seconds,
            )
            if ran:
                continue

            next_due = _next_due(db, now=now, lock_ttl_seconds=lock_ttl_seconds)

            sleep_for = idle_sleep_seconds
            if next_due:
                delta = (next_due - now).total_seconds()
                if delta > 0:
                    sleep_for = min(max_sleep_seconds, max(1, int(delta)))

            logger.debug(
                "no due jobs; sleeping",
                extra={
                    "sleep_for_seconds": sleep_for,
                    "now": now.isoformat(),
                    "next_due": (next_due.isoformat() if next_due else None),
                },
            )
        finally:
            db.close()

        time.sleep(sleep_for)


def main():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL") or "INFO",
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    batch_size = int(os.getenv("INTERNAL_JOB_BATCH_SIZE") or "5")
    lock_ttl_seconds = int(os.getenv("INTERNAL_JOB_LOCK_TTL_SECONDS") or "600")
    idle_sleep_seconds = int(os.getenv("INTERNAL_JOB_IDLE_SLEEP_SECONDS") or "5")
    max_sleep_seconds = int(os.getenv("INTERNAL_JOB_MAX_SLEEP_SECONDS") or "30")

    run_scheduler_loop(
        batch_size=batch_size,
        lock_ttl_seconds=lock_ttl_seconds,
        idle_sleep_seconds=idle_sleep_seconds,
        max_sleep_seconds=max_sleep_seconds,
    )


if __name__ == "__main__":
    main()
