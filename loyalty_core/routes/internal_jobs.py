from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.models.internal_job import InternalJob
from loyalty_core.schemas.internal_job import InternalJobCreate, InternalJobOut, InternalJobUpdate
from loyalty_core.services.clock import utcnow
from loyalty_core.services.errors import ValidationError
from loyalty_core.services.internal_job_runner import (
    JOB_TYPES,
    compute_next_run_at_from_schedule,
    run_internal_job_once,
    validate_job,
)


# Jobs scan every active program, so they are platform-wide rather than tenant-scoped.
router = APIRouter(prefix="/admin/internal-jobs", tags=["admin-internal-jobs"])


def _get_job(db: Session, job_id: UUID) -> InternalJob:
    job = db.query(InternalJob).filter(InternalJob.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Internal job not found")
    return job


def _validate(job_type: str, schedule: dict | None, dry_run: bool) -> None:
    try:
        validate_job(job_type=job_type, schedule=schedule, dry_run=dry_run)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get("/job-types")
def list_job_types():
    return {"jobTypes": sorted(JOB_TYPES)}


@router.get("", response_model=list[InternalJobOut])
def list_internal_jobs(
    active: bool | None = None,
    db: Session = Depends(get_db),
):
    q = db.query(InternalJob)
    if active is not None:
        q = q.filter(InternalJob.active.is_(active))
    return q.order_by(InternalJob.created_at.desc()).all()


@router.post("", response_model=InternalJobOut)
def create_internal_job(
    payload: InternalJobCreate,
    db: Session = Depends(get_db),
):
    schedule = payload.schedule.model_dump() if payload.schedule else None
    _validate(payload.job_type, schedule, payload.dry_run)

    if db.query(InternalJob.id).filter(InternalJob.job_key == payload.job_key).first():
        raise HTTPException(status_code=409, detail="job_key already exists")

    job = InternalJob(
        job_key=payload.job_key,
        job_type=payload.job_type,
        dry_run=payload.dry_run,
        active=payload.active,
        schedule=schedule,
    )

    if payload.active and schedule:
        if payload.first_run_at is not None:
            job.next_run_at = payload.first_run_at
        else:
            job.next_run_at = compute_next_run_at_from_schedule(base_utc=utcnow(), schedule=schedule)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


@router.get("/{job_id}", response_model=InternalJobOut)
def get_internal_job(
    job_id: UUID,
    db: Session = Depends(get_db),
):
    return _get_job(db, job_id)


@router.patch("/{job_id}", response_model=InternalJobOut)
def update_internal_job(
    job_id: UUID,
    payload: InternalJobUpdate,
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)

    data = payload.model_dump(exclude_unset=True)
    first_run_at = data.pop("first_run_at", None)

    _validate(
        data.get("job_type") or job.job_type,
        data["schedule"] if "schedule" in data else job.schedule,
        data["dry_run"] if data.get("dry_run") is not None else job.dry_run,
    )

    for k, v in data.items():
        setattr(job, k, v)

    if "schedule" in data or "active" in data or first_run_at is not None:
        if job.active and job.schedule:
            if first_run_at is not None:
                job.next_run_at = first_run_at
            else:
                job.next_run_at = compute_next_run_at_from_schedule(base_utc=utcnow(), schedule=job.schedule)
        else:
            job.next_run_at = None

    db.commit()
    db.refresh(job)
    return job


@router.delete("/{job_id}")
def delete_internal_job(
    job_id: UUID,
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)

    db.delete(job)
    db.commit()
    return {"deleted": True}


@router.post("/{job_id}/run")
def run_internal_job(
    job_id: UUID,
    dry_run: bool | None = None,
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)

    if not job.active:
        raise HTTPException(status_code=400, detail="Internal job is inactive")

    now = utcnow()
    try:
        stats = run_internal_job_once(db, job=job, now=now, dry_run=dry_run)
        job.last_status = "SUCCESS"
        job.last_error = None
        job.last_stats = stats
    except Exception as e:
        db.rollback()
        job.last_status = "FAILED"
        job.last_error = str(e)[:2000]
        raise
    finally:
        job.last_run_at = now
        if job.schedule:
            job.next_run_at = compute_next_run_at_from_schedule(base_utc=now, schedule=job.schedule)
        db.commit()
        db.refresh(job)

    return {
        "jobId": str(job.id),
        "jobKey": job.job_key,
        "jobType": job.job_type,
        "dryRun": bool(job.dry_run if dry_run is None else dry_run),
        "date": now.date().isoformat(),
        "stats": stats,
    }
