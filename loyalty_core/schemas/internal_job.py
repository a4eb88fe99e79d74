from datetime import datetime
from typing import Any, Dict, Literal, Optional

from uuid import UUID

from pydantic import BaseModel


class InternalJobScheduleCron(BaseModel):
    type: Literal["cron"] = "cron"
    cron: str
    timezone: str = "UTC"


class InternalJobCreate(BaseModel):
    job_key: str
    job_type: str
    dry_run: bool = False

    active: bool = True
    schedule: Optional[InternalJobScheduleCron] = None

    first_run_at: Optional[datetime] = None


class InternalJobUpdate(BaseModel):
    job_key: Optional[str] = None
    job_type: Optional[str] = None
    dry_run: Optional[bool] = None

    active: Optional[bool] = None
    schedule: Optional[InternalJobScheduleCron] = None

    first_run_at: Optional[datetime] = None


class InternalJobOut(BaseModel):
    id: UUID
    job_key: str
    job_type: str
    dry_run: bool

    active: bool
    schedule: Optional[Dict[str, Any]] = None

    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None

    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None

    last_status: Optional[str] = None
    last_error: Optional[str] = None
    last_stats: Optional[Dict[str, Any]] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
