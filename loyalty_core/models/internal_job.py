import uuid

from sqlalchemy import Boolean, Column, JSON, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from loyalty_core.db import Base


class InternalJob(Base):
    __tablename__ = "internal_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    job_key = Column(String(100), nullable=False, unique=True)

    # membership_reminders / reactivation / expire_tokens / expire_redemptions / expire_memberships
    job_type = Column(String(50), nullable=False)

    dry_run = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, default=True)

    # {"type": "cron", "cron": "0 9 * * *", "timezone": "America/Mexico_City"}
    schedule = Column(JSON, nullable=True)

    next_run_at = Column(TIMESTAMP, nullable=True, index=True)
    last_run_at = Column(TIMESTAMP, nullable=True)

    locked_at = Column(TIMESTAMP, nullable=True)
    locked_by = Column(String(100), nullable=True)

    last_status = Column(String(20), nullable=True)
    last_error = Column(String(2000), nullable=True)
    last_stats = Column(JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
