import uuid
from sqlalchemy import Column, String, Boolean, JSON, TIMESTAMP, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class NotificationLogEntry(Base):
    __tablename__ = "loyalty_notification_logs"

    # dedupe_key is "once" for reactivation and the send date for reminders,
    # so the constraint itself rejects concurrent duplicate sends.
    __table_args__ = (
        UniqueConstraint(
            "program_id",
            "customer_id",
            "message_type",
            "dedupe_key",
            name="uq_loyalty_notification_logs_dedupe",
        ),
        Index("ix_loyalty_notification_logs_lookback", "customer_id", "message_type", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)

    message_type = Column(String(30), nullable=False)  # membership_reminder / reactivation
    dedupe_key = Column(String(30), nullable=False)

    message_text = Column(String(2000), nullable=False)
    channel = Column(String(20), nullable=False, default="whatsapp")

    status = Column(String(20), nullable=False, default="queued")  # queued / sent / failed
    personalized = Column(Boolean, nullable=False, default=False)
    error_message = Column(String(2000))

    context = Column(JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
