import uuid
from sqlalchemy import Column, String, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class MessageTemplate(Base):
    __tablename__ = "loyalty_message_templates"

    __table_args__ = (UniqueConstraint("program_id", "message_type", name="uq_loyalty_message_templates_program_type"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False)

    # membership_reminder / reactivation / tokens_earned / redemption
    message_type = Column(String(30), nullable=False)

    name = Column(String(200), nullable=False)
    template_content = Column(String(2000), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
