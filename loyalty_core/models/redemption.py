import uuid
from sqlalchemy import Column, String, Integer, JSON, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class Redemption(Base):
    __tablename__ = "loyalty_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id"), nullable=False)

    redemption_code = Column(String(20), nullable=False, unique=True)

    # snapshot at redemption time, decoupled from later reward edits
    tokens_used = Column(Integer, nullable=False)
    reward_snapshot = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default="pending")
    # pending | used | expired

    expires_at = Column(TIMESTAMP, nullable=False)
    used_at = Column(TIMESTAMP, nullable=True)

    notes = Column(String(1000))

    created_at = Column(TIMESTAMP, server_default=func.now())
