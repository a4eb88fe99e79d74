import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, JSON, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class MembershipPlan(Base):
    __tablename__ = "loyalty_membership_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    plan_name = Column(String(200), nullable=False)
    plan_description = Column(String(1000))

    price_monthly = Column(Numeric(10, 2), nullable=False)
    # NULL = no annual cadence
    price_annual = Column(Numeric(10, 2), nullable=True)

    benefits = Column(JSON, nullable=False, default=list)
    discount_percent = Column(Numeric(5, 2), default=0)
    priority_booking = Column(Boolean, nullable=False, default=False)
    tokens_multiplier = Column(Numeric(5, 2), nullable=False, default=1)

    # NULL = unlimited
    max_members = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
