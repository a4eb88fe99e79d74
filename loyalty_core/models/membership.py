import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from loyalty_core.db import Base
from loyalty_core.models.customer import Customer
from loyalty_core.models.membership_plan import MembershipPlan


class Membership(Base):
    __tablename__ = "loyalty_memberships"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_membership_plans.id"), nullable=False)

    status = Column(String(20), nullable=False, default="active")
    # pending | active | expired | cancelled

    billing_cycle = Column(String(20), nullable=False, default="monthly")  # monthly / annual

    start_date = Column(TIMESTAMP)
    end_date = Column(TIMESTAMP, index=True)

    auto_renew = Column(Boolean, nullable=False, default=False)
    renewed_count = Column(Integer, nullable=False, default=0)

    # recorded facts, settlement happens in the payment processor
    payment_method = Column(String(30))
    payment_amount = Column(Numeric(10, 2), nullable=False, default=0)

    notes = Column(String(1000))

    cancelled_at = Column(TIMESTAMP)
    cancellation_reason = Column(String(500))

    customer = relationship(Customer, lazy="joined")
    plan = relationship(MembershipPlan, lazy="joined")

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
