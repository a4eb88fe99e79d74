import uuid
from sqlalchemy import Column, Integer, String, Numeric, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class LoyaltyBalance(Base):
    """Cached projection of the ledger; replaying loyalty_transactions must reproduce it."""

    __tablename__ = "loyalty_balances"

    __table_args__ = (UniqueConstraint("program_id", "customer_id", name="uq_loyalty_balances_program_customer"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)

    current_balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)
    total_expired = Column(Integer, nullable=False, default=0)

    lifetime_value = Column(Numeric(12, 2), nullable=False, default=0)

    tier = Column(String(20), nullable=False, default="bronze")
    tier_updated_at = Column(TIMESTAMP)

    last_earn_at = Column(TIMESTAMP)
    last_redeem_at = Column(TIMESTAMP)
    next_expiry_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
