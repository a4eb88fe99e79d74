import uuid
from sqlalchemy import Column, Integer, String, Numeric, TIMESTAMP, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class LedgerTransaction(Base):
    __tablename__ = "loyalty_transactions"

    __table_args__ = (
        Index("ix_loyalty_transactions_program_customer", "program_id", "customer_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)

    # signed delta: positive = earn, negative = spend / expire
    tokens = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    # earn_purchase / earn_action / spend / adjustment / expiration / manual

    description = Column(String(500), nullable=False)

    # redemption / token_rule / expired_transaction / manual / purchase
    reference_type = Column(String(30))
    reference_id = Column(UUID(as_uuid=True))

    action_type = Column(String(30))
    purchase_amount = Column(Numeric(10, 2))

    expires_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
