import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, TIMESTAMP, ForeignKey, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class Reward(Base):
    __tablename__ = "loyalty_rewards"

    __table_args__ = (CheckConstraint("stock_limit IS NULL OR stock_used <= stock_limit", name="ck_loyalty_rewards_stock"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    reward_name = Column(String(200), nullable=False)
    reward_description = Column(String(1000))

    tokens_required = Column(Integer, nullable=False)

    # discount_percentage / discount_fixed / free_service / gift / upgrade / custom
    reward_type = Column(String(30), nullable=False)
    discount_value = Column(Numeric(10, 2))

    # NULL = unlimited
    stock_limit = Column(Integer, nullable=True)
    stock_used = Column(Integer, nullable=False, default=0)

    # days between redemption and expiry of the code
    valid_days = Column(Integer, nullable=False, default=30)

    terms_conditions = Column(String(2000))

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
