import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, JSON, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class TokenRule(Base):
    __tablename__ = "loyalty_token_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    # purchase / appointment / referral / review / signup / birthday / custom
    action_type = Column(String(30), nullable=False)
    action_name = Column(String(200), nullable=False)
    action_description = Column(String(1000))

    tokens_amount = Column(Integer, nullable=False, default=10)
    tokens_multiplier = Column(Numeric(5, 2), nullable=False, default=1)

    # NULL = unlimited
    max_per_period = Column(Integer, nullable=True)
    period_type = Column(String(20), nullable=True)  # day / week / month / year / lifetime

    conditions = Column(JSON, default=dict)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
