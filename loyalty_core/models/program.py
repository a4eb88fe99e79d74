import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, JSON, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from loyalty_core.db import Base
from loyalty_core.models.tenant import Tenant


class Program(Base):
    __tablename__ = "loyalty_programs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # one program per tenant
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, unique=True)

    program_name = Column(String(200), nullable=False, default="Loyalty Program")
    is_active = Column(Boolean, nullable=False, default=True)

    tokens_enabled = Column(Boolean, nullable=False, default=True)
    membership_enabled = Column(Boolean, nullable=False, default=True)

    tokens_name = Column(String(50), nullable=False, default="Point")
    tokens_name_plural = Column(String(50), nullable=False, default="Points")

    # tokens per unit of currency spent, once the threshold is reached
    tokens_per_currency = Column(Numeric(10, 4), nullable=False, default=1)
    tokens_currency_threshold = Column(Numeric(10, 2), nullable=False, default=0)

    # 0 = tokens never expire
    tokens_expiry_days = Column(Integer, nullable=False, default=365)

    reactivation_enabled = Column(Boolean, nullable=False, default=True)
    reactivation_months = Column(Integer, nullable=False, default=12)
    reactivation_offer_type = Column(String(30))  # discount_percent / discount_fixed
    reactivation_offer_value = Column(Numeric(10, 2))

    membership_reminder_days = Column(Integer, nullable=False, default=7)

    # {"silver": 500, "gold": 2000, "platinum": 5000}; NULL = defaults
    tier_thresholds = Column(JSON, nullable=True)

    tenant = relationship(Tenant, lazy="joined")

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
