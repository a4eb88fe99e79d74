import uuid
from sqlalchemy import Column, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from loyalty_core.db import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    name = Column(String(200), nullable=False)
    vertical = Column(String(50))  # dental / restaurant / ...

    status = Column(String(20), nullable=False, default="active")  # active / suspended

    created_at = Column(TIMESTAMP, server_default=func.now())
