import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from loyalty_core.db import Base
import loyalty_core.main  # noqa: F401  registers every model on Base.metadata
from loyalty_core.models.customer import Customer
from loyalty_core.models.membership_plan import MembershipPlan
from loyalty_core.models.program import Program
from loyalty_core.models.reward import Reward
from loyalty_core.models.tenant import Tenant
from loyalty_core.models.token_rule import TokenRule

# One shared in-memory connection so the session and the app see the same tables
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def tenant(db_session):
    t = Tenant(name="Sonrisa Dental", vertical="dental", status="active")
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture
def program(db_session, tenant):
    p = Program(
        tenant_id=tenant.id,
        program_name="Sonrisa Rewards",
        tokens_per_currency=Decimal("1"),
        tokens_currency_threshold=Decimal("0"),
        tokens_expiry_days=365,
        reactivation_months=6,
        membership_reminder_days=7,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def make_customer(db_session, tenant):
    def _make(full_name="Ana Lopez", phone="+5215550000000", last_interaction_at=None, **kw):
        c = Customer(
            tenant_id=kw.pop("tenant_id", tenant.id),
            full_name=full_name,
            phone=phone,
            last_interaction_at=last_interaction_at,
            **kw,
        )
        db_session.add(c)
        db_session.commit()
        return c

    return _make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def make_rule(db_session, program):
    def _make(action_type="appointment", tokens_amount=10, created_at=None, **kw):
        r = TokenRule(
            program_id=program.id,
            action_type=action_type,
            action_name=kw.pop("action_name", action_type.title()),
            tokens_amount=tokens_amount,
            tokens_multiplier=kw.pop("tokens_multiplier", Decimal("1")),
            created_at=created_at or datetime(2024, 1, 1),
            **kw,
        )
        db_session.add(r)
        db_session.commit()
        return r

    return _make


@pytest.fixture
def make_reward(db_session, program):
    def _make(tokens_required=100, stock_limit=None, valid_days=30, **kw):
        r = Reward(
            program_id=program.id,
            reward_name=kw.pop("reward_name", "Free cleaning"),
            reward_type=kw.pop("reward_type", "free_service"),
            tokens_required=tokens_required,
            stock_limit=stock_limit,
            stock_used=0,
            valid_days=valid_days,
            **kw,
        )
        db_session.add(r)
        db_session.commit()
        return r

    return _make


@pytest.fixture
def make_plan(db_session, program):
    def _make(**kw):
        p = MembershipPlan(
            program_id=program.id,
            plan_name=kw.pop("plan_name", "Gold Smile"),
            price_monthly=kw.pop("price_monthly", Decimal("29.00")),
            price_annual=kw.pop("price_annual", Decimal("290.00")),
            benefits=kw.pop("benefits", ["Free whitening"]),
            tokens_multiplier=kw.pop("tokens_multiplier", Decimal("2")),
            **kw,
        )
        db_session.add(p)
        db_session.commit()
        return p

    return _make
