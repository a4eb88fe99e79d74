from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loyalty_core.models.customer import Customer
from loyalty_core.models.membership import Membership
from loyalty_core.models.membership_plan import MembershipPlan
from loyalty_core.models.program import Program
from loyalty_core.services.clock import add_months, utcnow
from loyalty_core.services.errors import InvalidStateTransition, ValidationError
from loyalty_core.services.job_stats import SweepStats


logger = logging.getLogger(__name__)

BILLING_CYCLES = {"monthly": 1, "annual": 12}
OPEN_STATUSES = ("pending", "active")


def compute_end_date(start: datetime, billing_cycle: str) -> datetime:
    if billing_cycle not in BILLING_CYCLES:
        raise ValidationError("billing_cycle must be 'monthly' or 'annual'")
    return add_months(start, BILLING_CYCLES[billing_cycle])


def _plan_price(plan: MembershipPlan, billing_cycle: str):
    if billing_cycle == "annual":
        return plan.price_annual
    return plan.price_monthly


def validate_plan(plan: MembershipPlan) -> None:
    if plan.price_monthly is None:
        raise ValidationError("price_monthly is required")
    if Decimal(plan.price_monthly) < 0 or (plan.price_annual is not None and Decimal(plan.price_annual) < 0):
        raise ValidationError("plan prices cannot be negative")
    if plan.tokens_multiplier is not None and Decimal(plan.tokens_multiplier) <= 0:
        raise ValidationError("tokens_multiplier must be greater than 0")


def _lock_plan(db: Session, plan: MembershipPlan) -> None:
    # creates for one plan are serialized so the open-membership and member-limit checks hold
    db.query(MembershipPlan.id).filter(MembershipPlan.id == plan.id).with_for_update().one()


def _open_members(db: Session, plan: MembershipPlan) -> int:
    return (
        db.query(func.count(Membership.id))
        .filter(Membership.plan_id == plan.id, Membership.status.in_(OPEN_STATUSES))
        .scalar()
    )


# ============================================================
# CREATE
# ============================================================
def create(
    db: Session,
    program: Program,
    customer: Customer,
    plan: MembershipPlan,
    billing_cycle: str,
    payment_method: str | None,
    *,
    payment_amount=None,
    notes: str | None = None,
    auto_renew: bool = False,
    payment_pending: bool = False,
    now: datetime | None = None,
) -> Membership:
    now = now or utcnow()

    if not program.membership_enabled:
        raise ValidationError("Memberships are disabled for this program")
    if customer.deleted_at is not None:
        raise ValidationError("Cannot create a membership for a deleted customer")
    if plan.program_id != program.id or not plan.is_active:
        raise ValidationError("Plan is not active in this program")

    end_date = compute_end_date(now, billing_cycle)

    price = _plan_price(plan, billing_cycle)
    if price is None:
        raise ValidationError(f"Plan {plan.plan_name!r} is not offered with a {billing_cycle} cycle")

    amount = price if payment_amount is None else Decimal(str(payment_amount))
    if Decimal(amount) < 0:
        raise ValidationError("payment_amount cannot be negative")

    _lock_plan(db, plan)
    existing = (
        db.query(Membership.id)
        .filter(
            Membership.customer_id == customer.id,
            Membership.plan_id == plan.id,
            Membership.status.in_(OPEN_STATUSES),
        )
        .first()
    )
    if existing:
        raise ValidationError("Customer already has an open membership with this plan")

    if plan.max_members is not None and _open_members(db, plan) >= plan.max_members:
        raise ValidationError("Plan has reached its member limit")

    membership = Membership(
        tenant_id=program.tenant_id,
        program_id=program.id,
        customer_id=customer.id,
        plan_id=plan.id,
        status="pending" if payment_pending else "active",
        billing_cycle=billing_cycle,
        start_date=now,
        end_date=end_date,
        auto_renew=bool(auto_renew),
        renewed_count=0,
        payment_method=payment_method or "manual",
        payment_amount=amount,
        notes=notes,
        created_at=now,
    )
    db.add(membership)
    db.flush()

    logger.info(
        "membership created",
        extra={
            "membership_id": str(membership.id),
            "customer_id": str(customer.id),
            "plan_id": str(plan.id),
            "status": membership.status,
        },
    )
    return membership


# ============================================================
# TRANSITIONS
# ============================================================
def activate(db: Session, membership: Membership, *, now: datetime | None = None) -> Membership:
    """pending -> active once the first payment is recorded; the paid period starts now."""
    if membership.status != "pending":
        raise InvalidStateTransition(f"Cannot activate a {membership.status} membership")

    now = now or utcnow()
    membership.status = "active"
    membership.start_date = now
    membership.end_date = compute_end_date(now, membership.billing_cycle)
    db.flush()
    return membership


def cancel(db: Session, membership: Membership, *, reason: str | None = None, now: datetime | None = None) -> Membership:
    if membership.status not in OPEN_STATUSES:
        raise InvalidStateTransition(f"Cannot cancel a {membership.status} membership")

    now = now or utcnow()
    membership.status = "cancelled"
    membership.cancelled_at = now
    membership.cancellation_reason = reason
    db.flush()

    logger.info("membership cancelled", extra={"membership_id": str(membership.id)})
    return membership


def renew(db: Session, membership: Membership) -> Membership:
    if membership.status != "active":
        raise InvalidStateTransition(f"Cannot renew a {membership.status} membership")

    renewed = (membership.renewed_count or 0) + 1
    # anchored to start_date, so a Jan 31 start ends Feb 28, then Mar 31
    periods = BILLING_CYCLES[membership.billing_cycle] * (renewed + 1)
    membership.end_date = add_months(membership.start_date, periods)
    membership.renewed_count = renewed
    db.flush()
    return membership


def expire_memberships(db: Session, now: datetime | None = None) -> SweepStats:
    """active -> expired once end_date has passed, unless auto_renew extends it."""
    now = now or utcnow()
    stats = SweepStats()

    due_ids = [
        row.id
        for row in db.query(Membership.id)
        .filter(Membership.status == "active")
        .filter(Membership.end_date.isnot(None))
        .filter(Membership.end_date < now)
        .all()
    ]

    for membership_id in due_ids:
        stats.processed += 1
        try:
            membership = (
                db.query(Membership)
                .filter(Membership.id == membership_id)
                .with_for_update(of=Membership)
                .one()
            )
            if membership.status != "active" or membership.end_date >= now:
                db.rollback()
                continue

            if membership.auto_renew:
                while membership.end_date < now:
                    renew(db, membership)
                logger.info(
                    "membership renewed",
                    extra={"membership_id": str(membership.id), "end_date": membership.end_date.isoformat()},
                )
            else:
                membership.status = "expired"
                logger.info("membership expired", extra={"membership_id": str(membership.id)})

            db.commit()
            stats.updated += 1
        except SQLAlchemyError:
            db.rollback()
            stats.errors += 1
            logger.exception("membership expiry failed", extra={"membership_id": str(membership_id)})

    return stats


# ============================================================
# READS
# ============================================================
def active_multiplier(db: Session, program: Program, customer_id, now: datetime | None = None) -> Decimal:
    """Highest tokens multiplier among memberships in force; cancellation stops it immediately."""
    now = now or utcnow()

    value = (
        db.query(func.max(MembershipPlan.tokens_multiplier))
        .join(Membership, Membership.plan_id == MembershipPlan.id)
        .filter(
            Membership.program_id == program.id,
            Membership.customer_id == customer_id,
            Membership.status == "active",
            Membership.end_date >= now,
        )
        .scalar()
    )
    if value is None:
        return Decimal("1")
    return Decimal(str(value))


def list_memberships(db: Session, program: Program, *, status: str | None = None, customer_id=None, limit: int = 50, offset: int = 0):
    q = db.query(Membership).filter(Membership.program_id == program.id)
    if status:
        q = q.filter(Membership.status == status)
    if customer_id:
        q = q.filter(Membership.customer_id == customer_id)

    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    return q.order_by(Membership.created_at.desc()).offset(offset).limit(limit).all()
