"""
Typed entry points for the API layer.

Every operation resolves the tenant's program and the rows it references,
runs the service, and commits once. Domain errors roll the session back and
come out as a failed ``OperationResult`` instead of an exception.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from loyalty_core.models.customer import Customer
from loyalty_core.models.membership import Membership
from loyalty_core.models.membership_plan import MembershipPlan
from loyalty_core.models.program import Program
from loyalty_core.models.redemption import Redemption
from loyalty_core.models.reward import Reward
from loyalty_core.schemas.ledger import LedgerTransactionOut
from loyalty_core.schemas.membership import MembershipOut
from loyalty_core.schemas.reward import RedemptionOut
from loyalty_core.services import (
    ledger_service,
    membership_service,
    notification_service,
    redemption_service,
    stats_service,
    token_rules_service,
)
from loyalty_core.services.errors import LoyaltyError, NotFound, OperationResult
from loyalty_core.services.personalization import PersonalizationClient


logger = logging.getLogger(__name__)


# ============================================================
# Resolvers
# ============================================================
def get_program(db: Session, tenant_id) -> Program:
    program = (
        db.query(Program)
        .filter(Program.tenant_id == tenant_id)
        .filter(Program.is_active.is_(True))
        .first()
    )
    if not program:
        raise NotFound("Loyalty program not found")
    return program


def get_customer(db: Session, program: Program, customer_id) -> Customer:
    customer = (
        db.query(Customer)
        .filter(Customer.id == customer_id)
        .filter(Customer.tenant_id == program.tenant_id)
        .filter(Customer.deleted_at.is_(None))
        .first()
    )
    if not customer:
        raise NotFound("Customer not found")
    return customer


def get_reward(db: Session, program: Program, reward_id) -> Reward:
    reward = (
        db.query(Reward)
        .filter(Reward.id == reward_id, Reward.program_id == program.id)
        .first()
    )
    if not reward:
        raise NotFound("Reward not found")
    return reward


def get_plan(db: Session, program: Program, plan_id) -> MembershipPlan:
    plan = (
        db.query(MembershipPlan)
        .filter(MembershipPlan.id == plan_id, MembershipPlan.program_id == program.id)
        .first()
    )
    if not plan:
        raise NotFound("Membership plan not found")
    return plan


def get_membership(db: Session, program: Program, membership_id, *, lock: bool = False) -> Membership:
    q = db.query(Membership).filter(Membership.id == membership_id, Membership.program_id == program.id)
    if lock:
        q = q.with_for_update(of=Membership)
    membership = q.first()
    if not membership:
        raise NotFound("Membership not found")
    return membership


def get_redemption(db: Session, program: Program, redemption_id, *, lock: bool = False) -> Redemption:
    q = db.query(Redemption).filter(Redemption.id == redemption_id, Redemption.program_id == program.id)
    if lock:
        q = q.with_for_update()
    redemption = q.first()
    if not redemption:
        raise NotFound("Redemption not found")
    return redemption


def _run(db: Session, operation: str, fn: Callable[[], object]) -> OperationResult:
    try:
        data = fn()
        db.commit()
    except LoyaltyError as e:
        db.rollback()
        logger.info("operation rejected", extra={"operation": operation, "error": e.kind.value, "detail": e.message})
        return OperationResult.fail(e)
    except Exception:
        db.rollback()
        raise

    if callable(data):
        # serializers run after commit so generated values are loaded
        data = data()
    return OperationResult.ok(data)


def _tx_out(tx) -> dict | None:
    if tx is None:
        return None
    return LedgerTransactionOut.model_validate(tx).model_dump(mode="json")


def _with_balance(db: Session, program: Program, customer_id, tx):
    def build():
        return {
            "transaction": _tx_out(tx),
            "balance": ledger_service.replay_balance(db, program, customer_id).as_dict(),
        }

    return build


def _earned(db: Session, program: Program, customer: Customer, tx, personalizer: PersonalizationClient | None):
    build = _with_balance(db, program, customer.id, tx)

    def with_message():
        data = build()
        data["message"] = None
        if tx is not None:
            data["message"] = notification_service.tokens_earned_message(
                db, program, customer, tx, data["balance"]["current_balance"], personalizer=personalizer
            )
        return data

    return with_message


# ============================================================
# Ledger
# ============================================================
def credit_tokens(
    db: Session,
    tenant_id,
    customer_id,
    amount: int,
    *,
    transaction_type: str = "manual",
    description: str | None = None,
    reference_type: str | None = None,
    reference_id=None,
    now: datetime | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        tx = ledger_service.credit(
            db,
            program,
            customer.id,
            amount,
            transaction_type,
            description or "Manual credit",
            reference_type=reference_type or "manual",
            reference_id=reference_id,
            now=now,
        )
        return _with_balance(db, program, customer.id, tx)

    return _run(db, "credit_tokens", op)


def debit_tokens(
    db: Session,
    tenant_id,
    customer_id,
    amount: int,
    *,
    transaction_type: str = "manual",
    description: str | None = None,
    reference_type: str | None = None,
    reference_id=None,
    now: datetime | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        tx = ledger_service.debit(
            db,
            program,
            customer.id,
            amount,
            transaction_type,
            description or "Manual debit",
            reference_type=reference_type or "manual",
            reference_id=reference_id,
            now=now,
        )
        return _with_balance(db, program, customer.id, tx)

    return _run(db, "debit_tokens", op)


def award_action(
    db: Session,
    tenant_id,
    customer_id,
    action_type: str,
    *,
    description: str | None = None,
    now: datetime | None = None,
    personalizer: PersonalizationClient | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        tx = token_rules_service.award_action(db, program, customer, action_type, description=description, now=now)
        return _earned(db, program, customer, tx, personalizer)

    return _run(db, "award_action", op)


def award_purchase(
    db: Session,
    tenant_id,
    customer_id,
    amount,
    *,
    description: str | None = None,
    reference_id=None,
    now: datetime | None = None,
    personalizer: PersonalizationClient | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        tx = token_rules_service.award_purchase(
            db,
            program,
            customer,
            amount,
            description=description,
            reference_id=reference_id,
            now=now,
        )
        return _earned(db, program, customer, tx, personalizer)

    return _run(db, "award_purchase", op)


def get_balance(db: Session, tenant_id, customer_id, *, now: datetime | None = None) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        return ledger_service.get_balance(db, program, customer.id, now).as_dict()

    return _run(db, "get_balance", op)


# ============================================================
# Redemptions
# ============================================================
def _redemption_out(redemption: Redemption):
    return lambda: RedemptionOut.model_validate(redemption).model_dump(mode="json")


def redeem_reward(
    db: Session,
    tenant_id,
    customer_id,
    reward_id,
    *,
    notes: str | None = None,
    now: datetime | None = None,
    personalizer: PersonalizationClient | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        reward = get_reward(db, program, reward_id)
        redemption = redemption_service.redeem(db, program, customer.id, reward, notes=notes, now=now)
        serialize = _redemption_out(redemption)

        def with_message():
            data = serialize()
            data["message"] = notification_service.redemption_message(
                db, program, customer, redemption, personalizer=personalizer
            )
            return data

        return with_message

    return _run(db, "redeem_reward", op)


def mark_redemption_used(db: Session, tenant_id, redemption_id, *, now: datetime | None = None) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        redemption = get_redemption(db, program, redemption_id, lock=True)
        redemption_service.mark_used(db, redemption, now=now)
        return _redemption_out(redemption)

    return _run(db, "mark_redemption_used", op)


def find_redemption(db: Session, tenant_id, code: str, *, now: datetime | None = None) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        return _redemption_out(redemption_service.find_by_code(db, program, code, now=now))

    return _run(db, "find_redemption", op)


# ============================================================
# Memberships
# ============================================================
def _membership_out(membership: Membership):
    return lambda: MembershipOut.model_validate(membership).model_dump(mode="json")


def create_membership(
    db: Session,
    tenant_id,
    customer_id,
    plan_id,
    *,
    billing_cycle: str = "monthly",
    payment_method: str | None = None,
    payment_amount=None,
    notes: str | None = None,
    auto_renew: bool = False,
    payment_pending: bool = False,
    now: datetime | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        customer = get_customer(db, program, customer_id)
        plan = get_plan(db, program, plan_id)
        membership = membership_service.create(
            db,
            program,
            customer,
            plan,
            billing_cycle,
            payment_method,
            payment_amount=payment_amount,
            notes=notes,
            auto_renew=auto_renew,
            payment_pending=payment_pending,
            now=now,
        )
        return _membership_out(membership)

    return _run(db, "create_membership", op)


def activate_membership(db: Session, tenant_id, membership_id, *, now: datetime | None = None) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        membership = get_membership(db, program, membership_id, lock=True)
        membership_service.activate(db, membership, now=now)
        return _membership_out(membership)

    return _run(db, "activate_membership", op)


def cancel_membership(
    db: Session,
    tenant_id,
    membership_id,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        membership = get_membership(db, program, membership_id, lock=True)
        membership_service.cancel(db, membership, reason=reason, now=now)
        return _membership_out(membership)

    return _run(db, "cancel_membership", op)


# ============================================================
# Stats
# ============================================================
def get_stats(db: Session, tenant_id, period: str = "month", *, now: datetime | None = None) -> OperationResult:
    def op():
        program = get_program(db, tenant_id)
        return stats_service.get_stats(db, program, period, now)

    return _run(db, "get_stats", op)
