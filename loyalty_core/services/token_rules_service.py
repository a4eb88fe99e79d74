from __future__ import annotations

from datetime import datetime
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from loyalty_core.models.customer import Customer
from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.models.program import Program
from loyalty_core.models.token_rule import TokenRule
from loyalty_core.services import ledger_service
from loyalty_core.services.clock import period_start, utcnow
from loyalty_core.services.errors import ValidationError
from loyalty_core.services.membership_service import active_multiplier


ACTION_TYPES = {"purchase", "appointment", "referral", "review", "signup", "birthday", "custom"}
PERIOD_TYPES = {"day", "week", "month", "year", "lifetime"}


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def validate_rule(
    *,
    action_type: str,
    tokens_amount: int,
    tokens_multiplier,
    max_per_period: int | None,
    period_type: str | None,
) -> None:
    if action_type not in ACTION_TYPES:
        raise ValidationError(f"Unsupported action_type: {action_type}")
    if tokens_amount is None or int(tokens_amount) <= 0:
        raise ValidationError("tokens_amount must be positive")
    if tokens_multiplier is None or Decimal(str(tokens_multiplier)) <= 0:
        raise ValidationError("tokens_multiplier must be greater than 0")
    if max_per_period is not None:
        if int(max_per_period) < 0:
            raise ValidationError("max_per_period cannot be negative")
        if not period_type:
            raise ValidationError("period_type is required when max_per_period is set")
    if period_type is not None and period_type not in PERIOD_TYPES:
        raise ValidationError(f"Unsupported period_type: {period_type}")


def find_rule(db: Session, program: Program, action_type: str) -> TokenRule | None:
    # duplicates are tolerated: the most recently created active rule wins
    return (
        db.query(TokenRule)
        .filter(TokenRule.program_id == program.id)
        .filter(TokenRule.action_type == action_type)
        .filter(TokenRule.is_active.is_(True))
        .order_by(TokenRule.created_at.desc())
        .first()
    )


def _awarded_in_window(db: Session, program: Program, customer_id, action_type: str, since: datetime | None) -> int:
    q = (
        db.query(func.coalesce(func.sum(LedgerTransaction.tokens), 0))
        .filter(
            LedgerTransaction.program_id == program.id,
            LedgerTransaction.customer_id == customer_id,
            LedgerTransaction.transaction_type == "earn_action",
            LedgerTransaction.action_type == action_type,
        )
    )
    if since is not None:
        q = q.filter(LedgerTransaction.created_at >= since)
    return int(q.scalar() or 0)


def _evaluate(db: Session, program: Program, action_type: str, context: dict) -> tuple[TokenRule | None, int]:
    if action_type not in ACTION_TYPES:
        raise ValidationError(f"Unsupported action_type: {action_type}")

    rule = find_rule(db, program, action_type)
    if rule is None:
        return None, 0

    now = context.get("now") or utcnow()
    customer_id = context.get("customer_id")

    multiplier = Decimal(str(rule.tokens_multiplier or 1))
    if customer_id is not None:
        multiplier *= active_multiplier(db, program, customer_id, now)

    tokens = max(0, _floor(Decimal(rule.tokens_amount) * multiplier))

    if rule.max_per_period is not None and customer_id is not None:
        since = period_start(rule.period_type, now)
        already = _awarded_in_window(db, program, customer_id, action_type, since)
        tokens = max(0, min(tokens, rule.max_per_period - already))

    return rule, tokens


def evaluate(db: Session, program: Program, action_type: str, context: dict | None = None) -> int:
    """
    Tokens a customer would get for ``action_type``.
    ``context`` may carry ``customer_id`` (caps and membership multiplier) and ``now``.
    """
    _, tokens = _evaluate(db, program, action_type, context or {})
    return tokens


def _touch(customer: Customer, now: datetime) -> None:
    if customer.last_interaction_at is None or customer.last_interaction_at < now:
        customer.last_interaction_at = now


def award_action(
    db: Session,
    program: Program,
    customer: Customer,
    action_type: str,
    *,
    description: str | None = None,
    now: datetime | None = None,
) -> LedgerTransaction | None:
    now = now or utcnow()
    # the cap is read from the ledger, so hold the customer's lock from the read through the credit
    ledger_service.lock_balance(db, program, customer.id)
    rule, tokens = _evaluate(db, program, action_type, {"customer_id": customer.id, "now": now})

    _touch(customer, now)
    if rule is None or tokens <= 0:
        db.flush()
        return None

    return ledger_service.credit(
        db,
        program,
        customer.id,
        tokens,
        "earn_action",
        description or rule.action_name,
        reference_type="token_rule",
        reference_id=rule.id,
        action_type=action_type,
        now=now,
    )


def purchase_tokens(program: Program, amount, multiplier: Decimal = Decimal("1")) -> int:
    value = Decimal(str(amount))
    if value < Decimal(program.tokens_currency_threshold or 0):
        return 0
    return max(0, _floor(value * Decimal(program.tokens_per_currency) * multiplier))


def award_purchase(
    db: Session,
    program: Program,
    customer: Customer,
    amount,
    *,
    description: str | None = None,
    reference_id=None,
    now: datetime | None = None,
) -> LedgerTransaction | None:
    if amount is None or Decimal(str(amount)) <= 0:
        raise ValidationError("purchase amount must be positive")

    now = now or utcnow()
    multiplier = active_multiplier(db, program, customer.id, now)
    tokens = purchase_tokens(program, amount, multiplier)

    _touch(customer, now)
    if tokens <= 0:
        db.flush()
        return None

    return ledger_service.credit(
        db,
        program,
        customer.id,
        tokens,
        "earn_purchase",
        description or f"Purchase of {Decimal(str(amount)):.2f}",
        reference_type="purchase",
        reference_id=reference_id,
        purchase_amount=Decimal(str(amount)),
        now=now,
    )
