from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loyalty_core.models.program import Program
from loyalty_core.models.redemption import Redemption
from loyalty_core.models.reward import Reward
from loyalty_core.services import ledger_service
from loyalty_core.services.clock import utcnow
from loyalty_core.services.errors import (
    InsufficientBalance,
    InvalidStateTransition,
    NotFound,
    StockExhausted,
    ValidationError,
)
from loyalty_core.services.job_stats import SweepStats


logger = logging.getLogger(__name__)

REWARD_TYPES = {"discount_percentage", "discount_fixed", "free_service", "gift", "upgrade", "custom"}

# no 0/O or 1/I, codes are read out loud at the counter
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 20


def validate_reward(*, tokens_required: int, reward_type: str, stock_limit: int | None, valid_days: int) -> None:
    if tokens_required is None or int(tokens_required) <= 0:
        raise ValidationError("tokens_required must be positive")
    if reward_type not in REWARD_TYPES:
        raise ValidationError(f"Unsupported reward_type: {reward_type}")
    if stock_limit is not None and int(stock_limit) < 0:
        raise ValidationError("stock_limit cannot be negative")
    if valid_days is None or int(valid_days) <= 0:
        raise ValidationError("valid_days must be positive")


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _unique_code(db: Session) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_code()
        taken = db.query(Redemption.id).filter(Redemption.redemption_code == code).first()
        if not taken:
            return code
    raise RuntimeError("Could not allocate a unique redemption code")


def _snapshot(reward: Reward) -> dict:
    return {
        "id": str(reward.id),
        "reward_name": reward.reward_name,
        "reward_type": reward.reward_type,
        "tokens_required": reward.tokens_required,
        "discount_value": str(reward.discount_value) if reward.discount_value is not None else None,
        "valid_days": reward.valid_days,
        "terms_conditions": reward.terms_conditions,
    }


def _claim_stock(db: Session, reward: Reward) -> None:
    # single conditional UPDATE: concurrent redeemers cannot both take the last unit
    result = db.execute(
        update(Reward)
        .where(Reward.id == reward.id)
        .where(or_(Reward.stock_limit.is_(None), Reward.stock_used < Reward.stock_limit))
        .values(stock_used=Reward.stock_used + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StockExhausted(f"Reward {reward.reward_name!r} is out of stock")
    db.refresh(reward)


# ============================================================
# REDEEM
# ============================================================
def redeem(
    db: Session,
    program: Program,
    customer_id,
    reward: Reward,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> Redemption:
    """
    Exchange tokens for a reward.

    Debit, stock claim, code allocation and the redemption row are only
    flushed here; the caller commits them together or rolls all of them back.
    """
    now = now or utcnow()

    if reward.program_id != program.id or not reward.is_active:
        raise NotFound("Reward not found")

    if reward.stock_limit is not None and (reward.stock_used or 0) >= reward.stock_limit:
        raise StockExhausted(f"Reward {reward.reward_name!r} is out of stock")

    balance = ledger_service.get_balance(db, program, customer_id, now)
    if balance.current_balance < reward.tokens_required:
        # checked again under the balance lock by debit()
        raise InsufficientBalance(
            f"Insufficient balance: {balance.current_balance} available, {reward.tokens_required} required"
        )

    _claim_stock(db, reward)

    redemption = Redemption(
        tenant_id=program.tenant_id,
        program_id=program.id,
        customer_id=customer_id,
        reward_id=reward.id,
        redemption_code=_unique_code(db),
        tokens_used=reward.tokens_required,
        reward_snapshot=_snapshot(reward),
        status="pending",
        expires_at=now + timedelta(days=int(reward.valid_days)),
        notes=notes,
        created_at=now,
    )
    db.add(redemption)
    db.flush()

    ledger_service.debit(
        db,
        program,
        customer_id,
        reward.tokens_required,
        "spend",
        f"Redeemed: {reward.reward_name}",
        reference_type="redemption",
        reference_id=redemption.id,
        now=now,
    )

    logger.info(
        "reward redeemed",
        extra={
            "redemption_id": str(redemption.id),
            "reward_id": str(reward.id),
            "customer_id": str(customer_id),
            "tokens_used": redemption.tokens_used,
        },
    )
    return redemption


# ============================================================
# USE / EXPIRE
# ============================================================
def refresh_status(redemption: Redemption, now: datetime | None = None) -> Redemption:
    now = now or utcnow()
    if redemption.status == "pending" and redemption.expires_at is not None and now > redemption.expires_at:
        redemption.status = "expired"
    return redemption


def mark_used(db: Session, redemption: Redemption, *, now: datetime | None = None) -> Redemption:
    now = now or utcnow()
    refresh_status(redemption, now)

    if redemption.status != "pending":
        db.flush()
        raise InvalidStateTransition(f"Redemption is {redemption.status}, only pending redemptions can be used")

    redemption.status = "used"
    redemption.used_at = now
    db.flush()
    return redemption


def find_by_code(db: Session, program: Program, code: str, *, now: datetime | None = None) -> Redemption:
    redemption = (
        db.query(Redemption)
        .filter(Redemption.program_id == program.id)
        .filter(Redemption.redemption_code == (code or "").strip().upper())
        .first()
    )
    if not redemption:
        raise NotFound("Redemption code not found")

    refresh_status(redemption, now)
    db.flush()
    return redemption


def expire_redemptions(db: Session, now: datetime | None = None) -> SweepStats:
    """pending -> expired once past expires_at. Tokens are not refunded."""
    now = now or utcnow()
    stats = SweepStats()

    try:
        expired = (
            db.query(Redemption)
            .filter(Redemption.status == "pending")
            .filter(Redemption.expires_at < now)
            .all()
        )
        for r in expired:
            r.status = "expired"
        stats.processed = stats.updated = len(expired)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        stats.errors += 1
        logger.exception("redemption expiry sweep failed")

    return stats
