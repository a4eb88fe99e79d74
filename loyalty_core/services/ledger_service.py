from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.models.loyalty_balance import LoyaltyBalance
from loyalty_core.models.program import Program
from loyalty_core.services.clock import utcnow
from loyalty_core.services.errors import InsufficientBalance, ValidationError
from loyalty_core.services.job_stats import SweepStats
from loyalty_core.services.tier_service import classify


logger = logging.getLogger(__name__)

CREDIT_TYPES = {"earn_purchase", "earn_action", "adjustment", "manual"}
DEBIT_TYPES = {"spend", "adjustment", "manual"}
EXPIRATION = "expiration"


@dataclass
class BalanceSnapshot:
    program_id: object
    customer_id: object
    total_earned: int = 0
    total_spent: int = 0
    total_expired: int = 0
    current_balance: int = 0
    lifetime_value: Decimal = Decimal("0")
    tier: str = "bronze"
    last_earn_at: datetime | None = None
    last_redeem_at: datetime | None = None
    next_expiry_at: datetime | None = None

    def as_dict(self) -> dict:
        return {
            "program_id": str(self.program_id),
            "customer_id": str(self.customer_id),
            "total_earned": self.total_earned,
            "total_spent": self.total_spent,
            "total_expired": self.total_expired,
            "current_balance": self.current_balance,
            "lifetime_value": str(self.lifetime_value),
            "tier": self.tier,
            "last_earn_at": self.last_earn_at.isoformat() if self.last_earn_at else None,
            "last_redeem_at": self.last_redeem_at.isoformat() if self.last_redeem_at else None,
            "next_expiry_at": self.next_expiry_at.isoformat() if self.next_expiry_at else None,
        }


# ============================================================
# Replay
# ============================================================

def _history(db: Session, program_id, customer_id) -> list[LedgerTransaction]:
    return (
        db.query(LedgerTransaction)
        .filter(
            LedgerTransaction.program_id == program_id,
            LedgerTransaction.customer_id == customer_id,
        )
        .order_by(LedgerTransaction.created_at.asc())
        .all()
    )


def _open_lots(txs: list[LedgerTransaction]) -> list[tuple[LedgerTransaction, int]]:
    """
    Positive transactions with their unconsumed remainder.
    Spends consume the oldest lots first; an expiration only ever removes
    the remainder of the lot it references.
    """
    expired_by_lot: dict = defaultdict(int)
    consumed = 0
    for t in txs:
        if t.transaction_type == EXPIRATION:
            expired_by_lot[t.reference_id] += -t.tokens
        elif t.tokens < 0:
            consumed += -t.tokens

    lots = []
    for t in txs:
        if t.tokens <= 0:
            continue
        available = t.tokens - expired_by_lot.get(t.id, 0)
        take = min(available, consumed)
        consumed -= take
        lots.append((t, available - take))
    return lots


def _fold(program: Program, customer_id, txs: list[LedgerTransaction]) -> BalanceSnapshot:
    snap = BalanceSnapshot(program_id=program.id, customer_id=customer_id)

    for t in txs:
        if t.tokens > 0:
            snap.total_earned += t.tokens
            if snap.last_earn_at is None or (t.created_at and t.created_at > snap.last_earn_at):
                snap.last_earn_at = t.created_at
        elif t.transaction_type == EXPIRATION:
            snap.total_expired += -t.tokens
        else:
            snap.total_spent += -t.tokens
            if t.transaction_type == "spend":
                if snap.last_redeem_at is None or (t.created_at and t.created_at > snap.last_redeem_at):
                    snap.last_redeem_at = t.created_at
        if t.purchase_amount:
            snap.lifetime_value += Decimal(t.purchase_amount)

    snap.current_balance = snap.total_earned - snap.total_spent - snap.total_expired
    snap.tier = classify(snap.total_earned, program.tier_thresholds)

    upcoming = [lot.expires_at for lot, remaining in _open_lots(txs) if remaining > 0 and lot.expires_at]
    snap.next_expiry_at = min(upcoming) if upcoming else None
    return snap


def replay_balance(db: Session, program: Program, customer_id) -> BalanceSnapshot:
    return _fold(program, customer_id, _history(db, program.id, customer_id))


# ============================================================
# Projection
# ============================================================

def _select_balance(db: Session, program: Program, customer_id) -> LoyaltyBalance | None:
    return (
        db.query(LoyaltyBalance)
        .filter(
            LoyaltyBalance.program_id == program.id,
            LoyaltyBalance.customer_id == customer_id,
        )
        .with_for_update()
        .first()
    )


def lock_balance(db: Session, program: Program, customer_id) -> LoyaltyBalance:
    """
    Lock the customer's projection row, creating it on first use.

    The row doubles as the per-customer write lock: anything that reads the
    ledger to decide what to write (caps, overdraft checks) takes it first.
    """
    row = _select_balance(db, program, customer_id)
    if row is not None:
        return row

    try:
        with db.begin_nested():
            db.add(
                LoyaltyBalance(
                    tenant_id=program.tenant_id,
                    program_id=program.id,
                    customer_id=customer_id,
                    current_balance=0,
                    total_earned=0,
                    total_spent=0,
                    total_expired=0,
                    lifetime_value=0,
                    tier="bronze",
                )
            )
    except IntegrityError:
        # a concurrent first write created the row; wait for its lock instead
        logger.info(
            "balance row created concurrently",
            extra={"program_id": str(program.id), "customer_id": str(customer_id)},
        )

    return _select_balance(db, program, customer_id)


def _store_snapshot(row: LoyaltyBalance, snap: BalanceSnapshot, now: datetime) -> None:
    if row.tier != snap.tier:
        row.tier = snap.tier
        row.tier_updated_at = now

    row.current_balance = snap.current_balance
    row.total_earned = snap.total_earned
    row.total_spent = snap.total_spent
    row.total_expired = snap.total_expired
    row.lifetime_value = snap.lifetime_value
    row.last_earn_at = snap.last_earn_at
    row.last_redeem_at = snap.last_redeem_at
    row.next_expiry_at = snap.next_expiry_at


def _refresh_projection(db: Session, program: Program, row: LoyaltyBalance, now: datetime) -> BalanceSnapshot:
    snap = replay_balance(db, program, row.customer_id)
    _store_snapshot(row, snap, now)
    db.flush()
    return snap


def reconcile_balance(db: Session, program: Program, customer_id, now: datetime | None = None) -> bool:
    """Rewrite the cached projection from a full replay. Returns True when it had drifted."""
    now = now or utcnow()
    row = lock_balance(db, program, customer_id)
    snap = replay_balance(db, program, customer_id)

    drifted = (
        row.current_balance != snap.current_balance
        or row.total_earned != snap.total_earned
        or row.total_spent != snap.total_spent
        or row.total_expired != snap.total_expired
    )
    if drifted:
        logger.warning(
            "balance projection drift",
            extra={
                "program_id": str(program.id),
                "customer_id": str(customer_id),
                "cached": row.current_balance,
                "replayed": snap.current_balance,
            },
        )
    _store_snapshot(row, snap, now)
    db.flush()
    return drifted


# ============================================================
# Expiry
# ============================================================

def _due_lots(txs: list[LedgerTransaction], now: datetime):
    return [
        (lot, remaining)
        for lot, remaining in _open_lots(txs)
        if remaining > 0 and lot.expires_at is not None and lot.expires_at <= now
    ]


def _apply_expirations(db: Session, program: Program, customer_id, now: datetime) -> int:
    expired = 0
    for lot, remaining in _due_lots(_history(db, program.id, customer_id), now):
        db.add(
            LedgerTransaction(
                tenant_id=program.tenant_id,
                program_id=program.id,
                customer_id=customer_id,
                tokens=-remaining,
                transaction_type=EXPIRATION,
                description=f"{remaining} {program.tokens_name_plural} expired",
                reference_type="expired_transaction",
                reference_id=lot.id,
                created_at=now,
            )
        )
        expired += remaining

    if expired:
        db.flush()
    return expired


def expire_customer_tokens(db: Session, program: Program, customer_id, now: datetime | None = None) -> int:
    now = now or utcnow()
    row = lock_balance(db, program, customer_id)
    expired = _apply_expirations(db, program, customer_id, now)
    if expired:
        _refresh_projection(db, program, row, now)
    return expired


def expire_tokens(db: Session, now: datetime | None = None) -> SweepStats:
    """Periodic sweep; converges with the lazy path in get_balance because both use expire_customer_tokens."""
    now = now or utcnow()
    stats = SweepStats()

    pairs = (
        db.query(LedgerTransaction.program_id, LedgerTransaction.customer_id)
        .filter(LedgerTransaction.tokens > 0)
        .filter(LedgerTransaction.expires_at.isnot(None))
        .filter(LedgerTransaction.expires_at <= now)
        .distinct()
        .all()
    )

    for program_id, customer_id in pairs:
        stats.processed += 1
        try:
            program = db.query(Program).filter(Program.id == program_id).one()
            if expire_customer_tokens(db, program, customer_id, now):
                stats.updated += 1
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            stats.errors += 1
            logger.exception(
                "token expiry failed",
                extra={"program_id": str(program_id), "customer_id": str(customer_id)},
            )

    logger.info("token expiry sweep finished", extra=stats.as_dict())
    return stats


# ============================================================
# Credit / debit
# ============================================================

def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("amount must be an integer number of tokens")
    if amount <= 0:
        raise ValidationError("amount must be positive")
    return amount


def _append(
    db: Session,
    program: Program,
    customer_id,
    tokens: int,
    transaction_type: str,
    description: str,
    now: datetime,
    *,
    reference_type: str | None = None,
    reference_id=None,
    action_type: str | None = None,
    purchase_amount=None,
) -> LedgerTransaction:
    expires_at = None
    if tokens > 0 and program.tokens_expiry_days and program.tokens_expiry_days > 0:
        expires_at = now + timedelta(days=int(program.tokens_expiry_days))

    tx = LedgerTransaction(
        tenant_id=program.tenant_id,
        program_id=program.id,
        customer_id=customer_id,
        tokens=tokens,
        transaction_type=transaction_type,
        description=description or transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        action_type=action_type,
        purchase_amount=purchase_amount,
        expires_at=expires_at,
        created_at=now,
    )
    db.add(tx)
    db.flush()
    return tx


def credit(
    db: Session,
    program: Program,
    customer_id,
    amount: int,
    transaction_type: str,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    action_type: str | None = None,
    purchase_amount=None,
    now: datetime | None = None,
) -> LedgerTransaction:
    amount = _validate_amount(amount)
    if transaction_type not in CREDIT_TYPES:
        raise ValidationError(f"transaction_type {transaction_type!r} cannot credit tokens")
    if not program.tokens_enabled:
        raise ValidationError("Tokens are disabled for this program")

    now = now or utcnow()
    row = lock_balance(db, program, customer_id)
    _apply_expirations(db, program, customer_id, now)

    tx = _append(
        db,
        program,
        customer_id,
        amount,
        transaction_type,
        description,
        now,
        reference_type=reference_type,
        reference_id=reference_id,
        action_type=action_type,
        purchase_amount=purchase_amount,
    )
    _refresh_projection(db, program, row, now)
    return tx


def debit(
    db: Session,
    program: Program,
    customer_id,
    amount: int,
    transaction_type: str,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    now: datetime | None = None,
) -> LedgerTransaction:
    amount = _validate_amount(amount)
    if transaction_type not in DEBIT_TYPES:
        raise ValidationError(f"transaction_type {transaction_type!r} cannot debit tokens")

    now = now or utcnow()
    row = lock_balance(db, program, customer_id)
    _apply_expirations(db, program, customer_id, now)

    current = replay_balance(db, program, customer_id).current_balance
    if current < amount:
        raise InsufficientBalance(f"Insufficient balance: {current} available, {amount} required")

    tx = _append(
        db,
        program,
        customer_id,
        -amount,
        transaction_type,
        description,
        now,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    _refresh_projection(db, program, row, now)
    return tx


# ============================================================
# Tiers
# ============================================================

def reclassify_tiers(db: Session, program: Program, now: datetime | None = None) -> int:
    """Re-rank every cached projection after the program's thresholds change. Returns rows changed."""
    now = now or utcnow()
    changed = 0

    rows = (
        db.query(LoyaltyBalance)
        .filter(LoyaltyBalance.program_id == program.id)
        .with_for_update()
        .all()
    )
    for row in rows:
        tier = classify(row.total_earned or 0, program.tier_thresholds)
        if row.tier != tier:
            row.tier = tier
            row.tier_updated_at = now
            changed += 1

    db.flush()
    if changed:
        logger.info("tiers reclassified", extra={"program_id": str(program.id), "changed": changed})
    return changed


# ============================================================
# Reads
# ============================================================

def get_balance(db: Session, program: Program, customer_id, now: datetime | None = None) -> BalanceSnapshot:
    now = now or utcnow()

    txs = _history(db, program.id, customer_id)
    if _due_lots(txs, now):
        expire_customer_tokens(db, program, customer_id, now)
        txs = _history(db, program.id, customer_id)

    return _fold(program, customer_id, txs)


def list_transactions(db: Session, program: Program, customer_id, *, limit: int = 100, offset: int = 0):
    limit = max(1, min(limit, 500))
    offset = max(0, offset)

    return (
        db.query(LedgerTransaction)
        .filter(
            LedgerTransaction.program_id == program.id,
            LedgerTransaction.customer_id == customer_id,
        )
        .order_by(LedgerTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
