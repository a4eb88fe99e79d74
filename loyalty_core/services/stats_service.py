from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.models.loyalty_balance import LoyaltyBalance
from loyalty_core.models.membership import Membership
from loyalty_core.models.notification_log import NotificationLogEntry
from loyalty_core.models.program import Program
from loyalty_core.models.redemption import Redemption
from loyalty_core.services.clock import period_start, utcnow
from loyalty_core.services.errors import ValidationError


STATS_PERIODS = ("day", "week", "month", "year", "all")


def _since(q, column, since: datetime | None):
    if since is not None:
        q = q.filter(column >= since)
    return q


def _token_sum(db: Session, program: Program, since: datetime | None, *criteria) -> int:
    q = db.query(func.coalesce(func.sum(LedgerTransaction.tokens), 0)).filter(
        LedgerTransaction.program_id == program.id,
        *criteria,
    )
    return abs(int(_since(q, LedgerTransaction.created_at, since).scalar() or 0))


def get_stats(db: Session, program: Program, period: str = "month", now: datetime | None = None) -> dict:
    """Program dashboard figures for the period (``all`` = since the program started)."""
    if period not in STATS_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(STATS_PERIODS)}")

    now = now or utcnow()
    since = period_start(period, now)

    earned_q = db.query(func.coalesce(func.sum(LedgerTransaction.tokens), 0)).filter(
        LedgerTransaction.program_id == program.id,
        LedgerTransaction.transaction_type.in_(("earn_purchase", "earn_action")),
    )
    tokens_earned = int(_since(earned_q, LedgerTransaction.created_at, since).scalar() or 0)

    redemptions_q = db.query(func.count(Redemption.id)).filter(Redemption.program_id == program.id)
    redemptions_created = _since(redemptions_q, Redemption.created_at, since).scalar() or 0

    used_q = db.query(func.count(Redemption.id)).filter(
        Redemption.program_id == program.id,
        Redemption.status == "used",
    )
    redemptions_used = _since(used_q, Redemption.used_at, since).scalar() or 0

    by_status = dict(
        db.query(Membership.status, func.count(Membership.id))
        .filter(Membership.program_id == program.id)
        .group_by(Membership.status)
        .all()
    )

    new_q = db.query(
        func.count(Membership.id),
        func.coalesce(func.sum(Membership.payment_amount), 0),
    ).filter(
        Membership.program_id == program.id,
        Membership.status != "pending",
    )
    new_memberships, revenue = _since(new_q, Membership.start_date, since).one()

    customers_with_balance = (
        db.query(func.count(LoyaltyBalance.id))
        .filter(LoyaltyBalance.program_id == program.id, LoyaltyBalance.current_balance > 0)
        .scalar()
        or 0
    )

    notif_q = (
        db.query(NotificationLogEntry.message_type, func.count(NotificationLogEntry.id))
        .filter(NotificationLogEntry.program_id == program.id)
    )
    notifications = dict(
        _since(notif_q, NotificationLogEntry.created_at, since)
        .group_by(NotificationLogEntry.message_type)
        .all()
    )

    return {
        "period": period,
        "since": since.isoformat() if since else None,
        "tokens": {
            "earned": tokens_earned,
            # every debit except expiry, matching the balance's total_spent
            "spent": _token_sum(
                db,
                program,
                since,
                LedgerTransaction.tokens < 0,
                LedgerTransaction.transaction_type != "expiration",
            ),
            "expired": _token_sum(db, program, since, LedgerTransaction.transaction_type == "expiration"),
        },
        "redemptions": {
            "created": int(redemptions_created),
            "used": int(redemptions_used),
        },
        "memberships": {
            "active": int(by_status.get("active", 0)),
            "pending": int(by_status.get("pending", 0)),
            "expired": int(by_status.get("expired", 0)),
            "cancelled": int(by_status.get("cancelled", 0)),
            "new_in_period": int(new_memberships or 0),
            "revenue_in_period": str(Decimal(str(revenue or 0)).quantize(Decimal("0.01"))),
        },
        "customers_with_balance": int(customers_with_balance),
        "notifications": {
            "membership_reminder": int(notifications.get("membership_reminder", 0)),
            "reactivation": int(notifications.get("reactivation", 0)),
        },
    }
