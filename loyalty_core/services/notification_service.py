"""
Daily lifecycle jobs: membership renewal reminders and one-time reactivation
(win-back) messages, plus the confirmation texts returned when tokens are
earned or a reward is redeemed.

The notification log is the only record of what was already sent. Its unique
constraint, not the look-up done before rendering, is what stops two
overlapping runs from messaging the same customer twice.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty_core.db import SessionLocal
from loyalty_core.models.customer import Customer
from loyalty_core.models.membership import Membership
from loyalty_core.models.notification_log import NotificationLogEntry
from loyalty_core.models.program import Program
from loyalty_core.models.tenant import Tenant
from loyalty_core.services import templates
from loyalty_core.services.clock import add_months, day_bounds, utcnow
from loyalty_core.services.delivery import DeliveryClient, default_channel
from loyalty_core.services.errors import DuplicateSend
from loyalty_core.services.job_stats import JobRunStats
from loyalty_core.services.personalization import PersonalizationClient


logger = logging.getLogger(__name__)

MEMBERSHIP_REMINDER = "membership_reminder"
REACTIVATION = "reactivation"
TOKENS_EARNED = "tokens_earned"
REDEMPTION = "redemption"

REMINDER_LOOKBACK = timedelta(days=7)
REACTIVATION_DEDUPE_KEY = "once"


def _active_programs(db: Session) -> list[Program]:
    return (
        db.query(Program)
        .join(Tenant, Tenant.id == Program.tenant_id)
        .filter(Program.is_active.is_(True))
        .filter(Tenant.status == "active")
        .order_by(Program.created_at.asc())
        .all()
    )


def _already_sent(db: Session, program_id, customer_id, message_type: str, since: datetime | None = None) -> bool:
    q = (
        db.query(NotificationLogEntry.id)
        .filter(NotificationLogEntry.program_id == program_id)
        .filter(NotificationLogEntry.customer_id == customer_id)
        .filter(NotificationLogEntry.message_type == message_type)
    )
    if since is not None:
        q = q.filter(NotificationLogEntry.created_at >= since)
    return q.first() is not None


def _record_and_dispatch(
    db: Session,
    *,
    program: Program,
    customer: Customer,
    message_type: str,
    dedupe_key: str,
    text: str,
    personalized: bool,
    context: dict,
    delivery: DeliveryClient,
    now: datetime,
) -> NotificationLogEntry:
    channel = default_channel()
    entry = NotificationLogEntry(
        tenant_id=program.tenant_id,
        program_id=program.id,
        customer_id=customer.id,
        message_type=message_type,
        dedupe_key=dedupe_key,
        message_text=text,
        channel=channel,
        status="queued",
        personalized=personalized,
        context=context,
        created_at=now,
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateSend(f"{message_type} already logged for customer {customer.id}")

    result = delivery.send(destination=customer.phone, text=text, channel=channel)
    entry.status = result.status
    entry.error_message = result.error
    db.commit()
    return entry


def _render(
    message_type: str,
    template: str | None,
    variables: dict,
    *,
    tenant_name: str,
    personalizer: PersonalizationClient | None,
):
    text = templates.render(message_type, template, variables)
    if personalizer is None:
        return text, False

    result = personalizer.personalize(text, tenant_name=tenant_name, message_kind=message_type)
    if not result.personalized:
        logger.debug(
            "personalization skipped",
            extra={"message_kind": message_type, "fallback_reason": result.fallback_reason},
        )
    return result.text, result.personalized


# ============================================================
# TRANSACTIONAL MESSAGES
# ============================================================
def tokens_earned_message(
    db: Session,
    program: Program,
    customer: Customer,
    tx,
    balance: int,
    *,
    personalizer: PersonalizationClient | None = None,
) -> str:
    variables = {
        "name": templates.first_name(customer.display_name),
        "tokens": tx.tokens,
        "reason": tx.description or tx.transaction_type,
        "balance": balance,
        "tokens_name": program.tokens_name,
        "tokens_name_plural": program.tokens_name_plural,
    }
    text, _ = _render(
        TOKENS_EARNED,
        templates.get_program_template(db, program.id, TOKENS_EARNED),
        variables,
        tenant_name=program.tenant.name,
        personalizer=personalizer,
    )
    return text


def redemption_message(
    db: Session,
    program: Program,
    customer: Customer,
    redemption,
    *,
    personalizer: PersonalizationClient | None = None,
) -> str:
    snapshot = redemption.reward_snapshot or {}
    variables = {
        "name": templates.first_name(customer.display_name),
        "reward": snapshot.get("reward_name", "your reward"),
        "code": redemption.redemption_code,
        "valid_until": templates.format_date(redemption.expires_at),
    }
    text, _ = _render(
        REDEMPTION,
        templates.get_program_template(db, program.id, REDEMPTION),
        variables,
        tenant_name=program.tenant.name,
        personalizer=personalizer,
    )
    return text


# ============================================================
# MEMBERSHIP REMINDERS
# ============================================================
def _send_membership_reminder(
    db: Session,
    program: Program,
    membership: Membership,
    *,
    today,
    now: datetime,
    dry_run: bool,
    personalizer: PersonalizationClient | None,
    delivery: DeliveryClient,
) -> bool:
    customer = membership.customer

    if _already_sent(db, program.id, customer.id, MEMBERSHIP_REMINDER, since=now - REMINDER_LOOKBACK):
        logger.debug("membership reminder already sent", extra={"customer_id": str(customer.id)})
        return False

    variables = {
        "name": templates.first_name(customer.display_name),
        "plan": membership.plan.plan_name if membership.plan else "Plan",
        "end_date": templates.format_date(membership.end_date),
        "days_remaining": (membership.end_date.date() - today).days,
        "tenant": program.tenant.name,
        "program": program.program_name,
    }
    template = templates.get_program_template(db, program.id, MEMBERSHIP_REMINDER)

    if dry_run:
        templates.render(MEMBERSHIP_REMINDER, template, variables)
        return True

    text, personalized = _render(
        MEMBERSHIP_REMINDER,
        template,
        variables,
        tenant_name=program.tenant.name,
        personalizer=personalizer,
    )
    _record_and_dispatch(
        db,
        program=program,
        customer=customer,
        message_type=MEMBERSHIP_REMINDER,
        dedupe_key=today.isoformat(),
        text=text,
        personalized=personalized,
        context={
            "membership_id": str(membership.id),
            "end_date": membership.end_date.isoformat(),
            "days_remaining": variables["days_remaining"],
        },
        delivery=delivery,
        now=now,
    )
    logger.info(
        "membership reminder queued",
        extra={"program_id": str(program.id), "customer_id": str(customer.id), "membership_id": str(membership.id)},
    )
    return True


def process_expiring_memberships(
    db: Session | None = None,
    *,
    dry_run: bool = False,
    now: datetime | None = None,
    personalizer: PersonalizationClient | None = None,
    delivery: DeliveryClient | None = None,
) -> JobRunStats:
    """Remind customers whose active membership ends exactly ``membership_reminder_days`` from today."""
    now = now or utcnow()
    today = now.date()
    personalizer = personalizer or PersonalizationClient.from_env()
    delivery = delivery or DeliveryClient.from_env()

    owns_session = db is None
    if owns_session:
        db = SessionLocal()

    stats = JobRunStats()
    try:
        for program in _active_programs(db):
            if not program.membership_enabled:
                continue

            reminder_day = today + timedelta(days=int(program.membership_reminder_days or 0))
            day_start, day_end = day_bounds(reminder_day)

            memberships = (
                db.query(Membership)
                .filter(Membership.program_id == program.id)
                .filter(Membership.status == "active")
                .filter(Membership.end_date >= day_start)
                .filter(Membership.end_date < day_end)
                .order_by(Membership.end_date.asc())
                .all()
            )

            for membership in memberships:
                stats.processed += 1
                try:
                    if membership.customer is None or membership.customer.deleted_at is not None:
                        continue
                    if _send_membership_reminder(
                        db,
                        program,
                        membership,
                        today=today,
                        now=now,
                        dry_run=dry_run,
                        personalizer=personalizer,
                        delivery=delivery,
                    ):
                        stats.sent += 1
                except DuplicateSend:
                    logger.info("membership reminder sent by a concurrent run", extra={"membership_id": str(membership.id)})
                except Exception:
                    db.rollback()
                    stats.errors += 1
                    logger.exception(
                        "membership reminder failed",
                        extra={"program_id": str(program.id), "membership_id": str(membership.id)},
                    )
    finally:
        if owns_session:
            db.close()

    logger.info("membership reminder job finished", extra={**stats.as_dict(), "dry_run": dry_run})
    return stats


# ============================================================
# REACTIVATION
# ============================================================
def _format_amount(value) -> str:
    text = f"{Decimal(str(value)):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def special_offer(program: Program) -> str | None:
    if program.reactivation_offer_value is None or not program.reactivation_offer_type:
        return None
    value = _format_amount(program.reactivation_offer_value)
    if program.reactivation_offer_type == "discount_percent":
        return f"Enjoy {value}% off your next visit."
    if program.reactivation_offer_type == "discount_fixed":
        return f"Enjoy {value} off your next visit."
    return None


def months_inactive(last_interaction_at: datetime, now: datetime) -> int:
    return max(0, (now - last_interaction_at).days // 30)


def _send_reactivation(
    db: Session,
    program: Program,
    customer: Customer,
    *,
    now: datetime,
    dry_run: bool,
    personalizer: PersonalizationClient | None,
    delivery: DeliveryClient,
) -> bool:
    # lifetime limit: any earlier entry, however old, blocks the send
    if _already_sent(db, program.id, customer.id, REACTIVATION):
        return False

    months = months_inactive(customer.last_interaction_at, now)
    offer = special_offer(program)
    variables = {
        "name": templates.first_name(customer.display_name),
        "months": months,
        "offer": offer or "Book your next visit.",
        "tenant": program.tenant.name,
        "program": program.program_name,
    }
    template = templates.get_program_template(db, program.id, REACTIVATION)

    if dry_run:
        templates.render(REACTIVATION, template, variables)
        return True

    text, personalized = _render(
        REACTIVATION,
        template,
        variables,
        tenant_name=program.tenant.name,
        personalizer=personalizer,
    )
    _record_and_dispatch(
        db,
        program=program,
        customer=customer,
        message_type=REACTIVATION,
        dedupe_key=REACTIVATION_DEDUPE_KEY,
        text=text,
        personalized=personalized,
        context={
            "months_inactive": months,
            "last_interaction_at": customer.last_interaction_at.isoformat(),
            "offer": offer,
        },
        delivery=delivery,
        now=now,
    )
    logger.info(
        "reactivation message queued",
        extra={"program_id": str(program.id), "customer_id": str(customer.id), "months_inactive": months},
    )
    return True


def process_inactive_patients(
    db: Session | None = None,
    *,
    dry_run: bool = False,
    now: datetime | None = None,
    personalizer: PersonalizationClient | None = None,
    delivery: DeliveryClient | None = None,
    batch_size: int | None = None,
) -> JobRunStats:
    """Send the one-time win-back message to customers inactive for ``reactivation_months``."""
    now = now or utcnow()
    personalizer = personalizer or PersonalizationClient.from_env()
    delivery = delivery or DeliveryClient.from_env()
    if batch_size is None:
        batch_size = int(os.getenv("REACTIVATION_BATCH_SIZE") or "50")

    owns_session = db is None
    if owns_session:
        db = SessionLocal()

    stats = JobRunStats()
    try:
        for program in _active_programs(db):
            if not program.reactivation_enabled:
                continue

            cutoff = add_months(now, -int(program.reactivation_months or 0))
            already_contacted = exists().where(
                and_(
                    NotificationLogEntry.program_id == program.id,
                    NotificationLogEntry.customer_id == Customer.id,
                    NotificationLogEntry.message_type == REACTIVATION,
                )
            )

            customers = (
                db.query(Customer)
                .filter(Customer.tenant_id == program.tenant_id)
                .filter(Customer.deleted_at.is_(None))
                .filter(Customer.last_interaction_at.isnot(None))
                .filter(Customer.last_interaction_at <= cutoff)
                .filter(~already_contacted)
                .order_by(Customer.last_interaction_at.asc())
                .limit(batch_size)
                .all()
            )

            for customer in customers:
                stats.processed += 1
                try:
                    if _send_reactivation(
                        db,
                        program,
                        customer,
                        now=now,
                        dry_run=dry_run,
                        personalizer=personalizer,
                        delivery=delivery,
                    ):
                        stats.sent += 1
                except DuplicateSend:
                    logger.info("reactivation sent by a concurrent run", extra={"customer_id": str(customer.id)})
                except Exception:
                    db.rollback()
                    stats.errors += 1
                    logger.exception(
                        "reactivation failed",
                        extra={"program_id": str(program.id), "customer_id": str(customer.id)},
                    )
    finally:
        if owns_session:
            db.close()

    logger.info("reactivation job finished", extra={**stats.as_dict(), "dry_run": dry_run})
    return stats
