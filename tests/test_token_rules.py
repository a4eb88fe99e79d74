from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.services import ledger_service, membership_service, token_rules_service
from loyalty_core.services.errors import ValidationError


NOW = datetime(2025, 3, 5, 10, 0, 0)  # a Wednesday


def test_action_award_is_rule_based_not_purchase_ratio(db_session, program, customer, make_rule):
    make_rule(action_type="appointment", tokens_amount=10)

    tx = token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW)
    db_session.commit()

    assert tx.tokens == 10
    assert tx.transaction_type == "earn_action"
    assert tx.reference_type == "token_rule"
    assert ledger_service.get_balance(db_session, program, customer.id, NOW).current_balance == 10
    assert customer.last_interaction_at == NOW


def test_multiplier_is_floored(db_session, program, customer, make_rule):
    make_rule(action_type="review", tokens_amount=7, tokens_multiplier=Decimal("1.5"))

    assert token_rules_service.evaluate(db_session, program, "review", {"customer_id": customer.id, "now": NOW}) == 10


def test_inactive_rule_never_awards(db_session, program, customer, make_rule):
    make_rule(action_type="referral", tokens_amount=50, is_active=False)

    assert token_rules_service.evaluate(db_session, program, "referral", {"customer_id": customer.id}) == 0
    assert token_rules_service.award_action(db_session, program, customer, "referral", now=NOW) is None
    assert db_session.query(LedgerTransaction).count() == 0


def test_most_recent_active_rule_wins(db_session, program, make_rule):
    make_rule(action_type="signup", tokens_amount=5, created_at=datetime(2024, 1, 1))
    make_rule(action_type="signup", tokens_amount=25, created_at=datetime(2024, 6, 1))

    assert token_rules_service.evaluate(db_session, program, "signup") == 25


def test_cap_per_period_is_never_exceeded(db_session, program, customer, make_rule):
    make_rule(action_type="appointment", tokens_amount=30, max_per_period=50, period_type="week")

    first = token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW)
    second = token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW + timedelta(hours=1))
    third = token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW + timedelta(hours=2))
    db_session.commit()

    assert first.tokens == 30
    assert second.tokens == 20
    assert third is None

    # next ISO week starts on Monday
    next_week = datetime(2025, 3, 10, 9, 0, 0)
    assert token_rules_service.evaluate(
        db_session, program, "appointment", {"customer_id": customer.id, "now": next_week}
    ) == 30


def test_membership_multiplier_applies_until_cancelled(db_session, program, customer, make_rule, make_plan):
    make_rule(action_type="appointment", tokens_amount=10)
    plan = make_plan(tokens_multiplier=Decimal("2"))

    start = datetime(2025, 1, 1)
    membership = membership_service.create(db_session, program, customer, plan, "monthly", "card", now=start)
    db_session.commit()

    ctx = {"customer_id": customer.id, "now": datetime(2025, 1, 10)}
    assert token_rules_service.evaluate(db_session, program, "appointment", ctx) == 20

    membership_service.cancel(db_session, membership, now=datetime(2025, 1, 15))
    db_session.commit()

    ctx = {"customer_id": customer.id, "now": datetime(2025, 1, 15, 0, 0, 1)}
    assert token_rules_service.evaluate(db_session, program, "appointment", ctx) == 10


def test_purchase_award_uses_ratio_threshold_and_lifetime_value(db_session, program, customer):
    program.tokens_per_currency = Decimal("2")
    program.tokens_currency_threshold = Decimal("20")
    db_session.commit()

    assert token_rules_service.award_purchase(db_session, program, customer, Decimal("10"), now=NOW) is None
    tx = token_rules_service.award_purchase(db_session, program, customer, Decimal("50.75"), now=NOW)
    db_session.commit()

    assert tx.tokens == 101
    assert tx.transaction_type == "earn_purchase"
    snap = ledger_service.get_balance(db_session, program, customer.id, NOW)
    assert snap.lifetime_value == Decimal("50.75")


def test_unknown_action_type_is_rejected(db_session, program):
    with pytest.raises(ValidationError):
        token_rules_service.evaluate(db_session, program, "dance")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"tokens_amount": 0},
        {"tokens_multiplier": Decimal("0")},
        {"max_per_period": 3, "period_type": None},
        {"period_type": "decade"},
    ],
)
def test_validate_rule_rejects_bad_definitions(kwargs):
    base = {
        "action_type": "appointment",
        "tokens_amount": 10,
        "tokens_multiplier": Decimal("1"),
        "max_per_period": None,
        "period_type": None,
    }
    base.update(kwargs)
    with pytest.raises(ValidationError):
        token_rules_service.validate_rule(**base)


def test_cap_is_read_while_holding_the_customer_lock(db_session, program, customer, make_rule, monkeypatch):
    make_rule(action_type="appointment", tokens_amount=10, max_per_period=10, period_type="day")
    calls = []
    real_lock = ledger_service.lock_balance
    real_window = token_rules_service._awarded_in_window

    def lock(db, program, customer_id):
        calls.append("lock")
        return real_lock(db, program, customer_id)

    def window(*args):
        calls.append("cap")
        return real_window(*args)

    monkeypatch.setattr(ledger_service, "lock_balance", lock)
    monkeypatch.setattr(token_rules_service, "_awarded_in_window", window)

    token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW)
    second = token_rules_service.award_action(db_session, program, customer, "appointment", now=NOW + timedelta(hours=1))
    db_session.commit()

    assert calls.index("lock") < calls.index("cap")
    assert second is None
    assert ledger_service.get_balance(db_session, program, customer.id, NOW).total_earned == 10
