from datetime import datetime, timedelta

import pytest

from loyalty_core.models.redemption import Redemption
from loyalty_core.services import ledger_service, redemption_service
from loyalty_core.services.errors import InsufficientBalance, InvalidStateTransition, NotFound, StockExhausted


NOW = datetime(2025, 4, 1, 15, 0, 0)


def _fund(db, program, customer, amount):
    ledger_service.credit(db, program, customer.id, amount, "manual", "Seed", now=NOW - timedelta(days=1))
    db.commit()


def test_redeem_debits_and_issues_pending_code(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=100, valid_days=30)
    _fund(db_session, program, customer, 150)

    redemption = redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.commit()

    assert redemption.status == "pending"
    assert redemption.tokens_used == 100
    assert redemption.expires_at == NOW + timedelta(days=30)
    assert len(redemption.redemption_code) == 8
    assert set(redemption.redemption_code) <= set(redemption_service.CODE_ALPHABET)
    assert redemption.reward_snapshot["reward_name"] == "Free cleaning"
    assert ledger_service.get_balance(db_session, program, customer.id, NOW).current_balance == 50


def test_insufficient_balance_leaves_everything_unchanged(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=100, stock_limit=5)
    _fund(db_session, program, customer, 80)

    with pytest.raises(InsufficientBalance):
        redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.rollback()

    db_session.refresh(reward)
    assert reward.stock_used == 0
    assert db_session.query(Redemption).count() == 0
    assert ledger_service.get_balance(db_session, program, customer.id, NOW).current_balance == 80


def test_stock_limit_allows_exactly_n(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=10, stock_limit=2)
    _fund(db_session, program, customer, 100)

    for _ in range(2):
        redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
        db_session.commit()

    with pytest.raises(StockExhausted):
        redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.rollback()

    db_session.refresh(reward)
    assert reward.stock_used == 2
    assert ledger_service.get_balance(db_session, program, customer.id, NOW).current_balance == 80


def test_inactive_or_foreign_reward_is_not_found(db_session, program, customer, make_reward):
    reward = make_reward(is_active=False)
    _fund(db_session, program, customer, 500)

    with pytest.raises(NotFound):
        redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)


def test_codes_are_unique(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=1)
    _fund(db_session, program, customer, 50)

    codes = set()
    for _ in range(20):
        codes.add(redemption_service.redeem(db_session, program, customer.id, reward, now=NOW).redemption_code)
    db_session.commit()

    assert len(codes) == 20


def test_mark_used_only_from_pending(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=10)
    _fund(db_session, program, customer, 100)
    redemption = redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.commit()

    redemption_service.mark_used(db_session, redemption, now=NOW + timedelta(days=1))
    assert redemption.status == "used"
    assert redemption.used_at == NOW + timedelta(days=1)

    with pytest.raises(InvalidStateTransition):
        redemption_service.mark_used(db_session, redemption, now=NOW + timedelta(days=2))


def test_expired_redemption_cannot_be_used_and_is_not_refunded(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=10, valid_days=7)
    _fund(db_session, program, customer, 100)
    redemption = redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.commit()

    later = NOW + timedelta(days=8)
    with pytest.raises(InvalidStateTransition):
        redemption_service.mark_used(db_session, redemption, now=later)
    assert redemption.status == "expired"
    assert ledger_service.get_balance(db_session, program, customer.id, later).current_balance == 90


def test_expiry_sweep_and_code_lookup(db_session, program, customer, make_reward):
    reward = make_reward(tokens_required=10, valid_days=7)
    _fund(db_session, program, customer, 100)
    redemption = redemption_service.redeem(db_session, program, customer.id, reward, now=NOW)
    db_session.commit()

    found = redemption_service.find_by_code(db_session, program, redemption.redemption_code.lower(), now=NOW)
    assert found.id == redemption.id

    stats = redemption_service.expire_redemptions(db_session, NOW + timedelta(days=8))
    assert stats.updated == 1
    db_session.refresh(redemption)
    assert redemption.status == "expired"

    with pytest.raises(NotFound):
        redemption_service.find_by_code(db_session, program, "ZZZZZZZZ", now=NOW)
