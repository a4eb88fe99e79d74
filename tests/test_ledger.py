from datetime import datetime, timedelta

import pytest

from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.models.loyalty_balance import LoyaltyBalance
from loyalty_core.services import ledger_service
from loyalty_core.services.errors import InsufficientBalance, ValidationError


NOW = datetime(2025, 3, 1, 12, 0, 0)


def _balance_row(db, program, customer):
    return (
        db.query(LoyaltyBalance)
        .filter(LoyaltyBalance.program_id == program.id, LoyaltyBalance.customer_id == customer.id)
        .one()
    )


def test_balance_is_earned_minus_spent_minus_expired(db_session, program, customer):
    ledger_service.credit(db_session, program, customer.id, 120, "manual", "Welcome", now=NOW)
    ledger_service.credit(db_session, program, customer.id, 30, "earn_action", "Review", now=NOW + timedelta(minutes=1))
    ledger_service.debit(db_session, program, customer.id, 50, "spend", "Redeemed", now=NOW + timedelta(minutes=2))
    db_session.commit()

    snap = ledger_service.get_balance(db_session, program, customer.id, NOW + timedelta(days=1))

    assert snap.total_earned == 150
    assert snap.total_spent == 50
    assert snap.total_expired == 0
    assert snap.current_balance == 100
    assert _balance_row(db_session, program, customer).current_balance == 100


def test_debit_beyond_balance_is_rejected_and_writes_nothing(db_session, program, customer):
    ledger_service.credit(db_session, program, customer.id, 80, "manual", "Seed", now=NOW)
    db_session.commit()

    with pytest.raises(InsufficientBalance):
        ledger_service.debit(db_session, program, customer.id, 100, "spend", "Too much", now=NOW)
    db_session.rollback()

    assert ledger_service.get_balance(db_session, program, customer.id, NOW).current_balance == 80
    assert db_session.query(LedgerTransaction).count() == 1


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_are_validation_errors(db_session, program, customer, amount):
    with pytest.raises(ValidationError):
        ledger_service.credit(db_session, program, customer.id, amount, "manual", "Bad", now=NOW)
    with pytest.raises(ValidationError):
        ledger_service.debit(db_session, program, customer.id, amount, "manual", "Bad", now=NOW)


def test_transaction_type_must_match_direction(db_session, program, customer):
    with pytest.raises(ValidationError):
        ledger_service.credit(db_session, program, customer.id, 10, "spend", "Wrong way", now=NOW)
    with pytest.raises(ValidationError):
        ledger_service.debit(db_session, program, customer.id, 10, "earn_purchase", "Wrong way", now=NOW)


def test_credit_sets_expiry_from_program(db_session, program, customer):
    tx = ledger_service.credit(db_session, program, customer.id, 10, "manual", "Seed", now=NOW)
    assert tx.expires_at == NOW + timedelta(days=365)

    program.tokens_expiry_days = 0
    tx = ledger_service.credit(db_session, program, customer.id, 10, "manual", "Seed", now=NOW)
    assert tx.expires_at is None


def test_expired_lot_remainder_is_written_once(db_session, program, customer):
    program.tokens_expiry_days = 30
    ledger_service.credit(db_session, program, customer.id, 100, "manual", "Old lot", now=NOW)
    ledger_service.debit(db_session, program, customer.id, 40, "spend", "Spent early", now=NOW + timedelta(days=1))
    ledger_service.credit(db_session, program, customer.id, 25, "manual", "Fresh lot", now=NOW + timedelta(days=20))
    db_session.commit()

    later = NOW + timedelta(days=31)
    snap = ledger_service.get_balance(db_session, program, customer.id, later)
    db_session.commit()

    assert snap.total_expired == 60
    assert snap.current_balance == 25

    expirations = (
        db_session.query(LedgerTransaction)
        .filter(LedgerTransaction.transaction_type == "expiration")
        .all()
    )
    assert len(expirations) == 1
    assert expirations[0].tokens == -60
    assert expirations[0].reference_type == "expired_transaction"

    # the sweep sees nothing left to expire
    stats = ledger_service.expire_tokens(db_session, later)
    assert stats.updated == 0
    assert ledger_service.get_balance(db_session, program, customer.id, later).current_balance == 25


def test_sweep_and_lazy_read_converge(db_session, program, make_customer):
    program.tokens_expiry_days = 10
    a = make_customer(full_name="Ana Lopez")
    b = make_customer(full_name="Luis Perez")
    for c in (a, b):
        ledger_service.credit(db_session, program, c.id, 50, "manual", "Seed", now=NOW)
    db_session.commit()

    later = NOW + timedelta(days=11)
    stats = ledger_service.expire_tokens(db_session, later)

    assert stats.processed == 2
    assert stats.updated == 2
    for c in (a, b):
        snap = ledger_service.get_balance(db_session, program, c.id, later)
        assert snap.current_balance == 0
        assert snap.total_expired == 50
    assert db_session.query(LedgerTransaction).filter(LedgerTransaction.transaction_type == "expiration").count() == 2


def test_reconcile_reports_and_repairs_drift(db_session, program, customer):
    ledger_service.credit(db_session, program, customer.id, 70, "manual", "Seed", now=NOW)
    db_session.commit()

    row = _balance_row(db_session, program, customer)
    row.current_balance = 999
    db_session.commit()

    assert ledger_service.reconcile_balance(db_session, program, customer.id, NOW) is True
    db_session.commit()
    assert _balance_row(db_session, program, customer).current_balance == 70
    assert ledger_service.reconcile_balance(db_session, program, customer.id, NOW) is False


def test_tier_follows_lifetime_earned(db_session, program, customer):
    ledger_service.credit(db_session, program, customer.id, 600, "manual", "Seed", now=NOW)
    ledger_service.debit(db_session, program, customer.id, 500, "spend", "Spend", now=NOW)
    db_session.commit()

    row = _balance_row(db_session, program, customer)
    assert row.tier == "silver"
    assert row.tier_updated_at == NOW


def test_list_transactions_newest_first(db_session, program, customer):
    for i in range(3):
        ledger_service.credit(db_session, program, customer.id, 10 + i, "manual", f"#{i}", now=NOW + timedelta(hours=i))
    db_session.commit()

    txs = ledger_service.list_transactions(db_session, program, customer.id, limit=2)
    assert [t.tokens for t in txs] == [12, 11]


def test_first_credit_tolerates_a_concurrently_created_balance_row(db_session, program, customer, monkeypatch):
    ledger_service.credit(db_session, program, customer.id, 10, "manual", "Welcome", now=NOW)
    db_session.commit()

    # the first look finds nothing, as it would before another writer commits its insert
    real_select = ledger_service._select_balance
    looks = []

    def select(db, program, customer_id):
        looks.append(customer_id)
        if len(looks) == 1:
            return None
        return real_select(db, program, customer_id)

    monkeypatch.setattr(ledger_service, "_select_balance", select)

    ledger_service.credit(db_session, program, customer.id, 5, "manual", "Second", now=NOW + timedelta(minutes=1))
    db_session.commit()

    assert db_session.query(LoyaltyBalance).count() == 1
    assert _balance_row(db_session, program, customer).current_balance == 15
