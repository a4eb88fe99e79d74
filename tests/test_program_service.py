from datetime import datetime

import pytest

from loyalty_core.models.loyalty_balance import LoyaltyBalance
from loyalty_core.services import ledger_service, program_service
from loyalty_core.services.errors import ValidationError


NOW = datetime(2025, 4, 1, 9, 0, 0)


def _tier(db, customer):
    return db.query(LoyaltyBalance.tier).filter(LoyaltyBalance.customer_id == customer.id).scalar()


def test_threshold_change_reclassifies_cached_tiers(db_session, tenant, program, make_customer):
    regular = make_customer()
    newcomer = make_customer(full_name="Luis Perez", phone="+5215551111111")
    ledger_service.credit(db_session, program, regular.id, 600, "manual", "Seed", now=NOW)
    ledger_service.credit(db_session, program, newcomer.id, 50, "manual", "Seed", now=NOW)
    db_session.commit()
    assert _tier(db_session, regular) == "silver"

    program_service.upsert_program(
        db_session, tenant.id, {"tier_thresholds": {"silver": 100, "gold": 500, "platinum": 1000}}
    )
    db_session.commit()

    assert _tier(db_session, regular) == "gold"
    assert _tier(db_session, newcomer) == "bronze"


def test_clearing_thresholds_restores_defaults(db_session, tenant, program, customer):
    program.tier_thresholds = {"silver": 100, "gold": 500, "platinum": 1000}
    ledger_service.credit(db_session, program, customer.id, 600, "manual", "Seed", now=NOW)
    db_session.commit()
    assert _tier(db_session, customer) == "gold"

    program_service.upsert_program(db_session, tenant.id, {"tier_thresholds": None})
    db_session.commit()

    assert _tier(db_session, customer) == "silver"


@pytest.mark.parametrize(
    "data",
    [
        {"tokens_per_currency": 0},
        {"reactivation_months": 0},
        {"reactivation_offer_type": "free_lunch"},
        {"tier_thresholds": {"silver": 900, "gold": 500}},
    ],
)
def test_invalid_settings_are_rejected(db_session, tenant, program, data):
    with pytest.raises(ValidationError):
        program_service.upsert_program(db_session, tenant.id, data)
