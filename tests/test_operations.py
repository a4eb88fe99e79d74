import uuid
from datetime import datetime

import httpx

from loyalty_core.models.redemption import Redemption
from loyalty_core.services import operations, program_service
from loyalty_core.services.errors import ErrorKind
from loyalty_core.services.personalization import PersonalizationClient


NOW = datetime(2025, 5, 1, 10, 0, 0)


def test_credit_then_balance(db_session, tenant, program, customer):
    result = operations.credit_tokens(db_session, tenant.id, customer.id, 40, description="Welcome gift", now=NOW)

    assert result.success is True
    assert result.data["transaction"]["tokens"] == 40
    assert result.data["balance"]["current_balance"] == 40

    balance = operations.get_balance(db_session, tenant.id, customer.id, now=NOW)
    assert balance.as_dict() == {"success": True, "data": balance.data}
    assert balance.data["current_balance"] == 40


def test_failures_are_typed_results(db_session, tenant, program, customer):
    result = operations.debit_tokens(db_session, tenant.id, customer.id, 10, now=NOW)
    assert result.success is False
    assert result.error == ErrorKind.INSUFFICIENT_BALANCE
    assert result.as_dict()["error"] == "insufficient_balance"

    result = operations.credit_tokens(db_session, tenant.id, customer.id, -1, now=NOW)
    assert result.error == ErrorKind.VALIDATION_ERROR

    result = operations.credit_tokens(db_session, tenant.id, uuid.uuid4(), 5, now=NOW)
    assert result.error == ErrorKind.NOT_FOUND

    result = operations.get_balance(db_session, uuid.uuid4(), customer.id, now=NOW)
    assert result.error == ErrorKind.NOT_FOUND
    assert result.message == "Loyalty program not found"


def test_customer_of_another_tenant_is_not_found(db_session, tenant, program, make_customer):
    from loyalty_core.models.tenant import Tenant

    other = Tenant(name="Other Clinic", status="active")
    db_session.add(other)
    db_session.commit()
    stranger = make_customer(tenant_id=other.id)

    result = operations.credit_tokens(db_session, tenant.id, stranger.id, 5, now=NOW)
    assert result.error == ErrorKind.NOT_FOUND


def test_redeem_and_use_round_trip(db_session, tenant, program, customer, make_reward):
    reward = make_reward(tokens_required=30, stock_limit=1)
    operations.credit_tokens(db_session, tenant.id, customer.id, 100, now=NOW)

    redeemed = operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW)
    assert redeemed.success is True
    assert redeemed.data["status"] == "pending"

    again = operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW)
    assert again.error == ErrorKind.STOCK_EXHAUSTED

    used = operations.mark_redemption_used(db_session, tenant.id, uuid.UUID(redeemed.data["id"]), now=NOW)
    assert used.data["status"] == "used"

    twice = operations.mark_redemption_used(db_session, tenant.id, uuid.UUID(redeemed.data["id"]), now=NOW)
    assert twice.error == ErrorKind.INVALID_STATE_TRANSITION

    looked_up = operations.find_redemption(db_session, tenant.id, redeemed.data["redemption_code"], now=NOW)
    assert looked_up.data["status"] == "used"
    assert db_session.query(Redemption).count() == 1


def test_failed_redeem_rolls_back_stock_claim(db_session, tenant, program, customer, make_reward):
    reward = make_reward(tokens_required=30, stock_limit=3)

    result = operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW)
    assert result.error == ErrorKind.INSUFFICIENT_BALANCE

    db_session.refresh(reward)
    assert reward.stock_used == 0


def test_membership_lifecycle(db_session, tenant, program, customer, make_plan):
    plan = make_plan()

    created = operations.create_membership(
        db_session, tenant.id, customer.id, plan.id, billing_cycle="monthly", payment_pending=True, now=datetime(2025, 1, 1)
    )
    assert created.data["status"] == "pending"

    activated = operations.activate_membership(db_session, tenant.id, uuid.UUID(created.data["id"]), now=datetime(2025, 1, 3))
    assert activated.data["status"] == "active"
    assert activated.data["end_date"].startswith("2025-02-03")

    cancelled = operations.cancel_membership(db_session, tenant.id, uuid.UUID(created.data["id"]), reason="price", now=datetime(2025, 1, 15))
    assert cancelled.data["status"] == "cancelled"
    assert cancelled.data["cancellation_reason"] == "price"

    again = operations.cancel_membership(db_session, tenant.id, uuid.UUID(created.data["id"]), now=datetime(2025, 1, 16))
    assert again.error == ErrorKind.INVALID_STATE_TRANSITION


def test_award_action_and_purchase(db_session, tenant, program, customer, make_rule):
    make_rule(action_type="appointment", tokens_amount=10)

    action = operations.award_action(db_session, tenant.id, customer.id, "appointment", now=NOW)
    purchase = operations.award_purchase(db_session, tenant.id, customer.id, "50", now=NOW)

    assert action.data["transaction"]["tokens"] == 10
    assert purchase.data["transaction"]["tokens"] == 50
    assert purchase.data["balance"]["current_balance"] == 60
    assert purchase.data["balance"]["lifetime_value"] == "50.00"


def test_stats(db_session, tenant, program, customer, make_reward):
    reward = make_reward(tokens_required=20)
    operations.credit_tokens(db_session, tenant.id, customer.id, 100, now=NOW)
    operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW)

    result = operations.get_stats(db_session, tenant.id, "month", now=NOW)
    assert result.success is True
    stats = result.data
    assert stats["period"] == "month"
    assert stats["tokens"]["spent"] == 20
    assert stats["redemptions"]["created"] == 1
    assert stats["customers_with_balance"] == 1

    bad = operations.get_stats(db_session, tenant.id, "fortnight", now=NOW)
    assert bad.error == ErrorKind.VALIDATION_ERROR


def test_stats_spent_matches_balance_total_spent(db_session, tenant, program, customer, make_reward):
    reward = make_reward(tokens_required=20)
    operations.credit_tokens(db_session, tenant.id, customer.id, 100, now=NOW)
    operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW)
    operations.debit_tokens(db_session, tenant.id, customer.id, 5, description="Correction", now=NOW)

    stats = operations.get_stats(db_session, tenant.id, "month", now=NOW).data
    balance = operations.get_balance(db_session, tenant.id, customer.id, now=NOW).data

    assert stats["tokens"]["spent"] == 25
    assert stats["tokens"]["spent"] == balance["total_spent"]


def test_award_returns_confirmation_message(db_session, tenant, program, customer, make_rule):
    make_rule(action_type="appointment", tokens_amount=10)

    result = operations.award_action(db_session, tenant.id, customer.id, "appointment", now=NOW)

    assert result.data["message"] == "Ana, you earned 10 Points. Appointment. Your balance is 10 Points."


def test_zero_award_has_no_message(db_session, tenant, program, customer):
    program.tokens_currency_threshold = 50
    db_session.commit()

    result = operations.award_purchase(db_session, tenant.id, customer.id, 20, now=NOW)

    assert result.success is True
    assert result.data["transaction"] is None
    assert result.data["message"] is None


def test_redeem_returns_confirmation_with_code(db_session, tenant, program, customer, make_reward):
    reward = make_reward(tokens_required=20, reward_name="Free cleaning")
    operations.credit_tokens(db_session, tenant.id, customer.id, 20, now=NOW)

    data = operations.redeem_reward(db_session, tenant.id, customer.id, reward.id, now=NOW).data

    assert data["message"] == f'Ana, you redeemed "Free cleaning". Your code is {data["redemption_code"]}, valid until May 31.'


def test_confirmation_uses_program_template_and_personalization_fallback(db_session, tenant, program, customer, make_rule):
    make_rule(action_type="review", tokens_amount=5)
    program_service.upsert_template(db_session, program, "tokens_earned", "+{{tokens}} for {{name}}")
    db_session.commit()

    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    personalizer = PersonalizationClient(
        url="https://ai.example.test/v1/chat/completions",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    result = operations.award_action(db_session, tenant.id, customer.id, "review", now=NOW, personalizer=personalizer)

    assert result.data["message"] == "+5 for Ana"


def test_confirmation_is_personalized_when_the_service_answers(db_session, tenant, program, customer, make_rule):
    make_rule(action_type="review", tokens_amount=5)
    program_service.upsert_template(db_session, program, "tokens_earned", "+{{tokens}} for {{name}}")
    db_session.commit()

    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": "Ana, 5 points are yours!"}}]})

    personalizer = PersonalizationClient(
        url="https://ai.example.test/v1/chat/completions",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    result = operations.award_action(db_session, tenant.id, customer.id, "review", now=NOW, personalizer=personalizer)

    assert result.data["message"] == "Ana, 5 points are yours!"
