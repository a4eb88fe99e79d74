import uuid

import pytest
from fastapi.testclient import TestClient

from loyalty_core.db import get_db
from loyalty_core.main import app


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers(tenant):
    return {"X-Tenant": str(tenant.id)}


def test_tenant_context_is_required(client):
    assert client.get("/programs/current").status_code == 400
    assert client.get("/programs/current", headers={"X-Tenant": "not-a-uuid"}).status_code == 400


def test_program_upsert_creates_then_updates(client, headers):
    res = client.put("/programs/current", json={"tokens_expiry_days": 90}, headers=headers)
    assert res.status_code == 200
    assert res.json()["program_name"] == "Sonrisa Dental Rewards"
    assert res.json()["tokens_expiry_days"] == 90

    res = client.put("/programs/current", json={"reactivation_months": 0}, headers=headers)
    assert res.status_code == 400


def test_credit_then_read_wallet(client, headers, program, customer):
    res = client.post("/wallet/credit", json={"customer_id": str(customer.id), "amount": 40}, headers=headers)
    assert res.status_code == 200
    assert res.json()["balance"]["current_balance"] == 40

    res = client.get(f"/wallet/{customer.id}", headers=headers)
    assert res.json()["current_balance"] == 40
    assert len(client.get(f"/wallet/{customer.id}/transactions", headers=headers).json()) == 1


def test_overdraft_maps_to_400(client, headers, program, customer):
    res = client.post("/wallet/debit", json={"customer_id": str(customer.id), "amount": 5}, headers=headers)

    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "insufficient_balance"


def test_exhausted_stock_maps_to_409(client, headers, program, make_customer, make_reward):
    reward = make_reward(tokens_required=10, stock_limit=1)
    first, second = make_customer(), make_customer(full_name="Luis Perez", phone="+5215551111111")
    for c in (first, second):
        client.post("/wallet/credit", json={"customer_id": str(c.id), "amount": 10}, headers=headers)

    ok = client.post(f"/rewards/{reward.id}/redeem", json={"customer_id": str(first.id)}, headers=headers)
    assert ok.status_code == 200

    res = client.post(f"/rewards/{reward.id}/redeem", json={"customer_id": str(second.id)}, headers=headers)
    assert res.status_code == 409
    assert res.json()["detail"]["error"] == "stock_exhausted"

    by_code = client.get(f"/redemptions/code/{ok.json()['redemption_code']}", headers=headers)
    assert by_code.json()["status"] == "pending"


def test_unknown_customer_maps_to_404(client, headers, program):
    res = client.get(f"/wallet/{uuid.uuid4()}", headers=headers)

    assert res.status_code == 404


def test_internal_job_create_and_run(client, program):
    body = {
        "job_key": "nightly-redemption-expiry",
        "job_type": "expire_redemptions",
        "schedule": {"cron": "0 3 * * *"},
    }
    res = client.post("/admin/internal-jobs", json=body)
    assert res.status_code == 200
    job = res.json()
    assert job["next_run_at"] is not None

    assert client.post("/admin/internal-jobs", json=body).status_code == 409
    assert client.post("/admin/internal-jobs", json={**body, "job_key": "x", "job_type": "nope"}).status_code == 400

    run = client.post(f"/admin/internal-jobs/{job['id']}/run")
    assert run.status_code == 200
    assert run.json()["stats"] == {"processed": 0, "updated": 0, "errors": 0}
    assert client.get(f"/admin/internal-jobs/{job['id']}").json()["last_status"] == "SUCCESS"
