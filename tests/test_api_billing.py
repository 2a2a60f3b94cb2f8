import datetime as dt

import httpx
import pytest

from scholarz_billing.core.deps import get_http_client, get_profile_store, get_resolver, get_settings_dep
from scholarz_billing.core.security import create_access_token
from scholarz_billing.main import app

TRIAL_BODY = {
    "amount": 0,
    "planId": "sme-monthly",
    "billingType": "trial",
    "role": "sme",
    "customer": {"name": "Thandi Mokoena", "email": "thandi@example.com"},
}


@pytest.fixture()
def use_resolver():
    def _use(resolver):
        app.dependency_overrides[get_resolver] = lambda: resolver

    return _use


@pytest.fixture()
async def client(settings, http, store, sandbox_resolver, use_resolver):
    app.dependency_overrides[get_settings_dep] = lambda: settings
    app.dependency_overrides[get_http_client] = lambda: http
    app.dependency_overrides[get_profile_store] = lambda: store
    use_resolver(sandbox_resolver)
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def _auth(settings, user_id="user-1"):
    return {"Authorization": f"Bearer {create_access_token(user_id, settings, role='sme')}"}


async def test_initiate_returns_camel_case_payload(client):
    resp = await client.post("/v1/billing/paypal/initiate", json=TRIAL_BODY)
    assert resp.status_code == 200
    body = resp.json()
    assert body["approvalUrl"].startswith("https://www.sandbox.paypal.com/")
    assert body["orderId"].startswith("I-")
    assert body["paypalPlanId"].startswith("P-")
    assert body["paymentStatus"] == "APPROVAL_PENDING"
    assert (body["amount"], body["currency"]) == (0.0, "USD")
    assert body["expiresAt"] is not None


async def test_authenticated_checkout_then_plan_status(client, settings):
    headers = _auth(settings)
    initiated = await client.post("/v1/billing/paypal/initiate", json=TRIAL_BODY, headers=headers)
    assert initiated.status_code == 200

    resp = await client.get("/v1/billing/plan-status", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "user-1"
    assert body["planStatus"] == "pending"
    assert body["planRequiresPayment"] is True
    assert body["planReference"] == initiated.json()["orderId"]
    assert body["billingProfile"]["subscriptionId"] == initiated.json()["orderId"]


async def test_plan_status_requires_token(client):
    resp = await client.get("/v1/billing/plan-status")
    assert resp.status_code == 401


async def test_plan_status_unknown_profile(client, settings):
    resp = await client.get("/v1/billing/plan-status", headers=_auth(settings, "nobody"))
    assert resp.status_code == 404


async def test_client_config_exposes_id_not_secret(client):
    resp = await client.get("/v1/billing/paypal/client-config")
    assert resp.status_code == 200
    assert resp.json() == {"clientId": "AbCdEfClientId0001", "environment": "sandbox"}
    assert "sandbox-secret" not in resp.text


async def test_missing_credentials_is_failed_precondition(client, empty_resolver, use_resolver, fake_paypal):
    use_resolver(empty_resolver)
    resp = await client.post("/v1/billing/paypal/initiate", json=TRIAL_BODY)
    assert resp.status_code == 412
    assert resp.json()["code"] == "failed-precondition"
    assert fake_paypal.requests == []


async def test_negative_amount_is_invalid_argument(client, fake_paypal):
    resp = await client.post("/v1/billing/paypal/initiate", json={**TRIAL_BODY, "billingType": "subscription", "amount": -1})
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid-argument"
    assert fake_paypal.requests == []


async def test_processor_failure_is_bad_gateway_with_debug_id(client, fake_paypal):
    fake_paypal.queue(
        "POST",
        "/v1/billing/subscriptions",
        422,
        {"name": "UNPROCESSABLE_ENTITY", "message": "Plan is inactive.", "debug_id": "abc123"},
    )
    resp = await client.post("/v1/billing/paypal/initiate", json=TRIAL_BODY)
    assert resp.status_code == 502
    assert resp.json() == {"detail": "Plan is inactive.", "code": "external-service", "debugId": "abc123"}


async def test_sync_requires_internal_token(client):
    assert (await client.post("/v1/billing/sync")).status_code == 403
    assert (await client.post("/v1/billing/sync", headers={"X-Internal-Token": "wrong"})).status_code == 403


async def test_sync_runs_with_internal_token(client, seed_profile):
    expired = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1)
    await seed_profile("trial-user", plan_type="free", plan_expires_at=expired)

    resp = await client.post("/v1/billing/sync", headers={"X-Internal-Token": "internal-token"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] == 1
    assert body["statuses"] == {"trial_expired": 1}
    assert body["failures"] == 0
    assert "startedAt" in body
