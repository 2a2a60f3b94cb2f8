import itertools
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import httpx
import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from scholarz_billing.core.config import Settings
from scholarz_billing.core.credentials import CredentialResolver, EnvSource
from scholarz_billing.models.base import Base
from scholarz_billing.models.profile import UserProfile
from scholarz_billing.services.paypal import PayPalClient
from scholarz_billing.services.profiles import ProfileStore

SANDBOX_ENV = {
    "PAYPAL_CLIENT_ID": "AbCdEfClientId0001",
    "PAYPAL_CLIENT_SECRET": "sandbox-secret",
    "PAYPAL_ENVIRONMENT": "sandbox",
}


class FakePayPal:
    """In-memory stand-in for the PayPal REST endpoints the service calls."""

    def __init__(self):
        self.products: list[dict] = []
        self.plans: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.headers: dict[tuple[str, str], httpx.Headers] = {}
        self.queued: dict[tuple[str, str], list[tuple[int, dict | list]]] = {}
        self._ids = itertools.count(1)

    def queue(self, method: str, path: str, status: int, body: dict | list) -> None:
        self.queued.setdefault((method, path), []).append((status, body))

    def calls(self, method: str, path: str) -> list[dict | None]:
        return [body for m, p, body in self.requests if m == method and p == path]

    def add_product(self, name: str) -> dict:
        product = {"id": f"PROD-{next(self._ids)}", "name": name}
        self.products.append(product)
        return product

    def add_plan(self, product_id: str, name: str, value: str, currency: str = "USD", status: str = "ACTIVE", trial: bool = False) -> dict:
        cycles = []
        if trial:
            cycles.append(
                {
                    "tenure_type": "TRIAL",
                    "sequence": 1,
                    "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                    "total_cycles": 1,
                    "pricing_scheme": {"fixed_price": {"value": "0.00", "currency_code": currency}},
                }
            )
        cycles.append(
            {
                "tenure_type": "REGULAR",
                "sequence": len(cycles) + 1,
                "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                "total_cycles": 0,
                "pricing_scheme": {"fixed_price": {"value": value, "currency_code": currency}},
            }
        )
        plan = {"id": f"P-{next(self._ids)}", "product_id": product_id, "name": name, "status": status, "billing_cycles": cycles}
        self.plans[plan["id"]] = plan
        return plan

    def add_subscription(self, status: str, next_billing_time: str | None = None) -> dict:
        sub = {"id": f"I-{next(self._ids)}", "status": status, "plan_id": "P-x"}
        if next_billing_time:
            sub["billing_info"] = {"next_billing_time": next_billing_time}
        self.subscriptions[sub["id"]] = sub
        return sub

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        body = None
        if request.content and request.headers.get("content-type", "").startswith("application/json"):
            body = json.loads(request.content)
        self.requests.append((method, path, body))
        self.headers[(method, path)] = request.headers

        queued = self.queued.get((method, path))
        if queued:
            status, payload = queued.pop(0)
            return httpx.Response(status, json=payload)

        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test-token", "token_type": "Bearer", "expires_in": 32400})

        if path == "/v1/catalogs/products":
            if method == "GET":
                return httpx.Response(200, json={"products": self.products, "total_items": len(self.products), "total_pages": 1})
            product = {"id": f"PROD-{next(self._ids)}", **body}
            self.products.append(product)
            return httpx.Response(201, json=product)

        if path == "/v1/billing/plans":
            if method == "GET":
                product_id = request.url.params.get("product_id")
                # PayPal's list view omits billing cycles
                summaries = [
                    {k: v for k, v in plan.items() if k != "billing_cycles"}
                    for plan in self.plans.values()
                    if plan["product_id"] == product_id
                ]
                return httpx.Response(200, json={"plans": summaries, "total_items": len(summaries), "total_pages": 1})
            plan = {"id": f"P-{next(self._ids)}", **body}
            self.plans[plan["id"]] = plan
            return httpx.Response(201, json=plan)

        if path.startswith("/v1/billing/plans/"):
            plan = self.plans.get(path.rsplit("/", 1)[1])
            if plan is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "The specified resource does not exist."})
            return httpx.Response(200, json=plan)

        if path == "/v1/billing/subscriptions" and method == "POST":
            sub_id = f"I-{next(self._ids)}"
            sub = {
                "id": sub_id,
                "status": "APPROVAL_PENDING",
                "plan_id": body["plan_id"],
                "links": [
                    {"rel": "approve", "href": f"https://www.sandbox.paypal.com/webapps/billing/subscriptions?ba_token=BA-{sub_id}", "method": "GET"},
                    {"rel": "self", "href": f"https://api-m.sandbox.paypal.com/v1/billing/subscriptions/{sub_id}", "method": "GET"},
                ],
            }
            self.subscriptions[sub_id] = sub
            return httpx.Response(201, json=sub)

        if path.startswith("/v1/billing/subscriptions/"):
            sub = self.subscriptions.get(path.rsplit("/", 1)[1])
            if sub is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "The specified resource does not exist."})
            return httpx.Response(200, json=sub)

        return httpx.Response(404, json={"name": "NOT_FOUND", "message": f"No fake for {method} {path}"})


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/0",
        jwt_secret_key="test-secret",
        internal_api_token="internal-token",
        paypal_legacy_config_path=None,
        paypal_plan_backoff_seconds=0.0,
        # the in-memory sqlite engine shares one connection
        sync_concurrency=1,
    )


@pytest.fixture()
def fake_paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture()
async def http(fake_paypal):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_paypal.handler)) as client:
        yield client


@pytest.fixture()
def sandbox_resolver() -> CredentialResolver:
    return CredentialResolver([EnvSource("PAYPAL_", environ=dict(SANDBOX_ENV))])


@pytest.fixture()
def empty_resolver() -> CredentialResolver:
    return CredentialResolver([EnvSource("PAYPAL_", environ={})])


@pytest.fixture()
async def paypal(http, sandbox_resolver) -> PayPalClient:
    return await PayPalClient.connect(http, sandbox_resolver.resolve())


@pytest.fixture()
async def redis():
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture()
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        await engine.dispose()


@pytest.fixture()
def store(session_factory, redis) -> ProfileStore:
    return ProfileStore(session_factory, redis)


@pytest.fixture()
def seed_profile(session_factory):
    async def _seed(user_id: str, **fields) -> UserProfile:
        async with session_factory() as session:
            profile = UserProfile(user_id=user_id, billing_profile={}, **fields)
            session.add(profile)
            await session.commit()
            return profile

    return _seed
