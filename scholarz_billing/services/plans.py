"""
Find-or-create of priced PayPal billing plans.

A plan is reused only when it provably charges what the request asks for: its
currency matches and, for paid tiers, its regular price is within a cent of the
requested amount. Anything else gets a fresh, uniquely named plan; a reused plan
with a stale price would silently mischarge every new subscriber.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from scholarz_billing.core.errors import ExternalServiceError, PlanProvisioningError
from scholarz_billing.schemas.billing import PlanRequest
from scholarz_billing.services.currency import (
    HOME_CURRENCY,
    NormalizedAmount,
    normalize_amount,
    validate_amount,
)
from scholarz_billing.services.paypal import PayPalClient
from scholarz_billing.services.products import ensure_product

logger = logging.getLogger(__name__)

PLANS_PATH = "/v1/billing/plans"
PLAN_NAME_LIMIT = 127
ELLIPSIS = "..."
AMOUNT_TOLERANCE = 0.01
PAGE_SIZE = 20
MAX_PAGES = 10

# Home-currency list prices, used when a trial request carries no post-trial amount
ROLE_PRICE_TABLE = {
    "sme": {"monthly": 99, "annual": 999},
    "sdp": {"monthly": 149, "annual": 2499},
}
TIER_LABELS = {"free": "Free Trial", "monthly": "Monthly", "annual": "Annual"}
INTERVAL_UNITS = {"monthly": "MONTH", "annual": "YEAR"}


@dataclass(frozen=True)
class PlanSpec:
    role: str
    tier: str
    cadence: str
    billing_type: str
    name: str
    price: NormalizedAmount
    home_amount: float
    billing_cycles: list

    @property
    def is_trial(self) -> bool:
        return self.billing_type == "trial"


def parse_plan_token(plan_id: str, billing_type: str) -> tuple[str, str]:
    """``sme-monthly`` -> (tier, cadence). Trials are tier ``free`` on the cadence they roll into."""
    parts = [p for p in plan_id.lower().replace("_", "-").split("-") if p]
    cadence = "annual" if any(p in ("annual", "yearly", "year") for p in parts) else "monthly"
    if billing_type == "trial" or "free" in parts or "trial" in parts:
        return "free", cadence
    return cadence, cadence


def truncate_name(name: str, limit: int = PLAN_NAME_LIMIT) -> str:
    if len(name) <= limit:
        return name
    return name[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def unique_plan_name(name: str, stamp: str) -> str:
    suffix = f" #{stamp}"
    return truncate_name(name, PLAN_NAME_LIMIT - len(suffix)) + suffix


def is_plan_name_variant(name: str, base: str) -> bool:
    """``base`` itself, or a ``unique_plan_name`` rename of it created by an earlier provisioning."""
    if name == base:
        return True
    _, sep, stamp = name.rpartition(" #")
    if not sep or not stamp.rstrip("r").isdigit():
        return False
    return name == unique_plan_name(base, stamp)


def _format_home(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else f"{amount:.2f}"


def build_plan_name(role: str, tier_label: str, price: NormalizedAmount, home_amount: float) -> str:
    return truncate_name(
        f"{role.upper()} {tier_label} {price.currency} {price.value} ({HOME_CURRENCY} {_format_home(home_amount)})"
    )


def resolve_post_trial_amount(request: PlanRequest, cadence: str) -> float:
    override = request.metadata.post_trial_amount
    if override is not None:
        return validate_amount(override)
    if request.amount and request.amount > 0:
        return validate_amount(request.amount)
    return float(ROLE_PRICE_TABLE[request.role][cadence])


def _cycle(tenure_type: str, sequence: int, interval_unit: str, total_cycles: int, price: NormalizedAmount) -> dict:
    return {
        "frequency": {"interval_unit": interval_unit, "interval_count": 1},
        "tenure_type": tenure_type,
        "sequence": sequence,
        "total_cycles": total_cycles,
        "pricing_scheme": {"fixed_price": {"value": price.value, "currency_code": price.currency}},
    }


def build_billing_cycles(billing_type: str, cadence: str, price: NormalizedAmount) -> list:
    regular_unit = INTERVAL_UNITS[cadence]
    if billing_type == "trial":
        # PayPal has no day-granular trial; one month approximates the 30-day trial
        free = NormalizedAmount(0.0, price.currency)
        return [
            _cycle("TRIAL", 1, "MONTH", 1, free),
            _cycle("REGULAR", 2, regular_unit, 0, price),
        ]
    return [_cycle("REGULAR", 1, regular_unit, 0, price)]


def build_plan_spec(request: PlanRequest, environment: str) -> PlanSpec:
    tier, cadence = parse_plan_token(request.plan_id, request.billing_type)
    if request.billing_type == "trial":
        home_amount = resolve_post_trial_amount(request, cadence)
    else:
        home_amount = validate_amount(request.amount)
    price = normalize_amount(home_amount, request.currency, environment)
    return PlanSpec(
        role=request.role,
        tier=tier,
        cadence=cadence,
        billing_type=request.billing_type,
        name=build_plan_name(request.role, TIER_LABELS[tier], price, home_amount),
        price=price,
        home_amount=home_amount,
        billing_cycles=build_billing_cycles(request.billing_type, cadence, price),
    )


def regular_price(plan: dict) -> Optional[tuple[float, Optional[str]]]:
    for cycle in plan.get("billing_cycles") or []:
        if cycle.get("tenure_type") != "REGULAR":
            continue
        fixed = (cycle.get("pricing_scheme") or {}).get("fixed_price") or {}
        try:
            return float(fixed["value"]), fixed.get("currency_code")
        except (KeyError, TypeError, ValueError):
            return None
    return None


def is_reusable(plan: dict, spec: PlanSpec) -> bool:
    if (plan.get("status") or "ACTIVE").upper() != "ACTIVE":
        return False
    price = regular_price(plan)
    if price is None:
        return False
    value, currency = price
    if currency != spec.price.currency:
        return False
    if spec.is_trial:
        return True
    return round(abs(value - spec.price.amount), 2) < AMOUNT_TOLERANCE


def is_name_conflict(exc: ExternalServiceError) -> bool:
    if exc.status == 409:
        return True
    markers = [exc.name or ""] + [d.get("issue") or "" for d in exc.details]
    return any("DUPLICATE" in m.upper() for m in markers)


def build_plan_payload(product_id: str, spec: PlanSpec, name: str, brand: str) -> dict:
    return {
        "product_id": product_id,
        "name": name,
        "description": truncate_name(
            f"{brand} {spec.role.upper()} {TIER_LABELS[spec.tier]} plan, "
            f"{spec.price.currency} {spec.price.value} per {INTERVAL_UNITS[spec.cadence].lower()}"
        ),
        "status": "ACTIVE",
        "billing_cycles": spec.billing_cycles,
        "payment_preferences": {
            "auto_bill_outstanding": True,
            "setup_fee_failure_action": "CONTINUE",
            "payment_failure_threshold": 3,
        },
    }


class PlanProvisioner:
    def __init__(
        self,
        client: PayPalClient,
        *,
        brand: str = "Scholarz",
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.brand = brand
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._clock = clock

    def _stamp(self, tag: str = "") -> str:
        return f"{int(self._clock() * 1000)}{tag}"

    async def provision(self, spec: PlanSpec) -> str:
        product_id = await ensure_product(self.client, spec.role, self.brand)
        plan_id, mismatched = await self._find_existing(product_id, spec)
        if plan_id:
            logger.info("Reusing PayPal plan %s (%s)", plan_id, spec.name)
            return plan_id

        name = spec.name
        if mismatched:
            name = unique_plan_name(spec.name, self._stamp())
            logger.warning("Plan %r exists with a different price or currency; creating %r", spec.name, name)
        return await self._create(build_plan_payload(product_id, spec, name, self.brand), spec)

    async def _iter_plans(self, product_id: str) -> AsyncIterator[dict]:
        for page in range(1, MAX_PAGES + 1):
            data = await self.client.get(
                PLANS_PATH,
                params={"product_id": product_id, "page_size": PAGE_SIZE, "page": page, "total_required": "true"},
            )
            for plan in data.get("plans") or []:
                yield plan
            if page >= int(data.get("total_pages") or 1):
                break

    async def _find_existing(self, product_id: str, spec: PlanSpec) -> tuple[Optional[str], bool]:
        """Return (reusable plan id, whether a plan under this name or a rename of it failed verification)."""
        mismatched = False
        try:
            async for plan in self._iter_plans(product_id):
                if not is_plan_name_variant(plan.get("name") or "", spec.name):
                    continue
                if not plan.get("billing_cycles"):
                    try:
                        plan = await self.client.get(f"{PLANS_PATH}/{plan['id']}")
                    except ExternalServiceError as exc:
                        logger.warning("Cannot verify PayPal plan %s: %s", plan.get("id"), exc.message)
                        mismatched = True
                        continue
                if is_reusable(plan, spec):
                    return plan["id"], False
                logger.warning(
                    "PayPal plan %s named %r does not charge %s %s; not reusing",
                    plan.get("id"),
                    plan.get("name"),
                    spec.price.currency,
                    spec.price.value,
                )
                mismatched = True
        except (ExternalServiceError, httpx.HTTPError) as exc:
            logger.warning("Could not list PayPal plans for product %s: %s", product_id, exc)
        return None, mismatched

    async def _create(self, payload: dict, spec: PlanSpec) -> str:
        renamed = False
        attempt = 0
        while True:
            attempt += 1
            try:
                plan = await self.client.post(PLANS_PATH, json=payload, headers={"Prefer": "return=representation"})
            except ExternalServiceError as exc:
                if not renamed and is_name_conflict(exc):
                    renamed = True
                    payload = {**payload, "name": unique_plan_name(spec.name, self._stamp("r"))}
                    logger.warning("PayPal plan name conflict, retrying as %r", payload["name"])
                    continue
                if exc.status == 429 and attempt < self.max_attempts:
                    delay = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning("PayPal rate limited plan creation, retrying in %.1fs", delay)
                    await self._sleep(delay)
                    continue
                raise PlanProvisioningError.from_external(exc) from exc
            plan_id = plan.get("id")
            if not plan_id:
                raise PlanProvisioningError("PayPal created a plan but returned no id")
            logger.info("Created PayPal plan %s (%s)", plan_id, payload["name"])
            return plan_id
