import logging
import re
from dataclasses import dataclass
from typing import Optional

from scholarz_billing.schemas.billing import Customer
from scholarz_billing.services.paypal import PayPalClient

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_PATH = "/v1/billing/subscriptions"
EMAIL_RE = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}$")


@dataclass(frozen=True)
class CreatedSubscription:
    id: str
    status: str
    plan_id: str
    approval_url: Optional[str]


def normalize_email(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    email = "".join(raw.split()).lower()
    return email if EMAIL_RE.match(email) else None


def build_subscriber(customer: Optional[Customer]) -> Optional[dict]:
    """PayPal rejects partial names and malformed emails, so both are only sent when complete."""
    if customer is None:
        return None
    email = normalize_email(customer.email)
    if not email:
        return None
    subscriber: dict = {"email_address": email}
    tokens = (customer.name or "").split()
    if len(tokens) >= 2:
        subscriber["name"] = {"given_name": tokens[0], "surname": " ".join(tokens[1:])}
    return subscriber


def build_application_context(brand: str, return_url: str, cancel_url: str) -> dict:
    return {
        "brand_name": brand,
        "user_action": "SUBSCRIBE_NOW",
        # NO_PREFERENCE skips PayPal's "create an account" upsell page
        "landing_page": "NO_PREFERENCE",
        "shipping_preference": "NO_SHIPPING",
        "return_url": return_url,
        "cancel_url": cancel_url,
    }


def find_approval_url(links: Optional[list]) -> Optional[str]:
    for link in links or []:
        if isinstance(link, dict) and link.get("rel") == "approve":
            return link.get("href")
    return None


async def create_subscription(
    client: PayPalClient,
    plan_id: str,
    *,
    brand: str,
    return_url: str,
    cancel_url: str,
    customer: Optional[Customer] = None,
    custom_id: Optional[str] = None,
) -> CreatedSubscription:
    payload: dict = {
        "plan_id": plan_id,
        "application_context": build_application_context(brand, return_url, cancel_url),
    }
    if custom_id:
        payload["custom_id"] = custom_id[:127]
    subscriber = build_subscriber(customer)
    if subscriber:
        payload["subscriber"] = subscriber

    data = await client.post(SUBSCRIPTIONS_PATH, json=payload, headers={"Prefer": "return=representation"})
    approval_url = find_approval_url(data.get("links"))
    if not approval_url:
        logger.warning("PayPal subscription %s has no approve link", data.get("id"))
    return CreatedSubscription(
        id=data["id"],
        status=data.get("status") or "APPROVAL_PENDING",
        plan_id=data.get("plan_id") or plan_id,
        approval_url=approval_url,
    )


async def get_subscription(client: PayPalClient, subscription_id: str) -> dict:
    return await client.get(f"{SUBSCRIPTIONS_PATH}/{subscription_id}")
