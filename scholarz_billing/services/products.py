import logging
from typing import AsyncIterator

import httpx

from scholarz_billing.core.errors import ExternalServiceError
from scholarz_billing.services.paypal import PayPalClient

logger = logging.getLogger(__name__)

PRODUCTS_PATH = "/v1/catalogs/products"
PAGE_SIZE = 20
MAX_PAGES = 10


def product_name(role: str) -> str:
    return f"{role.upper()} Plans"


def product_request_id(environment: str, role: str, brand: str) -> str:
    return f"{brand.lower()}-{environment}-product-{role.lower()}"


def _matches(name: str, role: str, brand: str) -> bool:
    if name == product_name(role):
        return True
    upper = name.upper()
    return brand.upper() in upper and role.upper() in upper.split()


async def iter_products(client: PayPalClient) -> AsyncIterator[dict]:
    for page in range(1, MAX_PAGES + 1):
        data = await client.get(
            PRODUCTS_PATH,
            params={"page_size": PAGE_SIZE, "page": page, "total_required": "true"},
        )
        for product in data.get("products") or []:
            yield product
        if page >= int(data.get("total_pages") or 1):
            break


async def ensure_product(client: PayPalClient, role: str, brand: str = "Scholarz") -> str:
    """Return the id of the catalog product owning ``role``'s plans, creating it once."""
    try:
        async for product in iter_products(client):
            if _matches(product.get("name") or "", role, brand):
                return product["id"]
    except (ExternalServiceError, httpx.HTTPError) as exc:
        # Listing is best effort; creation below still fails loudly
        logger.warning("Could not list PayPal products for %s, creating one: %s", role, exc)

    created = await client.post(
        PRODUCTS_PATH,
        json={
            "name": product_name(role),
            "description": f"{brand} {role.upper()} marketplace subscription plans",
            "type": "SERVICE",
            "category": "SOFTWARE",
        },
        headers={"PayPal-Request-Id": product_request_id(client.environment, role, brand)},
    )
    logger.info("Created PayPal product %s for role %s", created.get("id"), role)
    return created["id"]
