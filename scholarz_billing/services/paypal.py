import logging
from typing import Any, Optional

import httpx

from scholarz_billing.core.credentials import BillingCredentials, mask, require_credentials
from scholarz_billing.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/oauth2/token"


def extract_error_message(payload: Any, fallback: str) -> str:
    """
    User-facing message from a PayPal error body.
    Priority: details[].description -> message -> error_description -> name.
    """
    if not isinstance(payload, dict):
        return fallback
    details = payload.get("details")
    if isinstance(details, list):
        descriptions = [d.get("description") or d.get("issue") for d in details if isinstance(d, dict)]
        descriptions = [d for d in descriptions if d]
        if descriptions:
            return "; ".join(descriptions)
    for key in ("message", "error_description", "name"):
        value = payload.get(key)
        if value:
            return str(value)
    return fallback


def _error_from_response(resp: httpx.Response, action: str) -> ExternalServiceError:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    message = extract_error_message(payload, f"PayPal {action} failed with status {resp.status_code}")
    payload = payload if isinstance(payload, dict) else {}
    return ExternalServiceError(
        message,
        status=resp.status_code,
        name=payload.get("name") or payload.get("error"),
        details=[d for d in payload.get("details") or [] if isinstance(d, dict)],
        debug_id=payload.get("debug_id"),
    )


async def fetch_access_token(http: httpx.AsyncClient, credentials: BillingCredentials) -> str:
    require_credentials(credentials)
    try:
        resp = await http.post(
            f"{credentials.api_base}{TOKEN_PATH}",
            data={"grant_type": "client_credentials"},
            auth=(credentials.client_id, credentials.client_secret),
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as exc:
        raise ExternalServiceError(f"PayPal authentication unreachable: {exc}") from exc
    if resp.status_code != 200:
        logger.error(
            "PayPal token request rejected (%s) for client %s in %s",
            resp.status_code,
            mask(credentials.client_id),
            credentials.environment,
        )
        raise _error_from_response(resp, "authentication")
    token = resp.json().get("access_token")
    if not token:
        raise ExternalServiceError("PayPal authentication returned no access token", status=resp.status_code)
    return token


class PayPalClient:
    """Thin authenticated wrapper over the PayPal REST surface we consume."""

    def __init__(self, http: httpx.AsyncClient, credentials: BillingCredentials, access_token: str):
        self.http = http
        self.credentials = credentials
        self.access_token = access_token

    @classmethod
    async def connect(cls, http: httpx.AsyncClient, credentials: BillingCredentials) -> "PayPalClient":
        token = await fetch_access_token(http, credentials)
        return cls(http, credentials, token)

    @property
    def environment(self) -> str:
        return self.credentials.environment

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        all_headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if headers:
            all_headers.update(headers)
        try:
            resp = await self.http.request(
                method,
                f"{self.credentials.api_base}{path}",
                json=json,
                params=params,
                headers=all_headers,
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"PayPal unreachable: {exc}") from exc
        if resp.status_code >= 300:
            error = _error_from_response(resp, f"{method} {path}")
            logger.warning(
                "PayPal %s %s -> %s %s (debug_id=%s)",
                method,
                path,
                resp.status_code,
                error.message,
                error.debug_id,
            )
            raise error
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def get(self, path: str, **kwargs) -> dict:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> dict:
        return await self.request("POST", path, **kwargs)
