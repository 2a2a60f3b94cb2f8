import hmac
from fastapi import Header, HTTPException, status, Depends
from scholarz_billing.core.config import Settings
from scholarz_billing.core.deps import get_settings_dep
from scholarz_billing.core.security import verify_token, TokenClaims


def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1]


async def get_current_claims(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
) -> TokenClaims:
    token = _bearer(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return verify_token(token, settings)


async def get_optional_claims(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
) -> TokenClaims | None:
    # Registration checkout runs before the account exists, so a token is optional there
    token = _bearer(authorization)
    if not token:
        return None
    return verify_token(token, settings)


async def require_internal_token(
    x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    expected = settings.internal_api_token
    if not expected or not x_internal_token or not hmac.compare_digest(expected, x_internal_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal token required")
