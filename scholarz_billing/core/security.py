import datetime as dt
import uuid
from typing import Any, Optional

from fastapi import HTTPException, status
from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from scholarz_billing.core.config import Settings


class TokenClaims(BaseModel):
    sub: str
    exp: int
    role: str | None = None
    typ: str = "access"
    jti: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None
    nbf: int | None = None
    iat: int | None = None


def _get_leeway(settings: Settings) -> int:
    return max(0, settings.jwt_clock_skew_seconds)


def _verification_key(settings: Settings) -> str:
    if settings.jwt_secret_key and settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_secret_key
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No verification key available")


def verify_token(token: str, settings: Settings, expected_typ: str = "access") -> TokenClaims:
    """
    Verify a bearer token issued by the identity service; enforce aud/iss/typ when configured.
    """
    key = _verification_key(settings)
    options = {
        "verify_aud": settings.jwt_audience is not None,
        "verify_iss": settings.jwt_issuer is not None,
        "leeway": _get_leeway(settings),
    }
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        claims = TokenClaims(**payload)
    except (JWTError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token verification failed") from exc

    if claims.typ != expected_typ:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unexpected token type")

    now_ts = int(dt.datetime.now(dt.timezone.utc).timestamp())
    if claims.iat and claims.iat - _get_leeway(settings) > now_ts:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued in the future")
    return claims


def create_access_token(subject: str, settings: Settings, role: Optional[str] = None) -> str:
    """Mint a token the way the identity service does; used by ops scripts and tests."""
    if not settings.jwt_secret_key:
        raise RuntimeError("JWT_SECRET_KEY missing")
    now = dt.datetime.now(dt.timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "exp": int((now + dt.timedelta(minutes=settings.jwt_expire_minutes)).timestamp()),
        "nbf": int(now.timestamp()),
        "iat": int(now.timestamp()),
        "typ": "access",
        "jti": str(uuid.uuid4()),
    }
    if role:
        payload["role"] = role
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    if settings.jwt_issuer:
        payload["iss"] = settings.jwt_issuer
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
