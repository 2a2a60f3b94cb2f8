from collections.abc import AsyncGenerator
from redis import asyncio as aioredis
from redis.asyncio import ConnectionPool, Redis
from fastapi import Depends
import httpx

from scholarz_billing.core.config import get_settings, Settings
from scholarz_billing.core.credentials import CredentialResolver, get_credential_resolver
from scholarz_billing.db.session import async_session
from scholarz_billing.services.profiles import ProfileStore

_redis_pool: ConnectionPool | None = None


async def get_settings_dep() -> Settings:
    return get_settings()


def _ensure_redis_pool(url: str) -> ConnectionPool:
    global _redis_pool
    settings = get_settings()
    if not url.startswith("rediss://") and settings.environment != "development":
        raise RuntimeError("Redis URL must use TLS (rediss://) for production safety")
    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            url,
            max_connections=64,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
            health_check_interval=30,
        )
    return _redis_pool


async def get_redis(settings: Settings = Depends(get_settings_dep)):
    pool = _ensure_redis_pool(settings.redis_url)
    client: Redis = aioredis.Redis(connection_pool=pool)
    try:
        yield client
    finally:
        # do not close the pool; just disconnect this client object
        await client.aclose()


async def get_http_client(settings: Settings = Depends(get_settings_dep)) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(timeout=settings.paypal_timeout_seconds) as client:
        yield client


async def get_profile_store(
    redis=Depends(get_redis),
    settings: Settings = Depends(get_settings_dep),
) -> ProfileStore:
    return ProfileStore(async_session, redis, cache_ttl=settings.plan_status_cache_ttl_seconds)


async def get_resolver(settings: Settings = Depends(get_settings_dep)) -> CredentialResolver:
    # Built per request so credentials injected after start-up are seen
    return get_credential_resolver(settings)
