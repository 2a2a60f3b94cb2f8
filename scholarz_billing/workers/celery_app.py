import asyncio
import logging

import httpx
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging
from redis import asyncio as aioredis

from scholarz_billing.core.config import get_settings
from scholarz_billing.db.session import async_session, engine
from scholarz_billing.services.profiles import ProfileStore
from scholarz_billing.services.status_sync import SubscriptionStatusSync

settings = get_settings()
celery = Celery(
    "scholarz_billing",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    beat_schedule={
        "sync-subscription-statuses": {
            "task": "sync_subscription_statuses",
            "schedule": crontab(hour=settings.sync_hour_utc, minute=0),
        },
    },
)


@setup_logging.connect
def _configure_logging(**kwargs):
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)


@celery.task(name="sync_subscription_statuses")
def sync_subscription_statuses() -> dict:
    async def _run() -> dict:
        redis = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        try:
            store = ProfileStore(async_session, redis, cache_ttl=settings.plan_status_cache_ttl_seconds)
            async with httpx.AsyncClient(timeout=settings.paypal_timeout_seconds) as http:
                summary = await SubscriptionStatusSync(store, settings=settings, http=http).run()
        finally:
            await redis.aclose()
            # connections are bound to this event loop
            await engine.dispose()
        return {
            "processed": summary.processed,
            "failures": summary.failures,
            "statuses": dict(summary.statuses),
            "started_at": summary.started_at.isoformat(),
        }

    return asyncio.run(_run())
