"""
Daily reconciliation of cached plan status against PayPal.

Only profiles whose plan has expired are examined. Free trials expire without
asking PayPal; paid plans are re-verified against the stored subscription and
fail closed (``payment_due``) whenever verification is impossible.
"""
import asyncio
import datetime as dt
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import httpx

from scholarz_billing.core.config import Settings
from scholarz_billing.core.credentials import CredentialResolver, get_credential_resolver, require_credentials
from scholarz_billing.core.errors import BillingError, ReconciliationError
from scholarz_billing.models.profile import UserProfile
from scholarz_billing.services.paypal import PayPalClient
from scholarz_billing.services.profiles import ProfileStore, UserPlanState
from scholarz_billing.services.subscriptions import get_subscription

logger = logging.getLogger(__name__)

MISSING_SUBSCRIPTION = "missing_subscription"
SYNC_FAILED = "paypal_sync_failed"


def _parse_timestamp(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _add_one_year(value: dt.datetime) -> dt.datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # 29 February
        return value.replace(year=value.year + 1, day=28)


def renewal_expiry(plan_type: Optional[str], now: dt.datetime) -> dt.datetime:
    # TODO: anchor on the stored expiry instead of now once product confirms the renewal rule
    if plan_type == "annual":
        return _add_one_year(now)
    return now + dt.timedelta(days=30)


def state_from_subscription(profile: UserProfile, subscription: dict, now: dt.datetime) -> UserPlanState:
    status = (subscription.get("status") or "").upper()
    if status == "ACTIVE":
        next_billing = _parse_timestamp((subscription.get("billing_info") or {}).get("next_billing_time"))
        return UserPlanState(
            plan_status="active",
            plan_requires_payment=False,
            plan_expires_at=next_billing or renewal_expiry(profile.plan_type, now),
            subscription_status=status,
        )
    if status == "APPROVAL_PENDING":
        return UserPlanState(plan_status="pending", plan_requires_payment=True, subscription_status=status)
    return UserPlanState(plan_status="payment_due", plan_requires_payment=True, subscription_status=status or None)


@dataclass
class SyncSummary:
    started_at: dt.datetime
    processed: int = 0
    failures: int = 0
    statuses: Counter = field(default_factory=Counter)


class SubscriptionStatusSync:
    def __init__(
        self,
        store: ProfileStore,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        resolver: Optional[CredentialResolver] = None,
        concurrency: Optional[int] = None,
    ):
        self.store = store
        self.settings = settings
        self.http = http
        self.resolver = resolver
        self.concurrency = max(1, concurrency or settings.sync_concurrency)

    async def _connect(self) -> Optional[PayPalClient]:
        try:
            credentials = require_credentials((self.resolver or get_credential_resolver(self.settings)).resolve())
            return await PayPalClient.connect(self.http, credentials)
        except (BillingError, httpx.HTTPError) as exc:
            logger.error("PayPal unavailable for status sync: %s", exc)
            return None

    async def derive_state(
        self, profile: UserProfile, client: Optional[PayPalClient], now: dt.datetime
    ) -> UserPlanState:
        if profile.plan_type == "free":
            return UserPlanState(plan_status="trial_expired", plan_requires_payment=True)
        if not profile.plan_reference:
            return UserPlanState(plan_status="payment_due", plan_requires_payment=True, plan_issue=MISSING_SUBSCRIPTION)
        if client is None:
            raise ReconciliationError("PayPal client unavailable", issue=SYNC_FAILED)
        try:
            subscription = await get_subscription(client, profile.plan_reference)
        except (BillingError, httpx.HTTPError) as exc:
            raise ReconciliationError(
                f"Could not fetch subscription {profile.plan_reference}: {exc}",
                issue=SYNC_FAILED,
                context={"user_id": profile.user_id},
            ) from exc
        try:
            return state_from_subscription(profile, subscription, now)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ReconciliationError(
                f"Malformed subscription {profile.plan_reference}: {exc!r}",
                issue=SYNC_FAILED,
                context={"user_id": profile.user_id},
            ) from exc

    async def reconcile(self, profile: UserProfile, client: Optional[PayPalClient], now: dt.datetime) -> UserPlanState:
        try:
            state = await self.derive_state(profile, client, now)
        except ReconciliationError as exc:
            logger.warning("Plan sync failed for %s: %s", profile.user_id, exc.message)
            state = UserPlanState(plan_status="payment_due", plan_requires_payment=True, plan_issue=exc.issue)
        await self.store.apply_plan_state(profile.user_id, state)
        return state

    async def run(self, now: Optional[dt.datetime] = None) -> SyncSummary:
        now = now or dt.datetime.now(dt.timezone.utc)
        summary = SyncSummary(started_at=now)
        profiles = await self.store.list_expired(now)
        if not profiles:
            return summary

        client = None
        if any(p.plan_type != "free" and p.plan_reference for p in profiles):
            client = await self._connect()

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(profile: UserProfile) -> UserPlanState:
            async with semaphore:
                return await self.reconcile(profile, client, now)

        results = await asyncio.gather(*(_bounded(p) for p in profiles), return_exceptions=True)
        for profile, result in zip(profiles, results):
            summary.processed += 1
            if isinstance(result, BaseException):
                summary.failures += 1
                logger.error("Could not store plan state for %s: %r", profile.user_id, result)
                continue
            summary.statuses[result.plan_status] += 1
            if result.plan_issue == SYNC_FAILED:
                summary.failures += 1

        logger.info(
            "Plan status sync processed %s profiles (%s failures): %s",
            summary.processed,
            summary.failures,
            dict(summary.statuses),
        )
        return summary
