import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scholarz_billing.models.profile import UserProfile

logger = logging.getLogger(__name__)

PLAN_STATUSES = ("active", "pending", "payment_due", "trial_expired")


def as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    # sqlite hands back naive datetimes; everything we store is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


@dataclass(frozen=True)
class UserPlanState:
    """
    A plan-state transition. ``None`` for expiry, reference, subscription status,
    plan type or role means "leave as stored"; ``plan_issue`` is always written.
    """

    plan_status: str
    plan_requires_payment: bool
    plan_expires_at: Optional[dt.datetime] = None
    plan_reference: Optional[str] = None
    subscription_status: Optional[str] = None
    plan_issue: Optional[str] = None
    plan_type: Optional[str] = None
    role: Optional[str] = None

    def __post_init__(self):
        if self.plan_status not in PLAN_STATUSES:
            raise ValueError(f"Unknown plan status: {self.plan_status}")


def plan_status_view(profile: UserProfile) -> dict:
    billing = profile.billing_profile or {}
    return {
        "user_id": profile.user_id,
        "plan_type": profile.plan_type,
        "plan_status": profile.plan_status,
        "plan_expires_at": as_utc(profile.plan_expires_at),
        "plan_requires_payment": bool(profile.plan_requires_payment),
        "plan_reference": profile.plan_reference,
        "plan_issue": profile.plan_issue,
        "billing_profile": {
            k: v for k, v in billing.items() if k in ("subscriptionId", "subscriptionStatus") and v
        },
    }


class ProfileStore:
    """User profile documents keyed by user id, with a Redis read-through cache of plan status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Optional[Redis] = None,
        cache_ttl: int = 900,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.cache_ttl = cache_ttl

    @staticmethod
    def _cache_key(user_id: str) -> str:
        return f"plan:{user_id}"

    async def get(self, user_id: str) -> Optional[UserProfile]:
        async with self.session_factory() as session:
            return await session.get(UserProfile, user_id)

    async def list_expired(self, now: dt.datetime) -> list[UserProfile]:
        stmt = (
            select(UserProfile)
            .where(UserProfile.plan_expires_at.is_not(None), UserProfile.plan_expires_at <= now)
            .order_by(UserProfile.plan_expires_at)
        )
        async with self.session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def apply_plan_state(self, user_id: str, state: UserPlanState) -> UserProfile:
        async with self.session_factory() as session:
            profile = await session.get(UserProfile, user_id)
            if profile is None:
                profile = UserProfile(user_id=user_id, billing_profile={})
                session.add(profile)

            profile.plan_status = state.plan_status
            profile.plan_requires_payment = state.plan_requires_payment
            profile.plan_issue = state.plan_issue
            if state.plan_expires_at is not None:
                profile.plan_expires_at = state.plan_expires_at
            if state.plan_type is not None:
                profile.plan_type = state.plan_type
            if state.role is not None:
                profile.role = state.role
            if state.plan_reference is not None:
                profile.plan_reference = state.plan_reference

            billing = dict(profile.billing_profile or {})
            if state.plan_reference is not None:
                billing["subscriptionId"] = state.plan_reference
            if state.subscription_status is not None:
                billing["subscriptionStatus"] = state.subscription_status
            profile.billing_profile = billing

            await session.commit()
            await session.refresh(profile)

        await self._cache(profile)
        return profile

    async def get_plan_status(self, user_id: str) -> Optional[dict]:
        if self.redis is not None:
            cached = await self.redis.hgetall(self._cache_key(user_id))
            if cached and cached.get("plan_status"):
                return self._from_cache(user_id, cached)

        profile = await self.get(user_id)
        if profile is None:
            return None
        await self._cache(profile)
        return plan_status_view(profile)

    async def _cache(self, profile: UserProfile) -> None:
        if self.redis is None:
            return
        view = plan_status_view(profile)
        expires_at = view["plan_expires_at"]
        billing = view["billing_profile"]
        key = self._cache_key(profile.user_id)
        await self.redis.hset(
            key,
            mapping={
                "plan_type": view["plan_type"] or "",
                "plan_status": view["plan_status"] or "",
                "plan_expires_at": expires_at.isoformat() if expires_at else "",
                "plan_requires_payment": "1" if view["plan_requires_payment"] else "0",
                "plan_reference": view["plan_reference"] or "",
                "plan_issue": view["plan_issue"] or "",
                "subscription_id": billing.get("subscriptionId") or "",
                "subscription_status": billing.get("subscriptionStatus") or "",
            },
        )
        await self.redis.expire(key, self.cache_ttl)

    @staticmethod
    def _from_cache(user_id: str, cached: dict) -> dict:
        expires = cached.get("plan_expires_at") or None
        billing = {
            "subscriptionId": cached.get("subscription_id") or None,
            "subscriptionStatus": cached.get("subscription_status") or None,
        }
        return {
            "user_id": user_id,
            "plan_type": cached.get("plan_type") or None,
            "plan_status": cached.get("plan_status") or None,
            "plan_expires_at": dt.datetime.fromisoformat(expires) if expires else None,
            "plan_requires_payment": cached.get("plan_requires_payment") == "1",
            "plan_reference": cached.get("plan_reference") or None,
            "plan_issue": cached.get("plan_issue") or None,
            "billing_profile": {k: v for k, v in billing.items() if v},
        }
