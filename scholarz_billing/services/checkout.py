import datetime as dt
import logging
from typing import Optional

import httpx

from scholarz_billing.core.config import Settings
from scholarz_billing.core.credentials import CredentialResolver, get_credential_resolver, require_credentials
from scholarz_billing.schemas.billing import PaymentInitOut, PlanRequest
from scholarz_billing.services.currency import normalize_amount
from scholarz_billing.services.paypal import PayPalClient
from scholarz_billing.services.plans import PlanProvisioner, build_plan_spec
from scholarz_billing.services.profiles import ProfileStore, UserPlanState
from scholarz_billing.services.subscriptions import create_subscription

logger = logging.getLogger(__name__)

DEFAULT_DURATIONS = {"free": 30, "monthly": 30, "annual": 365}


async def initiate_payment(
    request: PlanRequest,
    *,
    settings: Settings,
    http: httpx.AsyncClient,
    store: Optional[ProfileStore] = None,
    user_id: Optional[str] = None,
    resolver: Optional[CredentialResolver] = None,
    now: Optional[dt.datetime] = None,
) -> PaymentInitOut:
    """
    Provision (or reuse) the priced plan for ``request``, open a PayPal subscription
    against it and return where to send the user for approval.
    """
    now = now or dt.datetime.now(dt.timezone.utc)
    credentials = require_credentials((resolver or get_credential_resolver(settings)).resolve())

    # Everything that can be rejected locally is rejected before the first network call
    charged = normalize_amount(request.amount, request.currency, credentials.environment)
    spec = build_plan_spec(request, credentials.environment)

    client = await PayPalClient.connect(http, credentials)
    provisioner = PlanProvisioner(
        client,
        brand=settings.paypal_brand_name,
        max_attempts=settings.paypal_plan_create_attempts,
        backoff_seconds=settings.paypal_plan_backoff_seconds,
    )
    paypal_plan_id = await provisioner.provision(spec)
    subscription = await create_subscription(
        client,
        paypal_plan_id,
        brand=settings.paypal_brand_name,
        return_url=request.return_url or settings.default_return_url,
        cancel_url=request.cancel_url or settings.default_cancel_url,
        customer=request.customer,
        custom_id=request.metadata.custom_id or user_id,
    )

    duration_days = request.metadata.plan_duration_days or DEFAULT_DURATIONS[spec.tier]
    expires_at = now + dt.timedelta(days=duration_days)
    logger.info(
        "Opened PayPal subscription %s on plan %s for %s/%s (%s %s)",
        subscription.id,
        paypal_plan_id,
        request.role,
        request.plan_id,
        charged.currency,
        charged.value,
    )

    if store is not None and user_id:
        await store.apply_plan_state(
            user_id,
            UserPlanState(
                plan_status="pending",
                plan_requires_payment=True,
                plan_expires_at=expires_at,
                plan_reference=subscription.id,
                subscription_status=subscription.status,
                plan_type=spec.tier,
                role=request.role,
            ),
        )

    return PaymentInitOut(
        order_id=subscription.id,
        approval_url=subscription.approval_url,
        payment_status=subscription.status,
        amount=charged.amount,
        currency=charged.currency,
        billing_type=request.billing_type,
        role=request.role,
        plan_id=request.plan_id,
        paypal_plan_id=paypal_plan_id,
        customer=request.customer,
        expires_at=expires_at if spec.is_trial else None,
    )
