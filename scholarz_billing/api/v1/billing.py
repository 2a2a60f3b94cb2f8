import httpx
from fastapi import APIRouter, Depends, HTTPException

from scholarz_billing.core.auth import get_current_claims, get_optional_claims, require_internal_token
from scholarz_billing.core.config import Settings
from scholarz_billing.core.credentials import CredentialResolver
from scholarz_billing.core.deps import get_http_client, get_profile_store, get_resolver, get_settings_dep
from scholarz_billing.schemas.billing import (
    ClientConfigOut,
    PaymentInitOut,
    PlanRequest,
    PlanStatusOut,
    SyncSummaryOut,
)
from scholarz_billing.services.checkout import initiate_payment
from scholarz_billing.services.profiles import ProfileStore
from scholarz_billing.services.status_sync import SubscriptionStatusSync

router = APIRouter()


@router.post("/paypal/initiate", response_model=PaymentInitOut)
async def initiate_paypal_payment(
    payload: PlanRequest,
    claims=Depends(get_optional_claims),
    settings: Settings = Depends(get_settings_dep),
    http: httpx.AsyncClient = Depends(get_http_client),
    store: ProfileStore = Depends(get_profile_store),
    resolver: CredentialResolver = Depends(get_resolver),
):
    return await initiate_payment(
        payload,
        settings=settings,
        http=http,
        store=store,
        user_id=claims.sub if claims else None,
        resolver=resolver,
    )


@router.get("/paypal/client-config", response_model=ClientConfigOut)
async def paypal_client_config(resolver: CredentialResolver = Depends(get_resolver)):
    credentials = resolver.resolve()
    return ClientConfigOut(client_id=credentials.client_id, environment=credentials.environment)


@router.get("/plan-status", response_model=PlanStatusOut)
async def plan_status(
    claims=Depends(get_current_claims),
    store: ProfileStore = Depends(get_profile_store),
):
    view = await store.get_plan_status(claims.sub)
    if view is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return PlanStatusOut(**view)


@router.post("/sync", response_model=SyncSummaryOut, dependencies=[Depends(require_internal_token)])
async def run_status_sync(
    settings: Settings = Depends(get_settings_dep),
    http: httpx.AsyncClient = Depends(get_http_client),
    store: ProfileStore = Depends(get_profile_store),
    resolver: CredentialResolver = Depends(get_resolver),
):
    summary = await SubscriptionStatusSync(store, settings=settings, http=http, resolver=resolver).run()
    return SyncSummaryOut(
        processed=summary.processed,
        statuses=dict(summary.statuses),
        failures=summary.failures,
        started_at=summary.started_at,
    )
