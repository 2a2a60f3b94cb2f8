from fastapi import APIRouter
from scholarz_billing.api.v1 import billing

api_router = APIRouter(prefix="/v1")
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
