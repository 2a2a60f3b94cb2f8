import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Customer(CamelModel):
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)


class PlanMetadata(CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    plan_duration_days: Optional[int] = Field(default=None, alias="planDurationDays", ge=1, le=366)
    plan_label: Optional[str] = Field(default=None, alias="planLabel", max_length=64)
    custom_id: Optional[str] = Field(default=None, alias="customId", max_length=127)
    post_trial_amount: Optional[float] = Field(default=None, alias="postTrialAmount")


class PlanRequest(CamelModel):
    amount: float
    currency: Optional[str] = Field(default=None, max_length=3)
    plan_id: str = Field(..., alias="planId", min_length=1, max_length=64)
    billing_type: Literal["trial", "subscription", "once_off"] = Field(..., alias="billingType")
    role: Literal["sme", "sdp"]
    customer: Optional[Customer] = None
    return_url: Optional[str] = Field(default=None, alias="returnUrl", max_length=2048)
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl", max_length=2048)
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)


class PaymentInitOut(CamelModel):
    order_id: str = Field(..., alias="orderId")
    approval_url: Optional[str] = Field(default=None, alias="approvalUrl")
    payment_status: str = Field(..., alias="paymentStatus")
    amount: float
    currency: str
    billing_type: str = Field(..., alias="billingType")
    role: str
    plan_id: str = Field(..., alias="planId")
    paypal_plan_id: str = Field(..., alias="paypalPlanId")
    customer: Optional[Customer] = None
    expires_at: Optional[dt.datetime] = Field(default=None, alias="expiresAt")


class ClientConfigOut(CamelModel):
    client_id: Optional[str] = Field(default=None, alias="clientId")
    environment: str


class PlanStatusOut(CamelModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    user_id: str = Field(..., alias="userId")
    plan_type: Optional[str] = Field(default=None, alias="planType")
    plan_status: Optional[str] = Field(default=None, alias="planStatus")
    plan_expires_at: Optional[dt.datetime] = Field(default=None, alias="planExpiresAt")
    plan_requires_payment: bool = Field(default=False, alias="planRequiresPayment")
    plan_reference: Optional[str] = Field(default=None, alias="planReference")
    plan_issue: Optional[str] = Field(default=None, alias="planIssue")
    billing_profile: dict = Field(default_factory=dict, alias="billingProfile")


class SyncSummaryOut(CamelModel):
    processed: int
    statuses: dict[str, int]
    failures: int
    started_at: dt.datetime = Field(..., alias="startedAt")
