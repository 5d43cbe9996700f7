"""Pydantic schemas for subscription plans, subscriptions and invoices."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from aris.db.enums import BillingInterval


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    price: float = Field(..., ge=0)
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    features: dict = Field(default_factory=dict)
    is_active: bool = True


class PlanUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    price: float | None = Field(None, ge=0)
    billing_interval: BillingInterval | None = None
    features: dict | None = None
    is_active: bool | None = None


class PlanRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    price: float
    billing_interval: str
    features: dict
    is_active: bool

    model_config = {"from_attributes": True}


class SubscribeRequest(BaseModel):
    plan_id: UUID
    trial_days: int | None = Field(None, ge=1, le=90)


class CancelRequest(BaseModel):
    at_period_end: bool = True


class SubscriptionRead(BaseModel):
    id: UUID
    status: str
    plan: PlanRead
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: datetime | None
    trial_end: datetime | None
    subscription_provider: str | None
    provider_subscription_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CurrentSubscriptionResponse(BaseModel):
    subscription: SubscriptionRead | None


class InvoiceRead(BaseModel):
    id: UUID
    subscription_id: UUID
    amount: float
    status: str
    due_date: datetime | None
    paid_at: datetime | None
    invoice_url: str | None
    invoice_pdf: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookEvent(BaseModel):
    type: str
    data: dict = Field(default_factory=dict)
