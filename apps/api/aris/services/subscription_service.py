"""Subscription service - plans, organization subscriptions, invoices and billing webhooks."""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.db.enums import (
    LIVE_SUBSCRIPTION_STATUSES, BillingInterval, InvoiceStatus, NotificationType, SubscriptionStatus,
)
from aris.db.models import OrganizationSubscription, SubscriptionInvoice, SubscriptionPlan
from aris.db.types import utcnow
from aris.schemas.subscription import PlanCreate, PlanUpdate
from aris.services import notification_service

logger = logging.getLogger(__name__)

PERIOD_LENGTH = {
    BillingInterval.MONTHLY.value: timedelta(days=30),
    BillingInterval.YEARLY.value: timedelta(days=365),
}

SIGNATURE_PREFIX = "sha256="

DEFAULT_PLANS = [
    {
        "name": "Starter",
        "description": "One mailbox, contacts and pipelines",
        "price": Decimal("19.00"),
        "billing_interval": BillingInterval.MONTHLY.value,
        "features": {"mailboxes": 1, "ai_drafts": False, "metakocka": False},
    },
    {
        "name": "Pro",
        "description": "AI follow-up drafts and automation",
        "price": Decimal("49.00"),
        "billing_interval": BillingInterval.MONTHLY.value,
        "features": {"mailboxes": 5, "ai_drafts": True, "metakocka": False},
    },
    {
        "name": "Business",
        "description": "Everything in Pro plus the Metakocka integration",
        "price": Decimal("99.00"),
        "billing_interval": BillingInterval.MONTHLY.value,
        "features": {"mailboxes": 25, "ai_drafts": True, "metakocka": True},
    },
]

_LIVE_VALUES = [s.value for s in LIVE_SUBSCRIPTION_STATUSES]


class SubscriptionError(Exception):
    """Base error for billing operations."""


class PlanNotFoundError(SubscriptionError):
    def __init__(self, plan_id):
        self.plan_id = plan_id
        super().__init__("Subscription plan not found")


class DuplicatePlanError(SubscriptionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A plan named '{name}' already exists")


class NoActiveSubscriptionError(SubscriptionError):
    def __init__(self):
        super().__init__("No active subscription")


class SubscriptionNotFoundError(SubscriptionError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__("Subscription not found")


class UnknownWebhookEventError(SubscriptionError):
    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type}")


# =============================================================================
# Plans
# =============================================================================

def list_plans(db: Session, include_inactive: bool = False) -> list[SubscriptionPlan]:
    query = db.query(SubscriptionPlan)
    if not include_inactive:
        query = query.filter(SubscriptionPlan.is_active.is_(True))
    return query.order_by(SubscriptionPlan.price).all()


def get_plan(db: Session, plan_id: UUID) -> SubscriptionPlan | None:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()


def _plan_name_taken(db: Session, name: str, exclude_id: UUID | None = None) -> bool:
    query = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == name)
    if exclude_id:
        query = query.filter(SubscriptionPlan.id != exclude_id)
    return query.first() is not None


def create_plan(db: Session, data: PlanCreate) -> SubscriptionPlan:
    if _plan_name_taken(db, data.name):
        raise DuplicatePlanError(data.name)
    plan = SubscriptionPlan(
        name=data.name,
        description=data.description,
        price=Decimal(str(data.price)),
        billing_interval=data.billing_interval.value,
        features=data.features,
        is_active=data.is_active,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def update_plan(db: Session, plan: SubscriptionPlan, data: PlanUpdate) -> SubscriptionPlan:
    updates = data.model_dump(exclude_unset=True)
    if updates.get("name") and _plan_name_taken(db, updates["name"], exclude_id=plan.id):
        raise DuplicatePlanError(updates["name"])
    for field, value in updates.items():
        if value is None and field != "description":
            continue
        if field == "price":
            value = Decimal(str(value))
        elif field == "billing_interval":
            value = value.value
        setattr(plan, field, value)
    db.commit()
    db.refresh(plan)
    return plan


def seed_default_plans(db: Session) -> int:
    """Create the default plans that do not exist yet. Returns how many were added."""
    created = 0
    for plan in DEFAULT_PLANS:
        if _plan_name_taken(db, plan["name"]):
            continue
        db.add(SubscriptionPlan(**plan, is_active=True))
        created += 1
    db.commit()
    return created


# =============================================================================
# Organization subscriptions
# =============================================================================

def get_current_subscription(db: Session, org_id: UUID) -> OrganizationSubscription | None:
    """Most recent live subscription of the org."""
    return (
        db.query(OrganizationSubscription)
        .filter(
            OrganizationSubscription.organization_id == org_id,
            OrganizationSubscription.status.in_(_LIVE_VALUES),
        )
        .order_by(OrganizationSubscription.created_at.desc())
        .first()
    )


def _end_live_subscriptions(db: Session, org_id: UUID, keep_id: UUID | None = None) -> None:
    now = utcnow()
    live = (
        db.query(OrganizationSubscription)
        .filter(
            OrganizationSubscription.organization_id == org_id,
            OrganizationSubscription.status.in_(_LIVE_VALUES),
        )
        .all()
    )
    for sub in live:
        if sub.id == keep_id:
            continue
        sub.status = SubscriptionStatus.CANCELED.value
        sub.canceled_at = now


def subscribe(
    db: Session,
    org_id: UUID,
    plan_id: UUID,
    trial_days: int | None = None,
    provider: str | None = None,
    provider_subscription_id: str | None = None,
) -> OrganizationSubscription:
    """
    Start a subscription to a plan, replacing any live one.

    Raises:
        PlanNotFoundError: Unknown or inactive plan
    """
    plan = get_plan(db, plan_id)
    if not plan or not plan.is_active:
        raise PlanNotFoundError(plan_id)

    _end_live_subscriptions(db, org_id)
    now = utcnow()
    trial_end = now + timedelta(days=trial_days) if trial_days else None
    subscription = OrganizationSubscription(
        organization_id=org_id,
        subscription_plan_id=plan.id,
        status=(SubscriptionStatus.TRIALING if trial_days else SubscriptionStatus.ACTIVE).value,
        current_period_start=now,
        current_period_end=trial_end or now + PERIOD_LENGTH[plan.billing_interval],
        trial_end=trial_end,
        subscription_provider=provider,
        provider_subscription_id=provider_subscription_id,
        details={},
    )
    db.add(subscription)
    db.flush()
    notification_service.create_notification(
        db,
        org_id=org_id,
        notification_type=NotificationType.SUBSCRIPTION_CHANGED,
        title=f"Subscribed to {plan.name}",
        message=f"Your organization is now on the {plan.name} plan.",
        entity_type="subscription",
        entity_id=subscription.id,
    )
    db.commit()
    db.refresh(subscription)
    logger.info("Org %s subscribed to plan %s", org_id, plan.id)
    return subscription


def cancel_subscription(db: Session, org_id: UUID, at_period_end: bool = True) -> OrganizationSubscription:
    """
    Cancel the live subscription now or at the end of the period.

    Raises:
        NoActiveSubscriptionError: Nothing to cancel
    """
    subscription = get_current_subscription(db, org_id)
    if subscription is None:
        raise NoActiveSubscriptionError()
    if at_period_end:
        subscription.cancel_at_period_end = True
    else:
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = utcnow()
    db.commit()
    db.refresh(subscription)
    return subscription


def list_invoices(db: Session, org_id: UUID, limit: int = 100) -> list[SubscriptionInvoice]:
    return (
        db.query(SubscriptionInvoice)
        .filter(SubscriptionInvoice.organization_id == org_id)
        .order_by(SubscriptionInvoice.created_at.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Webhooks
# =============================================================================

def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    """Check a `sha256=<hex>` HMAC of the raw body."""
    secret = secret if secret is not None else settings.SUBSCRIPTION_WEBHOOK_SECRET
    if not secret or not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(SIGNATURE_PREFIX + expected, signature)


def _find_subscription(db: Session, reference: str | None) -> OrganizationSubscription:
    """Look up by provider subscription id, then by our own id."""
    if not reference:
        raise SubscriptionNotFoundError("")
    subscription = (
        db.query(OrganizationSubscription)
        .filter(OrganizationSubscription.provider_subscription_id == reference)
        .first()
    )
    if subscription is None:
        try:
            subscription = db.get(OrganizationSubscription, UUID(reference))
        except ValueError:
            subscription = None
    if subscription is None:
        raise SubscriptionNotFoundError(reference)
    return subscription


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _upsert_invoice(db: Session, subscription: OrganizationSubscription, data: dict, status: InvoiceStatus) -> None:
    provider_invoice_id = data.get("invoice_id")
    invoice = None
    if provider_invoice_id:
        invoice = (
            db.query(SubscriptionInvoice)
            .filter(SubscriptionInvoice.provider_invoice_id == provider_invoice_id)
            .first()
        )
    if invoice is None:
        if data.get("amount") is None:
            return
        invoice = SubscriptionInvoice(
            organization_id=subscription.organization_id,
            subscription_id=subscription.id,
            amount=Decimal(str(data["amount"])),
            provider_invoice_id=provider_invoice_id,
            invoice_url=data.get("invoice_url"),
            invoice_pdf=data.get("invoice_pdf"),
            due_date=_parse_datetime(data.get("due_date")),
        )
        db.add(invoice)
    invoice.status = status.value
    if status == InvoiceStatus.PAID:
        invoice.paid_at = utcnow()


def _on_payment_succeeded(db: Session, data: dict) -> None:
    subscription = _find_subscription(db, data.get("subscription_id"))
    subscription.status = SubscriptionStatus.ACTIVE.value
    period_end = _parse_datetime(data.get("period_end"))
    if period_end:
        subscription.current_period_start = subscription.current_period_end
        subscription.current_period_end = period_end
    _upsert_invoice(db, subscription, data, InvoiceStatus.PAID)


def _on_payment_failed(db: Session, data: dict) -> None:
    subscription = _find_subscription(db, data.get("subscription_id"))
    subscription.status = SubscriptionStatus.PAST_DUE.value
    _upsert_invoice(db, subscription, data, InvoiceStatus.UNPAID)
    notification_service.create_notification(
        db,
        org_id=subscription.organization_id,
        notification_type=NotificationType.PAYMENT_FAILED,
        title="Payment failed",
        message="We could not process your latest subscription payment. Please update your payment method.",
        entity_type="subscription",
        entity_id=subscription.id,
    )


def _on_subscription_created(db: Session, data: dict) -> None:
    try:
        org_id = UUID(str(data.get("organization_id")))
        plan_id = UUID(str(data.get("plan_id")))
    except ValueError as exc:
        raise SubscriptionNotFoundError(str(data.get("subscription_id") or "")) from exc
    reference = data.get("subscription_id")
    existing = (
        db.query(OrganizationSubscription)
        .filter(OrganizationSubscription.provider_subscription_id == reference)
        .first()
        if reference else None
    )
    if existing:
        existing.subscription_plan_id = plan_id
        existing.status = SubscriptionStatus.ACTIVE.value
        _end_live_subscriptions(db, org_id, keep_id=existing.id)
        return
    subscribe(
        db,
        org_id,
        plan_id,
        trial_days=data.get("trial_days"),
        provider=data.get("provider"),
        provider_subscription_id=reference,
    )


def _on_subscription_updated(db: Session, data: dict) -> None:
    subscription = _find_subscription(db, data.get("subscription_id"))
    old_plan = subscription.plan
    if data.get("plan_id"):
        try:
            new_plan = get_plan(db, UUID(str(data["plan_id"])))
        except ValueError:
            new_plan = None
        if new_plan is None:
            raise PlanNotFoundError(data["plan_id"])
        subscription.subscription_plan_id = new_plan.id
        if new_plan.id != old_plan.id:
            notification_service.create_notification(
                db,
                org_id=subscription.organization_id,
                notification_type=NotificationType.SUBSCRIPTION_CHANGED,
                title="Subscription plan changed",
                message=f"Your plan changed from {old_plan.name} to {new_plan.name}.",
                entity_type="subscription",
                entity_id=subscription.id,
            )
    status = data.get("status")
    if status and status in SubscriptionStatus._value2member_map_:
        subscription.status = status
    if "cancel_at_period_end" in data:
        subscription.cancel_at_period_end = bool(data["cancel_at_period_end"])


def _on_subscription_canceled(db: Session, data: dict) -> None:
    subscription = _find_subscription(db, data.get("subscription_id"))
    subscription.status = SubscriptionStatus.CANCELED.value
    subscription.canceled_at = utcnow()


def _on_trial_will_end(db: Session, data: dict) -> None:
    subscription = _find_subscription(db, data.get("subscription_id"))
    trial_end = _parse_datetime(data.get("trial_end")) or subscription.trial_end
    if trial_end:
        subscription.trial_end = trial_end
    when = trial_end.date().isoformat() if trial_end else "soon"
    notification_service.create_notification(
        db,
        org_id=subscription.organization_id,
        notification_type=NotificationType.TRIAL_ENDING,
        title="Your trial is ending",
        message=f"Your {subscription.plan.name} trial ends on {when}.",
        entity_type="subscription",
        entity_id=subscription.id,
    )


WEBHOOK_HANDLERS = {
    "payment_succeeded": _on_payment_succeeded,
    "payment_failed": _on_payment_failed,
    "subscription_created": _on_subscription_created,
    "subscription_updated": _on_subscription_updated,
    "subscription_canceled": _on_subscription_canceled,
    "trial_will_end": _on_trial_will_end,
}


def handle_webhook_event(db: Session, event_type: str, data: dict) -> str:
    """
    Apply a billing provider event.

    Raises:
        UnknownWebhookEventError: Unsupported event type
        SubscriptionNotFoundError: Event references an unknown subscription
        PlanNotFoundError: Event references an unknown plan
    """
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        raise UnknownWebhookEventError(event_type)
    handler(db, data)
    db.commit()
    logger.info("Processed subscription webhook %s", event_type)
    return event_type
