"""Webhooks router - billing provider events."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from aris.core.deps import get_db
from aris.schemas.subscription import WebhookEvent
from aris.services import subscription_service

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


@router.post("/subscription")
async def receive_subscription_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive a billing provider event.

    Security:
    - Validates the `sha256=` HMAC in X-Webhook-Signature against the raw body
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        logger.warning("Subscription webhook missing signature")
        raise HTTPException(status_code=403, detail="Missing signature")
    if not subscription_service.verify_webhook_signature(body, signature):
        logger.warning("Subscription webhook invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        event = WebhookEvent.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    try:
        event_type = subscription_service.handle_webhook_event(db, event.type, event.data)
    except subscription_service.UnknownWebhookEventError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (subscription_service.SubscriptionNotFoundError, subscription_service.PlanNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "event": event_type}
