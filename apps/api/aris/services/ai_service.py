"""AI glue shared by follow-up drafting, email analysis and supplier search.

Resolves the org's provider, runs the completion, logs token usage and
parses JSON replies.
"""

import logging
import uuid

from pydantic import BaseModel
from sqlalchemy.orm import Session

from aris.services import ai_settings_service, ai_usage_service
from aris.services.ai_provider import AIProvider, ChatMessage, ChatResponse
from aris.services.ai_response_validation import parse_json_object, validate_model

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """Base error for AI features."""


class AIDisabledError(AIServiceError):
    def __init__(self):
        super().__init__("AI is not enabled")


class AIKeyMissingError(AIServiceError):
    def __init__(self):
        super().__init__("AI API key not configured")


class AIInvalidResponseError(AIServiceError):
    def __init__(self):
        super().__init__("AI returned an invalid response")


def resolve_provider(db: Session, org_id: uuid.UUID) -> AIProvider:
    """
    Provider for the org.

    Raises:
        AIDisabledError: AI switched off for the org
        AIKeyMissingError: No org key and no platform fallback
    """
    if not ai_settings_service.is_ai_enabled(db, org_id):
        raise AIDisabledError()
    provider = ai_settings_service.get_ai_provider_for_org(db, org_id)
    if provider is None:
        raise AIKeyMissingError()
    return provider


async def complete(
    db: Session,
    org_id: uuid.UUID,
    user_id: uuid.UUID | None,
    feature: str,
    messages: list[ChatMessage],
    *,
    temperature: float = 0.7,
    max_tokens: int = 1000,
    provider: AIProvider | None = None,
) -> ChatResponse:
    """Run a chat completion and record its token usage."""
    provider = provider or resolve_provider(db, org_id)
    response = await provider.chat(messages, temperature=temperature, max_tokens=max_tokens)
    ai_usage_service.log_usage(
        db,
        organization_id=org_id,
        user_id=user_id,
        feature=feature,
        model=response.model,
        prompt_tokens=response.prompt_tokens,
        completion_tokens=response.completion_tokens,
        estimated_cost_usd=response.estimated_cost_usd,
    )
    db.commit()
    return response


async def complete_json(
    db: Session,
    org_id: uuid.UUID,
    user_id: uuid.UUID | None,
    feature: str,
    messages: list[ChatMessage],
    schema: type[BaseModel],
    **kwargs,
) -> BaseModel:
    """
    Run a completion that must answer with a JSON object matching `schema`.

    Raises:
        AIInvalidResponseError: Reply is not parseable or fails validation
    """
    response = await complete(db, org_id, user_id, feature, messages, **kwargs)
    parsed = validate_model(schema, parse_json_object(response.content))
    if parsed is None:
        logger.warning("Unusable AI reply for feature=%s org=%s", feature, org_id)
        raise AIInvalidResponseError()
    return parsed
