"""HTTP mapping for AI feature errors shared by the AI-backed routers."""

from fastapi import HTTPException

from aris.services import ai_service
from aris.services.ai_provider import AIProviderError


def to_http_exception(exc: Exception) -> HTTPException:
    """403 disabled, 400 no key, 500 unusable reply, 502 provider failure."""
    if isinstance(exc, ai_service.AIDisabledError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ai_service.AIKeyMissingError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ai_service.AIInvalidResponseError):
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, AIProviderError):
        return HTTPException(status_code=502, detail="AI provider request failed")
    return HTTPException(status_code=500, detail=str(exc))
