"""Helpers for parsing and validating AI JSON responses."""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    return _FENCE_RE.sub("", text.strip()).strip()


def _loads_embedded(content: str, pattern: str):
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        match = re.search(pattern, content)
        if not match:
            logger.warning("AI reply is not JSON: %s", exc)
            return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("AI reply contains malformed JSON: %s", exc)
        return None


def parse_json_object(text: str) -> dict | None:
    data = _loads_embedded(strip_code_fences(text), r"\{[\s\S]*\}")
    return data if isinstance(data, dict) else None


def parse_json_array(text: str) -> list | None:
    data = _loads_embedded(strip_code_fences(text), r"\[[\s\S]*\]")
    return data if isinstance(data, list) else None


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("AI reply failed validation for %s: %s", model_cls.__name__, exc)
        return None
