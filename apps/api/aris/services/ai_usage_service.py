"""Per-call AI token accounting and the usage report shown to admins."""

import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from aris.db.models import AIUsageLog
from aris.db.types import utcnow


def log_usage(
    db: Session,
    organization_id: uuid.UUID,
    user_id: uuid.UUID | None,
    feature: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    estimated_cost_usd: Decimal | None = None,
) -> AIUsageLog:
    """Add one usage row; the caller's commit persists it."""
    entry = AIUsageLog(
        organization_id=organization_id,
        user_id=user_id,
        feature=feature,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated_cost_usd=estimated_cost_usd,
    )
    db.add(entry)
    db.flush()
    return entry


def _grouped(db: Session, column, window: tuple) -> list[dict]:
    tokens = func.coalesce(func.sum(AIUsageLog.total_tokens), 0)
    rows = (
        db.query(
            column.label("key"),
            func.count(AIUsageLog.id),
            tokens,
            func.coalesce(func.sum(AIUsageLog.estimated_cost_usd), 0),
        )
        .filter(*window)
        .group_by(column)
        .order_by(tokens.desc())
        .all()
    )
    return [
        {"key": key, "requests": requests, "tokens": int(total), "cost_usd": float(cost)}
        for key, requests, total, cost in rows
    ]


def get_org_usage_summary(db: Session, organization_id: uuid.UUID, days: int = 30) -> dict:
    """Totals for the last `days` days, broken down by feature and by model."""
    window = (
        AIUsageLog.organization_id == organization_id,
        AIUsageLog.created_at >= utcnow() - timedelta(days=days),
    )
    requests, prompt, completion, cost = (
        db.query(
            func.count(AIUsageLog.id),
            func.coalesce(func.sum(AIUsageLog.prompt_tokens), 0),
            func.coalesce(func.sum(AIUsageLog.completion_tokens), 0),
            func.coalesce(func.sum(AIUsageLog.estimated_cost_usd), 0),
        )
        .filter(*window)
        .one()
    )

    by_feature = _grouped(db, AIUsageLog.feature, window)
    by_model = _grouped(db, AIUsageLog.model, window)
    return {
        "period_days": days,
        "total_requests": requests,
        "total_prompt_tokens": int(prompt),
        "total_completion_tokens": int(completion),
        "total_tokens": int(prompt) + int(completion),
        "total_cost_usd": float(cost),
        "by_feature": [{"feature": row.pop("key"), **row} for row in by_feature],
        "by_model": [{"model": row.pop("key"), **row} for row in by_model],
    }
