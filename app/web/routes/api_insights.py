"""Routes for rule-based financial insights."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import RateLimitExceeded
from app.core.rate_limit import RateLimiter, get_rate_limiter
from app.core.session import get_current_user
from app.domain.insights.models import INSIGHT_TYPES
from app.domain.insights.repository import InsightRepository
from app.domain.insights.schemas import InsightEngagementIn, InsightListOut, InsightOut
from app.domain.insights.services import InsightService, get_insight_service
from app.domain.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=InsightListOut)
async def list_insights(
    limit: int = Query(20),
    dismissed: Optional[bool] = Query(None),
    insight_type: Optional[str] = Query(None, alias="type"),
    search: Optional[str] = Query(None, max_length=100),
    order_by: Optional[str] = Query(None, alias="orderBy"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InsightListOut:
    """Return the user's insights, most urgent first unless ``orderBy`` says otherwise."""
    insights, total = await InsightRepository(db).list_insights(
        user.id,
        limit=min(max(1, limit), 100),
        dismissed=dismissed,
        insight_type=insight_type if insight_type in INSIGHT_TYPES else None,
        search=search,
        order_by=order_by,
    )
    return InsightListOut(
        insights=[InsightOut.model_validate(item) for item in insights],
        total=total,
    )


@router.post("/generate")
async def generate_insights(
    force_regenerate: bool = Query(False, alias="forceRegenerate"),
    user: User = Depends(get_current_user),
    service: InsightService = Depends(get_insight_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Generate insights on demand; forced refreshes are rate limited per user."""
    if force_regenerate:
        try:
            await limiter.enforce(f"insights:{user.id}")
        except RateLimitExceeded as exc:
            logger.info(
                "User %s exceeded insight refresh limit, %ss remaining",
                user.id,
                exc.remaining_seconds,
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "Rate limit exceeded",
                    "remainingSeconds": exc.remaining_seconds,
                },
                headers={"Retry-After": str(exc.remaining_seconds)},
            )

    start_time = time.perf_counter()
    try:
        insights = await service.generate_insights(user.id, force_regenerate)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error generating insights for user %s", user.id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Failed to generate insights",
                "details": str(exc) or "Unknown error",
            },
        )
    elapsed_ms = int((time.perf_counter() - start_time) * 1000)

    count = len(insights)
    return {
        "success": True,
        "count": count,
        "message": f"Generated {count} insight{'' if count == 1 else 's'} successfully",
        "elapsedMs": elapsed_ms,
    }


async def _set_dismissed(user: User, insight_id: int, dismissed: bool, db: AsyncSession) -> InsightOut:
    insight = await InsightRepository(db).set_dismissed(
        user.id, insight_id, dismissed, datetime.utcnow()
    )
    if insight is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Insight not found or you do not have permission to modify it",
        )
    return InsightOut.model_validate(insight)


@router.put("/{insight_id}/dismiss", response_model=InsightOut)
async def dismiss_insight(
    insight_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InsightOut:
    return await _set_dismissed(user, insight_id, True, db)


@router.put("/{insight_id}/undismiss", response_model=InsightOut)
async def undismiss_insight(
    insight_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InsightOut:
    return await _set_dismissed(user, insight_id, False, db)


@router.post("/{insight_id}/track")
async def track_insight_engagement(
    insight_id: int,
    payload: InsightEngagementIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, object]:
    """Record a view or metadata expansion."""
    insight = await InsightRepository(db).record_engagement(
        user.id, insight_id, payload.event, datetime.utcnow()
    )
    if insight is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insight not found")
    return {"success": True, "event": payload.event, "viewCount": insight.view_count}
