"""Scheduled (cron) entry points."""
from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import AuthError
from app.services.insight_scheduler import (
    MonthlyInsightSweep,
    build_monthly_sweep,
    verify_cron_secret,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/generate-insights")
async def run_monthly_insights(
    authorization: Optional[str] = Header(None),
    sweep: MonthlyInsightSweep = Depends(build_monthly_sweep),
) -> JSONResponse:
    """Daily trigger; does real work only on the first UTC day of the month.

    Requires ``Authorization: Bearer <CRON_SECRET>``.
    """
    start_time = time.perf_counter()
    try:
        verify_cron_secret(authorization, settings.CRON_SECRET)
    except AuthError as exc:
        logger.warning("Unauthorized scheduled insight run: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "error": "Unauthorized"},
        )

    try:
        report = await sweep.run()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Scheduled insight run failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Failed to generate insights",
                "details": str(exc) or "Unknown error",
                "elapsedMs": int((time.perf_counter() - start_time) * 1000),
            },
        )

    return JSONResponse(content=report.to_payload(settings.INSIGHTS_ERROR_REPORT_LIMIT))


@router.post("/generate-insights")
async def reject_post() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={
            "success": False,
            "error": "Method not allowed. Use GET for cron job execution.",
        },
    )
