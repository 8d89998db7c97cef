"""JSON API router."""
from __future__ import annotations

from fastapi import APIRouter

from app.web.routes import api_insights
from app.web.routes import api_transactions
from app.web.routes import cron

router = APIRouter()

router.include_router(api_insights.router, prefix="/insights", tags=["insights"])
router.include_router(api_transactions.router, prefix="/transactions", tags=["transactions"])
router.include_router(cron.router, prefix="/cron", tags=["cron"])
