from fastapi import FastAPI, Request, status
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.core.config import settings
from app.core.database import init_db
from app.core.errors import DataAccessError
from app.core.kv_store import close_kv_store
from app.core.logging_config import setup_logging
from app.core.middleware import RequestContextMiddleware
from app.domain.insights.triggers import get_insight_trigger
from app.services.scheduler import SchedulerManager
from app.web.routes import api, health

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize app on startup, release background work on shutdown."""
    await init_db()

    scheduler = SchedulerManager() if settings.INSIGHTS_SCHEDULER_ENABLED else None
    if scheduler is not None:
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.stop()
    await get_insight_trigger().drain()
    await close_kv_store()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Personal budgeting insights",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.ALLOWED_HOSTS,
)
app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(api.router, prefix="/api", tags=["api"])
app.include_router(health.router, tags=["health"])


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError) -> JSONResponse:
    logger.error("Data access failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Storage failure", "details": str(exc)},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
