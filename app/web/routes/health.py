import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import KeyValueStoreError
from app.core.kv_store import KeyValueStore, get_kv_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", summary="Health check")
async def health(
    db: AsyncSession = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict[str, str]:
    """Touch the database and the key-value store."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:  # noqa: BLE001
        db_status = "error"
        logger.exception("Database healthcheck failed", exc_info=exc)

    try:
        await store.get("health:ping")
        kv_status = "ok"
    except KeyValueStoreError:
        kv_status = "degraded"
        logger.warning("Key-value store unreachable; rate limiting runs in fallback mode")

    return {"status": "ok", "database": db_status, "kv_store": kv_status}
