import asyncio
import logging

from fastapi import APIRouter

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


async def get_db_health() -> bool:
    """Check database connectivity by executing SELECT 1."""
    try:
        from sqlalchemy import text
        from ..services.db import get_engine

        def _check() -> bool:
            with get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            return True

        # Run blocking DB call in a thread to avoid blocking event loop
        return await asyncio.to_thread(_check)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("/healthz")
async def health():
    """Health check with database verification."""
    db_healthy = await get_db_health()
    if not db_healthy:
        return {"ok": False, "status": "degraded", "services": {"database": False}}
    return {"ok": True, "status": "healthy", "services": {"database": True}}
