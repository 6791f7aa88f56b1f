import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from typing import Any

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/db")
async def db_health(request: Request) -> Any:
    """Return database connection health.

    This endpoint is safe for quick verification after deploying the backend.
    """
    try:
        ok = await request.app.state.db.ping()
        if ok:
            return {"status": "ok", "database": "connected"}
        else:
            return JSONResponse({"status": "error", "database": "ping_failed"}, status_code=500)
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return JSONResponse({"status": "error", "error": str(e)}, status_code=503)
