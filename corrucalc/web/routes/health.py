"""Health check API routes.

Provides endpoints for monitoring application health and connectivity.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from corrucalc.web.dependencies import Services, get_services

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(services: Services = Depends(get_services)):
    """Check application health.

    Verifies database and cache connectivity. The quote engine keeps serving
    assisted channels while the cache is down, so only the database decides
    the status code.
    """
    result = {"status": "ok", "database": "connected", "cache": "connected"}

    try:
        async with services.session_scope() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        result.update(status="error", database="disconnected", detail=str(e))

    try:
        await services.cache.get("health:ping")
    except Exception as e:
        result["cache"] = "disconnected"
        result["cache_detail"] = str(e)

    dispatcher = services.dispatcher
    result["notifications"] = {
        "running": dispatcher.running,
        "processed": dispatcher.processed,
        "failed": dispatcher.failed,
        "dropped": dispatcher.dropped,
    }

    code = status.HTTP_200_OK if result["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=result)
