"""Health, maintenance and dashboard route handlers."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from compete.api.dependencies import get_database_service
from compete.services.competition_status_service import update_all_competition_statuses
from compete.services.database_service import DatabaseService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health(database: DatabaseService = Depends(get_database_service)):
    """
    Collection-level health check.

    Returns 200 when every collection answers, 503 otherwise.
    """
    report = await database.health_check()
    status_code = 200 if report["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=jsonable_encoder(report))


@router.post("/admin/init-database")
async def init_database(database: DatabaseService = Depends(get_database_service)) -> Dict[str, Any]:
    """Create (or confirm) every collection's indexes."""
    try:
        await database.initialize()
    except Exception as e:
        logger.error(f"Error initializing database: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error initializing database: {str(e)}")
    return {"success": True, "message": "Index creation completed"}


@router.post("/admin/cleanup-database")
async def cleanup_database(database: DatabaseService = Depends(get_database_service)) -> Dict[str, Any]:
    """Purge expired sessions and tokens and old read notifications."""
    try:
        removed = await database.cleanup()
    except Exception as e:
        logger.error(f"Error cleaning up database: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error cleaning up database: {str(e)}")
    return {"success": True, "removed": removed}


@router.post("/admin/update-statuses")
async def update_statuses(database: DatabaseService = Depends(get_database_service)) -> Dict[str, Any]:
    """Apply the date-driven competition status transitions now."""
    try:
        updates = await update_all_competition_statuses(database.competitions)
    except Exception as e:
        logger.error(f"Error updating competition statuses: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating statuses: {str(e)}")
    return {"success": True, "count": len(updates), "updates": updates}


@router.get("/admin/stats")
async def global_stats(database: DatabaseService = Depends(get_database_service)):
    return await database.get_global_stats()


@router.get("/search")
async def search(
    q: str = Query("", description="Search text"),
    user_id: Optional[str] = Query(None, description="User to exclude from user results"),
    database: DatabaseService = Depends(get_database_service),
):
    """Search public competitions, active teams and users."""
    return await database.global_search(q, user_id=user_id)
