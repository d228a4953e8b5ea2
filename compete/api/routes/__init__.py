"""
API routes - combined router from all route modules.
"""

from fastapi import APIRouter

from compete.api.routes.admin import router as admin_router

router = APIRouter()
router.include_router(admin_router)
