# API routers for the spec companion service

from fastapi import APIRouter

from spec_companion.routers.projects import router as projects_router
from spec_companion.routers.reports import router as reports_router
from spec_companion.routers.settings import router as settings_router
from spec_companion.routers.specs import router as specs_router
from spec_companion.routers.testing import router as testing_router

router = APIRouter()
router.include_router(projects_router, prefix="/projects", tags=["projects"])
router.include_router(specs_router, tags=["specs"])
router.include_router(testing_router, tags=["tests"])
router.include_router(reports_router, tags=["reports"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
