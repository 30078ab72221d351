"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.assets import router as assets_router
from app.api.v1.auth import router as auth_router
from app.api.v1.credits import router as credits_router
from app.api.v1.jobs import router as jobs_router
from app.api.v1.members import router as members_router
from app.api.v1.system import router as system_router
from app.api.v1.tenants import router as tenants_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(auth_router)
v1_router.include_router(members_router)
v1_router.include_router(jobs_router)
v1_router.include_router(credits_router)
v1_router.include_router(assets_router)
v1_router.include_router(system_router)
