"""API router aggregation."""
from fastapi import APIRouter

from session_service.api.v1 import class_sessions

api_router = APIRouter()

# v1
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(class_sessions.router, prefix="/class-sessions", tags=["class-sessions"])

api_router.include_router(v1_router)
