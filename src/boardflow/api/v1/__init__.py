"""API v1 module."""

from fastapi import APIRouter

from boardflow.api.v1.endpoints import approvals

api_router = APIRouter()

# Include routers
api_router.include_router(approvals.router)
