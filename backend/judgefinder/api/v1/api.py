"""
Main API router aggregator
"""
from fastapi import APIRouter

from judgefinder.api.v1.endpoints import health, judges, sync_worker

api_router = APIRouter()

api_router.include_router(judges.router, prefix="/judges", tags=["Judges"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])

# Lambda worker endpoint: POST /api/sync-worker/run-due
api_router.include_router(sync_worker.router, prefix="/sync-worker", tags=["Sync Worker"])
