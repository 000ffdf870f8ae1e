"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from cadence.api.campaigns import router as campaigns_router
from cadence.api.sequences import router as sequences_router
from cadence.api.audiences import router as audiences_router
from cadence.api.leads import router as leads_router
from cadence.api.broadcasts import router as broadcasts_router
from cadence.api.runner import router as runner_router
from cadence.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(campaigns_router)
api_router.include_router(sequences_router)
api_router.include_router(audiences_router)
api_router.include_router(leads_router)
api_router.include_router(broadcasts_router)
api_router.include_router(runner_router)
api_router.include_router(health_router)
