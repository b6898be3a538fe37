from fastapi import APIRouter

from trinity_api.api.routes import analytics, health, onboarding

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(onboarding.router, prefix="/onboarding", tags=["onboarding"])
