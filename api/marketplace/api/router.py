from fastapi import APIRouter

from marketplace.api.routes import health, jobs, notifications, professionals, proposals, reviews

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(proposals.router, prefix="/proposals", tags=["proposals"])
api_router.include_router(professionals.router, prefix="/professionals", tags=["professionals"])
api_router.include_router(reviews.router, prefix="/reviews", tags=["reviews"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
