"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from campaignhub.api.customers import router as customers_router
from campaignhub.api.orders import router as orders_router
from campaignhub.api.segments import router as segments_router
from campaignhub.api.campaigns import router as campaigns_router
from campaignhub.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(customers_router)
api_router.include_router(orders_router)
api_router.include_router(segments_router)
api_router.include_router(campaigns_router)
api_router.include_router(health_router)
