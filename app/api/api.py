# app/api/api.py
from fastapi import APIRouter

from app.api.routes import (
    google_calendar_auth,
    integrations,
    tasks,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(
    google_calendar_auth.router,
    prefix="/auth/google-calendar",
    tags=["google_calendar_auth"],
)
api_router.include_router(
    integrations.router, prefix="/integrations", tags=["integrations"]
)
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
