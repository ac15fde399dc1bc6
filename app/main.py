# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import models  # noqa: F401  registers tables on Base.metadata
from app.api.api import api_router
from app.core.config import settings
from app.core.error_handlers import register_exception_handlers
from app.core.middleware import register_middlewares
from app.db.base import Base, engine
from app.services import register_services

logger = logging.getLogger("app")

# Register services at import so dependencies resolve even without lifespan
register_services()


# Context manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Log application startup
    logger.info(f"Starting Task Calendar Sync API {app.version}")

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")

    if not settings.ENCRYPTION_KEY:
        logger.warning("ENCRYPTION_KEY is not set; connecting a calendar will fail")

    yield

    logger.info("Shutting down application")


app = FastAPI(
    title="Task Calendar Sync API",
    description="Google Calendar integration and synchronization for tasks",
    version="0.1.0",
    lifespan=lifespan,
)

# Register custom exception handlers
register_exception_handlers(app)

# Register middleware
register_middlewares(app)

# Set up CORS middleware
if settings.BACKEND_CORS_ORIGINS:
    allowed_origins = [str(origin) for origin in settings.BACKEND_CORS_ORIGINS]
    logger.info(f"Setting up CORS with allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    return {"message": "Welcome to the Task Calendar Sync API"}


def create_app():
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
