"""
Main application entry point for the Ultimate DataLayer app.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .config import settings
from .logging_setup import configure_logging

# Configure logging first
configure_logging(settings.log_level, settings.log_dir)

logger = logging.getLogger(__name__)

from .deployment.api_routes import debug_router, deployment_router  # noqa: E402
from .shops.database import db_manager  # noqa: E402
from .shops.routes import shops_router  # noqa: E402

SERVICE_NAME = "Ultimate DataLayer"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting {SERVICE_NAME}")

    try:
        logger.info("Creating database tables...")
        db_manager.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")

    if not settings.api_key or not settings.api_secret:
        logger.warning("SHOPIFY_API_KEY/SHOPIFY_API_SECRET not set - OAuth and webhooks are disabled")

    yield
    logger.info(f"Shutting down {SERVICE_NAME}")


def create_application() -> FastAPI:
    """Create FastAPI application with all components."""
    app = FastAPI(
        title=SERVICE_NAME,
        description="Installs a normalized ecommerce dataLayer and tag manager into Shopify themes",
        version="0.3.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(deployment_router)
    app.include_router(shops_router)
    app.include_router(debug_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"{SERVICE_NAME} is running"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "api_version": settings.api_version,
            "oauth_configured": bool(settings.api_key and settings.api_secret),
        }

    return app


# Create the app
app = create_application()


def main():
    """Main entry point."""
    logger.info(f"Starting server on 0.0.0.0:{settings.port}")

    uvicorn.run(
        "datalayer_agent.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
