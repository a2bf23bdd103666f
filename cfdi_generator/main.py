"""
FastAPI application entry point for the CFDI 4.0 XML generator
"""
import logging

from fastapi import FastAPI, Request

from cfdi_generator.core.config import settings
from cfdi_generator.core.error_handler import error_handler
from cfdi_generator.core.logging import configure_logging
from cfdi_generator.api.v1.api import api_router
from cfdi_generator.middleware.logging import LoggingMiddleware
from cfdi_generator.utils.error_responses import CfdiError

configure_logging()
logger = logging.getLogger(__name__)


def create_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Builds, validates and encodes CFDI 4.0 electronic invoice documents",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(CfdiError)
    async def cfdi_exception_handler(request: Request, exc: CfdiError):
        """Structural, state and stamp errors raised by the core"""
        return await error_handler.handle_exception(request, exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for all unhandled exceptions"""
        return await error_handler.handle_exception(request, exc)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    return app


app = create_application()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "cfdi-generator"}
