"""
Main FastAPI application for Registrations Service.
Handles application startup, middleware, and routing.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from registrations_service.core.config import config
from registrations_service.core.exceptions import RegistrationServiceError
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import redis_manager
from registrations_service.api.v1.router import router as api_router, SERVICE_VERSION

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting Registrations Service...")

    try:
        await db_manager.initialize()
        logger.info("Database manager initialized")

        await redis_manager.initialize()
        logger.info("Redis manager initialized")

        try:
            await db_manager.create_tables()
            logger.info("Database tables created")
        except Exception as e:
            logger.warning(f"Database tables may already exist: {e}")

        logger.info("Registrations Service started successfully")

    except Exception as e:
        logger.error(f"Failed to start Registrations Service: {e}")
        raise

    yield

    logger.info("Shutting down Registrations Service...")

    try:
        await db_manager.close()
        logger.info("Database connections closed")

        await redis_manager.close()
        logger.info("Redis connections closed")

        await config.close()

        logger.info("Registrations Service shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title="Registrations Service",
    description="Event registration lifecycle engine for EventHorizon",
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request processing time to response headers."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# Engine errors carry their own code and status
@app.exception_handler(RegistrationServiceError)
async def registration_error_handler(request: Request, exc: RegistrationServiceError):
    logger.warning(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.to_dict(),
            "timestamp": datetime.now().isoformat()
        }
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_SERVER_ERROR",
            "error_message": "An internal server error occurred",
            "details": {},
            "timestamp": datetime.now().isoformat()
        }
    )


# HTTP exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP exception handler for FastAPI HTTP exceptions."""
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": "HTTP_ERROR",
            "error_message": exc.detail,
            "status_code": exc.status_code,
            "timestamp": datetime.now().isoformat()
        },
        headers=getattr(exc, "headers", None)
    )


# Include API router
app.include_router(api_router)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "Registrations Service",
        "version": SERVICE_VERSION,
        "status": "running",
        "endpoints": {
            "api": "/api/v1",
            "health": "/api/v1/health",
            "docs": "/docs",
            "redoc": "/redoc"
        }
    }


# Health check endpoint (simple)
@app.get("/health")
async def simple_health_check():
    """Simple health check endpoint."""
    return {"status": "healthy", "service": "registrations"}
