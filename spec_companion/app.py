"""FastAPI application for the spec companion service."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from spec_companion.config import ServerConfig
from spec_companion.database import create_tables
from spec_companion.errors import SpecCompanionError
from spec_companion.routers import router

logging.basicConfig(level=ServerConfig.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan with proper startup and shutdown."""
    print("🚀 Application startup - lifespan function called!")
    print(f"📁 Using database: {ServerConfig.DATABASE_URL}")
    print(f"⚙️  Settings file: {ServerConfig.SETTINGS_PATH}")

    create_tables()

    print("✅ Application startup complete!")
    yield
    print("🔄 Application shutting down...")


# Request timing middleware
class ProcessTimeMiddleware(BaseHTTPMiddleware):
    """Add process time header to responses for monitoring."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response


# Error handling middleware
class DatabaseErrorMiddleware(BaseHTTPMiddleware):
    """Handle database connection errors gracefully."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            if "database is locked" in str(e).lower() or "connection" in str(e).lower():
                logger.warning("Database unavailable for %s %s: %s", request.method, request.url.path, e)
                return JSONResponse(
                    status_code=503,
                    content={
                        "detail": "Service temporarily unavailable due to high load. Please try again in a moment.",
                        "error_type": "database_connection_error",
                    },
                )
            raise


app = FastAPI(
    title="Spec Companion API",
    description="Turn specification documents into requirements, tests and coverage reports",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(SpecCompanionError)
async def spec_companion_error_handler(request: Request, exc: SpecCompanionError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_type, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error_type": exc.error_type})


# Add middleware in order (last added is first executed)
app.add_middleware(DatabaseErrorMiddleware)
app.add_middleware(ProcessTimeMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)  # Compress responses > 1KB

app.add_middleware(
    CORSMiddleware,
    allow_origins=ServerConfig.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, tags=["api"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/detailed")
async def detailed_health():
    """Detailed health check with database and connection info."""
    from sqlalchemy import text

    from spec_companion.database import engine

    try:
        # Test database connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        pool = engine.pool
        pool_info = {
            "class": type(pool).__name__,
            "status": pool.status(),
        }

        return {
            "status": "healthy",
            "database": "connected",
            "connection_pool": pool_info,
            "timestamp": time.time(),
        }
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e), "timestamp": time.time()}
