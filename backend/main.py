"""
FastAPI main application entry point.

Architecture:
  Client → /api/notes/...        → notes, revisions, attachments (JWT)
  Client → /api/tags             → tag listing (JWT)
  Client → /api/maintenance/...  → drift audit and repair (JWT)
  Client → /attachments/download → signed-URL download proxy (HMAC, rate-limited)

Every request shares one SQLite document store opened in the lifespan
and held on app.state.db; services built from it live on app.state.services.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import Settings, get_settings
from consistency.plans import PlanService
from consistency.scheduler import ReconciliationScheduler
from database import close_db, connect_db, ensure_indexes, get_database
from middleware.rate_limit import RateLimitMiddleware
from routers import attachments, download, maintenance, notes, tags
from routers.deps import build_services
from sqlite_db import SQLiteDatabase

# ============================================================
# Logging Configuration
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# aiosqlite logs every statement at DEBUG
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

DEFAULT_JWT_SECRETS = ("your-super-secret-key-change-in-production",)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


def create_app(settings: Optional[Settings] = None,
               plans: Optional[PlanService] = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Defaults to the cached environment settings.
        plans: Plan lookup override; defaults to the subscriptions collection.
    """
    settings = settings or get_settings()

    # ============================================================
    # Application Lifespan (startup/shutdown)
    # ============================================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown events."""
        logger.info("Starting up notes consistency service...")

        if settings.jwt_secret_key in DEFAULT_JWT_SECRETS:
            logger.warning("⚠️  JWT_SECRET_KEY is still the default! Set a real secret in .env")
        if not settings.attachment_url_signing_secret:
            logger.info("ATTACHMENT_URL_SIGNING_SECRET not set; signed download URLs are disabled")
        if not settings.attachments_collection:
            logger.info("No attachments collection configured; running in embedded-only mode")

        db = await connect_db(settings.database_path)
        await ensure_indexes(db, settings)
        app.state.db = db
        app.state.services = build_services(db, settings, plans)

        scheduler = None
        if settings.reconcile_interval_seconds:
            scheduler = ReconciliationScheduler(
                app.state.services.maintenance, settings.reconcile_interval_seconds
            )
            scheduler.start()
        else:
            logger.info("Tag reconciliation is manual (maintenance endpoints)")

        yield  # Application runs here

        # Shutdown
        logger.info("Shutting down notes consistency service...")
        if scheduler:
            scheduler.stop()
        await app.state.services.revisions.drain()
        await close_db(db)

    app = FastAPI(
        title="Notes Consistency API",
        description="Tag, attachment and revision consistency for notes on a transactionless document store",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings

    # ============================================================
    # Middleware Stack (executes bottom-to-top)
    # ============================================================
    # 1. Security headers (outermost — runs on every response)
    app.add_middleware(SecurityHeadersMiddleware)

    # 2. CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 3. Rate limiting on the signed download proxy
    app.add_middleware(
        RateLimitMiddleware,
        limits={
            "/attachments/download": (
                settings.download_rate_limit_requests,
                settings.download_rate_limit_window_seconds,
            ),
        },
        methods=("GET",),
    )

    # ============================================================
    # Routes
    # ============================================================
    app.include_router(notes.router, prefix="/api/notes", tags=["Notes"])
    app.include_router(attachments.router, prefix="/api/notes", tags=["Attachments"])
    app.include_router(tags.router, prefix="/api/tags", tags=["Tags"])
    app.include_router(maintenance.router, prefix="/api/maintenance", tags=["Maintenance"])
    app.include_router(download.router, prefix="/attachments", tags=["Attachments"])

    # ============================================================
    # Health Check Endpoints (under /api for consistency)
    # ============================================================
    @app.get("/api/health")
    async def health_check() -> dict:
        """Liveness probe — confirms the process is running."""
        return {"status": "healthy", "version": "1.0.0"}

    @app.get("/api/health/ready")
    async def readiness_check(db: SQLiteDatabase = Depends(get_database)):
        """Readiness probe — verifies the document store answers."""
        checks: dict = {}
        try:
            await db.command("ping")
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"

        checks["signed_urls"] = "enabled" if settings.attachment_url_signing_secret else "disabled"
        checks["attachments_collection"] = settings.attachments_collection or "embedded-only"

        if checks["database"].startswith("error"):
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()


# ============================================================
# Run with Uvicorn (for development)
# ============================================================
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
