"""
FastAPI application entry point for VISO.

Request pipeline (outermost first):
- request logging / security headers
- EdgeGateMiddleware    anonymous page requests bounce to /login
- SessionSyncMiddleware session cookies refreshed and written back
- routers               pages guarded by AppAccess, APIs by require_api_session

Routers:
- /, /businesses, /staff, /pass-users, /login, /no-access - pages.py
- /api/role-override - role_override.py
- /api/auth/* - session.py
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from viso.auth.guard import GuardRedirect
from viso.config import get_settings
from viso.middleware import EdgeGateMiddleware, SessionSyncMiddleware
from viso.routers import pages, role_override, session
from viso.services.supabase_client import get_client_factory

# Configure logging
_log_level = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, _log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("viso")

# Quiet down noisy third-party loggers
for _logger_name in [
    "httpx", "httpcore", "httpcore.http2", "httpcore.connection",
    "hpack", "hpack.hpack", "hpack.table",
]:
    logging.getLogger(_logger_name).setLevel(logging.WARNING)


class HealthCheckFilter(logging.Filter):
    """Filter out health check endpoint logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not get_settings().is_production and "/health" in record.getMessage():
            return False
        return True


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    settings.log_config()

    if get_client_factory().is_configured:
        logger.info("[VISO] Supabase: Configured")
    else:
        logger.warning("[VISO] Supabase: Not configured, every page will redirect to /login")

    logger.info(f"VISO running on port {settings.PORT}")

    yield

    logger.info("[VISO] Shutting down...")


# =============================================================================
# APP INITIALIZATION
# =============================================================================

app = FastAPI(
    title="VISO",
    description="VISO back-office: session propagation and access control",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()

# Starlette runs the last added middleware first: the gate sees the request
# before the session synchronizer does.
app.add_middleware(SessionSyncMiddleware)
app.add_middleware(EdgeGateMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers similar to helmet.js."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing."""
    start = time.time()

    response = await call_next(request)

    if settings.is_production or request.url.path != "/api/health":
        duration = (time.time() - start) * 1000
        logger.info(f"[VISO] {request.method} {request.url.path} -> {response.status_code} ({duration:.0f}ms)")

    return response


# =============================================================================
# INCLUDE ROUTERS
# =============================================================================

app.include_router(pages.router)
app.include_router(role_override.router)
app.include_router(session.router)


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/api/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "service": "viso",
        "supabase": settings.supabase_configured,
        "environment": settings.ENVIRONMENT,
    }


# =============================================================================
# ERROR HANDLING
# =============================================================================

@app.exception_handler(GuardRedirect)
async def guard_redirect_handler(request: Request, exc: GuardRedirect):
    """
    End a guarded request with a 303.

    Cookies staged by the guard's session are flushed by SessionSyncMiddleware,
    which wraps this handler.
    """
    return RedirectResponse(exc.redirect.location, status_code=303)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    settings = get_settings()
    logger.error(f"Server error: {exc}")

    # In production, hide internal error details from client
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"error": "An internal error occurred"},
        )
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) or "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "viso.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=not settings.is_production,
    )
