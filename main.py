import os
import sys
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Ensure local imports resolve
sys.path.append(os.path.dirname(__file__))

# Core
from core.config import settings
from core.config_validator import validate_config_on_startup, validate_optional_config, validate_required_config
from core.errors import CondoSyncError, http_status_for
from core.logging_config import logger

# -------------------------------------------------
# Routers
# -------------------------------------------------
from routers.coordinators import router as coordinators_router
from routers.users import router as users_router
from routers.health import router as health_router


# -------------------------------------------------
# Create the Application
# -------------------------------------------------
def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        description="Condo Sync: privileged account functions for the condominium sync layer",
    )

    # -------------------------------------------------
    # CORS
    # -------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------
    # Startup
    # -------------------------------------------------
    @app.on_event("startup")
    async def on_startup():
        logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENV})")

        if settings.ENV == "production":
            validate_config_on_startup()
        else:
            for name in validate_required_config():
                logger.warning(f"Missing {name}; function routes will answer NOT_CONFIGURED")
            for warning in validate_optional_config():
                logger.debug(f"Optional configuration missing: {warning}")

        for route in app.routes:
            methods = ",".join(getattr(route, "methods", None) or [])
            logger.debug(f"Route {methods:10s} {route.path}")

    # -------------------------------------------------
    # Error handling
    # -------------------------------------------------
    @app.exception_handler(CondoSyncError)
    async def handle_condo_sync(request: Request, exc: CondoSyncError):
        status = http_status_for(exc)
        if status >= 500:
            logger.error(f"{exc.code} at {request.url}: {exc.message}")
        return JSONResponse(
            status_code=status,
            content={"success": False, "error": exc.message, "code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (401, 403, 500):
            logger.warning(
                f"HTTP {exc.status_code} at {request.url}: {exc.detail}"
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.error("Unhandled error at %s", request.url, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
        )

    # -------------------------------------------------
    # Register Routers
    # -------------------------------------------------
    app.include_router(coordinators_router)
    app.include_router(users_router)
    app.include_router(health_router)

    return app


# Create the global FastAPI instance
app = create_app()
