"""Combis: Main FastAPI Application.

Backend of a mutual-aid association: governance votes whose outcome is
applied to claims and members, real-time push notifications over
WebSocket, and templated SMS through the configured provider.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router, websocket_router
from .core import close_db, drain_background_tasks, get_session_context, get_settings, init_db
from .schemas import ErrorResponse
from .services.notification_gateway import seed_default_templates

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"[STARTUP] {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are managed by migrations)
    if settings.environment != "production":
        await init_db()

    async with get_session_context() as session:
        seeded = await seed_default_templates(session)
    if seeded:
        logger.info(f"[STARTUP] Seeded {seeded} SMS template(s)")

    yield

    # Shutdown - let in-flight notifications finish before the pool goes away
    await drain_background_tasks()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Combis API

    ### Key Features

    - **Votes**: simple majority, qualified majority, unanimity or custom quorum.
      A vote closes as soon as its outcome is decided, or at its deadline.
    - **Result application**: an approved vote on a claim approves the claim.
    - **Notifications**: real-time push over `/ws` and templated SMS.

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

logger.info(f"[CORS] Allowed origins: {settings.allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message="Erreur interne du serveur",
            request_id=request.headers.get("X-Request-ID"),
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


app.include_router(api_router, prefix=settings.api_prefix)
app.include_router(websocket_router)
