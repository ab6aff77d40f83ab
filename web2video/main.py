import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from web2video.api.v1.health import router as health_router
from web2video.api.v1.router import api_router
from web2video.config import settings
from web2video.core.exceptions import APIError
from web2video.core.logging_config import configure_logging
from web2video.core.runtime_config import get_config_store
from web2video.middleware.request_id import RequestIDMiddleware

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    config = get_config_store().current()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} on port {settings.PORT}")
    logger.info(f"Flaresolverr: {'Enabled' if config.solver_enabled else 'Disabled'}")
    logger.info(f"Proxy: {'Enabled' if config.proxy_enabled else 'Disabled'}")
    logger.info(f"Bypass methods: {'Enabled' if config.bypass_enabled else 'Disabled'}")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Web2Video - fetch pages through an escalating anti-bot bypass "
    "cascade and list the videos embedded in them.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

if settings.CORS_ENABLED:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
    )


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return JSONResponse(
        status_code=exc.status_code, content={"success": False, "error": exc.message}
    )


app.include_router(api_router)

# Health & metrics routes
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("web2video.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
