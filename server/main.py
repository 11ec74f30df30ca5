"""
Device relay server.

Streams the Android emulator screen to the browser and injects touch, mouse
and keyboard input back, over one WebSocket per page. Also fronts the Linux
desktop container's keyboard and clipboard, and the start/stop controls of
both devices.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.config import Settings
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from routers import devices, websocket

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting device relay")
    set_startup_time()

    # Loads the emulator controller proto; ProtoLoadError aborts startup
    container.channel_factory()

    relay = container.relay()
    await relay.startup()

    logger.info("Services started successfully")
    yield

    # Shutdown
    await relay.shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Device Relay",
    version="1.0.0",
    description="Browser control relay for an Android emulator and a Linux desktop",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


# Add exception handler middleware BEFORE CORS to catch all errors
app.add_middleware(CatchAllExceptionsMiddleware)

# Add CORS middleware (must be AFTER exception middleware)
logger.info("Configuring CORS middleware",
           origins_count=len(settings.cors_origins),
           origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(devices.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        **get_health_status(container.relay()),
        "service": "device-relay",
        "environment": "development" if settings.debug else "production",
        "timestamp": datetime.now().isoformat()
    }


def _page(html):
    async def serve_page():
        return FileResponse(html)
    return serve_page


def mount_client(app: FastAPI, settings: Settings) -> bool:
    """Serve the browser client pages when PUBLIC_DIR is present."""
    public = settings.public_path
    if public is None:
        return False

    for page in ("android", "linux"):
        html = public / f"{page}.html"
        if html.is_file():
            app.add_api_route(f"/{page}", _page(html), methods=["GET"], include_in_schema=False)

    # Mounted last so API and WebSocket routes take precedence
    app.mount("/", StaticFiles(directory=public, html=True), name="client")
    logger.info("Serving browser client", directory=str(public))
    return True


mount_client(app, settings)


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting device relay",
               host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log"] if settings.debug else None,
        workers=1
    )
