from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from minimonitor.config import ConfigurationError, Settings, get_settings, validate_config_on_startup
from minimonitor.routers import health, history
from minimonitor.services.broadcaster import MetricsBroadcaster
from minimonitor.services.container_collector import ContainerCollector
from minimonitor.services.docker_client import DockerRuntimeClient, RuntimeUnavailableError
from minimonitor.services.event_bus import SubscriptionChannel
from minimonitor.services.history import HistoryStore
from minimonitor.services.host_collector import HostCollector
from minimonitor.services.host_info import HostInfoSource


VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _cors_origins(settings: Settings) -> list[str] | str:
    if settings.cors_allowed_origins.strip() == "*":
        return "*"
    return [
        origin.strip()
        for origin in settings.cors_allowed_origins.split(",")
        if origin.strip()
    ]


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app and its Socket.IO channel.

    The collection pipeline is constructed in the lifespan, once the
    configuration has been validated.
    """
    settings = settings or get_settings()
    cors_origins = _cors_origins(settings)
    channel = SubscriptionChannel(cors_allowed_origins=cors_origins)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        # Startup - validate config first
        try:
            validate_config_on_startup(settings)
        except ConfigurationError:
            # Re-raise to prevent server from starting with invalid config
            raise

        runtime = DockerRuntimeClient(settings)
        store = HistoryStore(
            settings.history_path,
            capacity=settings.resolved_history_capacity,
            flush_interval=settings.history_flush_interval_seconds,
        )
        await store.load_from_durable_storage()
        store.start_flush_timer()

        broadcaster = MetricsBroadcaster(
            settings,
            channel,
            store,
            ContainerCollector(runtime),
            HostCollector(HostInfoSource()),
        )
        app.state.runtime = runtime
        app.state.history = store
        app.state.broadcaster = broadcaster
        await broadcaster.start()

        yield

        # Shutdown: stop collecting before the final flush
        await broadcaster.stop()
        await channel.close()
        await store.stop_flush_timer()
        runtime.close()

    app = FastAPI(
        title="MiniMonitor",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.channel = channel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if isinstance(cors_origins, list) else ["*"],
        allow_credentials=cors_origins != "*",
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "X-Requested-With"],
    )

    app.include_router(history.router)
    app.include_router(health.router)

    @app.exception_handler(RuntimeUnavailableError)
    async def runtime_unavailable_handler(request: Request, exc: RuntimeUnavailableError):
        """Docker daemon unreachable."""
        logger.error(f"Docker runtime unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Docker runtime unavailable",
                "error": str(exc),
                "error_type": "runtime_unavailable",
            },
        )

    @app.get("/api/ping")
    async def ping():
        """Simple health check for load balancers."""
        return {"status": "ok", "version": VERSION}

    static_dir = Path(settings.static_dir)

    # Custom 404 handler - serve the dashboard for non-API routes
    @app.exception_handler(404)
    async def custom_404_handler(request: Request, exc: StarletteHTTPException):
        """Serve index.html for non-API 404s, return JSON for API 404s."""
        path = request.url.path
        index = static_dir / "index.html"
        if path.startswith("/api/") or path.startswith("/socket.io") or not index.exists():
            return JSONResponse(status_code=404, content={"detail": "Not found"})
        return FileResponse(index)

    # Serve static files (dashboard)
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def create_asgi_app(settings: Settings | None = None) -> socketio.ASGIApp:
    """Socket.IO on /socket.io, everything else (and lifespan) goes to FastAPI."""
    api = create_app(settings)
    return socketio.ASGIApp(api.state.channel.server, other_asgi_app=api)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which flushes history
    uvicorn.run(create_asgi_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
