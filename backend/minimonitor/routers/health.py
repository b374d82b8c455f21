from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from minimonitor.dependencies import get_broadcaster, get_history_store, get_runtime_client
from minimonitor.services.broadcaster import MetricsBroadcaster
from minimonitor.services.docker_client import DockerRuntimeClient, RuntimeUnavailableError
from minimonitor.services.history import HistoryStore


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/health", tags=["health"])


class ComponentStatus(BaseModel):
    status: str  # "ok", "degraded", "error"
    message: str
    latency_ms: float | None = None


class SystemHealthResponse(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    docker: ComponentStatus
    history: ComponentStatus
    broadcaster: ComponentStatus


async def check_docker_health(runtime: DockerRuntimeClient) -> ComponentStatus:
    """Ping the Docker daemon."""
    start = time.time()
    try:
        await runtime.ping()
    except RuntimeUnavailableError as e:
        logger.error(f"Docker health check failed: {e}")
        return ComponentStatus(status="error", message=f"Docker unreachable: {e}")

    latency = (time.time() - start) * 1000
    return ComponentStatus(status="ok", message="Docker daemon reachable", latency_ms=round(latency, 2))


def check_history_health(history: HistoryStore) -> ComponentStatus:
    """Report buffer fill level and whether a snapshot exists on disk."""
    message = f"{len(history)}/{history.capacity} records"
    if not history.path.exists():
        return ComponentStatus(status="degraded", message=f"{message}, no snapshot at {history.path} yet")
    return ComponentStatus(status="ok", message=f"{message}, snapshot at {history.path}")


def check_broadcaster_health(broadcaster: MetricsBroadcaster) -> ComponentStatus:
    status = broadcaster.get_status()
    if not status["running"]:
        return ComponentStatus(status="error", message="Broadcaster is not running")
    return ComponentStatus(
        status="ok",
        message=f"{status['ticks']} ticks, {status['subscribers']} subscribers",
    )


@router.get("/system", response_model=SystemHealthResponse)
async def get_system_health(
    runtime: DockerRuntimeClient = Depends(get_runtime_client),
    history: HistoryStore = Depends(get_history_store),
    broadcaster: MetricsBroadcaster = Depends(get_broadcaster),
):
    """Get health status of the collection pipeline."""
    docker_status = await check_docker_health(runtime)
    history_status = check_history_health(history)
    broadcaster_status = check_broadcaster_health(broadcaster)

    statuses = [docker_status.status, history_status.status, broadcaster_status.status]
    if all(s == "ok" for s in statuses):
        overall = "healthy"
    elif docker_status.status == "error" or broadcaster_status.status == "error":
        overall = "unhealthy"
    else:
        overall = "degraded"

    return SystemHealthResponse(
        status=overall,
        docker=docker_status,
        history=history_status,
        broadcaster=broadcaster_status,
    )
