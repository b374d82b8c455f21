from fastapi import HTTPException, Request

from minimonitor.services.broadcaster import MetricsBroadcaster
from minimonitor.services.docker_client import DockerRuntimeClient
from minimonitor.services.history import HistoryStore


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return value


def get_history_store(request: Request) -> HistoryStore:
    return _state(request, "history")


def get_broadcaster(request: Request) -> MetricsBroadcaster:
    return _state(request, "broadcaster")


def get_runtime_client(request: Request) -> DockerRuntimeClient:
    return _state(request, "runtime")
