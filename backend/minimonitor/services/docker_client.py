from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any

import docker
from docker.errors import DockerException, NotFound
from requests.exceptions import RequestException

from minimonitor.config import Settings


logger = logging.getLogger(__name__)


class RuntimeUnavailableError(RuntimeError):
    """The Docker daemon could not be reached or refused the request."""
    pass


class ContainerStatsError(RuntimeError):
    """Stats for a single container could not be fetched."""
    pass


@dataclass
class ContainerSummary:
    """One row of the container listing."""

    id: str
    names: list[str]
    image: str
    state: str
    status: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ContainerSummary":
        names = data.get("Names") or []
        return cls(
            id=str(data.get("Id") or ""),
            names=[str(name) for name in names],
            image=str(data.get("Image") or ""),
            state=str(data.get("State") or "unknown").lower(),
            status=str(data.get("Status") or ""),
        )


class DockerRuntimeClient:
    """Thread-safe wrapper that keeps a reusable Docker SDK client.

    All SDK calls block, so the async methods push them onto worker threads.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: docker.DockerClient | None = None
        self._lock = threading.RLock()

    def _reset_client(self) -> None:
        with self._lock:
            if self._client:
                try:
                    self._client.close()
                except (DockerException, RequestException, OSError) as e:
                    logger.debug("Error closing Docker client: %s", e)
                finally:
                    self._client = None

    def _ensure_client(self) -> docker.DockerClient:
        with self._lock:
            if self._client:
                return self._client

            logger.info("Connecting to Docker at %s", self.settings.docker_host)
            self._client = docker.DockerClient(
                base_url=self.settings.docker_host,
                timeout=self.settings.docker_timeout,
            )
            return self._client

    def close(self) -> None:
        self._reset_client()

    # Blocking calls ------------------------------------------------------

    def _list_containers(self) -> list[ContainerSummary]:
        try:
            client = self._ensure_client()
            rows = client.api.containers(all=True)
        except (DockerException, RequestException, OSError) as e:
            self._reset_client()
            raise RuntimeUnavailableError(f"Failed to list containers: {e}") from e

        return [ContainerSummary.from_api(row) for row in rows or []]

    def _fetch_stats(self, container_id: str) -> dict[str, Any]:
        try:
            client = self._ensure_client()
            # stream=False returns one sample with precpu_stats already filled in
            stats = client.api.stats(container_id, stream=False)
        except NotFound as e:
            raise ContainerStatsError(f"Container {container_id[:12]} disappeared") from e
        except (DockerException, RequestException, OSError, ValueError) as e:
            raise ContainerStatsError(f"Failed to fetch stats for {container_id[:12]}: {e}") from e

        if not isinstance(stats, dict):
            raise ContainerStatsError(f"Unexpected stats payload for {container_id[:12]}")
        return stats

    def _ping(self) -> bool:
        try:
            return bool(self._ensure_client().ping())
        except (DockerException, RequestException, OSError) as e:
            self._reset_client()
            raise RuntimeUnavailableError(f"Docker ping failed: {e}") from e

    # Async API -----------------------------------------------------------

    async def list_containers(self) -> list[ContainerSummary]:
        """List every container known to the daemon, in any state."""
        return await asyncio.to_thread(self._list_containers)

    async def fetch_stats(self, container_id: str) -> dict[str, Any]:
        """Fetch one paired (current + previous) stats sample."""
        return await asyncio.to_thread(self._fetch_stats, container_id)

    async def ping(self) -> bool:
        return await asyncio.to_thread(self._ping)
