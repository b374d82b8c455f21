from __future__ import annotations

import asyncio
import logging

from minimonitor.schemas.metrics import ContainerSnapshot, NormalizedContainerStats
from minimonitor.services.derivation import normalize_container_stats
from minimonitor.services.docker_client import (
    ContainerStatsError,
    ContainerSummary,
    DockerRuntimeClient,
    RuntimeUnavailableError,
)


logger = logging.getLogger(__name__)


class ContainerCollector:
    """Builds one snapshot per container known to the runtime."""

    def __init__(self, runtime: DockerRuntimeClient):
        self.runtime = runtime

    async def collect(self) -> list[ContainerSnapshot] | None:
        """Run one collection round.

        Returns None when the runtime cannot list containers; the caller
        skips publishing for that tick.
        """
        try:
            containers = await self.runtime.list_containers()
        except RuntimeUnavailableError as e:
            logger.error("Container listing failed: %s", e)
            return None

        snapshots = await asyncio.gather(*(self._snapshot(c) for c in containers))
        logger.debug(
            "Collected %d containers (%d running)",
            len(snapshots),
            sum(1 for s in snapshots if s.state == "running"),
        )
        return list(snapshots)

    async def _snapshot(self, container: ContainerSummary) -> ContainerSnapshot:
        stats = None
        if container.state == "running":
            stats = await self._stats(container)

        return ContainerSnapshot(
            id=container.id[:12],
            name=display_name(container),
            image=container.image,
            state=container.state,
            status=container.status,
            stats=stats,
        )

    async def _stats(self, container: ContainerSummary) -> NormalizedContainerStats | None:
        try:
            raw = await self.runtime.fetch_stats(container.id)
        except ContainerStatsError as e:
            logger.warning("Error getting stats for %s: %s", display_name(container), e)
            return None

        try:
            return normalize_container_stats(raw)
        except Exception as e:
            logger.warning("Unusable stats for %s: %s", display_name(container), e)
            return None


def display_name(container: ContainerSummary) -> str:
    if container.names:
        return container.names[0].lstrip("/")
    return container.id[:12]
