from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from minimonitor.config import Settings
from minimonitor.schemas.metrics import ContainerSnapshot, HostMetricsRecord
from minimonitor.services.container_collector import ContainerCollector
from minimonitor.services.event_bus import EventType, SubscriptionChannel
from minimonitor.services.history import HistoryStore
from minimonitor.services.host_collector import HostCollector


logger = logging.getLogger(__name__)


@dataclass
class RoundResult:
    containers: list[ContainerSnapshot] | None
    host: HostMetricsRecord | None


class MetricsBroadcaster:
    """Background task that collects metrics on a fixed cadence and publishes them."""

    def __init__(
        self,
        settings: Settings,
        channel: SubscriptionChannel,
        history: HistoryStore,
        container_collector: ContainerCollector,
        host_collector: HostCollector,
    ):
        self.settings = settings
        self.interval = settings.poll_interval_seconds
        self.channel = channel
        self.history = history
        self.container_collector = container_collector
        self.host_collector = host_collector
        self._task: asyncio.Task | None = None
        self._running = False
        # Collection rounds never overlap: CPU deltas depend on sample pairing
        self._round_lock = asyncio.Lock()
        self.ticks = 0
        self.skipped_ticks = 0
        # Shared by subscribers that connect while it is still running
        self._connect_round: asyncio.Task | None = None

        channel.on_connect(self.handle_connect)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the collection background task."""
        if self._running:
            logger.warning("Broadcaster already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._broadcast_loop())
        logger.info("Metrics broadcaster started with interval: %.1fs", self.interval)

    async def stop(self) -> None:
        """Stop the collection background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._connect_round and not self._connect_round.done():
            self._connect_round.cancel()
            try:
                await self._connect_round
            except asyncio.CancelledError:
                pass
        self._connect_round = None
        logger.info("Metrics broadcaster stopped")

    async def _broadcast_loop(self) -> None:
        """Main loop. Ticks on a fixed wall-clock grid; overrun ticks are skipped."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Broadcast tick failed: %s", e)

            next_tick += self.interval
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                self.skipped_ticks += missed
                logger.debug("Collection overran the interval, skipping %d tick(s)", missed)
                next_tick += missed * self.interval
            await asyncio.sleep(next_tick - now)

    async def _collect(self) -> RoundResult:
        containers, host = await asyncio.gather(
            self._safe(self.container_collector.collect(), "Container"),
            self._safe(self.host_collector.collect(), "Host"),
        )
        return RoundResult(containers=containers, host=host)

    async def _safe(self, coro, label: str):
        """Await one collector; an unexpected failure only voids its own result."""
        try:
            return await coro
        except Exception as e:
            logger.error("%s collection failed: %s", label, e)
            return None

    async def run_once(self) -> RoundResult:
        """Run one tick: collect, record history, and publish to all subscribers."""
        async with self._round_lock:
            result = await self._collect()
            self.ticks += 1

            if result.containers is not None:
                await self.channel.publish(
                    EventType.CONTAINERS,
                    [snapshot.to_wire() for snapshot in result.containers],
                )

            if result.host is not None:
                self.history.append(result.host)
                await self.channel.publish(EventType.SYSTEM_STATS, result.host.to_wire())

        return result

    async def handle_connect(self, sid: str) -> None:
        """Give a new subscriber the full history and a fresh round right away.

        The subscriber is excluded from broadcasts until this returns, so
        initHistory always arrives first. The fresh round goes to this
        subscriber only and is not recorded in history. Subscribers that
        connect together share one round, so a burst of connections costs
        the regular cadence at most one extra round.
        """
        await self.channel.send(sid, EventType.INIT_HISTORY, self.history.to_wire())

        if self._connect_round is None or self._connect_round.done():
            self._connect_round = asyncio.create_task(self._locked_collect())
        # shield: a client leaving mid-round must not cancel it for the others
        result = await asyncio.shield(self._connect_round)

        if result.containers is not None:
            await self.channel.send(
                sid,
                EventType.CONTAINERS,
                [snapshot.to_wire() for snapshot in result.containers],
            )
        if result.host is not None:
            await self.channel.send(sid, EventType.SYSTEM_STATS, result.host.to_wire())

        logger.debug("Sent initial state to %s", sid)

    async def _locked_collect(self) -> RoundResult:
        async with self._round_lock:
            return await self._collect()

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "interval_seconds": self.interval,
            "ticks": self.ticks,
            "skipped_ticks": self.skipped_ticks,
            "subscribers": self.channel.connection_count,
        }
