from __future__ import annotations

import asyncio
import logging
import time

from minimonitor.schemas.metrics import HostMetricsRecord, HostNetwork
from minimonitor.services.derivation import sum_network_rates
from minimonitor.services.host_info import HostInfoSource


logger = logging.getLogger(__name__)


class HostCollector:
    """Builds one HostMetricsRecord per collection round."""

    def __init__(self, source: HostInfoSource):
        self.source = source

    async def collect(self) -> HostMetricsRecord | None:
        """Gather all host metrics concurrently.

        Returns None if any required source fails. Temperature is optional
        and never fails the round.
        """
        timestamp = int(time.time() * 1000)
        try:
            cpu, memory, os_info, network, temperature = await asyncio.gather(
                asyncio.to_thread(self.source.cpu),
                asyncio.to_thread(self.source.memory),
                asyncio.to_thread(self.source.os_info),
                asyncio.to_thread(self.source.sample_network),
                self._temperature(),
            )
        except Exception as e:
            logger.error("Host metrics collection failed: %s", e)
            return None

        rx, tx = sum_network_rates(network.rates)
        record = HostMetricsRecord(
            timestamp=timestamp,
            cpu=cpu.model_copy(update={"temperature_c": temperature}),
            memory=memory,
            network=HostNetwork(rx_bytes_per_sec=round(rx, 2), tx_bytes_per_sec=round(tx, 2)),
            os=os_info,
        )
        self.source.commit_network(network)
        return record

    async def _temperature(self) -> float | None:
        try:
            return await asyncio.to_thread(self.source.temperature)
        except Exception as e:
            logger.debug("Temperature read failed: %s", e)
            return None
