"""Bounded rolling history of host metrics with JSON snapshots on disk."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import deque
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from minimonitor.schemas.metrics import HostMetricsRecord
from minimonitor.utils.path_utils import ensure_parent_dir


logger = logging.getLogger(__name__)

_records_adapter = TypeAdapter(list[HostMetricsRecord])


class HistoryStore:
    """Oldest-first FIFO of HostMetricsRecord, capped at ``capacity``.

    Mutated only from the event loop (the broadcaster's tick). Flushes copy
    the buffer on the loop before handing the write to a worker thread.
    """

    def __init__(self, path: str | Path, capacity: int, flush_interval: float = 60.0):
        if capacity <= 0:
            raise ValueError("History capacity must be greater than zero")
        self.path = Path(path)
        self.capacity = capacity
        self.flush_interval = flush_interval
        self._buffer: deque[HostMetricsRecord] = deque(maxlen=capacity)
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._buffer)

    def append(self, record: HostMetricsRecord) -> None:
        # deque(maxlen=...) drops the head once full
        self._buffer.append(record)

    def all(self) -> list[HostMetricsRecord]:
        return list(self._buffer)

    def to_wire(self, limit: int | None = None) -> list[dict]:
        records = self.all()
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return [record.to_wire() for record in records]

    # Durable storage -----------------------------------------------------

    async def load_from_durable_storage(self) -> int:
        """Replace the buffer with the snapshot on disk.

        A missing or unreadable snapshot leaves the buffer empty. Never raises.
        """
        try:
            records = await asyncio.to_thread(self._read_snapshot)
        except FileNotFoundError:
            logger.info("No history snapshot at %s, starting empty", self.path)
            records = []
        except (OSError, ValueError, ValidationError) as e:
            logger.error("Failed to load history from %s: %s", self.path, e)
            records = []

        self._buffer = deque(records[-self.capacity:], maxlen=self.capacity)
        if records:
            logger.info("Loaded %d history records from %s", len(self._buffer), self.path)
        return len(self._buffer)

    async def flush(self) -> bool:
        """Write the whole buffer to disk. Best-effort: returns False on failure."""
        async with self._flush_lock:
            payload = self.to_wire()
            try:
                await asyncio.to_thread(self._write_snapshot, payload)
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to flush history to %s: %s", self.path, e)
                return False

        logger.debug("Flushed %d history records to %s", len(payload), self.path)
        return True

    def _read_snapshot(self) -> list[HostMetricsRecord]:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return _records_adapter.validate_python(data)

    def _write_snapshot(self, payload: list[dict]) -> None:
        target = ensure_parent_dir(self.path)
        temp_path = target.parent / f".{target.name}.tmp.{os.getpid()}"
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, separators=(",", ":"))
                f.flush()
                os.fsync(f.fileno())
            # Same directory, so the rename is atomic
            os.replace(temp_path, target)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    # Periodic flush ------------------------------------------------------

    def start_flush_timer(self) -> None:
        if self._flush_task and not self._flush_task.done():
            logger.warning("History flush timer already running")
            return
        self._flush_task = asyncio.create_task(self._flush_loop())
        logger.info("History flush timer started with interval: %.1fs", self.flush_interval)

    async def stop_flush_timer(self) -> None:
        """Cancel the periodic flush and write one final snapshot."""
        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()
        logger.info("History flush timer stopped")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush()
