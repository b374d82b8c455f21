"""Turn raw Docker stats payloads into normalized container metrics.

The stats endpoint returns a different shape depending on the engine version
and on the cgroup version of the host: fields go missing, arrive as ``null``,
or move between keys. Everything here is pure and total. Missing or malformed
input yields a neutral value (usually zero) instead of an exception, so a
single odd container can never break a collection round.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from minimonitor.schemas.metrics import BlockIO, InterfaceIO, NormalizedContainerStats


# Keys holding file-backed (reclaimable) memory, in resolution order:
# cgroup v1 "cache", cgroup v2 "inactive_file", v1 hierarchical total.
CACHE_KEYS = ("cache", "inactive_file", "total_inactive_file")

# Block I/O breakdowns, in resolution order.
BLKIO_KEYS = ("io_service_bytes_recursive", "io_service_bytes")


def _number(value: Any) -> int | None:
    """Coerce a raw counter to int, rejecting booleans, NaN, infinities and garbage."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    return None


def _section(payload: Any, key: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        return {}
    value = payload.get(key)
    return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class BlkioEntry:
    op: str
    value: int


@dataclass(frozen=True)
class RawContainerStats:
    """The subset of a stats payload the derivation functions consume.

    Every field is optional; ``parse`` never raises.
    """

    cpu_total: int | None = None
    precpu_total: int | None = None
    system_cpu: int | None = None
    presystem_cpu: int | None = None
    online_cpus: int | None = None
    percpu_count: int | None = None
    memory_usage: int | None = None
    memory_limit: int | None = None
    memory_cache: int | None = None
    blkio_entries: tuple[BlkioEntry, ...] | None = None
    networks: dict[str, InterfaceIO] = field(default_factory=dict)
    pids: int | None = None

    @classmethod
    def parse(cls, payload: Any) -> "RawContainerStats":
        cpu_stats = _section(payload, "cpu_stats")
        precpu_stats = _section(payload, "precpu_stats")
        cpu_usage = _section(cpu_stats, "cpu_usage")
        precpu_usage = _section(precpu_stats, "cpu_usage")

        percpu = cpu_usage.get("percpu_usage")
        percpu_count = len(percpu) if isinstance(percpu, (list, tuple)) and percpu else None

        memory_stats = _section(payload, "memory_stats")
        memory_detail = _section(memory_stats, "stats")
        memory_cache = None
        for key in CACHE_KEYS:
            memory_cache = _number(memory_detail.get(key))
            if memory_cache is not None:
                break

        return cls(
            cpu_total=_number(cpu_usage.get("total_usage")),
            precpu_total=_number(precpu_usage.get("total_usage")),
            system_cpu=_number(cpu_stats.get("system_cpu_usage")),
            presystem_cpu=_number(precpu_stats.get("system_cpu_usage")),
            online_cpus=_number(cpu_stats.get("online_cpus")),
            percpu_count=percpu_count,
            memory_usage=_number(memory_stats.get("usage")),
            memory_limit=_number(memory_stats.get("limit")),
            memory_cache=memory_cache,
            blkio_entries=_parse_blkio(_section(payload, "blkio_stats")),
            networks=_parse_networks(_section(payload, "networks")),
            pids=_number(_section(payload, "pids_stats").get("current")),
        )


def _parse_blkio(blkio_stats: Mapping[str, Any]) -> tuple[BlkioEntry, ...] | None:
    """Return the first present breakdown, or None when neither key has data."""
    for key in BLKIO_KEYS:
        entries = blkio_stats.get(key)
        if not isinstance(entries, list):
            continue
        parsed = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            op = entry.get("op")
            value = _number(entry.get("value"))
            if isinstance(op, str) and value is not None:
                parsed.append(BlkioEntry(op=op, value=value))
        return tuple(parsed)
    return None


def _parse_networks(networks: Mapping[str, Any]) -> dict[str, InterfaceIO]:
    result: dict[str, InterfaceIO] = {}
    for iface, counters in networks.items():
        if not isinstance(counters, Mapping):
            continue
        result[str(iface)] = InterfaceIO(
            rx_bytes=_number(counters.get("rx_bytes")) or 0,
            tx_bytes=_number(counters.get("tx_bytes")) or 0,
        )
    return result


def _coerce(raw: RawContainerStats | Mapping[str, Any] | None) -> RawContainerStats:
    if isinstance(raw, RawContainerStats):
        return raw
    return RawContainerStats.parse(raw)


def online_cpu_count(raw: RawContainerStats | Mapping[str, Any] | None) -> int:
    """online_cpus, then the per-CPU array length, then 1."""
    stats = _coerce(raw)
    if stats.online_cpus and stats.online_cpus > 0:
        return stats.online_cpus
    if stats.percpu_count:
        return stats.percpu_count
    return 1


def calculate_cpu_percent(raw: RawContainerStats | Mapping[str, Any] | None) -> float:
    """CPU usage relative to one core, summed over all online CPUs.

    Returns 0.0 when the previous sample is missing (first read after the
    container started) or when either delta is not positive.
    """
    stats = _coerce(raw)
    if None in (stats.cpu_total, stats.precpu_total, stats.system_cpu, stats.presystem_cpu):
        return 0.0

    cpu_delta = stats.cpu_total - stats.precpu_total
    system_delta = stats.system_cpu - stats.presystem_cpu
    if cpu_delta <= 0 or system_delta <= 0:
        return 0.0

    return (cpu_delta / system_delta) * online_cpu_count(stats) * 100.0


def calculate_memory(raw: RawContainerStats | Mapping[str, Any] | None) -> tuple[int, int, float]:
    """Return ``(working_set_bytes, limit_bytes, percent)``.

    The working set excludes page cache. The percentage is not clamped.
    """
    stats = _coerce(raw)
    if not stats.memory_usage or stats.memory_usage <= 0:
        return 0, max(stats.memory_limit or 0, 0), 0.0

    cache = min(max(stats.memory_cache or 0, 0), stats.memory_usage)
    used = stats.memory_usage - cache
    limit = stats.memory_limit or 0
    if limit <= 0:
        return used, 0, 0.0

    return used, limit, used / limit * 100.0


def calculate_block_io(raw: RawContainerStats | Mapping[str, Any] | None) -> BlockIO:
    stats = _coerce(raw)
    read = write = 0
    for entry in stats.blkio_entries or ():
        op = entry.op.lower()
        if op == "read":
            read += entry.value
        elif op == "write":
            write += entry.value
    return BlockIO(read_bytes=read, write_bytes=write)


def calculate_network_io(raw: RawContainerStats | Mapping[str, Any] | None) -> dict[str, InterfaceIO]:
    return dict(_coerce(raw).networks)


def sum_network_rates(interfaces: Iterable[Any] | None) -> tuple[float, float]:
    """Sum rx/tx bytes-per-second across host interfaces.

    Accepts ``InterfaceRate`` models or plain mappings with
    ``rx_bytes_per_sec``/``rxBytesPerSec`` style keys.
    """
    rx_total = 0.0
    tx_total = 0.0
    for iface in interfaces or ():
        if isinstance(iface, Mapping):
            rx = iface.get("rx_bytes_per_sec", iface.get("rxBytesPerSec"))
            tx = iface.get("tx_bytes_per_sec", iface.get("txBytesPerSec"))
        else:
            rx = getattr(iface, "rx_bytes_per_sec", None)
            tx = getattr(iface, "tx_bytes_per_sec", None)
        if _positive_rate(rx):
            rx_total += rx
        if _positive_rate(tx):
            tx_total += tx
    return rx_total, tx_total


def _positive_rate(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and (isinstance(value, int) or math.isfinite(value))
        and value > 0
    )


def normalize_container_stats(payload: Any) -> NormalizedContainerStats:
    """Derive the wire-ready stats for one running container."""
    raw = RawContainerStats.parse(payload)
    used, limit, mem_percent = calculate_memory(raw)

    return NormalizedContainerStats(
        cpu_percent=round(calculate_cpu_percent(raw), 2),
        memory_usage_bytes=used,
        memory_limit_bytes=limit,
        memory_percent=round(mem_percent, 2),
        net_io=calculate_network_io(raw),
        block_io=calculate_block_io(raw),
        pid_count=max(raw.pids or 0, 0),
    )
