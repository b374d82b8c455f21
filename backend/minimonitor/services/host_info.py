"""Host information source backed by psutil and /proc."""
from __future__ import annotations

import logging
import platform
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

import psutil

from minimonitor.schemas.metrics import HostCpu, HostMemory, HostOs, InterfaceRate


logger = logging.getLogger(__name__)

CPUINFO_PATH = Path("/proc/cpuinfo")

# Sensor chips that report the package / die temperature, best first.
PREFERRED_SENSORS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")

VENDOR_NAMES = {
    "GenuineIntel": "Intel",
    "AuthenticAMD": "AMD",
}


@dataclass(frozen=True)
class NetworkSample:
    """Per-interface rates plus the raw counters they were computed from."""

    rates: list[InterfaceRate]
    counters: dict[str, tuple[int, int]] = field(default_factory=dict)
    taken_at: float = 0.0


@dataclass(frozen=True)
class CpuIdentity:
    manufacturer: str
    brand: str


def read_cpu_identity(cpuinfo_path: Path = CPUINFO_PATH) -> CpuIdentity:
    """Vendor and model name from /proc/cpuinfo, or platform as a fallback."""
    vendor = ""
    model = ""
    try:
        content = cpuinfo_path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        content = ""

    for line in content.splitlines():
        if ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        if key == "vendor_id" and not vendor:
            vendor = value
        elif key in ("model name", "Model") and not model:
            model = value
        if vendor and model:
            break

    manufacturer = VENDOR_NAMES.get(vendor, vendor)
    brand = model or platform.processor() or platform.machine()
    return CpuIdentity(manufacturer=manufacturer, brand=brand)


class HostInfoSource:
    """Blocking accessors for host metrics.

    Keeps the previous network counters so interface throughput can be
    reported per second, the same way cpu_percent(interval=None) measures
    load since its previous call.
    """

    def __init__(self) -> None:
        self._identity: CpuIdentity | None = None
        self._net_lock = threading.Lock()
        self._prev_net: dict[str, tuple[int, int]] | None = None
        self._prev_net_time: float | None = None
        # Prime the CPU counter so the first reading is not a meaningless 0.0
        psutil.cpu_percent(interval=None)

    def cpu(self) -> HostCpu:
        if self._identity is None:
            self._identity = read_cpu_identity()
        return HostCpu(
            manufacturer=self._identity.manufacturer,
            brand=self._identity.brand,
            core_count=psutil.cpu_count(logical=True) or 0,
            usage_percent=round(float(psutil.cpu_percent(interval=None)), 2),
        )

    def memory(self) -> HostMemory:
        vm = psutil.virtual_memory()
        # "used" follows the kernel's active pages; platforms without that
        # counter fall back to total - available.
        used = getattr(vm, "active", None)
        if used is None:
            used = vm.total - vm.available
        percent = used / vm.total * 100.0 if vm.total else 0.0
        return HostMemory(
            total_bytes=vm.total,
            free_bytes=vm.free,
            used_bytes=used,
            available_bytes=vm.available,
            percent=round(percent, 2),
        )

    def os_info(self) -> HostOs:
        distro = ""
        try:
            release = platform.freedesktop_os_release()
            distro = release.get("PRETTY_NAME") or release.get("NAME", "")
        except OSError:
            distro = platform.platform(terse=True)

        return HostOs(
            platform=platform.system().lower(),
            distro=distro,
            release=platform.release(),
            uptime_seconds=round(max(time.time() - psutil.boot_time(), 0.0), 0),
        )

    def sample_network(self) -> NetworkSample:
        """Rates since the last committed sample; does not move the window.

        The caller commits the sample once the round it belongs to has
        succeeded, so a dropped round never shortens the next window.
        """
        counters = psutil.net_io_counters(pernic=True)
        now = time.monotonic()
        current = {
            name: (c.bytes_recv, c.bytes_sent)
            for name, c in counters.items()
            if not _is_loopback(name)
        }

        with self._net_lock:
            previous, previous_time = self._prev_net, self._prev_net_time

        if previous is None or previous_time is None or now <= previous_time:
            rates = [InterfaceRate(iface=name) for name in sorted(current)]
            return NetworkSample(rates=rates, counters=current, taken_at=now)

        elapsed = now - previous_time
        rates = []
        for name in sorted(current):
            rx, tx = current[name]
            prev_rx, prev_tx = previous.get(name, (rx, tx))
            rates.append(
                InterfaceRate(
                    iface=name,
                    # counters reset when an interface is recreated
                    rx_bytes_per_sec=max(rx - prev_rx, 0) / elapsed,
                    tx_bytes_per_sec=max(tx - prev_tx, 0) / elapsed,
                )
            )
        return NetworkSample(rates=rates, counters=current, taken_at=now)

    def commit_network(self, sample: NetworkSample) -> None:
        with self._net_lock:
            if self._prev_net_time is not None and sample.taken_at <= self._prev_net_time:
                return
            self._prev_net, self._prev_net_time = sample.counters, sample.taken_at

    def temperature(self) -> float | None:
        """Best-effort CPU temperature; None when sensors are unavailable."""
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return None
        try:
            readings = sensors() or {}
        except (OSError, RuntimeError) as e:
            logger.debug("Temperature sensors unavailable: %s", e)
            return None

        for chip in PREFERRED_SENSORS:
            value = _first_reading(readings.get(chip))
            if value is not None:
                return value

        for entries in readings.values():
            value = _first_reading(entries)
            if value is not None:
                return value
        return None


def _first_reading(entries) -> float | None:
    for entry in entries or ():
        current = getattr(entry, "current", None)
        if isinstance(current, (int, float)) and -40.0 < current < 150.0:
            return round(float(current), 1)
    return None


def _is_loopback(name: str) -> bool:
    return name == "lo" or name.lower().startswith("loopback")
