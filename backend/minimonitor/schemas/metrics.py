from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Immutable model serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# Container metrics ----------------------------------------------------


class InterfaceIO(WireModel):
    rx_bytes: int = 0
    tx_bytes: int = 0


class BlockIO(WireModel):
    read_bytes: int = 0
    write_bytes: int = 0


class NormalizedContainerStats(WireModel):
    cpu_percent: float = 0.0
    memory_usage_bytes: int = 0
    memory_limit_bytes: int = 0
    memory_percent: float = 0.0
    net_io: dict[str, InterfaceIO] = Field(default_factory=dict, alias="netIO")
    block_io: BlockIO = Field(default_factory=BlockIO, alias="blockIO")
    pid_count: int = 0


class ContainerSnapshot(WireModel):
    id: str
    name: str
    image: str = ""
    state: str
    status: str = ""
    stats: NormalizedContainerStats | None = None


# Host metrics ----------------------------------------------------------


class HostCpu(WireModel):
    manufacturer: str = ""
    brand: str = ""
    core_count: int = 0
    usage_percent: float = 0.0
    temperature_c: float | None = Field(default=None, alias="temperatureC")


class HostMemory(WireModel):
    total_bytes: int = 0
    free_bytes: int = 0
    used_bytes: int = 0
    available_bytes: int = 0
    percent: float = 0.0


class HostNetwork(WireModel):
    rx_bytes_per_sec: float = 0.0
    tx_bytes_per_sec: float = 0.0


class HostOs(WireModel):
    platform: str = ""
    distro: str = ""
    release: str = ""
    uptime_seconds: float = 0.0


class HostMetricsRecord(WireModel):
    timestamp: int
    cpu: HostCpu
    memory: HostMemory
    network: HostNetwork
    os: HostOs


class InterfaceRate(WireModel):
    """Throughput of one host network interface."""

    iface: str
    rx_bytes_per_sec: float = 0.0
    tx_bytes_per_sec: float = 0.0
