"""Tests for raw Docker stats derivation."""

import pytest

from minimonitor.services.derivation import (
    RawContainerStats,
    calculate_block_io,
    calculate_cpu_percent,
    calculate_memory,
    calculate_network_io,
    normalize_container_stats,
    online_cpu_count,
    sum_network_rates,
)


def _cpu_payload(total, pretotal, system, presystem, online_cpus=None, percpu=None):
    cpu_usage = {"total_usage": total}
    if percpu is not None:
        cpu_usage["percpu_usage"] = percpu
    cpu_stats = {"cpu_usage": cpu_usage, "system_cpu_usage": system}
    if online_cpus is not None:
        cpu_stats["online_cpus"] = online_cpus
    return {
        "cpu_stats": cpu_stats,
        "precpu_stats": {"cpu_usage": {"total_usage": pretotal}, "system_cpu_usage": presystem},
    }


class TestCpuPercent:
    """Test CPU percentage derivation."""

    def test_end_to_end_example(self):
        """200ms of CPU over 1s of system time on 4 CPUs is 80%."""
        payload = _cpu_payload(1_200_000_000, 1_000_000_000, 11_000_000_000, 10_000_000_000, online_cpus=4)
        assert calculate_cpu_percent(payload) == pytest.approx(80.0)

    @pytest.mark.parametrize(
        "cpu_delta,system_delta,cpus",
        [(50, 1000, 1), (1, 3, 8), (999, 1000, 2)],
    )
    def test_matches_formula(self, cpu_delta, system_delta, cpus):
        payload = _cpu_payload(100 + cpu_delta, 100, 5000 + system_delta, 5000, online_cpus=cpus)
        expected = (cpu_delta / system_delta) * cpus * 100
        assert calculate_cpu_percent(payload) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "total,pretotal,system,presystem",
        [
            (100, 100, 2000, 1000),  # no CPU delta
            (90, 100, 2000, 1000),  # counter went backwards
            (200, 100, 1000, 1000),  # no system delta
            (200, 100, 900, 1000),  # negative system delta
        ],
    )
    def test_non_positive_delta_returns_zero(self, total, pretotal, system, presystem):
        assert calculate_cpu_percent(_cpu_payload(total, pretotal, system, presystem, 4)) == 0.0

    def test_missing_previous_sample_returns_zero(self):
        """First sample after start has an empty precpu_stats."""
        payload = {
            "cpu_stats": {"cpu_usage": {"total_usage": 500}, "system_cpu_usage": 1000, "online_cpus": 2},
            "precpu_stats": {"cpu_usage": {}},
        }
        assert calculate_cpu_percent(payload) == 0.0

    @pytest.mark.parametrize("payload", [None, {}, {"cpu_stats": None}, "garbage", []])
    def test_malformed_payload_returns_zero(self, payload):
        assert calculate_cpu_percent(payload) == 0.0

    def test_online_cpu_resolution_order(self):
        """online_cpus wins, then percpu_usage length, then 1."""
        assert online_cpu_count(_cpu_payload(1, 0, 1, 0, online_cpus=3, percpu=[1, 2])) == 3
        assert online_cpu_count(_cpu_payload(1, 0, 1, 0, percpu=[1, 2, 3, 4, 5, 6])) == 6
        assert online_cpu_count(_cpu_payload(1, 0, 1, 0)) == 1
        assert online_cpu_count(_cpu_payload(1, 0, 1, 0, online_cpus=0, percpu=[])) == 1

    def test_percpu_fallback_used_in_percent(self):
        payload = _cpu_payload(150, 100, 1100, 1000, percpu=[10, 20])
        assert calculate_cpu_percent(payload) == pytest.approx(100.0)


class TestMemory:
    """Test memory working set and percentage."""

    def test_cache_subtracted(self):
        payload = {"memory_stats": {"usage": 600, "limit": 1000, "stats": {"cache": 100}}}
        used, limit, percent = calculate_memory(payload)
        assert used == 500
        assert limit == 1000
        assert percent == pytest.approx(50.0)

    def test_cache_defaults_to_zero(self):
        payload = {"memory_stats": {"usage": 250, "limit": 1000}}
        assert calculate_memory(payload) == (250, 1000, pytest.approx(25.0))

    def test_cgroup_v2_inactive_file(self):
        payload = {"memory_stats": {"usage": 800, "limit": 1000, "stats": {"inactive_file": 300}}}
        used, _, percent = calculate_memory(payload)
        assert used == 500
        assert percent == pytest.approx(50.0)

    @pytest.mark.parametrize("limit", [0, -1, None])
    def test_missing_or_zero_limit_gives_zero_percent(self, limit):
        payload = {"memory_stats": {"usage": 500, "limit": limit}}
        used, _, percent = calculate_memory(payload)
        assert used == 500
        assert percent == 0.0

    def test_percent_not_clamped(self):
        payload = {"memory_stats": {"usage": 3000, "limit": 1000}}
        assert calculate_memory(payload)[2] == pytest.approx(300.0)

    def test_missing_usage_is_zero(self):
        assert calculate_memory({"memory_stats": {}})[0] == 0
        assert calculate_memory({})[2] == 0.0


class TestBlockIO:
    """Test block I/O summation."""

    def test_case_insensitive_ops(self):
        payload = {
            "blkio_stats": {
                "io_service_bytes_recursive": [
                    {"op": "Read", "value": 5},
                    {"op": "write", "value": 3},
                ]
            }
        }
        io = calculate_block_io(payload)
        assert io.read_bytes == 5
        assert io.write_bytes == 3

    def test_sums_across_devices_in_any_order(self):
        entries = [
            {"major": 8, "minor": 0, "op": "read", "value": 10},
            {"major": 8, "minor": 0, "op": "Write", "value": 4},
            {"major": 8, "minor": 16, "op": "READ", "value": 7},
            {"major": 8, "minor": 16, "op": "Total", "value": 21},
            {"major": 8, "minor": 16, "op": "Sync", "value": 2},
        ]
        forward = calculate_block_io({"blkio_stats": {"io_service_bytes_recursive": entries}})
        backward = calculate_block_io({"blkio_stats": {"io_service_bytes_recursive": entries[::-1]}})
        assert forward == backward
        assert forward.read_bytes == 17
        assert forward.write_bytes == 4

    def test_flat_key_fallback(self):
        payload = {
            "blkio_stats": {
                "io_service_bytes_recursive": None,
                "io_service_bytes": [{"op": "read", "value": 9}],
            }
        }
        assert calculate_block_io(payload).read_bytes == 9

    @pytest.mark.parametrize(
        "blkio",
        [None, {}, {"io_service_bytes_recursive": None}, {"io_service_bytes_recursive": []}],
    )
    def test_missing_breakdown_is_zero(self, blkio):
        io = calculate_block_io({"blkio_stats": blkio})
        assert (io.read_bytes, io.write_bytes) == (0, 0)


class TestNetwork:
    """Test network aggregation."""

    def test_container_interfaces(self):
        payload = {"networks": {"eth0": {"rx_bytes": 100, "tx_bytes": 50}, "eth1": {"rx_bytes": 1}}}
        net = calculate_network_io(payload)
        assert net["eth0"].rx_bytes == 100
        assert net["eth0"].tx_bytes == 50
        assert net["eth1"].tx_bytes == 0

    def test_missing_networks_section(self):
        assert calculate_network_io({}) == {}

    def test_host_rates_summed(self):
        rx, tx = sum_network_rates([
            {"rx_bytes_per_sec": 100.0, "tx_bytes_per_sec": 10.0},
            {"rxBytesPerSec": 50.5, "txBytesPerSec": 4.5},
        ])
        assert rx == pytest.approx(150.5)
        assert tx == pytest.approx(14.5)

    @pytest.mark.parametrize("interfaces", [None, []])
    def test_host_rates_empty(self, interfaces):
        assert sum_network_rates(interfaces) == (0.0, 0.0)


class TestNormalize:
    """Test the combined normalization."""

    def test_full_payload(self):
        payload = _cpu_payload(1_200_000_000, 1_000_000_000, 11_000_000_000, 10_000_000_000, online_cpus=4)
        payload.update(
            {
                "memory_stats": {"usage": 2048, "limit": 4096, "stats": {"cache": 1024}},
                "blkio_stats": {"io_service_bytes_recursive": [{"op": "Read", "value": 1}]},
                "networks": {"eth0": {"rx_bytes": 7, "tx_bytes": 8}},
                "pids_stats": {"current": 12},
            }
        )
        stats = normalize_container_stats(payload)
        assert stats.cpu_percent == pytest.approx(80.0)
        assert stats.memory_usage_bytes == 1024
        assert stats.memory_percent == pytest.approx(25.0)
        assert stats.pid_count == 12

        wire = stats.to_wire()
        assert wire["cpuPercent"] == pytest.approx(80.0)
        assert wire["netIO"] == {"eth0": {"rxBytes": 7, "txBytes": 8}}
        assert wire["blockIO"] == {"readBytes": 1, "writeBytes": 0}
        assert wire["pidCount"] == 12

    def test_empty_payload_is_all_zero(self):
        stats = normalize_container_stats({})
        assert stats.cpu_percent == 0.0
        assert stats.memory_usage_bytes == 0
        assert stats.pid_count == 0

    def test_string_counters_are_coerced(self):
        raw = RawContainerStats.parse({"pids_stats": {"current": "5"}, "memory_stats": {"usage": "abc"}})
        assert raw.pids == 5
        assert raw.memory_usage is None

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf"), "inf", "nan", "1e400"])
    def test_non_finite_counters_are_rejected(self, bad):
        raw = RawContainerStats.parse({"pids_stats": {"current": bad}, "cpu_stats": {"online_cpus": bad}})
        assert raw.pids is None
        assert raw.online_cpus is None

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), "inf", "1e400"])
    def test_non_finite_payload_never_raises(self, bad):
        payload = _cpu_payload(bad, 100, bad, 1000, online_cpus=bad, percpu=[1, 2])
        payload.update(
            {
                "memory_stats": {"usage": bad, "limit": bad, "stats": {"cache": bad}},
                "blkio_stats": {"io_service_bytes_recursive": [{"op": "read", "value": bad}]},
                "networks": {"eth0": {"rx_bytes": bad, "tx_bytes": 5}},
                "pids_stats": {"current": bad},
            }
        )
        stats = normalize_container_stats(payload)
        assert stats.cpu_percent == 0.0
        assert stats.memory_usage_bytes == 0
        assert stats.block_io.read_bytes == 0
        assert stats.net_io["eth0"].rx_bytes == 0
        assert stats.net_io["eth0"].tx_bytes == 5
        assert stats.pid_count == 0

    def test_non_finite_host_rates_are_ignored(self):
        rx, tx = sum_network_rates([
            {"rx_bytes_per_sec": float("inf"), "tx_bytes_per_sec": float("nan")},
            {"rx_bytes_per_sec": 10.0, "tx_bytes_per_sec": 2.0},
        ])
        assert (rx, tx) == (10.0, 2.0)
