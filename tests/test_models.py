"""Tests for the snapshot data model."""
from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import timedelta
import json

import pytest

from hwsentry.builder import SnapshotBuilder
from hwsentry.models import (
    CpuEntity,
    GpuEntity,
    MemoryEntity,
    NetworkEntity,
    SensorKind,
    SensorReading,
    SystemSnapshot,
)


def _reading(kind: SensorKind, value: float, valid: bool = True, name: str = "x") -> SensorReading:
    return SensorReading(name=name, kind=kind, value=value, identifier=f"/{name}", valid=valid)


class TestSensorKind:
    def test_units(self):
        assert SensorKind.TEMPERATURE.unit == "°C"
        assert SensorKind.FREQUENCY.unit == "MHz"
        assert SensorKind.FAN.unit == "RPM"
        assert SensorKind.SMALL_DATA.unit == "MB"


class TestHardwareEntity:
    def test_scalars_skip_invalid_readings(self):
        cpu = CpuEntity(
            identifier="/cpu/0",
            name="CPU",
            sensors=(
                _reading(SensorKind.TEMPERATURE, 0.0, valid=False),
                _reading(SensorKind.TEMPERATURE, 55.0),
                _reading(SensorKind.USAGE, 12.5),
            ),
        )
        assert cpu.temperature == 55.0
        assert cpu.usage == 12.5
        assert cpu.power is None
        assert len(cpu.sensors_of(SensorKind.TEMPERATURE)) == 1

    def test_entities_are_immutable(self):
        cpu = CpuEntity(identifier="/cpu/0", name="CPU")
        with pytest.raises(FrozenInstanceError):
            cpu.name = "other"

    def test_derived_percentages(self):
        gpu = GpuEntity(identifier="/gpu/0", name="GPU", memory_used=0, memory_total=0)
        memory = MemoryEntity(identifier="/ram", name="RAM", total_mb=0)
        assert gpu.memory_usage_percentage == 0.0
        assert memory.available_percentage == 0.0
        assert memory.swap_usage_percentage == 0.0

    def test_cpu_core_helpers_on_empty(self):
        cpu = CpuEntity(identifier="/cpu/0", name="CPU")
        assert cpu.average_core_usage() == 0.0
        assert cpu.max_core_temperature() == 0.0


class TestSystemSnapshot:
    """Test snapshot aggregation and payloads."""

    def test_payload_sections(self, desktop_tree, fake_host, t0):
        payload = SnapshotBuilder().build(desktop_tree, now=t0).to_payload()

        assert payload["schema"] == {"name": "hwsentry-snapshot", "version": 1}
        assert payload["ts"] == t0.isoformat()
        assert isinstance(payload["uptime_s"], int)
        assert payload["cpus"][0]["core_usages"] == [40.0, 60.0]
        assert payload["memory"]["total_mb"] == 16384
        assert payload["motherboard"]["manufacturer"] == "ASUS"
        assert payload["fans"][0]["location"] == "ASUS ROG STRIX Z690-A"
        assert payload["network"] == []
        json.dumps(payload)

    def test_optional_sections_omitted(self):
        payload = SystemSnapshot(uptime=timedelta(seconds=42.9)).to_payload()

        assert "memory" not in payload
        assert "motherboard" not in payload
        assert payload["uptime_s"] == 42
        assert payload["summary"] == {
            "cpu_temp_c": None,
            "cpu_usage_pct": None,
            "gpu_temp_c": None,
            "gpu_usage_pct": None,
            "memory_usage_pct": None,
            "net_down_mb_s": None,
            "net_up_mb_s": None,
        }

    def test_summary(self, desktop_tree, fake_host):
        snapshot = SnapshotBuilder(network_from_provider=True).build(desktop_tree)

        assert snapshot.summary() == {
            "cpu_temp_c": 61.0,
            "cpu_usage_pct": 50.0,
            "gpu_temp_c": 66.0,
            "gpu_usage_pct": 75.0,
            "memory_usage_pct": 42.0,
            "net_down_mb_s": 3.0,
            "net_up_mb_s": 0.5,
        }

    def test_health_summary(self):
        snapshot = SystemSnapshot(
            cpus=(
                CpuEntity(
                    identifier="/cpu/0",
                    name="CPU",
                    sensors=(_reading(SensorKind.TEMPERATURE, 91.0),),
                ),
            ),
            memory=MemoryEntity(
                identifier="/ram",
                name="RAM",
                sensors=(_reading(SensorKind.USAGE, 95.0),),
            ),
        )

        assert snapshot.health_summary() == [
            "High CPU temperature 91.0°C",
            "High memory utilization 95.0%",
        ]

    def test_primary_network(self):
        idle = NetworkEntity(identifier="a", name="a", connected=True)
        busy = NetworkEntity(identifier="b", name="b", connected=True, download_speed=1.5)
        snapshot = SystemSnapshot(network=(idle, busy))

        assert snapshot.primary_network() is busy
        assert snapshot.find("a") is idle
