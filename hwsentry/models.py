from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Iterator

SCHEMA_NAME = "hwsentry-snapshot"
SCHEMA_VERSION = 1


class SensorKind(str, Enum):
    TEMPERATURE = "temperature"
    USAGE = "usage"
    FREQUENCY = "frequency"
    VOLTAGE = "voltage"
    CURRENT = "current"
    POWER = "power"
    FAN = "fan"
    FLOW = "flow"
    CONTROL = "control"
    LEVEL = "level"
    FACTOR = "factor"
    DATA = "data"
    SMALL_DATA = "smalldata"
    THROUGHPUT = "throughput"

    @property
    def unit(self) -> str:
        return _SENSOR_UNITS[self]


_SENSOR_UNITS = {
    SensorKind.TEMPERATURE: "°C",
    SensorKind.USAGE: "%",
    SensorKind.FREQUENCY: "MHz",
    SensorKind.VOLTAGE: "V",
    SensorKind.CURRENT: "A",
    SensorKind.POWER: "W",
    SensorKind.FAN: "RPM",
    SensorKind.FLOW: "L/h",
    SensorKind.CONTROL: "%",
    SensorKind.LEVEL: "%",
    SensorKind.FACTOR: "",
    SensorKind.DATA: "GB",
    SensorKind.SMALL_DATA: "MB",
    SensorKind.THROUGHPUT: "B/s",
}


class HardwareKind(str, Enum):
    CPU = "cpu"
    GPU = "gpu"
    MEMORY = "memory"
    MOTHERBOARD = "motherboard"
    STORAGE = "storage"
    NETWORK = "network"
    FAN = "fan"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SensorReading:
    name: str
    kind: SensorKind
    value: float
    identifier: str
    min: float | None = None
    max: float | None = None
    unit: str = ""
    valid: bool = True
    sampled_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "value": self.value,
            "unit": self.unit,
            "valid": self.valid,
            "identifier": self.identifier,
        }
        if self.min is not None:
            entry["min"] = self.min
        if self.max is not None:
            entry["max"] = self.max
        return entry


@dataclass(frozen=True)
class HardwareEntity:
    """Normalized view of one device, rebuilt on every poll.

    Scalar metrics are not stored: ``temperature`` and ``usage`` resolve to
    the first valid reading of that kind each time they are read.
    """

    identifier: str
    name: str
    sensors: tuple[SensorReading, ...] = ()
    last_updated: datetime = field(default_factory=utcnow)
    online: bool = True

    kind: ClassVar[HardwareKind] = HardwareKind.CPU

    def sensor(self, kind: SensorKind) -> SensorReading | None:
        return next(
            (reading for reading in self.sensors if reading.kind == kind and reading.valid),
            None,
        )

    def sensor_named(self, name: str) -> SensorReading | None:
        lowered = name.lower()
        return next(
            (
                reading
                for reading in self.sensors
                if reading.name.lower() == lowered and reading.valid
            ),
            None,
        )

    def sensors_of(self, kind: SensorKind) -> list[SensorReading]:
        return [reading for reading in self.sensors if reading.kind == kind and reading.valid]

    def _value(self, kind: SensorKind) -> float | None:
        reading = self.sensor(kind)
        return reading.value if reading is not None else None

    @property
    def temperature(self) -> float | None:
        return self._value(SensorKind.TEMPERATURE)

    @property
    def usage(self) -> float | None:
        return self._value(SensorKind.USAGE)

    def _extra_payload(self) -> dict[str, Any]:
        return {}

    def to_payload(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "identifier": self.identifier,
            "name": self.name,
            "kind": self.kind.value,
            "online": self.online,
            "last_updated": self.last_updated.isoformat(),
            "sensors": [reading.to_payload() for reading in self.sensors],
        }
        entry.update(self._extra_payload())
        return entry


@dataclass(frozen=True)
class CpuEntity(HardwareEntity):
    core_count: int = 0
    thread_count: int = 0
    manufacturer: str = ""
    model: str = ""
    architecture: str = ""
    base_frequency: float = 0.0
    core_usages: tuple[float, ...] = ()
    core_temperatures: tuple[float, ...] = ()

    kind: ClassVar[HardwareKind] = HardwareKind.CPU

    @property
    def frequency(self) -> float | None:
        return self._value(SensorKind.FREQUENCY)

    @property
    def power(self) -> float | None:
        return self._value(SensorKind.POWER)

    def average_core_usage(self) -> float:
        if not self.core_usages:
            return 0.0
        return sum(self.core_usages) / len(self.core_usages)

    def max_core_temperature(self) -> float:
        return max(self.core_temperatures) if self.core_temperatures else 0.0

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "core_count": self.core_count,
            "thread_count": self.thread_count,
            "manufacturer": self.manufacturer,
            "architecture": self.architecture,
            "base_frequency_mhz": self.base_frequency,
            "core_usages": list(self.core_usages),
            "core_temperatures": list(self.core_temperatures),
        }


@dataclass(frozen=True)
class GpuEntity(HardwareEntity):
    manufacturer: str = ""
    memory_used: int = 0
    memory_total: int = 0
    memory_clock: float = 0.0

    kind: ClassVar[HardwareKind] = HardwareKind.GPU

    @property
    def core_clock(self) -> float | None:
        return self._value(SensorKind.FREQUENCY)

    @property
    def power(self) -> float | None:
        return self._value(SensorKind.POWER)

    @property
    def fan_speed(self) -> float | None:
        return self._value(SensorKind.FAN)

    @property
    def memory_usage_percentage(self) -> float:
        if self.memory_total <= 0:
            return 0.0
        return self.memory_used / self.memory_total * 100

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "manufacturer": self.manufacturer,
            "memory_used_b": self.memory_used,
            "memory_total_b": self.memory_total,
            "memory_clock_mhz": self.memory_clock,
        }


@dataclass(frozen=True)
class MemoryEntity(HardwareEntity):
    used_mb: int = 0
    available_mb: int = 0
    total_mb: int = 0
    swap_used_mb: int = 0
    swap_total_mb: int = 0

    kind: ClassVar[HardwareKind] = HardwareKind.MEMORY

    @property
    def available_percentage(self) -> float:
        return self.available_mb / self.total_mb * 100 if self.total_mb > 0 else 0.0

    @property
    def swap_usage_percentage(self) -> float:
        return self.swap_used_mb / self.swap_total_mb * 100 if self.swap_total_mb > 0 else 0.0

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "used_mb": self.used_mb,
            "available_mb": self.available_mb,
            "total_mb": self.total_mb,
            "swap_used_mb": self.swap_used_mb,
            "swap_total_mb": self.swap_total_mb,
        }


@dataclass(frozen=True)
class MotherboardEntity(HardwareEntity):
    manufacturer: str = ""

    kind: ClassVar[HardwareKind] = HardwareKind.MOTHERBOARD

    def _extra_payload(self) -> dict[str, Any]:
        return {"manufacturer": self.manufacturer}


@dataclass(frozen=True)
class StorageEntity(HardwareEntity):
    # Temperature-only; capacity and partitions are not modeled.
    has_temperature_sensor: bool = True

    kind: ClassVar[HardwareKind] = HardwareKind.STORAGE


@dataclass(frozen=True)
class NetworkEntity(HardwareEntity):
    download_speed: float = 0.0
    upload_speed: float = 0.0
    connected: bool = False
    adapter_type: str = ""
    mac_address: str = ""
    ip_address: str = ""

    kind: ClassVar[HardwareKind] = HardwareKind.NETWORK

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "download_mb_s": self.download_speed,
            "upload_mb_s": self.upload_speed,
            "connected": self.connected,
            "adapter_type": self.adapter_type,
            "mac": self.mac_address,
            "ipv4": self.ip_address,
        }


@dataclass(frozen=True)
class FanEntity(HardwareEntity):
    location: str = ""

    kind: ClassVar[HardwareKind] = HardwareKind.FAN

    @property
    def speed(self) -> float | None:
        return self._value(SensorKind.FAN)

    @property
    def control_percentage(self) -> float | None:
        return self._value(SensorKind.CONTROL)

    def _extra_payload(self) -> dict[str, Any]:
        return {"location": self.location}


@dataclass(frozen=True)
class SystemSnapshot:
    """One immutable poll result. Consumers never see it change."""

    cpus: tuple[CpuEntity, ...] = ()
    gpus: tuple[GpuEntity, ...] = ()
    memory: MemoryEntity | None = None
    motherboard: MotherboardEntity | None = None
    storage: tuple[StorageEntity, ...] = ()
    network: tuple[NetworkEntity, ...] = ()
    fans: tuple[FanEntity, ...] = ()
    captured_at: datetime = field(default_factory=utcnow)
    uptime: timedelta = timedelta(0)

    def entities(self) -> Iterator[HardwareEntity]:
        yield from self.cpus
        yield from self.gpus
        if self.memory is not None:
            yield self.memory
        if self.motherboard is not None:
            yield self.motherboard
        yield from self.storage
        yield from self.network
        yield from self.fans

    def find(self, identifier: str) -> HardwareEntity | None:
        return next(
            (entity for entity in self.entities() if entity.identifier == identifier),
            None,
        )

    def primary_cpu(self) -> CpuEntity | None:
        return self.cpus[0] if self.cpus else None

    def primary_gpu(self) -> GpuEntity | None:
        return self.gpus[0] if self.gpus else None

    def primary_network(self) -> NetworkEntity | None:
        from hwsentry.network import select_primary

        return select_primary(self.network)

    def health_summary(self) -> list[str]:
        issues: list[str] = []
        cpu = self.primary_cpu()
        if cpu is not None and (cpu.temperature or 0) > 80:
            issues.append(f"High CPU temperature {cpu.temperature:.1f}°C")
        gpu = self.primary_gpu()
        if gpu is not None and (gpu.temperature or 0) > 85:
            issues.append(f"High GPU temperature {gpu.temperature:.1f}°C")
        if self.memory is not None and (self.memory.usage or 0) > 90:
            issues.append(f"High memory utilization {self.memory.usage:.1f}%")
        return issues

    def summary(self) -> dict[str, float | None]:
        cpu = self.primary_cpu()
        gpu = self.primary_gpu()
        adapter = self.primary_network()
        return {
            "cpu_temp_c": cpu.temperature if cpu else None,
            "cpu_usage_pct": cpu.usage if cpu else None,
            "gpu_temp_c": gpu.temperature if gpu else None,
            "gpu_usage_pct": gpu.usage if gpu else None,
            "memory_usage_pct": self.memory.usage if self.memory else None,
            "net_down_mb_s": adapter.download_speed if adapter else None,
            "net_up_mb_s": adapter.upload_speed if adapter else None,
        }

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schema": {"name": SCHEMA_NAME, "version": SCHEMA_VERSION},
            "ts": self.captured_at.isoformat(),
            "uptime_s": int(self.uptime.total_seconds()),
            "health": {"issues": self.health_summary()},
            "summary": self.summary(),
            "cpus": [cpu.to_payload() for cpu in self.cpus],
            "gpus": [gpu.to_payload() for gpu in self.gpus],
            "storage": [drive.to_payload() for drive in self.storage],
            "network": [adapter.to_payload() for adapter in self.network],
            "fans": [fan.to_payload() for fan in self.fans],
        }
        if self.memory is not None:
            payload["memory"] = self.memory.to_payload()
        if self.motherboard is not None:
            payload["motherboard"] = self.motherboard.to_payload()
        return payload
