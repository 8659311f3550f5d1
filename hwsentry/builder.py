from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
import logging
import platform
import time
from typing import Iterable, Iterator

import psutil

from hwsentry.classify import (
    FAN_CONTROLLER_KINDS,
    FAN_INDEX_RE,
    GPU_RULES,
    classify,
    core_index,
    hardware_kind,
    sensor_kind,
)
from hwsentry.models import (
    CpuEntity,
    FanEntity,
    GpuEntity,
    HardwareKind,
    MemoryEntity,
    MotherboardEntity,
    NetworkEntity,
    SensorKind,
    SensorReading,
    StorageEntity,
    SystemSnapshot,
    utcnow,
)
from hwsentry.network import MEGABYTE, speed_readings
from hwsentry.provider import RawHardware, RawSensor

_MB_PER_GB = 1024
_BYTES_PER_MB = 1024 * 1024


class SnapshotBuilder:
    """Turns the provider's raw hardware tree into a ``SystemSnapshot``.

    The only state kept between calls is the set of device identifiers that
    already produced a conversion warning.
    """

    def __init__(self, network_from_provider: bool = False) -> None:
        self.network_from_provider = network_from_provider
        self.logger = logging.getLogger(self.__class__.__name__)
        self._reported: set[str] = set()

    def build(self, tree: Iterable[RawHardware], now: datetime | None = None) -> SystemSnapshot:
        now = now or utcnow()
        cpus: list[CpuEntity] = []
        gpus: list[GpuEntity] = []
        storage: list[StorageEntity] = []
        network: list[NetworkEntity] = []
        fans: list[FanEntity] = []
        memory: MemoryEntity | None = None
        motherboard: MotherboardEntity | None = None

        for device, sensors, fan_source in self._flatten(tree):
            try:
                if fan_source:
                    fans.extend(self._fans(device, sensors, now))
                kind = hardware_kind(device.kind)
                if kind is None:
                    continue
                if kind == HardwareKind.CPU:
                    cpus.append(self._cpu(device, sensors, now))
                elif kind == HardwareKind.GPU:
                    gpus.append(self._gpu(device, sensors, now))
                elif kind == HardwareKind.MEMORY and memory is None:
                    memory = self._memory(device, sensors, now)
                elif kind == HardwareKind.MOTHERBOARD and motherboard is None:
                    motherboard = self._motherboard(device, sensors, now)
                elif kind == HardwareKind.STORAGE:
                    drive = self._storage(device, sensors, now)
                    if drive is not None:
                        storage.append(drive)
                elif kind == HardwareKind.NETWORK and self.network_from_provider:
                    network.append(self._network(device, sensors, now))
            except Exception:
                if device.identifier not in self._reported:
                    self._reported.add(device.identifier)
                    self.logger.warning(
                        "Skipping %s (%s): conversion failed.",
                        device.name,
                        device.identifier,
                        exc_info=True,
                    )
                else:
                    self.logger.debug("Skipping %s again.", device.identifier)

        return SystemSnapshot(
            cpus=tuple(cpus),
            gpus=tuple(gpus),
            memory=memory,
            motherboard=motherboard,
            storage=tuple(storage),
            network=tuple(network),
            fans=tuple(fans),
            captured_at=now,
            uptime=self._uptime(),
        )

    def _flatten(
        self, tree: Iterable[RawHardware]
    ) -> Iterator[tuple[RawHardware, list[RawSensor], bool]]:
        """Yield each entity-bearing device with its own and merged sensors.

        Sub-devices without an entity kind of their own (SuperIO chips,
        embedded controllers) are folded into their parent.
        """
        for device in tree:
            yield from self._flatten_device(device)

    def _flatten_device(
        self, device: RawHardware
    ) -> Iterator[tuple[RawHardware, list[RawSensor], bool]]:
        sensors = list(device.sensors)
        fan_source = _normalized(device.kind) in FAN_CONTROLLER_KINDS
        children: list[RawHardware] = []
        pending = list(device.sub_hardware)
        while pending:
            sub = pending.pop(0)
            if hardware_kind(sub.kind) is not None:
                children.append(sub)
                continue
            sensors.extend(sub.sensors)
            fan_source = fan_source or _normalized(sub.kind) in FAN_CONTROLLER_KINDS
            pending.extend(sub.sub_hardware)
        if hardware_kind(device.kind) is None and not fan_source:
            self.logger.debug("Ignoring %s device %s.", device.kind, device.name)
        else:
            yield device, sensors, fan_source
        for child in children:
            yield from self._flatten_device(child)

    def _reading(self, raw: RawSensor, now: datetime) -> SensorReading | None:
        kind = sensor_kind(raw.kind)
        if kind is None:
            self.logger.debug("Unsupported sensor type %s for %s.", raw.kind, raw.identifier)
            return None
        return SensorReading(
            name=raw.name,
            kind=kind,
            value=float(raw.value) if raw.value is not None else 0.0,
            identifier=raw.identifier,
            min=raw.min,
            max=raw.max,
            unit=kind.unit,
            valid=raw.value is not None,
            sampled_at=now,
        )

    def _readings(self, sensors: Iterable[RawSensor], now: datetime) -> list[SensorReading]:
        readings: list[SensorReading] = []
        for raw in sensors:
            reading = self._reading(raw, now)
            if reading is not None:
                readings.append(reading)
        return readings

    def _cpu(self, device: RawHardware, sensors: list[RawSensor], now: datetime) -> CpuEntity:
        readings = self._readings(sensors, now)
        # Package and total readings ahead of per-core ones, so the scalar
        # accessors resolve to the aggregate values.
        readings.sort(key=lambda reading: core_index(reading.name) is not None)

        core_usages: dict[int, list[float]] = {}
        core_temperatures: dict[int, float] = {}
        base_frequency = 0.0
        for reading in readings:
            index = core_index(reading.name)
            if index is None or not reading.valid or "tjmax" in reading.name.lower():
                continue
            if reading.kind == SensorKind.USAGE:
                core_usages.setdefault(index, []).append(reading.value)
            elif reading.kind == SensorKind.TEMPERATURE:
                core_temperatures.setdefault(index, reading.value)
            elif reading.kind == SensorKind.FREQUENCY and base_frequency == 0:
                base_frequency = reading.value

        thread_count = psutil.cpu_count(logical=True) or 1
        core_count = psutil.cpu_count(logical=False) or thread_count

        entity = CpuEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=tuple(readings),
            last_updated=now,
            core_count=core_count,
            thread_count=thread_count,
            manufacturer=_cpu_manufacturer(device.name),
            model=device.name,
            architecture=platform.machine(),
            base_frequency=base_frequency,
        )
        usages = _per_core(
            [_mean(core_usages[index]) for index in sorted(core_usages)], core_count
        )
        temperatures = _per_core(
            [core_temperatures[index] for index in sorted(core_temperatures)], core_count
        )
        if not usages:
            usages = [entity.usage or 0.0] * core_count
        if not temperatures:
            temperatures = [entity.temperature or 0.0] * core_count
        return replace(entity, core_usages=tuple(usages), core_temperatures=tuple(temperatures))

    def _gpu(self, device: RawHardware, sensors: list[RawSensor], now: datetime) -> GpuEntity:
        classified: list[tuple[tuple[int, int], SensorReading]] = []
        unclassified: list[SensorReading] = []
        memory_used = 0
        memory_total = 0
        memory_clock: tuple[int, float] | None = None

        for raw in sensors:
            reading = self._reading(raw, now)
            if reading is None:
                continue
            match = classify(raw.kind, raw.name)
            if match is None or not reading.valid:
                unclassified.append(reading)
                continue
            rule, rank = match
            if rule.field == "memory_used":
                memory_used = int(reading.value * _BYTES_PER_MB)
                unclassified.append(reading)
                continue
            if rule.field == "memory_total":
                memory_total = int(reading.value * _BYTES_PER_MB)
                unclassified.append(reading)
                continue
            if rule.field == "memory_clock" and (memory_clock is None or rank < memory_clock[0]):
                memory_clock = (rank, reading.value)
            canonical = replace(reading, name=rule.canonical_name, kind=rule.kind, unit=rule.kind.unit)
            classified.append(((GPU_RULES.index(rule), rank), canonical))

        if memory_total == 0:
            for raw in sensors:
                lowered = raw.name.lower()
                if (
                    raw.kind.lower() == "data"
                    and "memory" in lowered
                    and ("total" in lowered or "size" in lowered)
                    and raw.value is not None
                ):
                    memory_total = int(raw.value * _MB_PER_GB * _BYTES_PER_MB)
                    break

        classified.sort(key=lambda item: item[0])
        return GpuEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=tuple(reading for _, reading in classified) + tuple(unclassified),
            last_updated=now,
            manufacturer=_gpu_manufacturer(device.name, device.kind),
            memory_used=memory_used,
            memory_total=memory_total,
            memory_clock=memory_clock[1] if memory_clock else 0.0,
        )

    def _memory(self, device: RawHardware, sensors: list[RawSensor], now: datetime) -> MemoryEntity:
        readings = self._readings(sensors, now)
        fields: dict[str, int] = {}
        for reading in readings:
            lowered = reading.name.lower()
            if reading.kind != SensorKind.DATA or not reading.valid or "virtual" in lowered:
                continue
            for key in ("used", "available", "total"):
                if key in lowered:
                    fields.setdefault(key, int(reading.value * _MB_PER_GB))
                    break

        used_mb = fields.get("used", 0)
        available_mb = fields.get("available", 0)
        total_mb = fields.get("total", 0)
        if total_mb == 0:
            vm = psutil.virtual_memory()
            total_mb = int(vm.total // _BYTES_PER_MB)
            available_mb = int(vm.available // _BYTES_PER_MB)
            used_mb = total_mb - available_mb
            if not any(r.kind == SensorKind.USAGE and r.valid for r in readings):
                readings.append(
                    SensorReading(
                        name="Memory Usage",
                        kind=SensorKind.USAGE,
                        value=used_mb / total_mb * 100 if total_mb > 0 else 0.0,
                        identifier="memory/usage",
                        unit=SensorKind.USAGE.unit,
                        sampled_at=now,
                    )
                )

        try:
            swap = psutil.swap_memory()
            swap_used_mb = int(swap.used // _BYTES_PER_MB)
            swap_total_mb = int(swap.total // _BYTES_PER_MB)
        except (OSError, RuntimeError):
            self.logger.debug("Failed to read swap usage.")
            swap_used_mb = swap_total_mb = 0

        return MemoryEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=tuple(readings),
            last_updated=now,
            used_mb=used_mb,
            available_mb=available_mb,
            total_mb=total_mb,
            swap_used_mb=swap_used_mb,
            swap_total_mb=swap_total_mb,
        )

    def _motherboard(
        self, device: RawHardware, sensors: list[RawSensor], now: datetime
    ) -> MotherboardEntity:
        return MotherboardEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=tuple(self._readings(sensors, now)),
            last_updated=now,
            manufacturer=device.name.split()[0] if device.name.split() else "",
        )

    def _storage(
        self, device: RawHardware, sensors: list[RawSensor], now: datetime
    ) -> StorageEntity | None:
        temperatures = [
            reading
            for reading in self._readings(sensors, now)
            if reading.kind == SensorKind.TEMPERATURE
        ]
        if not temperatures:
            self.logger.debug("Storage %s has no temperature sensor.", device.name)
            return None
        return StorageEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=tuple(temperatures),
            last_updated=now,
        )

    def _network(
        self, device: RawHardware, sensors: list[RawSensor], now: datetime
    ) -> NetworkEntity:
        usage = 0.0
        download = 0.0
        upload = 0.0
        for raw in sensors:
            if raw.value is None:
                continue
            lowered = raw.name.lower()
            kind = sensor_kind(raw.kind)
            if kind == SensorKind.USAGE:
                usage = float(raw.value)
            elif kind == SensorKind.THROUGHPUT and "download" in lowered:
                download = round(max(0.0, raw.value) / MEGABYTE, 2)
            elif kind == SensorKind.THROUGHPUT and "upload" in lowered:
                upload = round(max(0.0, raw.value) / MEGABYTE, 2)
        return NetworkEntity(
            identifier=device.identifier,
            name=device.name,
            sensors=speed_readings(device.identifier, usage, download, upload, now),
            last_updated=now,
            download_speed=download,
            upload_speed=upload,
            connected=True,
        )

    def _fans(
        self, device: RawHardware, sensors: list[RawSensor], now: datetime
    ) -> list[FanEntity]:
        readings = self._readings(sensors, now)
        controls = {
            _fan_index(reading.name): reading
            for reading in readings
            if reading.kind == SensorKind.CONTROL and reading.valid
        }
        fans: list[FanEntity] = []
        for reading in readings:
            if reading.kind != SensorKind.FAN or not reading.valid:
                continue
            index = _fan_index(reading.name)
            control = controls.get(index) if index is not None else None
            fans.append(
                FanEntity(
                    identifier=reading.identifier,
                    name=reading.name,
                    sensors=(reading,) if control is None else (reading, control),
                    last_updated=now,
                    location=device.name,
                )
            )
        return fans

    @staticmethod
    def _uptime() -> timedelta:
        return timedelta(seconds=max(0.0, time.time() - psutil.boot_time()))


def _normalized(kind: str) -> str:
    return kind.replace(" ", "").lower()


def _fan_index(name: str) -> int | None:
    match = FAN_INDEX_RE.search(name)
    return int(match.group(1)) if match else None


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def _per_core(values: list[float], core_count: int) -> list[float]:
    """Fold readings indexed past ``core_count`` back onto their cores."""
    if len(values) <= core_count:
        return values
    return [_mean(values[core::core_count]) for core in range(core_count)]


def _cpu_manufacturer(name: str) -> str:
    lowered = name.lower()
    if "intel" in lowered:
        return "Intel"
    if "amd" in lowered:
        return "AMD"
    return "Unknown"


def _gpu_manufacturer(name: str, kind: str) -> str:
    lowered = name.lower()
    if "nvidia" in lowered or kind == "GpuNvidia":
        return "NVIDIA"
    if "amd" in lowered or "radeon" in lowered or kind == "GpuAmd":
        return "AMD"
    if "intel" in lowered or kind == "GpuIntel":
        return "Intel"
    return "Unknown"

