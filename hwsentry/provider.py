from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import platform
import re
from typing import Any
from urllib.request import urlopen

import psutil

from hwsentry.logging_utils import TRACE_LEVEL


class ProviderError(RuntimeError):
    """The sensor provider could not be refreshed."""


@dataclass
class RawSensor:
    name: str
    kind: str
    value: float | None
    identifier: str
    min: float | None = None
    max: float | None = None


@dataclass
class RawHardware:
    name: str
    kind: str
    identifier: str
    sensors: list[RawSensor] = field(default_factory=list)
    sub_hardware: list[RawHardware] = field(default_factory=list)


class SensorProvider:
    """Source of the raw hardware tree.

    ``refresh()`` updates every sensor value; ``hardware()`` returns the tree
    as of the last refresh. Implementations are not assumed to be reentrant.
    """

    def open(self) -> None:
        pass

    def refresh(self) -> None:
        raise NotImplementedError

    def hardware(self) -> list[RawHardware]:
        raise NotImplementedError

    def close(self) -> None:
        pass


_VALUE_RE = re.compile(r"^\s*(-?[\d.]+)\s*(.*?)\s*$")

# Scale factors into the canonical unit of each LHM sensor type.
_UNIT_SCALES: dict[str, dict[str, float]] = {
    "throughput": {"b/s": 1.0, "kb/s": 1024.0, "mb/s": 1024.0**2, "gb/s": 1024.0**3},
    "smalldata": {"kb": 1 / 1024, "mb": 1.0, "gb": 1024.0},
    "data": {"mb": 1 / 1024, "gb": 1.0, "tb": 1024.0},
}


def parse_lhm_value(text: Any, sensor_type: str = "") -> float | None:
    """Parse an LHM display value such as ``"1,024.5 MB"`` or ``"65.0 °C"``."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    cleaned = str(text).replace(",", "").strip()
    if not cleaned or cleaned == "-":
        return None
    match = _VALUE_RE.match(cleaned)
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    unit = match.group(2).lower()
    scales = _UNIT_SCALES.get(sensor_type.lower())
    if scales and unit in scales:
        number *= scales[unit]
    return number


def classify_image(image_url: str) -> str | None:
    """Map an LHM ``ImageURL`` to the LHM hardware type name it depicts."""
    lowered = image_url.lower()
    if "battery" in lowered:
        return "Battery"
    if "hdd" in lowered or "ssd" in lowered or "nvme" in lowered:
        return "Storage"
    if "nvidia" in lowered:
        return "GpuNvidia"
    if "ati" in lowered or "amdgpu" in lowered or "radeon" in lowered:
        return "GpuAmd"
    if "intelgpu" in lowered or "gpu" in lowered:
        return "GpuIntel"
    if "mainboard" in lowered or "motherboard" in lowered:
        return "Motherboard"
    if "chip" in lowered:
        return "SuperIO"
    if "cpu" in lowered:
        return "Cpu"
    if "ram" in lowered:
        return "Memory"
    if "nic" in lowered or "ethernet" in lowered or "wifi" in lowered:
        return "Network"
    if "fan" in lowered:
        return "Cooler"
    return None


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "unknown"


def parse_lhm_tree(raw: dict[str, Any]) -> list[RawHardware]:
    """Convert an LHM ``data.json`` document into a hardware tree.

    Handles the legacy layout (``Type: Hardware/Sensor``) and the current
    layout, where hardware is recognised by its ``ImageURL`` and sensors by
    ``SensorId``/``Type``.
    """
    if _has_sensor_id(raw):
        roots: list[RawHardware] = []
        _walk_current(raw, None, roots, "")
        return roots
    roots = []
    for child in raw.get("Children", []):
        _walk_legacy(child, None, roots, "")
    return roots


def _has_sensor_id(raw: dict[str, Any]) -> bool:
    nodes: list[Any] = [raw]
    while nodes:
        node = nodes.pop()
        if isinstance(node, dict):
            if node.get("SensorId"):
                return True
            nodes.extend(node.get("Children", []))
    return False


def _walk_current(
    node: dict[str, Any],
    parent: RawHardware | None,
    roots: list[RawHardware],
    path: str,
) -> None:
    text = (node.get("Text") or "").replace("\x00", "").strip()
    sensor_type = node.get("Type") or ""
    if sensor_type and parent is not None:
        sensor_id = node.get("SensorId") or f"{parent.identifier}/{_slug(sensor_type)}/{_slug(text)}"
        parent.sensors.append(
            RawSensor(
                name=text,
                kind=sensor_type,
                value=parse_lhm_value(node.get("Value"), sensor_type),
                identifier=sensor_id,
                min=parse_lhm_value(node.get("Min"), sensor_type),
                max=parse_lhm_value(node.get("Max"), sensor_type),
            )
        )
        return

    current = parent
    hardware_type = classify_image(node.get("ImageURL") or "")
    # The root "Computer" node carries a mainboard image in some releases.
    is_root = not path
    if hardware_type and not is_root:
        identifier = (
            node.get("HardwareId")
            or node.get("SensorId")
            or f"{parent.identifier if parent else ''}/{_slug(hardware_type)}/{_slug(text)}"
        )
        hardware = RawHardware(name=text, kind=hardware_type, identifier=identifier)
        if parent is None:
            roots.append(hardware)
        else:
            parent.sub_hardware.append(hardware)
        current = hardware

    for child in node.get("Children", []):
        if isinstance(child, dict):
            _walk_current(child, current, roots, f"{path}/{text}")


def _walk_legacy(
    node: dict[str, Any],
    parent: RawHardware | None,
    roots: list[RawHardware],
    path: str,
) -> None:
    node_type = node.get("Type")
    text = node.get("Text") or ""
    if node_type == "Hardware":
        hardware_type = node.get("HardwareType") or "Unknown"
        identifier = node.get("Identifier") or f"{path}/{_slug(hardware_type)}/{_slug(text)}"
        hardware = RawHardware(name=text, kind=hardware_type, identifier=identifier)
        if parent is None:
            roots.append(hardware)
        else:
            parent.sub_hardware.append(hardware)
        for child in node.get("Children", []):
            _walk_legacy(child, hardware, roots, identifier)
        return
    if node_type == "Sensor":
        if parent is None:
            return
        sensor_type = node.get("SensorType") or ""
        parent.sensors.append(
            RawSensor(
                name=text,
                kind=sensor_type,
                value=parse_lhm_value(node.get("Value"), sensor_type),
                identifier=node.get("Identifier")
                or f"{parent.identifier}/{_slug(sensor_type)}/{len(parent.sensors)}",
                min=parse_lhm_value(node.get("Min"), sensor_type),
                max=parse_lhm_value(node.get("Max"), sensor_type),
            )
        )
        return
    for child in node.get("Children", []):
        _walk_legacy(child, parent, roots, path)


class LhmHttpProvider(SensorProvider):
    """Reads the JSON tree served by LibreHardwareMonitor's web server."""

    def __init__(self, url: str, timeout_s: float = 2) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(self.__class__.__name__)
        self._tree: list[RawHardware] = []

    def refresh(self) -> None:
        try:
            with urlopen(self.url, timeout=self.timeout_s) as response:
                payload = response.read().decode("utf-8")
        except OSError as exc:
            raise ProviderError(f"Failed to fetch LibreHardwareMonitor JSON: {exc}") from exc
        if self.logger.isEnabledFor(TRACE_LEVEL):
            self.logger.log(TRACE_LEVEL, "LibreHardwareMonitor raw payload: %s", payload)
        try:
            raw = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ProviderError("Failed to parse LibreHardwareMonitor JSON.") from exc
        if not isinstance(raw, dict):
            raise ProviderError("Unexpected LibreHardwareMonitor JSON document.")
        self._tree = parse_lhm_tree(raw)
        self.logger.debug("Parsed %s LibreHardwareMonitor devices.", len(self._tree))

    def hardware(self) -> list[RawHardware]:
        return list(self._tree)


_CORE_LABEL_RE = re.compile(r"core\s*#?\s*(\d+)", re.IGNORECASE)
_CPU_TEMP_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal")
_GPU_TEMP_CHIPS = ("amdgpu", "nouveau", "radeon")
_STORAGE_TEMP_CHIPS = ("nvme", "drivetemp")


def _logical_cpu_name(index: int, logical: int, cores: int) -> str:
    """Name logical CPU ``index`` after its physical core, LHM style.

    psutil lists one thread of every core before any sibling thread, so
    logical CPU ``i`` belongs to core ``i % cores``.
    """
    name = f"CPU Core #{index % cores + 1}"
    if logical > cores:
        name += f" Thread #{index // cores + 1}"
    return name


class PsutilProvider(SensorProvider):
    """Local provider built on psutil for hosts without LibreHardwareMonitor.

    Sensor names follow LHM conventions (``CPU Core #1``, ``CPU Total``) so
    the same classification rules apply to both providers.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._tree: list[RawHardware] = []

    def open(self) -> None:
        # Prime the cpu_percent counters so the first refresh is meaningful.
        psutil.cpu_percent(interval=None, percpu=True)

    def refresh(self) -> None:
        temps = self._temperatures()
        tree = [self._cpu(temps), self._memory()]
        tree.extend(self._gpus(temps))
        tree.extend(self._storage(temps))
        motherboard = self._motherboard(temps)
        if motherboard is not None:
            tree.append(motherboard)
        self._tree = tree

    def hardware(self) -> list[RawHardware]:
        return list(self._tree)

    def _temperatures(self) -> dict[str, list[Any]]:
        if not hasattr(psutil, "sensors_temperatures"):
            return {}
        try:
            return psutil.sensors_temperatures(fahrenheit=False) or {}
        except (OSError, RuntimeError):
            self.logger.debug("Failed to read temperature sensors.")
            return {}

    def _cpu(self, temps: dict[str, list[Any]]) -> RawHardware:
        cpu = RawHardware(
            name=platform.processor() or "CPU",
            kind="Cpu",
            identifier="/cpu/0",
        )
        per_cpu = psutil.cpu_percent(interval=None, percpu=True)
        cpu.sensors.append(
            RawSensor(
                name="CPU Total",
                kind="Load",
                value=float(sum(per_cpu) / len(per_cpu)) if per_cpu else None,
                identifier="/cpu/0/load/0",
            )
        )
        cores = psutil.cpu_count(logical=False) or len(per_cpu) or 1
        for index, load in enumerate(per_cpu):
            cpu.sensors.append(
                RawSensor(
                    name=_logical_cpu_name(index, len(per_cpu), cores),
                    kind="Load",
                    value=float(load),
                    identifier=f"/cpu/0/load/{index + 1}",
                )
            )
        try:
            frequencies = psutil.cpu_freq(percpu=True) or []
        except (OSError, NotImplementedError):
            frequencies = []
        for index, freq in enumerate(frequencies):
            if freq and freq.current:
                cpu.sensors.append(
                    RawSensor(
                        name=_logical_cpu_name(index, len(frequencies), cores),
                        kind="Clock",
                        value=float(freq.current),
                        identifier=f"/cpu/0/clock/{index + 1}",
                        min=float(freq.min) if freq.min else None,
                        max=float(freq.max) if freq.max else None,
                    )
                )
        for chip in _CPU_TEMP_CHIPS:
            for position, entry in enumerate(temps.get(chip, [])):
                cpu.sensors.append(self._cpu_temperature(entry, position))
        return cpu

    @staticmethod
    def _cpu_temperature(entry: Any, position: int) -> RawSensor:
        label = entry.label or ""
        match = _CORE_LABEL_RE.search(label)
        if match:
            name = f"CPU Core #{int(match.group(1)) + 1}"
        elif label.lower().startswith(("package", "tctl", "tdie")) or not label:
            name = "CPU Package"
        else:
            name = label
        return RawSensor(
            name=name,
            kind="Temperature",
            value=float(entry.current) if entry.current is not None else None,
            identifier=f"/cpu/0/temperature/{position}",
            max=float(entry.high) if entry.high else None,
        )

    def _memory(self) -> RawHardware:
        vm = psutil.virtual_memory()
        gib = 1024.0**3
        return RawHardware(
            name="Generic Memory",
            kind="Memory",
            identifier="/ram",
            sensors=[
                RawSensor("Memory", "Load", float(vm.percent), "/ram/load/0"),
                RawSensor("Memory Used", "Data", vm.used / gib, "/ram/data/0"),
                RawSensor("Memory Available", "Data", vm.available / gib, "/ram/data/1"),
                RawSensor("Memory Total", "Data", vm.total / gib, "/ram/data/2"),
            ],
        )

    def _gpus(self, temps: dict[str, list[Any]]) -> list[RawHardware]:
        gpus: list[RawHardware] = []
        for chip in _GPU_TEMP_CHIPS:
            entries = temps.get(chip)
            if not entries:
                continue
            kind = "GpuAmd" if chip in {"amdgpu", "radeon"} else "GpuNvidia"
            identifier = f"/gpu-{chip}/{len(gpus)}"
            gpu = RawHardware(name=chip, kind=kind, identifier=identifier)
            for position, entry in enumerate(entries):
                label = entry.label or "GPU Core"
                if label.lower() == "edge":
                    label = "GPU Core"
                gpu.sensors.append(
                    RawSensor(
                        name=label,
                        kind="Temperature",
                        value=float(entry.current) if entry.current is not None else None,
                        identifier=f"{identifier}/temperature/{position}",
                    )
                )
            gpus.append(gpu)
        return gpus

    def _storage(self, temps: dict[str, list[Any]]) -> list[RawHardware]:
        drives: list[RawHardware] = []
        for chip in _STORAGE_TEMP_CHIPS:
            for index, entry in enumerate(temps.get(chip, [])):
                identifier = f"/{chip}/{index}"
                drives.append(
                    RawHardware(
                        name=f"{chip} {index}",
                        kind="Storage",
                        identifier=identifier,
                        sensors=[
                            RawSensor(
                                name=entry.label or "Temperature",
                                kind="Temperature",
                                value=float(entry.current) if entry.current is not None else None,
                                identifier=f"{identifier}/temperature/0",
                            )
                        ],
                    )
                )
        return drives

    def _motherboard(self, temps: dict[str, list[Any]]) -> RawHardware | None:
        claimed = set(_CPU_TEMP_CHIPS) | set(_GPU_TEMP_CHIPS) | set(_STORAGE_TEMP_CHIPS)
        board = RawHardware(name="Motherboard", kind="Motherboard", identifier="/motherboard")
        for chip, entries in temps.items():
            if chip in claimed:
                continue
            for position, entry in enumerate(entries):
                if entry.current is None:
                    continue
                board.sensors.append(
                    RawSensor(
                        name=entry.label or chip,
                        kind="Temperature",
                        value=float(entry.current),
                        identifier=f"/motherboard/temperature/{_slug(chip)}/{position}",
                    )
                )
        fans: dict[str, list[Any]] = {}
        if hasattr(psutil, "sensors_fans"):
            try:
                fans = psutil.sensors_fans() or {}
            except (OSError, RuntimeError):
                self.logger.debug("Failed to read fan sensors.")
        for chip, entries in fans.items():
            identifier = f"/lpc/{_slug(chip)}"
            superio = RawHardware(name=chip, kind="SuperIO", identifier=identifier)
            for position, entry in enumerate(entries, start=1):
                superio.sensors.append(
                    RawSensor(
                        name=entry.label or f"Fan #{position}",
                        kind="Fan",
                        value=float(entry.current),
                        identifier=f"{identifier}/fan/{position}",
                    )
                )
            board.sub_hardware.append(superio)
        if not board.sensors and not board.sub_hardware:
            return None
        return board


def create_provider(backend: str, url: str | None = None, timeout_s: float = 2) -> SensorProvider:
    if backend == "lhm":
        if not url:
            raise ValueError("The lhm backend requires librehardwaremonitor_url.")
        return LhmHttpProvider(url, timeout_s=timeout_s)
    if backend == "psutil":
        return PsutilProvider()
    raise ValueError(f"Unknown provider backend: {backend}")
