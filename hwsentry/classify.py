from __future__ import annotations

from dataclasses import dataclass
import re

from hwsentry.models import HardwareKind, SensorKind

# LibreHardwareMonitor sensor type names, lowercased.
SENSOR_KINDS: dict[str, SensorKind] = {
    "temperature": SensorKind.TEMPERATURE,
    "load": SensorKind.USAGE,
    "clock": SensorKind.FREQUENCY,
    "frequency": SensorKind.FREQUENCY,
    "voltage": SensorKind.VOLTAGE,
    "current": SensorKind.CURRENT,
    "power": SensorKind.POWER,
    "fan": SensorKind.FAN,
    "flow": SensorKind.FLOW,
    "control": SensorKind.CONTROL,
    "level": SensorKind.LEVEL,
    "factor": SensorKind.FACTOR,
    "data": SensorKind.DATA,
    "smalldata": SensorKind.SMALL_DATA,
    "throughput": SensorKind.THROUGHPUT,
}

HARDWARE_KINDS: dict[str, HardwareKind] = {
    "cpu": HardwareKind.CPU,
    "gpunvidia": HardwareKind.GPU,
    "gpuamd": HardwareKind.GPU,
    "gpuintel": HardwareKind.GPU,
    "memory": HardwareKind.MEMORY,
    "motherboard": HardwareKind.MOTHERBOARD,
    "storage": HardwareKind.STORAGE,
    "network": HardwareKind.NETWORK,
}

# Devices whose fan sensors become FanEntity instances.
FAN_CONTROLLER_KINDS = frozenset({"motherboard", "superio", "embeddedcontroller", "cooler"})

CORE_INDEX_RE = re.compile(r"core\s*#\s*(\d+)", re.IGNORECASE)
FAN_INDEX_RE = re.compile(r"#\s*(\d+)")


def sensor_kind(raw_kind: str) -> SensorKind | None:
    return SENSOR_KINDS.get(raw_kind.replace(" ", "").lower())


def hardware_kind(raw_kind: str) -> HardwareKind | None:
    return HARDWARE_KINDS.get(raw_kind.replace(" ", "").lower())


def core_index(name: str) -> int | None:
    match = CORE_INDEX_RE.search(name)
    return int(match.group(1)) if match else None


@dataclass(frozen=True)
class SensorRule:
    """Maps a raw sensor to a canonical entity field.

    A rule matches when the raw sensor type equals ``raw_kind`` and the sensor
    name contains any of ``patterns``. Earlier patterns rank higher, so the
    most specific name wins when several sensors match the same field.
    """

    raw_kind: str
    patterns: tuple[str, ...]
    field: str
    canonical_name: str
    kind: SensorKind

    def rank(self, raw_kind: str, name: str) -> int | None:
        if raw_kind.lower() != self.raw_kind:
            return None
        for position, pattern in enumerate(self.patterns):
            if pattern.lower() in name.lower():
                return position
        return None


GPU_RULES: tuple[SensorRule, ...] = (
    SensorRule("load", ("GPU Core", "GPU", "Core"), "usage", "GPU Usage", SensorKind.USAGE),
    SensorRule(
        "temperature",
        ("GPU Core", "GPU", "Core"),
        "temperature",
        "GPU Temperature",
        SensorKind.TEMPERATURE,
    ),
    SensorRule(
        "clock",
        ("GPU Core", "Core", "Graphics"),
        "core_clock",
        "GPU Core Clock",
        SensorKind.FREQUENCY,
    ),
    SensorRule(
        "clock",
        ("GPU Memory", "Memory", "VRAM"),
        "memory_clock",
        "GPU Memory Clock",
        SensorKind.FREQUENCY,
    ),
    SensorRule("power", ("GPU", "Power", "Total"), "power", "GPU Power", SensorKind.POWER),
    SensorRule("fan", ("GPU", "Fan"), "fan", "GPU Fan", SensorKind.FAN),
    SensorRule(
        "smalldata", ("GPU Memory Used",), "memory_used", "GPU Memory Used", SensorKind.SMALL_DATA
    ),
    SensorRule(
        "smalldata",
        ("GPU Memory Total",),
        "memory_total",
        "GPU Memory Total",
        SensorKind.SMALL_DATA,
    ),
)


def classify(
    raw_kind: str, name: str, rules: tuple[SensorRule, ...] = GPU_RULES
) -> tuple[SensorRule, int] | None:
    """Return the first rule matching the sensor and its pattern rank."""
    for rule in rules:
        rank = rule.rank(raw_kind, name)
        if rank is not None:
            return rule, rank
    return None
