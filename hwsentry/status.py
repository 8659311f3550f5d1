from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading

from hwsentry.models import HardwareEntity, HardwareKind, SystemSnapshot, utcnow


class StatusLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class Metric(str, Enum):
    TEMPERATURE = "temperature"
    USAGE = "usage"

    @property
    def debounce(self) -> float:
        return _DEBOUNCE[self]

    @property
    def unit(self) -> str:
        return "°C" if self is Metric.TEMPERATURE else "%"

    def value_of(self, entity: HardwareEntity) -> float | None:
        return entity.temperature if self is Metric.TEMPERATURE else entity.usage


# Changes smaller than this are treated as sensor noise.
_DEBOUNCE = {Metric.TEMPERATURE: 1.0, Metric.USAGE: 5.0}


@dataclass(frozen=True)
class ThresholdPair:
    warning: float
    critical: float

    def level(self, value: float) -> StatusLevel:
        if value >= self.critical:
            return StatusLevel.CRITICAL
        if value >= self.warning:
            return StatusLevel.WARNING
        return StatusLevel.NORMAL


DEFAULT_TEMPERATURE_THRESHOLDS: dict[HardwareKind, ThresholdPair] = {
    HardwareKind.CPU: ThresholdPair(70.0, 85.0),
    HardwareKind.GPU: ThresholdPair(75.0, 90.0),
    HardwareKind.STORAGE: ThresholdPair(50.0, 65.0),
    HardwareKind.MOTHERBOARD: ThresholdPair(60.0, 75.0),
}
DEFAULT_USAGE_THRESHOLDS: dict[HardwareKind, ThresholdPair] = {
    HardwareKind.MEMORY: ThresholdPair(80.0, 90.0),
}
FALLBACK_TEMPERATURE = ThresholdPair(75.0, 85.0)
FALLBACK_USAGE = ThresholdPair(80.0, 95.0)


def default_pair(metric: Metric, kind: HardwareKind) -> ThresholdPair:
    if metric is Metric.TEMPERATURE:
        return DEFAULT_TEMPERATURE_THRESHOLDS.get(kind, FALLBACK_TEMPERATURE)
    return DEFAULT_USAGE_THRESHOLDS.get(kind, FALLBACK_USAGE)


@dataclass(frozen=True)
class Thresholds:
    temperature: dict[HardwareKind, ThresholdPair] = field(
        default_factory=lambda: dict(DEFAULT_TEMPERATURE_THRESHOLDS)
    )
    usage: dict[HardwareKind, ThresholdPair] = field(
        default_factory=lambda: dict(DEFAULT_USAGE_THRESHOLDS)
    )

    def pair(self, metric: Metric, kind: HardwareKind) -> ThresholdPair:
        table = self.temperature if metric is Metric.TEMPERATURE else self.usage
        return table.get(kind) or default_pair(metric, kind)


@dataclass(frozen=True)
class StatusEvent:
    entity_identifier: str
    entity_name: str
    hardware_kind: HardwareKind
    metric: Metric
    from_state: StatusLevel
    to_state: StatusLevel
    value: float
    description: str
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, object]:
        return {
            "identifier": self.entity_identifier,
            "name": self.entity_name,
            "kind": self.hardware_kind.value,
            "metric": self.metric.value,
            "from": self.from_state.value,
            "to": self.to_state.value,
            "value": self.value,
            "description": self.description,
            "ts": self.occurred_at.isoformat(),
        }


def transition(
    old: float, new: float, pair: ThresholdPair
) -> tuple[StatusLevel, StatusLevel] | None:
    """Return ``(from, to)`` when moving from ``old`` to ``new`` crosses a boundary.

    Critical is checked first. Leaving critical for the warning band reports
    Warning; dropping below the warning threshold reports Normal.
    """
    if new >= pair.critical > old:
        return pair.level(old), StatusLevel.CRITICAL
    if new >= pair.warning > old:
        return StatusLevel.NORMAL, StatusLevel.WARNING
    if new < pair.warning <= old:
        return pair.level(old), StatusLevel.NORMAL
    if pair.warning <= new < pair.critical <= old:
        return StatusLevel.CRITICAL, StatusLevel.WARNING
    return None


def _describe(
    entity: HardwareEntity,
    metric: Metric,
    from_state: StatusLevel,
    to_state: StatusLevel,
    value: float,
) -> str:
    reading = f"{value:.1f}{metric.unit}"
    if to_state is StatusLevel.CRITICAL:
        return f"{entity.name} {metric.value} reached critical level: {reading}"
    if to_state is StatusLevel.WARNING and from_state is StatusLevel.CRITICAL:
        return f"{entity.name} {metric.value} dropped below critical: {reading}"
    if to_state is StatusLevel.WARNING:
        return f"{entity.name} {metric.value} is high: {reading}"
    return f"{entity.name} {metric.value} returned to normal: {reading}"


def _evaluate(
    entity: HardwareEntity,
    metric: Metric,
    old: float,
    new: float,
    thresholds: Thresholds,
    now: datetime,
) -> StatusEvent | None:
    if abs(new - old) < metric.debounce:
        return None
    states = transition(old, new, thresholds.pair(metric, entity.kind))
    if states is None:
        return None
    from_state, to_state = states
    return StatusEvent(
        entity_identifier=entity.identifier,
        entity_name=entity.name,
        hardware_kind=entity.kind,
        metric=metric,
        from_state=from_state,
        to_state=to_state,
        value=new,
        description=_describe(entity, metric, from_state, to_state, new),
        occurred_at=now,
    )


def diff(
    previous: HardwareEntity | None,
    current: HardwareEntity,
    thresholds: Thresholds,
    now: datetime | None = None,
) -> list[StatusEvent]:
    """Compare two observations of the same entity. Pure in its inputs."""
    if previous is None:
        return []
    now = now or current.last_updated
    events: list[StatusEvent] = []
    for metric in Metric:
        old = metric.value_of(previous)
        new = metric.value_of(current)
        if old is None or new is None:
            continue
        event = _evaluate(current, metric, old, new, thresholds, now)
        if event is not None:
            events.append(event)
    return events


def diff_snapshots(
    previous: SystemSnapshot | None, current: SystemSnapshot, thresholds: Thresholds
) -> list[StatusEvent]:
    if previous is None:
        return []
    events: list[StatusEvent] = []
    for entity in current.entities():
        events.extend(diff(previous.find(entity.identifier), entity, thresholds))
    return events


class StatusTracker:
    """Edge-triggered detector with a debounced reference per entity metric.

    The reference only moves when a change clears the debounce, so a slow
    drift across a threshold still produces exactly one event.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._references: dict[tuple[str, Metric], float] = {}

    def observe(self, snapshot: SystemSnapshot, thresholds: Thresholds) -> list[StatusEvent]:
        events: list[StatusEvent] = []
        with self._lock:
            present: set[str] = set()
            for entity in snapshot.entities():
                present.add(entity.identifier)
                for metric in Metric:
                    value = metric.value_of(entity)
                    if value is None:
                        continue
                    key = (entity.identifier, metric)
                    reference = self._references.get(key)
                    if reference is None:
                        self._references[key] = value
                        continue
                    if abs(value - reference) < metric.debounce:
                        continue
                    self._references[key] = value
                    event = _evaluate(
                        entity, metric, reference, value, thresholds, snapshot.captured_at
                    )
                    if event is not None:
                        self.logger.info(event.description)
                        events.append(event)
            for key in [key for key in self._references if key[0] not in present]:
                del self._references[key]
        return events

    def reset(self) -> None:
        with self._lock:
            self._references.clear()
