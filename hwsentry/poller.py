from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum
import logging
import threading
import time
from typing import Callable

from hwsentry.builder import SnapshotBuilder
from hwsentry.config import AppConfig, ConfigSource, StaticConfigSource
from hwsentry.events import MonitorEvents, SnapshotUpdated, StatusChanged
from hwsentry.models import SystemSnapshot
from hwsentry.network import AdapterDiscovery, NetworkThroughputTracker
from hwsentry.provider import SensorProvider
from hwsentry.status import StatusTracker


class MonitorState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class PollerStats:
    ticks: int = 0
    cycles: int = 0
    skipped: int = 0
    failures: int = 0


class HardwareMonitor:
    """Drives one sampling cycle per tick on a dedicated worker thread.

    Ticks follow a fixed-rate schedule. A tick that comes due while a cycle
    is still running is counted as skipped and dropped. Stopping never
    interrupts a cycle already in progress.
    """

    def __init__(
        self,
        provider: SensorProvider,
        config_source: ConfigSource | StaticConfigSource | None = None,
        *,
        builder: SnapshotBuilder | None = None,
        tracker: NetworkThroughputTracker | None = None,
        status_tracker: StatusTracker | None = None,
        discovery: AdapterDiscovery | None = None,
        events: MonitorEvents | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.config_source = config_source or StaticConfigSource()
        config = self.config_source.current()
        self.builder = builder or SnapshotBuilder(
            network_from_provider=not config.monitor.network_tracking
        )
        self.tracker = tracker or NetworkThroughputTracker(config.monitor.link_speed_mbps)
        self.status_tracker = status_tracker or StatusTracker()
        self.discovery = discovery or AdapterDiscovery()
        self.events = events or MonitorEvents()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._clock = clock

        self._state = MonitorState.STOPPED
        self._state_lock = threading.Lock()
        self._provider_lock = threading.Lock()
        self._flag_lock = threading.Lock()
        self._in_cycle = False
        self._provider_open = False
        self._stats = PollerStats()
        self._latest: SystemSnapshot | None = None

        self._interval_s = config.monitor.interval_ms / 1000
        self._config_interval_ms = config.monitor.interval_ms
        self._rearm = False
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def stats(self) -> PollerStats:
        with self._flag_lock:
            return self._stats

    @property
    def interval(self) -> float:
        return self._interval_s

    def get_latest_snapshot(self) -> SystemSnapshot | None:
        return self._latest

    def start_monitoring(self) -> None:
        with self._state_lock:
            if self._state is MonitorState.RUNNING:
                self.logger.info("Monitoring already running; start ignored.")
                return
            self._ensure_open()
            self._stop_event = threading.Event()
            self._wake = threading.Event()
            self._worker = threading.Thread(
                target=self._run,
                args=(self._stop_event, self._wake),
                name="hwsentry-poller",
                daemon=True,
            )
            self._state = MonitorState.RUNNING
            self._worker.start()
        self.logger.info("Monitoring started. Interval %.0f ms.", self._interval_s * 1000)

    def stop_monitoring(self, wait: bool = True, timeout: float | None = None) -> None:
        with self._state_lock:
            if self._state is MonitorState.STOPPED:
                self.logger.debug("Monitoring not running; stop ignored.")
                return
            self._state = MonitorState.STOPPED
            self._stop_event.set()
            self._wake.set()
            worker = self._worker
            self._worker = None
        if wait and worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
        self.logger.info("Monitoring stopped.")

    def set_interval(self, interval: float | timedelta) -> None:
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ValueError("Interval must be positive.")
        with self._state_lock:
            self._interval_s = seconds
            self._rearm = True
            self._wake.set()
        self.logger.info("Monitoring interval set to %.0f ms.", seconds * 1000)

    def poll_once(self) -> bool:
        """Run one cycle on the calling thread. False if a cycle is in progress."""
        self._ensure_open()
        return self._run_cycle()

    def close(self) -> None:
        self.stop_monitoring()
        with self._provider_lock:
            if self._provider_open:
                self.provider.close()
                self._provider_open = False

    def __enter__(self) -> HardwareMonitor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._provider_open:
            return
        with self._provider_lock:
            if self._provider_open:
                return
            try:
                self.provider.open()
            except Exception:
                self.logger.warning("Failed to open sensor provider.", exc_info=True)
                return
            self._provider_open = True

    def _run(self, stop_event: threading.Event, wake: threading.Event) -> None:
        next_due = self._clock()
        while not stop_event.is_set():
            delay = next_due - self._clock()
            if delay > 0:
                wake.wait(delay)
            if wake.is_set():
                wake.clear()
                if stop_event.is_set():
                    break
                with self._state_lock:
                    rearm, self._rearm = self._rearm, False
                if rearm:
                    next_due = self._clock()
                continue
            if delay > 0:
                continue

            try:
                ran = self._run_cycle()
            except Exception:
                self._bump(failures=1)
                self.logger.exception("Polling cycle failed; continuing with the next tick.")
                ran = True
            self._bump(ticks=1, skipped=0 if ran else 1)

            interval = self._interval_s
            next_due += interval
            now = self._clock()
            if next_due <= now:
                missed = int((now - next_due) // interval) + 1
                next_due += missed * interval
                self._bump(ticks=missed, skipped=missed)
                self.logger.debug("Cycle overran the interval; skipped %s tick(s).", missed)

    def _bump(self, **deltas: int) -> None:
        with self._flag_lock:
            self._stats = replace(
                self._stats,
                **{name: getattr(self._stats, name) + value for name, value in deltas.items()},
            )

    def _run_cycle(self) -> bool:
        with self._flag_lock:
            if self._in_cycle:
                return False
            self._in_cycle = True
        try:
            self._cycle()
        finally:
            with self._flag_lock:
                self._in_cycle = False
        return True

    def _cycle(self) -> None:
        started = self._clock()
        config = self.config_source.current()
        self._apply_config(config)
        self._bump(cycles=1)

        try:
            with self._provider_lock:
                self.provider.refresh()
                snapshot = self.builder.build(self.provider.hardware())
        except Exception as exc:
            self._bump(failures=1)
            self.logger.warning("Sensor refresh failed; keeping previous snapshot: %s", exc)
            self.logger.debug("Refresh failure details.", exc_info=True)
            return

        if config.monitor.network_tracking:
            try:
                adapters = self.discovery.discover()
            except Exception:
                self.logger.warning("Failed to enumerate network adapters.", exc_info=True)
                adapters = []
            network = self.tracker.compute_speeds(adapters, now=snapshot.captured_at)
            snapshot = replace(snapshot, network=tuple(network))

        events = self.status_tracker.observe(snapshot, config.thresholds)
        self._latest = snapshot
        self.events.snapshot_updated.publish(SnapshotUpdated(snapshot))
        for event in events:
            self.events.status_changed.publish(StatusChanged(event))
        self.logger.debug(
            "Cycle completed in %.1f ms with %s status event(s).",
            (self._clock() - started) * 1000,
            len(events),
        )

    def _apply_config(self, config: AppConfig) -> None:
        self.builder.network_from_provider = not config.monitor.network_tracking
        self.tracker.link_speed_mbps = config.monitor.link_speed_mbps
        if config.monitor.interval_ms != self._config_interval_ms:
            self._config_interval_ms = config.monitor.interval_ms
            self.set_interval(config.monitor.interval_ms / 1000)
