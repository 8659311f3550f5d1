"""hwsentry hardware telemetry monitor."""

from hwsentry.builder import SnapshotBuilder
from hwsentry.config import AppConfig, load_config
from hwsentry.events import MonitorEvents, SnapshotUpdated, StatusChanged
from hwsentry.models import SystemSnapshot
from hwsentry.network import NetworkThroughputTracker
from hwsentry.poller import HardwareMonitor, MonitorState
from hwsentry.provider import LhmHttpProvider, PsutilProvider, ProviderError, create_provider
from hwsentry.status import StatusEvent, StatusTracker, Thresholds, diff

__all__ = [
    "AppConfig",
    "HardwareMonitor",
    "LhmHttpProvider",
    "MonitorEvents",
    "MonitorState",
    "NetworkThroughputTracker",
    "ProviderError",
    "PsutilProvider",
    "SnapshotBuilder",
    "SnapshotUpdated",
    "StatusChanged",
    "StatusEvent",
    "StatusTracker",
    "SystemSnapshot",
    "Thresholds",
    "create_provider",
    "diff",
    "load_config",
]
