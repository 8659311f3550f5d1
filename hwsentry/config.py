from __future__ import annotations

from dataclasses import dataclass, field
import configparser
import logging
import os
from pathlib import Path
import threading

from hwsentry.models import HardwareKind
from hwsentry.status import Metric, ThresholdPair, Thresholds, default_pair

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 1000
MIN_INTERVAL_MS = 500
MAX_INTERVAL_MS = 60000

# (warning range, critical range) accepted per metric.
THRESHOLD_RANGES: dict[Metric, tuple[tuple[float, float], tuple[float, float]]] = {
    Metric.TEMPERATURE: ((40.0, 100.0), (50.0, 110.0)),
    Metric.USAGE: ((50.0, 95.0), (70.0, 99.0)),
}


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    base_topic: str
    discovery_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    retain: bool
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int = 60


@dataclass(frozen=True)
class MonitorConfig:
    interval_ms: int = DEFAULT_INTERVAL_MS
    network_tracking: bool = True
    link_speed_mbps: int = 1000


@dataclass(frozen=True)
class ProviderConfig:
    backend: str = "psutil"
    librehardwaremonitor_url: str | None = None
    timeout_s: float = 2.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    file: str | None = None
    keep_files: int = 7


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    thresholds: Thresholds = field(default_factory=Thresholds)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    mqtt: MqttConfig | None = None


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_int(parser: configparser.ConfigParser, section: str, option: str, default: int) -> int:
    try:
        return parser.getint(section, option, fallback=default)
    except ValueError:
        logger.warning("[%s] %s is not an integer; using %s.", section, option, default)
        return default


def _get_float(
    parser: configparser.ConfigParser, section: str, option: str, default: float
) -> float:
    try:
        return parser.getfloat(section, option, fallback=default)
    except ValueError:
        logger.warning("[%s] %s is not a number; using %s.", section, option, default)
        return default


def _get_bool(parser: configparser.ConfigParser, section: str, option: str, default: bool) -> bool:
    try:
        return parser.getboolean(section, option, fallback=default)
    except ValueError:
        logger.warning("[%s] %s is not a boolean; using %s.", section, option, default)
        return default


def validate_interval(interval_ms: int) -> int:
    if MIN_INTERVAL_MS <= interval_ms <= MAX_INTERVAL_MS:
        return interval_ms
    logger.warning(
        "interval_ms=%s outside %s..%s; using %s.",
        interval_ms,
        MIN_INTERVAL_MS,
        MAX_INTERVAL_MS,
        DEFAULT_INTERVAL_MS,
    )
    return DEFAULT_INTERVAL_MS


def validate_pair(metric: Metric, kind: HardwareKind, pair: ThresholdPair) -> ThresholdPair:
    (warn_low, warn_high), (crit_low, crit_high) = THRESHOLD_RANGES[metric]
    if (
        warn_low <= pair.warning <= warn_high
        and crit_low <= pair.critical <= crit_high
        and pair.warning < pair.critical
    ):
        return pair
    fallback = default_pair(metric, kind)
    logger.warning(
        "Invalid %s %s thresholds %s/%s; using %s/%s.",
        kind.value,
        metric.value,
        pair.warning,
        pair.critical,
        fallback.warning,
        fallback.critical,
    )
    return fallback


def _load_monitor(parser: configparser.ConfigParser) -> MonitorConfig:
    try:
        interval_ms = parser.getint("monitor", "interval_ms", fallback=DEFAULT_INTERVAL_MS)
    except ValueError:
        logger.warning("interval_ms is not an integer; using %s.", DEFAULT_INTERVAL_MS)
        interval_ms = DEFAULT_INTERVAL_MS
    try:
        network_tracking = parser.getboolean("monitor", "network_tracking", fallback=True)
    except ValueError:
        logger.warning("network_tracking is not a boolean; using true.")
        network_tracking = True
    try:
        link_speed_mbps = parser.getint("monitor", "link_speed_mbps", fallback=1000)
    except ValueError:
        link_speed_mbps = 0
    if link_speed_mbps <= 0:
        logger.warning("link_speed_mbps must be a positive integer; using 1000.")
        link_speed_mbps = 1000
    return MonitorConfig(
        interval_ms=validate_interval(interval_ms),
        network_tracking=network_tracking,
        link_speed_mbps=link_speed_mbps,
    )


def _load_thresholds(parser: configparser.ConfigParser) -> Thresholds:
    tables: dict[Metric, dict[HardwareKind, ThresholdPair]] = {metric: {} for metric in Metric}
    for metric in Metric:
        for kind in HardwareKind:
            default = default_pair(metric, kind)
            prefix = f"{kind.value}_{metric.value}"
            try:
                pair = ThresholdPair(
                    warning=parser.getfloat(
                        "thresholds", f"{prefix}_warning", fallback=default.warning
                    ),
                    critical=parser.getfloat(
                        "thresholds", f"{prefix}_critical", fallback=default.critical
                    ),
                )
            except ValueError:
                logger.warning("Non-numeric %s thresholds; using defaults.", prefix)
                pair = default
            tables[metric][kind] = validate_pair(metric, kind, pair)
    return Thresholds(temperature=tables[Metric.TEMPERATURE], usage=tables[Metric.USAGE])


def _load_mqtt(parser: configparser.ConfigParser) -> MqttConfig | None:
    if not parser.has_section("mqtt"):
        return None
    mqtt_section = parser["mqtt"]
    return MqttConfig(
        host=mqtt_section.get("host", "localhost"),
        port=_get_int(parser, "mqtt", "port", 1883),
        base_topic=mqtt_section.get("base_topic", "hwsentry/hwmon"),
        discovery_topic=mqtt_section.get("discovery_topic", "homeassistant"),
        client_id=mqtt_section.get("client_id", "hwsentry"),
        username=_get_optional(mqtt_section.get("username")),
        password=_get_optional(mqtt_section.get("password")),
        qos=_get_int(parser, "mqtt", "qos", 0),
        retain=_get_bool(parser, "mqtt", "retain", False),
        tls_enabled=_get_bool(parser, "mqtt", "tls", False),
        ca_cert=_get_optional(mqtt_section.get("ca_cert")),
        keepalive=_get_int(parser, "mqtt", "keepalive", 60),
    )


def parse_config(parser: configparser.ConfigParser) -> AppConfig:
    backend = parser.get("provider", "backend", fallback="psutil").strip().lower()
    if backend not in ("psutil", "lhm"):
        logger.warning("Unknown provider backend %r; using psutil.", backend)
        backend = "psutil"
    provider = ProviderConfig(
        backend=backend,
        librehardwaremonitor_url=_get_optional(
            parser.get("provider", "librehardwaremonitor_url", fallback=None)
        ),
        timeout_s=_get_float(parser, "provider", "timeout_s", 2.0),
    )
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        file=_get_optional(parser.get("logging", "file", fallback=None)),
        keep_files=_get_int(parser, "logging", "keep_files", 7),
    )
    return AppConfig(
        monitor=_load_monitor(parser),
        provider=provider,
        thresholds=_load_thresholds(parser),
        logging=logging_config,
        mqtt=_load_mqtt(parser),
    )


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")
    return parse_config(parser)


class ConfigSource:
    """Serves the current configuration, re-reading the file when it changes.

    A file that disappears or fails to parse leaves the last good
    configuration in place.
    """

    def __init__(self, path: str | Path, initial: AppConfig | None = None) -> None:
        self.path = Path(path)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._mtime: float | None = None
        self._config = initial if initial is not None else load_config(self.path)
        self._mtime = self._stat()

    def current(self) -> AppConfig:
        with self._lock:
            mtime = self._stat()
            if mtime is not None and mtime != self._mtime:
                try:
                    self._config = load_config(self.path)
                except (FileNotFoundError, configparser.Error, ValueError) as exc:
                    self.logger.warning("Keeping previous configuration: %s", exc)
                else:
                    self.logger.info("Reloaded configuration from %s.", self.path)
                self._mtime = mtime
            return self._config

    def _stat(self) -> float | None:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None


class StaticConfigSource:
    def __init__(self, config: AppConfig | None = None) -> None:
        self.config = config or AppConfig()

    def current(self) -> AppConfig:
        return self.config
