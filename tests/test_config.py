"""Tests for configuration loading, validation and reloading."""
from __future__ import annotations

import os
from pathlib import Path
import textwrap

import pytest

from hwsentry.config import (
    DEFAULT_INTERVAL_MS,
    AppConfig,
    ConfigSource,
    StaticConfigSource,
    load_config,
    validate_interval,
)
from hwsentry.models import HardwareKind
from hwsentry.status import Metric, ThresholdPair

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "example.cfg"


@pytest.fixture
def write_config(tmp_path):
    path = tmp_path / "hwsentry.cfg"

    def _write(text: str) -> Path:
        path.write_text(textwrap.dedent(text))
        return path

    return _write


class TestLoadConfig:
    """Test parsing of the CFG file."""

    def test_example_config(self):
        config = load_config(EXAMPLE_CONFIG)

        assert config.monitor.interval_ms == 1000
        assert config.monitor.network_tracking is True
        assert config.provider.backend == "psutil"
        assert config.provider.librehardwaremonitor_url == "http://localhost:8085/data.json"
        assert config.logging.file is None
        assert config.mqtt.base_topic == "hwsentry/hwmon"
        assert config.mqtt.username is None
        assert config.mqtt.keepalive == 60

    def test_empty_file_uses_defaults(self, write_config):
        config = load_config(write_config("[monitor]\n"))

        assert config.monitor.interval_ms == DEFAULT_INTERVAL_MS
        assert config.monitor.link_speed_mbps == 1000
        assert config.provider.timeout_s == 2.0
        assert config.mqtt is None
        assert config.thresholds.pair(Metric.TEMPERATURE, HardwareKind.CPU) == ThresholdPair(70, 85)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.cfg")

    def test_lhm_backend(self, write_config):
        config = load_config(
            write_config(
                """
                [provider]
                backend = LHM
                librehardwaremonitor_url = http://10.0.0.5:8085/data.json
                timeout_s = 5
                """
            )
        )

        assert config.provider.backend == "lhm"
        assert config.provider.timeout_s == 5.0

    def test_unknown_backend_falls_back(self, write_config, caplog):
        config = load_config(write_config("[provider]\nbackend = wmi\n"))

        assert config.provider.backend == "psutil"
        assert "wmi" in caplog.text

    def test_mqtt_section(self, write_config):
        config = load_config(
            write_config(
                """
                [mqtt]
                host = broker.local
                port = 8883
                username = sensor
                password = secret
                qos = 1
                retain = true
                tls = true
                ca_cert = /etc/ssl/ca.pem
                """
            )
        )

        mqtt = config.mqtt
        assert (mqtt.host, mqtt.port) == ("broker.local", 8883)
        assert mqtt.client_id == "hwsentry"
        assert mqtt.discovery_topic == "homeassistant"
        assert (mqtt.username, mqtt.password) == ("sensor", "secret")
        assert mqtt.qos == 1
        assert mqtt.retain is True
        assert mqtt.tls_enabled is True
        assert mqtt.ca_cert == "/etc/ssl/ca.pem"

    def test_logging_section(self, write_config):
        config = load_config(
            write_config(
                """
                [logging]
                level = DEBUG
                file = /var/log/hwsentry.log
                keep_files = 3
                """
            )
        )

        assert config.logging.level == "DEBUG"
        assert config.logging.file == "/var/log/hwsentry.log"
        assert config.logging.keep_files == 3


class TestValidation:
    """Test that invalid values fall back to defaults."""

    @pytest.mark.parametrize("interval", [500, 1000, 60000])
    def test_interval_in_range(self, interval):
        assert validate_interval(interval) == interval

    @pytest.mark.parametrize("interval", [0, 499, 60001, -5])
    def test_interval_out_of_range(self, interval):
        assert validate_interval(interval) == DEFAULT_INTERVAL_MS

    def test_invalid_monitor_values(self, write_config, caplog):
        config = load_config(
            write_config(
                """
                [monitor]
                interval_ms = fast
                network_tracking = maybe
                link_speed_mbps = -10
                """
            )
        )

        assert config.monitor.interval_ms == DEFAULT_INTERVAL_MS
        assert config.monitor.network_tracking is True
        assert config.monitor.link_speed_mbps == 1000
        assert len(caplog.records) >= 3

    def test_malformed_numbers_use_defaults(self, write_config, caplog):
        config = load_config(
            write_config(
                """
                [provider]
                timeout_s = soon

                [logging]
                keep_files = lots

                [mqtt]
                host = broker.local
                port = eighteen
                qos = high
                keepalive = 1m
                retain = perhaps
                """
            )
        )

        assert config.provider.timeout_s == 2.0
        assert config.logging.keep_files == 7
        assert config.mqtt.host == "broker.local"
        assert (config.mqtt.port, config.mqtt.qos, config.mqtt.keepalive) == (1883, 0, 60)
        assert config.mqtt.retain is False
        assert "[mqtt] port is not an integer; using 1883." in caplog.text
        assert "[provider] timeout_s is not a number; using 2.0." in caplog.text
        assert sum("is not" in record.getMessage() for record in caplog.records) == 6

    def test_custom_thresholds(self, write_config):
        config = load_config(
            write_config(
                """
                [thresholds]
                cpu_temperature_warning = 65
                cpu_temperature_critical = 80
                memory_usage_warning = 70
                memory_usage_critical = 85
                """
            )
        )

        thresholds = config.thresholds
        assert thresholds.pair(Metric.TEMPERATURE, HardwareKind.CPU) == ThresholdPair(65, 80)
        assert thresholds.pair(Metric.USAGE, HardwareKind.MEMORY) == ThresholdPair(70, 85)
        assert thresholds.pair(Metric.TEMPERATURE, HardwareKind.GPU) == ThresholdPair(75, 90)

    @pytest.mark.parametrize(
        "warning,critical",
        [
            ("90", "80"),  # warning above critical
            ("30", "85"),  # warning below range
            ("70", "120"),  # critical above range
            ("hot", "85"),
        ],
    )
    def test_invalid_thresholds_use_defaults(self, write_config, warning, critical):
        config = load_config(
            write_config(
                f"""
                [thresholds]
                cpu_temperature_warning = {warning}
                cpu_temperature_critical = {critical}
                """
            )
        )

        assert config.thresholds.pair(Metric.TEMPERATURE, HardwareKind.CPU) == ThresholdPair(70, 85)

    def test_usage_ranges(self, write_config):
        config = load_config(
            write_config(
                """
                [thresholds]
                memory_usage_warning = 96
                memory_usage_critical = 99
                """
            )
        )

        assert config.thresholds.pair(Metric.USAGE, HardwareKind.MEMORY) == ThresholdPair(80, 90)


class TestConfigSource:
    """Test hot reloading of the configuration file."""

    @staticmethod
    def _touch_later(path: Path) -> None:
        stat = path.stat()
        os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))

    def test_reload_on_change(self, write_config):
        path = write_config("[monitor]\ninterval_ms = 1000\n")
        source = ConfigSource(path)
        assert source.current().monitor.interval_ms == 1000

        write_config("[monitor]\ninterval_ms = 2000\n")
        self._touch_later(path)

        assert source.current().monitor.interval_ms == 2000

    def test_unchanged_file_not_reparsed(self, write_config):
        path = write_config("[monitor]\ninterval_ms = 1500\n")
        source = ConfigSource(path)

        assert source.current() is source.current()

    def test_broken_file_keeps_previous(self, write_config, caplog):
        path = write_config("[monitor]\ninterval_ms = 1500\n")
        source = ConfigSource(path)

        write_config("[monitor\ninterval_ms = 2000\n")
        self._touch_later(path)

        assert source.current().monitor.interval_ms == 1500
        assert "Keeping previous configuration" in caplog.text

    def test_deleted_file_keeps_previous(self, write_config):
        path = write_config("[monitor]\ninterval_ms = 1500\n")
        source = ConfigSource(path)

        path.unlink()

        assert source.current().monitor.interval_ms == 1500

    def test_initial_config_used(self, tmp_path):
        initial = AppConfig()
        source = ConfigSource(tmp_path / "absent.cfg", initial=initial)

        assert source.current() is initial

    def test_static_source(self):
        assert StaticConfigSource().current() == AppConfig()
