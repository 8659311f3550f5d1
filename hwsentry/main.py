from __future__ import annotations

import argparse
import json
import logging
import time

from hwsentry.config import AppConfig, ConfigSource, load_config, validate_interval
from hwsentry.events import SnapshotUpdated, StatusChanged
from hwsentry.logging_utils import configure_logging, resolve_log_level
from hwsentry.mqtt_client import MqttPublisher
from hwsentry.poller import HardwareMonitor
from hwsentry.provider import create_provider
from hwsentry.schema import validate_payload
from hwsentry.status import StatusLevel


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="hwsentry hardware telemetry monitor")
    parser.add_argument(
        "--config",
        default="config/example.cfg",
        help="Path to CFG configuration file",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR); overrides [logging] level",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log snapshots without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Take a single snapshot, publish it, then exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the latest snapshot JSON to a file (overwritten every cycle)",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        help="Override [monitor] interval_ms",
    )
    parser.add_argument(
        "--publish-status",
        metavar="STATUS",
        help="Publish a status (e.g., 'sleeping', 'online') to the availability topic and exit. "
             "Useful for system sleep/wake hooks.",
    )
    return parser


class SnapshotReporter:
    """Logs, validates and optionally dumps every published snapshot."""

    def __init__(self, dump_json: str | None, pretty: bool) -> None:
        self.dump_json = dump_json
        self.pretty = pretty
        self.logger = logging.getLogger(self.__class__.__name__)
        self._validated = False

    def on_snapshot(self, update: SnapshotUpdated) -> None:
        payload = update.snapshot.to_payload()
        if not self._validated:
            schema_errors = validate_payload(payload)
            if schema_errors:
                self.logger.warning("Schema validation failed with %s errors.", len(schema_errors))
                self.logger.debug("Schema errors: %s", schema_errors)
            else:
                self.logger.info("Schema validation passed.")
            self._validated = True
        payload_json = json.dumps(payload, indent=2) if self.pretty else json.dumps(payload)
        if self.dump_json:
            with open(self.dump_json, "w", encoding="utf-8") as handle:
                handle.write(payload_json)
        self.logger.debug("Snapshot: %s", payload_json)

    def on_status(self, change: StatusChanged) -> None:
        event = change.event
        if event.to_state is StatusLevel.NORMAL:
            self.logger.info(event.description)
        else:
            self.logger.warning(event.description)


def _publish_status(config: AppConfig, status: str, logger: logging.Logger) -> int:
    if config.mqtt is None:
        logger.error("No [mqtt] section configured; cannot publish status.")
        return 2
    publisher = MqttPublisher(config.mqtt)
    publisher.connect()
    # Wait briefly for connection to establish
    time.sleep(0.5)
    published = False
    if publisher.connected:
        published = publisher.publish_status(status)
        # Wait for message delivery
        time.sleep(0.5)
    else:
        logger.error("Failed to connect to MQTT broker")
    publisher.disconnect()
    return 0 if published else 1


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    level = resolve_log_level(args.verbose, args.log_level or "INFO")
    configure_logging(level)
    logger = logging.getLogger("hwsentry")
    config = load_config(args.config)
    if config.logging.file or args.log_level is None:
        level = resolve_log_level(args.verbose, args.log_level or config.logging.level)
        configure_logging(level, config.logging.file, config.logging.keep_files)

    if args.publish_status:
        return _publish_status(config, args.publish_status, logger)

    provider = create_provider(
        config.provider.backend,
        config.provider.librehardwaremonitor_url,
        config.provider.timeout_s,
    )
    monitor = HardwareMonitor(provider, ConfigSource(args.config, initial=config))
    if args.interval_ms is not None:
        monitor.set_interval(validate_interval(args.interval_ms) / 1000)

    reporter = SnapshotReporter(args.dump_json, pretty=level <= logging.DEBUG)
    monitor.events.snapshot_updated.subscribe(reporter.on_snapshot)
    monitor.events.status_changed.subscribe(reporter.on_status)

    publisher = None
    if args.dry_run:
        logger.info("Dry run enabled; skipping MQTT publish.")
    elif config.mqtt is None:
        logger.info("No [mqtt] section configured; snapshots are logged only.")
    else:
        publisher = MqttPublisher(config.mqtt)
        publisher.connect()
        publisher.attach(monitor.events)

    try:
        if args.once:
            monitor.poll_once()
            if monitor.get_latest_snapshot() is None:
                logger.error("No snapshot could be taken.")
                return 1
            logger.info("Single-run mode enabled; exiting after first snapshot.")
            return 0

        monitor.start_monitoring()
        logger.info("hwsentry started. Sampling every %.0f ms.", monitor.interval * 1000)
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("hwsentry stopped.")
    finally:
        monitor.close()
        if publisher is not None:
            publisher.disconnect()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
