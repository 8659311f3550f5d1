from __future__ import annotations

import json
import logging
import socket
import ssl
from typing import Any, Callable

import paho.mqtt.client as mqtt

from hwsentry.config import MqttConfig
from hwsentry.events import MonitorEvents, SnapshotUpdated, StatusChanged
from hwsentry.models import SystemSnapshot
from hwsentry.schema import validate_payload
from hwsentry.status import StatusEvent

# (object id, display name, summary key, unit, device class)
DISCOVERY_SENSORS: tuple[tuple[str, str, str, str, str | None], ...] = (
    ("cpu_temperature", "CPU Temperature", "cpu_temp_c", "°C", "temperature"),
    ("cpu_usage", "CPU Usage", "cpu_usage_pct", "%", None),
    ("gpu_temperature", "GPU Temperature", "gpu_temp_c", "°C", "temperature"),
    ("gpu_usage", "GPU Usage", "gpu_usage_pct", "%", None),
    ("memory_usage", "Memory Usage", "memory_usage_pct", "%", None),
    ("network_download", "Network Download", "net_down_mb_s", "MB/s", "data_rate"),
    ("network_upload", "Network Upload", "net_up_mb_s", "MB/s", "data_rate"),
)


class MqttPublisher:
    def __init__(self, config: MqttConfig, validate: bool = True) -> None:
        self.config = config
        self.validate = validate
        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False
        self._discovery_sent = False
        self._unsubscribers: list[Callable[[], None]] = []

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            self.client.tls_set(
                ca_certs=config.ca_cert,
                cert_reqs=ssl.CERT_REQUIRED,
            )

        self.client.will_set(
            self.availability_topic,
            payload="offline",
            qos=1,
            retain=True,
        )
        self.client.reconnect_delay_set(min_delay=1, max_delay=120)

    @property
    def availability_topic(self) -> str:
        return f"{self.config.base_topic}/status"

    @property
    def status_events_topic(self) -> str:
        return f"{self.config.base_topic}/status_events"

    @property
    def connected(self) -> bool:
        return self._connected

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if reason_code == 0:
            self._connected = True
            self.logger.info(
                "Connected to MQTT broker %s:%s", self.config.host, self.config.port
            )
            self.client.publish(
                self.availability_topic,
                payload="online",
                qos=1,
                retain=True,
            )
        else:
            self._connected = False
            self.logger.error("Failed to connect to MQTT broker: %s", reason_code)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if reason_code == 0:
            self.logger.info("Disconnected from MQTT broker (clean)")
        else:
            self.logger.warning(
                "Unexpectedly disconnected from MQTT broker: %s. Will attempt to reconnect.",
                reason_code,
            )

    def connect(self) -> None:
        self.logger.info(
            "Connecting to MQTT broker %s:%s", self.config.host, self.config.port
        )
        self.client.connect(
            self.config.host,
            self.config.port,
            keepalive=self.config.keepalive,
        )
        self.client.loop_start()

    def disconnect(self) -> None:
        self.detach()
        if self._connected:
            self.client.publish(
                self.availability_topic,
                payload="offline",
                qos=1,
                retain=True,
            )
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info("Disconnected from MQTT broker")

    def attach(self, events: MonitorEvents) -> None:
        """Publish every snapshot and status change raised on ``events``."""
        self._unsubscribers.append(events.snapshot_updated.subscribe(self._on_snapshot))
        self._unsubscribers.append(events.status_changed.subscribe(self._on_status_changed))

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def _on_snapshot(self, update: SnapshotUpdated) -> None:
        if not self._discovery_sent:
            self.publish_discovery()
            self._discovery_sent = True
        self.publish_snapshot(update.snapshot)

    def _on_status_changed(self, change: StatusChanged) -> None:
        self.publish_status_event(change.event)

    def publish_status(self, status: str) -> bool:
        """Publish a custom status (``online``, ``offline``, ``sleeping``) to the availability topic."""
        self.logger.info("Publishing status '%s' to %s", status, self.availability_topic)
        return self._publish(self.availability_topic, status, qos=1, retain=True)

    def publish_snapshot(self, snapshot: SystemSnapshot) -> bool:
        payload = snapshot.to_payload()
        if self.validate:
            errors = validate_payload(payload)
            if errors:
                self.logger.warning("Schema validation failed with %s errors.", len(errors))
                self.logger.debug("Schema errors: %s", errors)
        return self.publish(json.dumps(payload))

    def publish(self, payload: str) -> bool:
        if not self._connected:
            self.logger.warning("Not connected to MQTT broker, message may be queued")
        self.logger.debug("Publishing snapshot payload to %s", self.config.base_topic)
        return self._publish(
            self.config.base_topic, payload, qos=self.config.qos, retain=self.config.retain
        )

    def publish_status_event(self, event: StatusEvent) -> bool:
        self.logger.debug("Publishing status event to %s", self.status_events_topic)
        return self._publish(
            self.status_events_topic, json.dumps(event.to_payload()), qos=1, retain=False
        )

    def publish_discovery(self) -> None:
        device_id = self.config.client_id
        host = socket.gethostname()
        device = {
            "identifiers": [device_id],
            "name": host,
            "model": "hwsentry",
        }
        for object_id, name, key, unit, device_class in DISCOVERY_SENSORS:
            config: dict[str, Any] = {
                "name": f"{host} {name}",
                "unique_id": f"{device_id}_{object_id}",
                "state_topic": self.config.base_topic,
                "value_template": f"{{{{ value_json.summary.{key} }}}}",
                "unit_of_measurement": unit,
                "state_class": "measurement",
                "availability_topic": self.availability_topic,
                "payload_available": "online",
                "payload_not_available": "offline",
                "device": device,
            }
            if device_class:
                config["device_class"] = device_class
            topic = f"{self.config.discovery_topic}/sensor/{device_id}/{object_id}/config"
            self.logger.debug("Publishing Home Assistant discovery to %s", topic)
            self.client.publish(topic, payload=json.dumps(config), qos=self.config.qos, retain=True)

    def _publish(self, topic: str, payload: str, qos: int, retain: bool) -> bool:
        result = self.client.publish(topic, payload=payload, qos=qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish to %s, error code: %s", topic, result.rc)
            return False
        return True
