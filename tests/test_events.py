"""Tests for monitor event channels."""
from __future__ import annotations

import logging
from unittest.mock import Mock

from hwsentry.events import EventChannel, MonitorEvents, SnapshotUpdated
from hwsentry.models import SystemSnapshot


class TestEventChannel:
    def test_publish_to_all_subscribers(self):
        channel: EventChannel[str] = EventChannel("test")
        first, second = Mock(), Mock()
        channel.subscribe(first)
        channel.subscribe(second)

        assert channel.publish("hello") == 2

        first.assert_called_once_with("hello")
        second.assert_called_once_with("hello")

    def test_unsubscribe_callable(self):
        channel: EventChannel[str] = EventChannel("test")
        handler = Mock()
        unsubscribe = channel.subscribe(handler)

        unsubscribe()

        assert len(channel) == 0
        assert channel.publish("ignored") == 0
        handler.assert_not_called()

    def test_unsubscribe_unknown_handler(self):
        channel: EventChannel[str] = EventChannel("test")
        assert channel.unsubscribe(Mock()) is False

    def test_failing_handler_isolated(self, caplog):
        channel: EventChannel[str] = EventChannel("test")
        broken = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        channel.subscribe(broken)
        channel.subscribe(healthy)

        with caplog.at_level(logging.ERROR):
            delivered = channel.publish("event")

        assert delivered == 1
        healthy.assert_called_once_with("event")
        assert "failed" in caplog.text

    def test_handler_may_unsubscribe_during_publish(self):
        channel: EventChannel[str] = EventChannel("test")
        calls = []

        def once(event):
            calls.append(event)
            unsubscribe()

        unsubscribe = channel.subscribe(once)
        channel.publish("a")
        channel.publish("b")

        assert calls == ["a"]


class TestMonitorEvents:
    def test_channels_are_independent(self):
        events = MonitorEvents()
        handler = Mock()
        events.snapshot_updated.subscribe(handler)

        update = SnapshotUpdated(SystemSnapshot())
        events.snapshot_updated.publish(update)

        handler.assert_called_once_with(update)
        assert len(events.status_changed) == 0
