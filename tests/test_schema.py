"""Tests for snapshot payload schema validation."""
from __future__ import annotations

import copy

import pytest

from hwsentry.builder import SnapshotBuilder
from hwsentry.schema import get_validator, load_schema, validate_payload


@pytest.fixture
def payload(desktop_tree, fake_host, t0):
    return SnapshotBuilder(network_from_provider=True).build(desktop_tree, now=t0).to_payload()


class TestSchema:
    def test_schema_is_valid(self):
        schema = load_schema()
        assert schema["$schema"].endswith("2020-12/schema")
        assert get_validator() is get_validator()

    def test_snapshot_payload_validates(self, payload):
        assert validate_payload(payload) == []

    def test_empty_snapshot_validates(self, fake_host):
        assert validate_payload(SnapshotBuilder().build([]).to_payload()) == []

    def test_missing_required_section(self, payload):
        del payload["cpus"]

        assert validate_payload(payload) == ["'cpus' is a required property"]

    def test_unknown_sensor_kind(self, payload):
        broken = copy.deepcopy(payload)
        broken["gpus"][0]["sensors"][0]["kind"] = "noise"

        errors = validate_payload(broken)

        assert len(errors) == 1
        assert "noise" in errors[0]

    def test_unexpected_sensor_field(self, payload):
        payload["fans"][0]["sensors"][0]["raw"] = "900 RPM"

        assert len(validate_payload(payload)) == 1

    def test_negative_memory_rejected(self, payload):
        payload["memory"]["used_mb"] = -1

        assert len(validate_payload(payload)) == 1

    def test_errors_sorted_by_path(self, payload):
        payload["uptime_s"] = "soon"
        payload["cpus"][0]["core_count"] = 0

        errors = validate_payload(payload)

        assert len(errors) == 2
        assert "0 is less than the minimum of 1" in errors[0]
        assert "'soon' is not of type 'integer'" in errors[1]
