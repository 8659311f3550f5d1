"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import time
from unittest.mock import Mock, patch

import pytest

from hwsentry.provider import RawHardware, RawSensor


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "linux: mark test as Linux-specific"
    )
    config.addinivalue_line(
        "markers", "windows: mark test as Windows-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as timing-dependent and slow"
    )


T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def later():
    """Return ``T0`` shifted by the given number of seconds."""
    def _later(seconds: float) -> datetime:
        return T0 + timedelta(seconds=seconds)
    return _later


@pytest.fixture
def fake_host():
    """Pin the host facts the snapshot builder reads from psutil."""
    gib = 1024**3
    with patch("hwsentry.builder.psutil") as mock_psutil:
        mock_psutil.cpu_count.side_effect = lambda logical=True: 8 if logical else 4
        mock_psutil.virtual_memory.return_value = Mock(
            total=16 * gib, available=4 * gib, used=12 * gib, percent=75.0
        )
        mock_psutil.swap_memory.return_value = Mock(used=1 * gib, total=4 * gib)
        mock_psutil.boot_time.return_value = time.time() - 3600
        yield mock_psutil


@pytest.fixture
def desktop_tree():
    """A provider tree shaped like a LibreHardwareMonitor desktop."""
    return [
        RawHardware(
            name="Intel Core i7-12700K",
            kind="Cpu",
            identifier="/intelcpu/0",
            sensors=[
                RawSensor("CPU Core #1", "Load", 40.0, "/intelcpu/0/load/1"),
                RawSensor("CPU Core #2", "Load", 60.0, "/intelcpu/0/load/2"),
                RawSensor("CPU Total", "Load", 50.0, "/intelcpu/0/load/0"),
                RawSensor("CPU Core #1", "Temperature", 55.0, "/intelcpu/0/temperature/0"),
                RawSensor("CPU Core #2", "Temperature", 58.0, "/intelcpu/0/temperature/1"),
                RawSensor("CPU Package", "Temperature", 61.0, "/intelcpu/0/temperature/2"),
                RawSensor(
                    "CPU Core #1 Distance to TjMax",
                    "Temperature",
                    45.0,
                    "/intelcpu/0/temperature/3",
                ),
                RawSensor("CPU Core #1", "Clock", 3600.0, "/intelcpu/0/clock/1"),
                RawSensor("CPU Core #2", "Clock", 3700.0, "/intelcpu/0/clock/2"),
                RawSensor("CPU Package", "Power", 95.5, "/intelcpu/0/power/0"),
            ],
        ),
        RawHardware(
            name="NVIDIA GeForce RTX 3080",
            kind="GpuNvidia",
            identifier="/gpu-nvidia/0",
            sensors=[
                RawSensor("GPU Memory Controller", "Load", 20.0, "/gpu-nvidia/0/load/1"),
                RawSensor("GPU Core", "Load", 75.0, "/gpu-nvidia/0/load/0"),
                RawSensor("GPU Hot Spot", "Temperature", 77.0, "/gpu-nvidia/0/temperature/2"),
                RawSensor("GPU Core", "Temperature", 66.0, "/gpu-nvidia/0/temperature/0"),
                RawSensor("GPU Core", "Clock", 1800.0, "/gpu-nvidia/0/clock/0"),
                RawSensor("GPU Memory", "Clock", 9500.0, "/gpu-nvidia/0/clock/1"),
                RawSensor("GPU Package", "Power", 250.0, "/gpu-nvidia/0/power/0"),
                RawSensor("GPU", "Fan", 1500.0, "/gpu-nvidia/0/fan/1"),
                RawSensor("GPU Memory Used", "SmallData", 2048.0, "/gpu-nvidia/0/smalldata/1"),
                RawSensor("GPU Memory Total", "SmallData", 10240.0, "/gpu-nvidia/0/smalldata/2"),
                RawSensor("GPU Video Engine", "Load", None, "/gpu-nvidia/0/load/3"),
            ],
        ),
        RawHardware(
            name="Generic Memory",
            kind="Memory",
            identifier="/ram",
            sensors=[
                RawSensor("Memory", "Load", 42.0, "/ram/load/0"),
                RawSensor("Virtual Memory", "Load", 30.0, "/ram/load/1"),
                RawSensor("Memory Used", "Data", 13.5, "/ram/data/0"),
                RawSensor("Memory Available", "Data", 18.5, "/ram/data/1"),
                RawSensor("Virtual Memory Used", "Data", 20.0, "/ram/data/2"),
            ],
        ),
        RawHardware(
            name="ASUS ROG STRIX Z690-A",
            kind="Motherboard",
            identifier="/motherboard",
            sub_hardware=[
                RawHardware(
                    name="Nuvoton NCT6798D",
                    kind="SuperIO",
                    identifier="/lpc/nct6798d",
                    sensors=[
                        RawSensor("Motherboard", "Temperature", 38.0, "/lpc/nct6798d/temperature/0"),
                        RawSensor("Fan #1", "Fan", 900.0, "/lpc/nct6798d/fan/0"),
                        RawSensor("Fan #2", "Fan", 1100.0, "/lpc/nct6798d/fan/1"),
                        RawSensor("Fan #3", "Fan", None, "/lpc/nct6798d/fan/2"),
                        RawSensor("Fan Control #1", "Control", 35.0, "/lpc/nct6798d/control/0"),
                    ],
                )
            ],
        ),
        RawHardware(
            name="Samsung SSD 980 PRO 1TB",
            kind="Storage",
            identifier="/nvme/0",
            sensors=[
                RawSensor("Composite Temperature", "Temperature", 41.0, "/nvme/0/temperature/0"),
                RawSensor("Used Space", "Load", 63.0, "/nvme/0/load/0"),
            ],
        ),
        RawHardware(
            name="WDC WD40EFRX",
            kind="Storage",
            identifier="/hdd/1",
            sensors=[RawSensor("Used Space", "Load", 80.0, "/hdd/1/load/0")],
        ),
        RawHardware(
            name="Ethernet",
            kind="Network",
            identifier="/nic/{ABC}",
            sensors=[
                RawSensor("Network Utilization", "Load", 1.5, "/nic/{ABC}/load/1"),
                RawSensor("Download Speed", "Throughput", 3 * 1024 * 1024, "/nic/{ABC}/throughput/8"),
                RawSensor("Upload Speed", "Throughput", 512 * 1024, "/nic/{ABC}/throughput/7"),
            ],
        ),
    ]
