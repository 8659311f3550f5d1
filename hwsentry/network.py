from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
import platform
import socket
import threading
from typing import Iterable, Sequence

import psutil

from hwsentry.models import NetworkEntity, SensorKind, SensorReading, utcnow

MEGABYTE = 1024 * 1024
DEFAULT_LINK_SPEED_MBPS = 1000

VIRTUAL_KEYWORDS = (
    "virtual",
    "vmware",
    "virtualbox",
    "hyper-v",
    "vbox",
    "tap",
    "tun",
    "loopback",
    "teredo",
    "isatap",
    "6to4",
    "bluetooth",
    "vpn",
    "microsoft",
    "software",
    "miniport",
    "wan",
    "ras",
    "ppp",
    "dial-up",
    "modem",
    "bridge",
    "filter",
    "ndis",
    "packet",
)
# Linux names that carry none of the keywords above.
VIRTUAL_PREFIXES = ("docker", "veth", "virbr")

SCORE_UP = 100
SCORE_IPV4 = 50
SCORE_GATEWAY = 30
SCORE_DHCP = 20
SCORE_ETHERNET = 10
SCORE_WIFI = 5


class AdapterKind(str, Enum):
    ETHERNET = "ethernet"
    WIFI = "wifi"
    LOOPBACK = "loopback"
    TUNNEL = "tunnel"
    OTHER = "other"


@dataclass(frozen=True)
class AdapterSample:
    """One adapter as seen by the OS at sampling time."""

    identifier: str
    name: str
    description: str = ""
    kind: AdapterKind = AdapterKind.OTHER
    is_up: bool = False
    mac_address: str = ""
    ipv4_addresses: tuple[str, ...] = ()
    has_gateway: bool = False
    has_dhcp_lease: bool = False
    bytes_received: int = 0
    bytes_sent: int = 0
    link_speed_mbps: float = 0.0


@dataclass(frozen=True)
class NetworkAdapterCounters:
    adapter_id: str
    bytes_received: int
    bytes_sent: int
    sampled_at: datetime


def is_physical(sample: AdapterSample) -> bool:
    if sample.kind not in (AdapterKind.ETHERNET, AdapterKind.WIFI):
        return False
    name = sample.name.lower()
    description = sample.description.lower()
    if name.startswith(VIRTUAL_PREFIXES):
        return False
    return not any(keyword in name or keyword in description for keyword in VIRTUAL_KEYWORDS)


def priority_score(sample: AdapterSample) -> int:
    score = 0
    if sample.is_up:
        score += SCORE_UP
    if any(not address.startswith("127.") for address in sample.ipv4_addresses):
        score += SCORE_IPV4
    if sample.has_gateway:
        score += SCORE_GATEWAY
    if sample.has_dhcp_lease:
        score += SCORE_DHCP
    if sample.kind == AdapterKind.ETHERNET:
        score += SCORE_ETHERNET
    elif sample.kind == AdapterKind.WIFI:
        score += SCORE_WIFI
    return score


def deduplicate(samples: Iterable[AdapterSample]) -> list[AdapterSample]:
    """Keep one adapter per MAC address, preferring the higher priority score.

    Adapters without a MAC address are dropped. On equal scores the adapter
    seen first wins.
    """
    best: dict[str, AdapterSample] = {}
    for sample in samples:
        mac = normalize_mac(sample.mac_address)
        if not mac:
            continue
        current = best.get(mac)
        if current is None or priority_score(sample) > priority_score(current):
            best[mac] = sample
    return list(best.values())


def normalize_mac(mac: str) -> str:
    normalized = mac.strip().upper().replace("-", ":")
    if not normalized or set(normalized) <= {"0", ":"}:
        return ""
    return normalized


def select_primary(adapters: Sequence[NetworkEntity]) -> NetworkEntity | None:
    if not adapters:
        return None
    connected = [adapter for adapter in adapters if adapter.connected]
    if not connected:
        return adapters[0]
    busiest = max(connected, key=lambda a: a.download_speed + a.upload_speed)
    if busiest.download_speed + busiest.upload_speed > 0:
        return busiest
    most_used = max(connected, key=lambda a: a.usage or 0.0)
    if (most_used.usage or 0.0) > 0:
        return most_used
    return connected[0]


def speed_readings(
    identifier: str, usage: float, download: float, upload: float, now: datetime
) -> tuple[SensorReading, ...]:
    return (
        SensorReading(
            name="Network Usage",
            kind=SensorKind.USAGE,
            value=usage,
            identifier=f"{identifier}/usage",
            unit=SensorKind.USAGE.unit,
            sampled_at=now,
        ),
        SensorReading(
            name="Download Speed",
            kind=SensorKind.THROUGHPUT,
            value=download,
            identifier=f"{identifier}/download",
            unit="MB/s",
            sampled_at=now,
        ),
        SensorReading(
            name="Upload Speed",
            kind=SensorKind.THROUGHPUT,
            value=upload,
            identifier=f"{identifier}/upload",
            unit="MB/s",
            sampled_at=now,
        ),
    )


class NetworkThroughputTracker:
    """Derives per-adapter speeds from successive byte counters.

    The counter table is guarded by its own lock and only ever holds entries
    for adapters present in the most recent sample.
    """

    def __init__(self, link_speed_mbps: float = DEFAULT_LINK_SPEED_MBPS) -> None:
        self.link_speed_mbps = link_speed_mbps
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._counters: dict[str, NetworkAdapterCounters] = {}

    def compute_speeds(
        self, adapters: Iterable[AdapterSample], now: datetime | None = None
    ) -> list[NetworkEntity]:
        now = now or utcnow()
        retained = deduplicate(sample for sample in adapters if is_physical(sample))
        entities: list[NetworkEntity] = []
        with self._lock:
            for sample in retained:
                download, upload = self._delta(sample, now)
                entities.append(self._entity(sample, download, upload, now))
            present = {sample.identifier for sample in retained}
            for adapter_id in list(self._counters):
                if adapter_id not in present:
                    self.logger.debug("Evicting counters for %s.", adapter_id)
                    del self._counters[adapter_id]
        return entities

    def tracked_adapters(self) -> list[str]:
        with self._lock:
            return sorted(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    def _delta(self, sample: AdapterSample, now: datetime) -> tuple[float, float]:
        previous = self._counters.get(sample.identifier)
        self._counters[sample.identifier] = NetworkAdapterCounters(
            adapter_id=sample.identifier,
            bytes_received=sample.bytes_received,
            bytes_sent=sample.bytes_sent,
            sampled_at=now,
        )
        if previous is None:
            return 0.0, 0.0
        elapsed = (now - previous.sampled_at).total_seconds()
        if elapsed <= 0:
            self.logger.debug("Non-positive interval for %s; reporting zero.", sample.identifier)
            return 0.0, 0.0
        received = max(0, sample.bytes_received - previous.bytes_received)
        sent = max(0, sample.bytes_sent - previous.bytes_sent)
        return (
            round(received / elapsed / MEGABYTE, 2),
            round(sent / elapsed / MEGABYTE, 2),
        )

    def _entity(
        self, sample: AdapterSample, download: float, upload: float, now: datetime
    ) -> NetworkEntity:
        link_speed = sample.link_speed_mbps or self.link_speed_mbps
        usage = 0.0
        if link_speed > 0:
            usage = round(min(100.0, (download + upload) * 8 / link_speed * 100), 2)
        identifier = f"network/{sample.identifier}"
        return NetworkEntity(
            identifier=identifier,
            name=sample.description or sample.name,
            sensors=speed_readings(identifier, usage, download, upload, now),
            last_updated=now,
            online=sample.is_up,
            download_speed=download,
            upload_speed=upload,
            connected=sample.is_up,
            adapter_type=sample.kind.value,
            mac_address=normalize_mac(sample.mac_address),
            ip_address=next(iter(sample.ipv4_addresses), ""),
        )


# ARPHRD_* values from if_arp.h.
_ARPHRD_ETHER = 1
_ARPHRD_LOOPBACK = 772
_ARPHRD_TUNNELS = {768, 769, 776, 778, 65534}


class AdapterDiscovery:
    """Builds ``AdapterSample`` instances from psutil and, on Linux, sysfs."""

    def __init__(
        self,
        sysfs_root: Path = Path("/sys/class/net"),
        route_file: Path = Path("/proc/net/route"),
        lease_dirs: Sequence[Path] = (
            Path("/var/lib/dhcp"),
            Path("/var/lib/dhclient"),
            Path("/var/lib/NetworkManager"),
            Path("/run/systemd/netif/leases"),
        ),
    ) -> None:
        self.sysfs_root = sysfs_root
        self.route_file = route_file
        self.lease_dirs = tuple(lease_dirs)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._is_linux = platform.system().lower() == "linux"

    def discover(self) -> list[AdapterSample]:
        addrs = psutil.net_if_addrs()
        io_stats = psutil.net_io_counters(pernic=True)
        try:
            iface_stats = psutil.net_if_stats()
        except OSError:
            self.logger.debug("Failed to get network interface stats (ioctl not supported).")
            iface_stats = {}
        gateways = self._gateway_interfaces()
        leases = self._lease_text()

        samples: list[AdapterSample] = []
        for iface, addr_list in addrs.items():
            mac = ""
            ipv4: list[str] = []
            for addr in addr_list:
                if addr.family == socket.AF_INET:
                    ipv4.append(addr.address)
                elif getattr(psutil, "AF_LINK", None) == addr.family:
                    mac = addr.address
            stats = iface_stats.get(iface)
            counters = io_stats.get(iface)
            samples.append(
                AdapterSample(
                    identifier=iface,
                    name=iface,
                    kind=self._kind(iface),
                    is_up=bool(stats and stats.isup),
                    mac_address=mac,
                    ipv4_addresses=tuple(ipv4),
                    has_gateway=iface in gateways,
                    has_dhcp_lease=self._has_lease(iface, leases),
                    bytes_received=int(counters.bytes_recv) if counters else 0,
                    bytes_sent=int(counters.bytes_sent) if counters else 0,
                    link_speed_mbps=float(stats.speed) if stats and stats.speed > 0 else 0.0,
                )
            )
        return samples

    def _kind(self, iface: str) -> AdapterKind:
        if self._is_linux:
            base = self.sysfs_root / iface
            if (base / "wireless").exists() or (base / "phy80211").exists():
                return AdapterKind.WIFI
            arp_type = self._read_file(base / "type")
            if arp_type is not None:
                try:
                    value = int(arp_type)
                except ValueError:
                    value = -1
                if value == _ARPHRD_LOOPBACK:
                    return AdapterKind.LOOPBACK
                if value in _ARPHRD_TUNNELS:
                    return AdapterKind.TUNNEL
                if value == _ARPHRD_ETHER:
                    return AdapterKind.ETHERNET
                return AdapterKind.OTHER
        return _kind_from_name(iface)

    def _gateway_interfaces(self) -> set[str]:
        if not self._is_linux:
            return set()
        text = self._read_file(self.route_file)
        if not text:
            return set()
        gateways: set[str] = set()
        for line in text.splitlines()[1:]:
            fields = line.split()
            if len(fields) >= 3 and fields[1] == "00000000" and fields[2] != "00000000":
                gateways.add(fields[0])
        return gateways

    def _lease_text(self) -> dict[str, str]:
        leases: dict[str, str] = {}
        for directory in self.lease_dirs:
            try:
                entries = list(directory.iterdir())
            except OSError:
                continue
            for entry in entries:
                content = self._read_file(entry)
                if content is not None:
                    leases[entry.name] = content
        return leases

    def _has_lease(self, iface: str, leases: dict[str, str]) -> bool:
        ifindex = self._read_file(self.sysfs_root / iface / "ifindex") if self._is_linux else None
        for filename, content in leases.items():
            if filename.endswith(f"-{iface}.lease") or filename.endswith(f"-{iface}.leases"):
                return True
            if f'interface "{iface}"' in content:
                return True
            if ifindex and filename == ifindex:
                return True
        return False

    @staticmethod
    def _read_file(path: Path) -> str | None:
        try:
            return path.read_text().strip()
        except (OSError, UnicodeDecodeError):
            return None


def _kind_from_name(iface: str) -> AdapterKind:
    lowered = iface.lower()
    if lowered == "lo" or lowered.startswith("lo0") or "loopback" in lowered:
        return AdapterKind.LOOPBACK
    if lowered.startswith(("tun", "tap", "utun", "wg", "ppp", "ipsec", "gif", "stf")):
        return AdapterKind.TUNNEL
    if lowered.startswith(("wl", "wlan", "ath")) or "wi-fi" in lowered or "wireless" in lowered:
        return AdapterKind.WIFI
    if lowered.startswith(("en", "eth", "em", "igb", "ix", "re", "bge")) or "ethernet" in lowered:
        return AdapterKind.ETHERNET
    return AdapterKind.OTHER
