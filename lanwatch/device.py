# lanwatch/device.py
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .classifier import (
    DeviceType,
    RiskLevel,
    classify,
    guess_connection_type,
    guess_os,
    risk_level,
    risk_score,
    uptime_trend,
)
from .ports import service_name
from .ranges import clean_range, local_range_hint, parse_range

UNKNOWN = "Unknown"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class PortObservation:
    port: int
    protocol: str = "TCP"
    is_open: bool = False
    service_name: str = ""
    banner: str = ""

    def __post_init__(self):
        if not self.service_name:
            self.service_name = service_name(self.port)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "serviceName": self.service_name,
            "protocol": self.protocol,
            "isOpen": self.is_open,
            "banner": self.banner,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PortObservation":
        return cls(
            port=int(data["port"]),
            protocol=data.get("protocol") or "TCP",
            is_open=bool(data.get("isOpen", True)),
            service_name=data.get("serviceName") or "",
            banner=data.get("banner") or "",
        )


@dataclass
class DeviceRecord:
    address: str
    hostname: str = UNKNOWN
    hardware_address: str = UNKNOWN
    online: bool = False
    last_seen: Optional[datetime] = None
    first_discovered: datetime = field(default_factory=datetime.now)
    discovery_count: int = 1
    response_time_ms: int = 0
    open_ports: List[PortObservation] = field(default_factory=list)
    device_type: DeviceType = DeviceType.UNKNOWN
    manufacturer: str = UNKNOWN
    operating_system: str = UNKNOWN
    connection_type: str = UNKNOWN
    risk_level: RiskLevel = RiskLevel.UNKNOWN
    online_history: List[datetime] = field(default_factory=list)
    ttl: int = 0
    # One flag per observed scan, online or not; total_scans is never trimmed.
    scan_history: List[bool] = field(default_factory=list)
    total_scans: int = 0

    @property
    def open_port_numbers(self) -> List[int]:
        return [p.port for p in self.open_ports if p.is_open]

    @property
    def risk_score(self) -> int:
        return risk_score(self.open_port_numbers)

    @property
    def uptime_trend(self) -> str:
        return uptime_trend(self.online_history, self.scan_history, self.total_scans)

    def reclassify(self) -> None:
        """Derives type, OS, connection type and risk level from observations."""
        self.device_type = classify(self.open_port_numbers)
        self.operating_system = guess_os(self.ttl, (p.banner for p in self.open_ports if p.banner))
        self.connection_type = guess_connection_type(self.hardware_address)
        self.risk_level = risk_level(self.risk_score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "hostname": self.hostname,
            "hardwareAddress": self.hardware_address,
            "online": self.online,
            "lastSeen": _iso(self.last_seen),
            "firstDiscovered": _iso(self.first_discovered),
            "discoveryCount": self.discovery_count,
            "responseTimeMs": self.response_time_ms,
            "openPorts": [p.to_dict() for p in self.open_ports],
            "deviceType": self.device_type.value,
            "manufacturer": self.manufacturer,
            "operatingSystem": self.operating_system,
            "connectionType": self.connection_type,
            "riskLevel": self.risk_level.value,
            "onlineHistory": [t.isoformat() for t in self.online_history],
            "ttl": self.ttl,
            "scanHistory": list(self.scan_history),
            "totalScans": self.total_scans,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceRecord":
        """Builds a record from its persisted form.

        Raises:
            KeyError: If the address is missing.
            ValueError: If a timestamp or number cannot be parsed.
        """
        online_history = [datetime.fromisoformat(t) for t in data.get("onlineHistory") or []]
        # Snapshots without scan flags only know about their online sightings.
        flags = data.get("scanHistory")
        if flags is None:
            flags = [True] * len(online_history)
        scan_history = [bool(f) for f in flags]
        return cls(
            address=data["address"],
            hostname=data.get("hostname") or UNKNOWN,
            hardware_address=data.get("hardwareAddress") or UNKNOWN,
            online=bool(data.get("online", False)),
            last_seen=_parse_time(data.get("lastSeen")),
            first_discovered=_parse_time(data.get("firstDiscovered")) or datetime.now(),
            discovery_count=int(data.get("discoveryCount", 1)),
            response_time_ms=int(data.get("responseTimeMs", 0)),
            open_ports=[PortObservation.from_dict(p) for p in data.get("openPorts") or []],
            device_type=DeviceType.parse(data.get("deviceType")),
            manufacturer=data.get("manufacturer") or UNKNOWN,
            operating_system=data.get("operatingSystem") or UNKNOWN,
            connection_type=data.get("connectionType") or UNKNOWN,
            risk_level=RiskLevel.parse(data.get("riskLevel")),
            online_history=online_history,
            ttl=int(data.get("ttl", 0)),
            scan_history=scan_history,
            total_scans=int(data.get("totalScans", len(scan_history))),
        )


@dataclass(frozen=True)
class ScanOptions:
    ip_range: str = "192.168.1"
    start_address: int = 1
    end_address: int = 254
    ping_timeout_ms: int = 1000
    port_timeout_ms: int = 500
    max_parallel_scans: int = 50
    scan_ports: bool = True
    quick_scan: bool = True
    custom_ports: Tuple[int, ...] = ()
    port_concurrency: int = 64
    banner_timeout_ms: int = 500

    def __post_init__(self):
        object.__setattr__(self, "ip_range", clean_range(self.ip_range))
        object.__setattr__(self, "custom_ports", tuple(int(p) for p in self.custom_ports))

    @property
    def octet_count(self) -> int:
        return parse_range(self.ip_range)[1]

    @classmethod
    def from_settings(cls, settings: Any) -> "ScanOptions":
        """Builds options from the ``[scan]`` section of the settings.

        An empty ``ip_range`` means the range is detected from the local
        interface.
        """
        scan = settings.get("scan") or {}
        defaults = cls()
        return cls(
            ip_range=scan.get("ip_range") or local_range_hint(),
            start_address=int(scan.get("start_address", defaults.start_address)),
            end_address=int(scan.get("end_address", defaults.end_address)),
            ping_timeout_ms=int(scan.get("ping_timeout_ms", defaults.ping_timeout_ms)),
            port_timeout_ms=int(scan.get("port_timeout_ms", defaults.port_timeout_ms)),
            max_parallel_scans=int(scan.get("max_parallel_scans", defaults.max_parallel_scans)),
            scan_ports=bool(scan.get("scan_ports", defaults.scan_ports)),
            quick_scan=bool(scan.get("quick_scan", defaults.quick_scan)),
            custom_ports=tuple(scan.get("custom_ports") or ()),
            port_concurrency=int(scan.get("port_concurrency", defaults.port_concurrency)),
            banner_timeout_ms=int(scan.get("banner_timeout_ms", defaults.banner_timeout_ms)),
        )


@dataclass
class ScanProgress:
    """Progress of one sweep or refresh, updated concurrently by workers."""

    total_addresses: int = 0
    scanned_addresses: int = 0
    devices_found: int = 0
    ports_scanned: int = 0
    current_action: str = ""
    current_address: str = ""
    is_scanning: bool = False
    start_time: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return (datetime.now() - self.start_time).total_seconds()

    @property
    def percentage(self) -> float:
        if self.total_addresses <= 0:
            return 0.0
        return self.scanned_addresses / self.total_addresses * 100

    def increment_scanned(self) -> None:
        with self._lock:
            self.scanned_addresses += 1

    def increment_devices_found(self) -> None:
        with self._lock:
            self.devices_found += 1

    def add_ports_scanned(self, count: int) -> None:
        with self._lock:
            self.ports_scanned += count

    def update(self, action: Optional[str] = None, address: Optional[str] = None,
               scanning: Optional[bool] = None) -> None:
        with self._lock:
            if action is not None:
                self.current_action = action
            if address is not None:
                self.current_address = address
            if scanning is not None:
                self.is_scanning = scanning

    def snapshot(self) -> "ScanProgress":
        with self._lock:
            return replace(self)
