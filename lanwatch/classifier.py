# lanwatch/classifier.py
"""Heuristic device classification from observed open ports.

Everything in this module is a pure function of its inputs: the open-port
set, the rolling online history, the TTL of the ping reply, captured banners
and the hardware address.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Sequence


class DeviceType(str, Enum):
    UNKNOWN = "Unknown"
    ROUTER = "Router"
    WEB_SERVER = "WebServer"
    PRINTER = "Printer"
    CAMERA = "Camera"
    FILE_SERVER = "FileServer"
    SMART_TV = "SmartTV"
    SMART_HOME = "SmartHome"
    GAME_CONSOLE = "GameConsole"
    PHONE = "Phone"
    COMPUTER = "Computer"
    IOT_DEVICE = "IoTDevice"
    DATABASE_SERVER = "DatabaseServer"
    MAIL_SERVER = "MailServer"
    MEDIA_SERVER = "MediaServer"

    @classmethod
    def parse(cls, value: str | None) -> "DeviceType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class RiskLevel(str, Enum):
    UNKNOWN = "Unknown"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, value: str | None) -> "RiskLevel":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class _Rule(NamedTuple):
    device_type: DeviceType
    all_of: FrozenSet[int]
    any_of: FrozenSet[int]

    def matches(self, ports: FrozenSet[int]) -> bool:
        if not self.all_of <= ports:
            return False
        return not self.any_of or bool(self.any_of & ports)


def _rule(device_type: DeviceType, all_of: Iterable[int] = (), any_of: Iterable[int] = ()) -> _Rule:
    return _Rule(device_type, frozenset(all_of), frozenset(any_of))


# First match wins; a device often satisfies several rules.
CLASSIFICATION_RULES: Sequence[_Rule] = (
    _rule(DeviceType.PRINTER, any_of=(9100, 515, 631)),
    _rule(DeviceType.CAMERA, all_of=(554,), any_of=(80, 8080)),
    _rule(DeviceType.MEDIA_SERVER, any_of=(32400, 8096)),
    _rule(DeviceType.SMART_HOME, any_of=(1883, 8883)),
    _rule(DeviceType.DATABASE_SERVER, any_of=(3306, 5432, 1433, 27017)),
    _rule(DeviceType.MAIL_SERVER, any_of=(25, 465, 587, 143)),
    _rule(DeviceType.FILE_SERVER, all_of=(445, 139)),
    _rule(DeviceType.COMPUTER, any_of=(3389, 5900)),
    _rule(DeviceType.ROUTER, all_of=(80, 53)),
    _rule(DeviceType.PHONE, any_of=(62078, 5353)),
    _rule(DeviceType.SMART_TV, all_of=(8008, 8443)),
    _rule(DeviceType.WEB_SERVER, any_of=(80, 443, 8080)),
)

RISK_WEIGHTS: Dict[int, int] = {
    # Unencrypted remote access
    23: 30,    # Telnet
    21: 20,    # FTP
    3389: 15,  # RDP
    5900: 15,  # VNC
    5901: 15,
    5902: 15,
    # Exposed administrative and data services
    445: 15,   # SMB
    22: 10,    # SSH
    139: 10,   # NetBIOS
    135: 10,   # RPC
    1433: 10,  # SQL Server
    3306: 10,  # MySQL
    5432: 10,  # PostgreSQL
    27017: 10, # MongoDB
    # Plain HTTP
    80: 3,
    8080: 5,
    8000: 5,
    8443: 3,
    # Encrypted services
    443: 1,
    993: 1,
    995: 1,
}

MAX_RISK_SCORE = 100

# Lower bounds of each band, highest first.
RISK_BANDS = (
    (50, RiskLevel.CRITICAL),
    (30, RiskLevel.HIGH),
    (15, RiskLevel.MEDIUM),
    (0, RiskLevel.LOW),
)

UPTIME_WINDOW = 10


def classify(open_ports: Iterable[int]) -> DeviceType:
    """Maps an open-port set to a device type label."""
    ports = frozenset(open_ports)
    for rule in CLASSIFICATION_RULES:
        if rule.matches(ports):
            return rule.device_type
    return DeviceType.UNKNOWN


def risk_score(open_ports: Iterable[int]) -> int:
    score = sum(RISK_WEIGHTS.get(port, 0) for port in set(open_ports))
    return min(score, MAX_RISK_SCORE)


def risk_level(score: int) -> RiskLevel:
    for lower_bound, level in RISK_BANDS:
        if score >= lower_bound:
            return level
    return RiskLevel.LOW


def uptime_trend(online_history: List[datetime], scan_history: Sequence[bool], total_scans: int) -> str:
    """Labels how consistently a device has been seen online.

    ``online_history`` holds the timestamps of online sightings.
    ``scan_history`` holds one flag per observed scan, online or offline,
    most recent last, and ``total_scans`` counts every observed scan.
    """
    if len(online_history) < 2:
        return "New"
    if total_scans <= 5:
        return "Tracking"

    recent = list(scan_history[-UPTIME_WINDOW:])
    if not recent:
        return "Rare"
    ratio = sum(1 for online in recent if online) / min(total_scans, len(recent))
    if ratio >= 0.9:
        return "Always On"
    if ratio >= 0.5:
        return "Frequent"
    if ratio >= 0.2:
        return "Sporadic"
    return "Rare"


_BANNER_OS_HINTS = (
    ("windows", "Windows"),
    ("microsoft", "Windows"),
    ("iis", "Windows"),
    ("ubuntu", "Linux"),
    ("debian", "Linux"),
    ("raspbian", "Linux"),
    ("centos", "Linux"),
    ("fedora", "Linux"),
    ("linux", "Linux"),
    ("freebsd", "FreeBSD"),
    ("openbsd", "OpenBSD"),
    ("darwin", "macOS"),
    ("mikrotik", "Network Device"),
    ("routeros", "Network Device"),
)


def guess_os(ttl: int, banners: Iterable[str] = ()) -> str:
    """Guesses the operating system from service banners, then the ping TTL."""
    for banner in banners:
        lowered = banner.lower()
        for keyword, name in _BANNER_OS_HINTS:
            if keyword in lowered:
                return name

    if ttl <= 0:
        return "Unknown"
    if ttl <= 64:
        return "Linux/Unix"
    if ttl <= 128:
        return "Windows"
    return "Network Device"


VIRTUAL_OUIS = frozenset({
    "00:05:69", "00:0c:29", "00:1c:14", "00:50:56",  # VMware
    "08:00:27", "0a:00:27",                          # VirtualBox
    "00:15:5d",                                      # Hyper-V
    "52:54:00",                                      # QEMU/KVM
    "00:16:3e",                                      # Xen
    "00:1c:42",                                      # Parallels
})


def guess_connection_type(mac: str) -> str:
    """Virtual for hypervisor and container MACs, WiFi for randomized ones."""
    parts = mac.lower().split(":")
    if len(parts) != 6:
        return "Unknown"
    if ":".join(parts[:3]) in VIRTUAL_OUIS or parts[:2] == ["02", "42"]:
        return "Virtual"
    try:
        first_octet = int(parts[0], 16)
    except ValueError:
        return "Unknown"
    # Locally administered bit: private/randomized addresses used by wireless clients.
    if first_octet & 0x02:
        return "WiFi"
    return "Unknown"
