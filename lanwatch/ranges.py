# lanwatch/ranges.py
import logging
import socket
from dataclasses import dataclass
from typing import Iterator, Tuple

logger = logging.getLogger(__name__)

DEFAULT_RANGE = "192.168.1"
SUBNETS_PER_BROAD_SCAN = 256
MALFORMED_SORT_KEY = (999, 999)


def parse_range(text: str | None) -> Tuple[str, int]:
    """Normalizes a loosely formatted range and reports its octet count.

    Only tokens that parse as integers in [0, 255] are kept. Fewer than two
    valid octets fall back to ``DEFAULT_RANGE``; more than three are cut down
    to the first three.

    Returns:
        Tuple[str, int]: The normalized base (e.g. "10.0") and its octet count.
    """
    if not text or not text.strip():
        return DEFAULT_RANGE, 3

    octets = []
    for token in text.strip().rstrip(".").split("."):
        try:
            value = int(token.strip())
        except ValueError:
            continue
        if 0 <= value <= 255:
            octets.append(str(value))

    if len(octets) < 2:
        return DEFAULT_RANGE, 3
    octets = octets[:3]
    return ".".join(octets), len(octets)


def clean_range(text: str | None) -> str:
    return parse_range(text)[0]


@dataclass(frozen=True)
class TargetRange:
    """A concrete, ordered set of addresses to sweep."""

    base: str
    octet_count: int
    start: int
    end: int

    @property
    def is_broad(self) -> bool:
        return self.octet_count == 2

    @property
    def hosts_per_subnet(self) -> int:
        return max(0, self.end - self.start + 1)

    @property
    def total(self) -> int:
        # Broad scans always count a full 256-subnet sweep.
        if self.is_broad:
            return SUBNETS_PER_BROAD_SCAN * self.hosts_per_subnet
        return self.hosts_per_subnet

    def addresses(self) -> Iterator[str]:
        if self.is_broad:
            for subnet in range(SUBNETS_PER_BROAD_SCAN):
                for host in range(self.start, self.end + 1):
                    yield f"{self.base}.{subnet}.{host}"
        else:
            for host in range(self.start, self.end + 1):
                yield f"{self.base}.{host}"

    def describe(self) -> str:
        if self.is_broad:
            return f"{self.base}.0-255.{self.start}-{self.end}"
        return f"{self.base}.{self.start}-{self.end}"


def expand_range(text: str | None, start: int, end: int) -> TargetRange:
    """Turns range text plus host offsets into a TargetRange."""
    base, octet_count = parse_range(text)
    return TargetRange(base=base, octet_count=octet_count, start=start, end=end)


def octet_sort_key(address: str) -> Tuple[int, int]:
    """Sort key on the third and fourth octets; malformed addresses sort last."""
    parts = address.split(".")
    if len(parts) != 4:
        return MALFORMED_SORT_KEY
    try:
        third, fourth = int(parts[2]), int(parts[3])
    except ValueError:
        return MALFORMED_SORT_KEY
    if not (0 <= third <= 255 and 0 <= fourth <= 255):
        return MALFORMED_SORT_KEY
    return third, fourth


def _outbound_ipv4() -> str:
    # UDP connect sends no packets; it only selects the outbound interface.
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("8.8.8.8", 80))
        return sock.getsockname()[0]
    finally:
        sock.close()


def local_range_hint() -> str:
    """Returns the first three octets of this host's LAN address.

    Falls back to ``DEFAULT_RANGE`` when no non-loopback IPv4 address can be
    determined.
    """
    candidates = []
    try:
        candidates.append(_outbound_ipv4())
    except OSError as err:
        logger.debug("Outbound address detection failed: %s", err)
    try:
        candidates.extend(socket.gethostbyname_ex(socket.gethostname())[2])
    except OSError as err:
        logger.debug("Hostname resolution failed: %s", err)

    for address in candidates:
        parts = address.split(".")
        if len(parts) == 4 and not address.startswith("127."):
            return ".".join(parts[:3])

    logger.warning("Failed to get local IP range, using %s", DEFAULT_RANGE)
    return DEFAULT_RANGE
