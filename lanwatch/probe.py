# lanwatch/probe.py
import asyncio
import contextlib
import logging
import math
import platform
import re
import socket
import time
from dataclasses import dataclass
from typing import List, Optional

from .cancel import CancellationToken, ScanCancelled
from .device import UNKNOWN
from .neighbors import LocalNeighborTable, NeighborTable
from .utils import format_mac
from .vendors import VendorLookup

logger = logging.getLogger(__name__)

# Extra time the ping process gets beyond its own timeout before it is killed.
PING_GRACE_SECONDS = 1.5

_TTL_RE = re.compile(r"ttl[=:]\s*(\d+)", re.IGNORECASE)
_TIME_RE = re.compile(r"time\s*[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)


@dataclass
class PingResult:
    online: bool
    response_time_ms: int = 0
    ttl: int = 0


def ping_command(address: str, timeout_ms: int, system: Optional[str] = None) -> List[str]:
    system = (system or platform.system()).lower()
    if system == "windows":
        return ["ping", "-n", "1", "-w", str(timeout_ms), address]
    if system == "darwin":
        # macOS takes -W in milliseconds
        return ["ping", "-c", "1", "-W", str(timeout_ms), address]
    return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout_ms / 1000))), address]


def parse_ping_output(output: str) -> PingResult:
    """A reply counts only when it carries a TTL; unreachable notices do not."""
    ttl_match = _TTL_RE.search(output)
    if not ttl_match:
        return PingResult(online=False)
    time_match = _TIME_RE.search(output)
    response_time = int(round(float(time_match.group(1)))) if time_match else 0
    return PingResult(online=True, response_time_ms=response_time, ttl=int(ttl_match.group(1)))


class HostProbe:
    """Liveness and identity checks for a single address.

    Hostname, hardware-address and manufacturer lookups are best effort and
    fall back to ``"Unknown"`` independently of each other.
    """

    def __init__(self, neighbors: Optional[NeighborTable] = None,
                 vendors: Optional[VendorLookup] = None, lookup_timeout: float = 2.0):
        self.neighbors = neighbors if neighbors is not None else LocalNeighborTable()
        self.vendors = vendors
        self.lookup_timeout = lookup_timeout

    async def ping(self, address: str, timeout_ms: int, token: CancellationToken) -> PingResult:
        cmd = ping_command(address, timeout_ms)
        started = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as err:
            logger.debug("Could not run ping for %s: %s", address, err)
            return PingResult(online=False)

        try:
            out, _ = await token.run(proc.communicate(), timeout=timeout_ms / 1000 + PING_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.debug("Ping to %s timed out", address)
            return PingResult(online=False)
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()

        result = parse_ping_output(out.decode(errors="ignore"))
        if result.online and not result.response_time_ms:
            result.response_time_ms = int((time.perf_counter() - started) * 1000)
        return result

    async def resolve_hostname(self, address: str, token: CancellationToken) -> str:
        loop = asyncio.get_running_loop()
        try:
            name, _, _ = await token.run(
                loop.run_in_executor(None, socket.gethostbyaddr, address), timeout=self.lookup_timeout
            )
        except (OSError, asyncio.TimeoutError) as err:
            logger.debug("Reverse lookup failed for %s: %s", address, err)
            return UNKNOWN
        return name or UNKNOWN

    async def hardware_address(self, address: str, token: CancellationToken) -> str:
        try:
            mac = await token.run(self.neighbors.lookup(address), timeout=self.lookup_timeout)
        except ScanCancelled:
            raise
        except Exception as err:  # pylint: disable=broad-except
            logger.debug("Hardware address lookup failed for %s: %s", address, err)
            return UNKNOWN
        return format_mac(mac) if mac else UNKNOWN

    async def manufacturer(self, mac: str) -> str:
        if self.vendors is None or mac == UNKNOWN:
            return UNKNOWN
        try:
            vendor = await self.vendors.lookup(mac)
        except Exception as err:  # pylint: disable=broad-except
            logger.debug("Vendor lookup failed for %s: %s", mac, err)
            return UNKNOWN
        return vendor or UNKNOWN
