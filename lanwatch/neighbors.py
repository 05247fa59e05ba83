# lanwatch/neighbors.py
"""Hardware-address lookup from ARP/neighbor tables.

The local table is the operating system's neighbor cache, which the ping
that precedes every lookup has just refreshed. The router table reads the
ARP table of the network's router over SSH, which also covers hosts on
other segments the router serves.
"""
import asyncio
import contextlib
import logging
import platform
import re
import shutil
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .utils import SSHClient, find_mac, is_valid_ipv4

logger = logging.getLogger(__name__)

_IPV4 = re.compile(r"\b(\d{1,3}(?:\.\d{1,3}){3})\b")


class NeighborTable(ABC):
    """Maps an IPv4 address to the hardware address seen for it."""

    @abstractmethod
    async def lookup(self, address: str) -> Optional[str]:
        """Returns the formatted MAC address, or None when unknown."""


def parse_arp_table(output: str) -> Dict[str, str]:
    """Parses `arp -a`, `arp -n` or `ip neigh` output into {ip: mac}."""
    table: Dict[str, str] = {}
    for line in output.splitlines():
        if "incomplete" in line.lower() or "failed" in line.lower():
            continue
        ip_match = _IPV4.search(line)
        mac = find_mac(line)
        if ip_match and mac and is_valid_ipv4(ip_match.group(1)):
            table.setdefault(ip_match.group(1), mac)
    return table


class LocalNeighborTable(NeighborTable):

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    @staticmethod
    def command(address: str, system: Optional[str] = None) -> List[str]:
        system = (system or platform.system()).lower()
        if system == "windows":
            return ["arp", "-a", address]
        if system == "linux" and shutil.which("ip"):
            return ["ip", "neigh", "show", address]
        return ["arp", "-n", address]

    async def lookup(self, address: str) -> Optional[str]:
        cmd = self.command(address)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as err:
            logger.debug("Could not run %s: %s", cmd[0], err)
            return None
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            logger.debug("Neighbor lookup for %s timed out", address)
            return None
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
        return parse_arp_table(out.decode(errors="ignore")).get(address)


class RouterNeighborTable(NeighborTable):
    """Reads the router's ARP table over SSH, cached for ``cache_seconds``."""

    def __init__(self, router_ip: str, username: str, password: Optional[str] = None,
                 ssh_timeout: int = 10, arp_cmd: str = "arp -a", cache_seconds: float = 30.0):
        self.router_ip = router_ip
        self.username = username
        self.password = password
        self.ssh_timeout = ssh_timeout
        self.arp_cmd = arp_cmd
        self.cache_seconds = cache_seconds
        self._table: Dict[str, str] = {}
        self._fetched_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()

    def fetch_table(self) -> Dict[str, str]:
        ssh_client = SSHClient(hostname=self.router_ip, username=self.username,
                               password=self.password, timeout=self.ssh_timeout)
        if not ssh_client.connect():
            return {}
        try:
            output = ssh_client.execute_command(self.arp_cmd)
        finally:
            ssh_client.close()
        table = parse_arp_table(output)
        logger.debug("Read %d ARP entries from router %s", len(table), self.router_ip)
        return table

    def _is_stale(self) -> bool:
        return self._fetched_at is None or time.monotonic() - self._fetched_at > self.cache_seconds

    async def lookup(self, address: str) -> Optional[str]:
        async with self._refresh_lock:
            if self._is_stale():
                loop = asyncio.get_running_loop()
                self._table = await loop.run_in_executor(None, self.fetch_table)
                self._fetched_at = time.monotonic()
        return self._table.get(address)


def get_neighbor_table(settings: Any) -> NeighborTable:
    """Neighbor table factory: returns the source named in ``general.neighbor_source``."""
    general = settings.get("general") or {}
    source = general.get("neighbor_source", "local")

    if source == "local":
        return LocalNeighborTable()
    if source == "router":
        router = settings.get("router") or {}
        return RouterNeighborTable(
            router_ip=router.get("router_ip"),
            username=router.get("router_user"),
            password=router.get("router_password") or None,
            ssh_timeout=int(router.get("ssh_timeout", 10)),
            arp_cmd=router.get("arp_cmd", "arp -a"),
            cache_seconds=float(router.get("cache_seconds", 30.0)),
        )
    raise ValueError(f"Unsupported neighbor source: {source}")
