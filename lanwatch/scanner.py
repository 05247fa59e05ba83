# lanwatch/scanner.py
import asyncio
import contextlib
import logging
from typing import Iterable, List, Sequence

from .cancel import CancellationToken
from .device import PortObservation, ScanOptions
from .ports import EXTENDED_PORTS, HTTP_BANNER_PORTS, PASSIVE_BANNER_PORTS, QUICK_PORTS

logger = logging.getLogger(__name__)


def select_ports(options: ScanOptions) -> List[int]:
    """Custom ports win over the quick set, which wins over the extended set."""
    if not options.scan_ports:
        return []
    if options.custom_ports:
        return list(dict.fromkeys(p for p in options.custom_ports if 0 < p < 65536))
    return list(QUICK_PORTS if options.quick_scan else EXTENDED_PORTS)


class PortScanner:
    """TCP connect scanner with protocol-aware banner capture."""

    def __init__(self, http_ports: Iterable[int] = HTTP_BANNER_PORTS,
                 passive_ports: Iterable[int] = PASSIVE_BANNER_PORTS,
                 banner_read_size: int = 256):
        self.http_ports = frozenset(http_ports)
        self.passive_ports = frozenset(passive_ports)
        self.banner_read_size = banner_read_size

    async def scan(self, address: str, ports: Sequence[int], timeout_ms: int,
                   token: CancellationToken, concurrency: int = 64,
                   banner_timeout_ms: int = 500) -> List[PortObservation]:
        """Probes ``ports`` on one host and returns the open ones, by port number.

        At most ``concurrency`` connections to the host are in flight at once.
        """
        if not ports:
            return []
        semaphore = asyncio.Semaphore(max(1, min(concurrency, len(ports))))

        async def probe(port: int) -> PortObservation:
            async with semaphore:
                return await self.probe_port(address, port, timeout_ms, token, banner_timeout_ms)

        tasks = [asyncio.ensure_future(probe(port)) for port in ports]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return sorted((r for r in results if r.is_open), key=lambda r: r.port)

    async def probe_port(self, address: str, port: int, timeout_ms: int,
                         token: CancellationToken, banner_timeout_ms: int = 500) -> PortObservation:
        observation = PortObservation(port=port)
        try:
            reader, writer = await token.run(asyncio.open_connection(address, port), timeout=timeout_ms / 1000)
        except (OSError, asyncio.TimeoutError):
            return observation

        observation.is_open = True
        try:
            observation.banner = await self.grab_banner(reader, writer, address, port,
                                                        banner_timeout_ms / 1000, token)
        finally:
            writer.close()
            with contextlib.suppress(OSError, asyncio.TimeoutError):
                await asyncio.wait_for(writer.wait_closed(), banner_timeout_ms / 1000)
        return observation

    async def grab_banner(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                          address: str, port: int, timeout: float, token: CancellationToken) -> str:
        try:
            if port in self.http_ports:
                return await token.run(self._http_server_header(reader, writer, address), timeout=timeout)
            if port in self.passive_ports:
                data = await token.run(reader.read(self.banner_read_size), timeout=timeout)
                return data.decode("ascii", errors="ignore").strip()
        except (OSError, asyncio.TimeoutError) as err:
            logger.debug("Banner capture failed for %s:%d: %s", address, port, err)
        return ""

    @staticmethod
    async def _http_server_header(reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                                  address: str) -> str:
        request = f"HEAD / HTTP/1.1\r\nHost: {address}\r\nConnection: close\r\n\r\n"
        writer.write(request.encode("ascii"))
        await writer.drain()
        response = (await reader.read(1024)).decode("ascii", errors="ignore")
        for line in response.splitlines():
            if line.lower().startswith("server:"):
                return line[len("server:"):].strip()
        return ""
