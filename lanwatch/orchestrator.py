# lanwatch/orchestrator.py
"""Concurrent sweep of an address range.

One worker task is spawned per target address and gated by a semaphore sized
to ``max_parallel_scans``. There is no overall deadline: a sweep takes at
most the sum of its per-operation timeouts divided across the parallel
workers. Cancellation is cooperative through the shared token; workers that
had not finished when it fired are dropped from the result.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from .cancel import CancellationToken, ScanCancelled
from .device import DeviceRecord, ScanOptions, ScanProgress
from .events import Event
from .probe import HostProbe
from .ranges import expand_range
from .scanner import PortScanner, select_ports

logger = logging.getLogger(__name__)


class ScanOrchestrator:

    def __init__(self, probe: Optional[HostProbe] = None, port_scanner: Optional[PortScanner] = None):
        self.probe = probe or HostProbe()
        self.port_scanner = port_scanner or PortScanner()
        self.progress = ScanProgress()
        self.progress_changed = Event("progress-changed")
        self.device_found = Event("device-found")

    def _publish(self, action: str, address: Optional[str] = None):
        self.progress.update(action, address)
        self.progress_changed.emit(self.progress.snapshot())

    async def scan_network(self, options: ScanOptions,
                           token: Optional[CancellationToken] = None) -> List[DeviceRecord]:
        """Sweeps the configured range and returns the online devices in address order."""
        token = token or CancellationToken()
        target = expand_range(options.ip_range, options.start_address, options.end_address)
        ports_per_host = len(select_ports(options))

        self.progress = ScanProgress(total_addresses=target.total, is_scanning=True,
                                     start_time=datetime.now())
        if target.is_broad:
            logger.info("Starting broad network scan on %s", target.describe())
        else:
            logger.info("Starting network scan on %s", target.describe())
        self._publish("Initializing scan...")

        semaphore = asyncio.Semaphore(max(1, options.max_parallel_scans))
        completed: Dict[str, DeviceRecord] = {}

        async def worker(address: str):
            async with semaphore:
                token.raise_if_cancelled()
                device = await self.scan_device(address, options, token)
            self.progress.increment_scanned()
            if device.online:
                completed[address] = device
                self.progress.increment_devices_found()
                self.progress.add_ports_scanned(ports_per_host)
                self._publish(f"Found device at {address}", address)
                self.device_found.emit(device)
            else:
                self._publish(f"Scanning {address}...", address)

        order = list(target.addresses())
        tasks = [asyncio.ensure_future(worker(address)) for address in order]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for address, outcome in zip(order, outcomes):
            if isinstance(outcome, Exception) and not isinstance(outcome, ScanCancelled):
                logger.error("Scan worker for %s failed: %s", address, outcome)

        devices = [completed[address] for address in order if address in completed]
        self.progress.update(scanning=False)
        if token.cancelled:
            logger.info("Scan cancelled after %d of %d addresses. Found %d devices",
                        self.progress.scanned_addresses, target.total, len(devices))
            self._publish("Scan cancelled")
        else:
            logger.info("Scan complete. Found %d devices", len(devices))
            self._publish("Scan complete!")
        return devices

    async def scan_device(self, address: str, options: ScanOptions,
                          token: Optional[CancellationToken] = None) -> DeviceRecord:
        """Runs the probe, port scan and classification pipeline for one address.

        Failures other than cancellation are contained here so one host can
        never abort its siblings; the host is then reported as far as it got.
        """
        token = token or CancellationToken()
        device = DeviceRecord(address=address)
        try:
            result = await self.probe.ping(address, options.ping_timeout_ms, token)
            if not result.online:
                return device

            device.online = True
            device.last_seen = datetime.now()
            device.response_time_ms = result.response_time_ms
            device.ttl = result.ttl
            device.hostname = await self.probe.resolve_hostname(address, token)
            device.hardware_address = await self.probe.hardware_address(address, token)
            device.manufacturer = await self.probe.manufacturer(device.hardware_address)

            ports = select_ports(options)
            if ports:
                device.open_ports = await self.port_scanner.scan(
                    address, ports, options.port_timeout_ms, token,
                    concurrency=options.port_concurrency,
                    banner_timeout_ms=options.banner_timeout_ms,
                )
            device.reclassify()
        except ScanCancelled:
            raise
        except Exception as err:  # pylint: disable=broad-except
            logger.debug("Error scanning %s: %s", address, err)
        return device
