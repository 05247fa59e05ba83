# lanwatch/coordinator.py
import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .cancel import CancellationToken, ScanCancelled
from .device import DeviceRecord, ScanOptions, ScanProgress
from .events import Event
from .orchestrator import ScanOrchestrator
from .ranges import local_range_hint
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)


class ScanCoordinator:
    """Entry point for callers: one sweep at a time, plus sequential refreshes.

    A full sweep and a refresh of known devices exclude each other only
    cooperatively. The refresh checks ``is_scanning`` before it starts and
    before every device, so a sweep started mid-refresh may overlap it for
    the duration of one device check.
    """

    def __init__(self, orchestrator: ScanOrchestrator, registry: DeviceRegistry,
                 options: Optional[ScanOptions] = None,
                 refresh_options: Optional[ScanOptions] = None,
                 refresh_delay: float = 0.1):
        self.orchestrator = orchestrator
        self.registry = registry
        self.options = options or ScanOptions(ip_range=local_range_hint())
        self.refresh_options = refresh_options or self.options
        self.refresh_delay = refresh_delay
        self.progress = ScanProgress()
        self.progress_changed = Event("progress-changed")
        self.device_found = Event("device-found")
        self.scan_complete = Event("scan-complete")
        self._scanning = False
        self._refreshing = False
        self._scan_token: Optional[CancellationToken] = None
        self._refresh_token: Optional[CancellationToken] = None

        orchestrator.progress_changed.subscribe(self._on_progress)
        orchestrator.device_found.subscribe(self._on_device_found)

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    @property
    def devices(self) -> List[DeviceRecord]:
        return self.registry.get_all()

    def get_local_range_hint(self) -> str:
        return local_range_hint()

    def _on_progress(self, progress: ScanProgress):
        if self._scanning:
            self.progress = progress
            self.progress_changed.emit(progress)

    def _on_device_found(self, device: DeviceRecord):
        if self._scanning:
            self.registry.add_or_update(device)
        self.device_found.emit(device)

    async def start_scan(self) -> Optional[List[DeviceRecord]]:
        """Runs one full sweep, adding each device to the registry as it is found.

        A completed sweep then takes every known device it did not find
        offline; a cancelled one leaves them alone. Returns the registry
        contents afterwards, or None when the request was rejected because a
        sweep is already running or the sweep failed.
        """
        if self._scanning:
            logger.warning("Scan already in progress")
            return None

        self._scanning = True
        token = self._scan_token = CancellationToken()
        self.progress = ScanProgress(is_scanning=True, start_time=datetime.now())
        self.progress_changed.emit(self.progress.snapshot())
        try:
            logger.info("Starting network scan with options: %s", self.options)
            devices = await self.orchestrator.scan_network(self.options, token)
            # Every find is already in the registry; only absent devices remain.
            if token.cancelled:
                # A partial sweep says nothing about the hosts it never reached.
                logger.info("Scan was cancelled; keeping %d completed results", len(devices))
            else:
                self.registry.retire_absent(d.address for d in devices)
            result = self.registry.get_all()
            self.scan_complete.emit(result)
            return result
        except ScanCancelled:
            logger.info("Scan was cancelled")
        except Exception as err:  # pylint: disable=broad-except
            logger.error("Error during network scan: %s", err)
        finally:
            self._scanning = False
            self._scan_token = None
            self.progress.update(scanning=False)
            self.progress_changed.emit(self.progress.snapshot())
        return None

    def stop_scan(self) -> None:
        """Signals the running sweep and refresh to stop."""
        for token in (self._scan_token, self._refresh_token):
            if token is not None:
                token.cancel()
        logger.info("Scan stop requested")

    async def refresh_known_devices(self, options: Optional[ScanOptions] = None) -> Optional[List[DeviceRecord]]:
        """Re-probes registered devices one at a time.

        Devices that do not answer are marked offline, never removed. The walk
        stops early when a full sweep starts.
        """
        if self._scanning:
            logger.info("Skipping refresh - network scan in progress")
            return None
        if self._refreshing:
            logger.info("Skipping refresh - refresh already in progress")
            return None

        known = self.registry.addresses()
        if not known:
            logger.info("No known devices to refresh")
            return None

        options = options or self.refresh_options
        token = self._refresh_token = CancellationToken()
        self._refreshing = True
        progress = ScanProgress(total_addresses=len(known), is_scanning=True, start_time=datetime.now())
        online = 0
        finished = False
        logger.info("Refreshing %d known devices", len(known))
        try:
            for address in known:
                if self._scanning:
                    logger.info("Aborting refresh - network scan started")
                    break
                token.raise_if_cancelled()

                progress.update(f"Checking {address}...", address)
                self.progress_changed.emit(progress.snapshot())
                try:
                    device = await self.orchestrator.scan_device(address, options, token)
                except ScanCancelled:
                    raise
                except Exception as err:  # pylint: disable=broad-except
                    logger.warning("Failed to refresh device %s: %s", address, err)
                    continue

                if device.online:
                    self.registry.add_or_update(device)
                    self.device_found.emit(device)
                    online += 1
                else:
                    self.registry.mark_offline(address)
                progress.increment_scanned()
                self.progress_changed.emit(progress.snapshot())

                if self.refresh_delay:
                    await token.run(asyncio.sleep(self.refresh_delay))
            else:
                finished = True
        except ScanCancelled:
            logger.info("Refresh was cancelled")
        finally:
            self._refreshing = False
            self._refresh_token = None
            progress.update("Refresh complete" if finished else "Refresh stopped", scanning=False)
            self.progress_changed.emit(progress.snapshot())

        if not finished:
            return None
        logger.info("Refresh complete. %d of %d devices online", online, len(known))
        result = self.registry.get_all()
        self.scan_complete.emit(result)
        return result


async def _sleep_until_stopped(stop: asyncio.Event, seconds: float) -> bool:
    try:
        await asyncio.wait_for(stop.wait(), seconds)
        return True
    except asyncio.TimeoutError:
        return False


async def run_periodic_refresh(coordinator: ScanCoordinator, interval: float,
                               initial_delay: float = 0.0,
                               stop: Optional[asyncio.Event] = None) -> None:
    """Calls ``refresh_known_devices`` every ``interval`` seconds until ``stop`` is set."""
    stop = stop or asyncio.Event()
    logger.info("Device refresh loop started. Will refresh every %s seconds", interval)
    if initial_delay and await _sleep_until_stopped(stop, initial_delay):
        return

    while not stop.is_set():
        if coordinator.is_scanning:
            logger.info("Skipping background refresh - manual scan in progress")
        else:
            try:
                await coordinator.refresh_known_devices()
            except Exception as err:  # pylint: disable=broad-except
                logger.error("Error during background device refresh: %s", err)
        if await _sleep_until_stopped(stop, interval):
            break
    logger.info("Device refresh loop stopped")
