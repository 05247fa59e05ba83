# lanwatch/registry.py
"""Address-keyed device store with history-preserving merges.

All map mutations happen under one lock that is never held across I/O.
Change broadcasts are serialized by a second, re-entrant lock taken around
each mutation, so subscribers see the lists in mutation order. Snapshot
writes go through a separate write gate and are coalesced: the first
mutation arms a timer, later mutations inside the window ride along, and
the timer writes the full device list once.
"""
import copy
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .classifier import risk_level
from .data import load_snapshot, save_snapshot
from .device import DeviceRecord
from .events import Event
from .ranges import octet_sort_key

logger = logging.getLogger(__name__)

DEFAULT_SAVE_DELAY = 0.5
DEFAULT_HISTORY_LIMIT = 50


class DeviceRegistry:

    def __init__(self, state_file: Optional[Path] = None, save_delay: float = DEFAULT_SAVE_DELAY,
                 history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.state_file = Path(state_file) if state_file else None
        self.save_delay = save_delay
        self.history_limit = history_limit
        self.changed = Event("registry-changed")
        self._devices: Dict[str, DeviceRecord] = {}
        self._lock = threading.Lock()
        # Re-entrant so a subscriber may itself mutate the registry.
        self._publish_lock = threading.RLock()
        self._write_gate = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._dirty = False
        self._load()

    def _load(self):
        if self.state_file is None:
            return
        snapshot = load_snapshot(self.state_file)
        with self._lock:
            for device in snapshot.devices:
                # Restored devices stay offline until a live scan confirms them.
                device.online = False
                self._devices[device.address] = device
        if snapshot.devices:
            logger.info("Restored %d devices from %s (last updated %s)",
                        len(snapshot.devices), self.state_file, snapshot.last_updated)

    # --- Reads ---

    def _sorted_copy(self) -> List[DeviceRecord]:
        ordered = sorted(self._devices.values(), key=lambda d: octet_sort_key(d.address))
        return [copy.deepcopy(device) for device in ordered]

    def get_all(self) -> List[DeviceRecord]:
        with self._lock:
            return self._sorted_copy()

    def get(self, address: str) -> Optional[DeviceRecord]:
        with self._lock:
            device = self._devices.get(address)
            return copy.deepcopy(device) if device else None

    def addresses(self) -> List[str]:
        with self._lock:
            return [d.address for d in sorted(self._devices.values(), key=lambda d: octet_sort_key(d.address))]

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address in self._devices

    # --- Merge rules (caller holds the lock) ---

    def _observe(self, device: DeviceRecord, now: datetime):
        """Counts one scan of ``device``, online or not."""
        device.total_scans += 1
        device.scan_history.append(device.online)
        del device.scan_history[:-self.history_limit]
        if device.online:
            if device.last_seen is None:
                device.last_seen = now
            device.online_history.append(device.last_seen)
            del device.online_history[:-self.history_limit]
        device.risk_level = risk_level(device.risk_score)

    def _observe_absent(self, device: DeviceRecord, now: datetime) -> bool:
        """Records a scan that did not find ``device``; True if it just went offline."""
        went_offline = device.online
        device.online = False
        self._observe(device, now)
        return went_offline

    def _insert(self, record: DeviceRecord, now: datetime) -> bool:
        device = copy.deepcopy(record)
        device.first_discovered = now
        device.discovery_count = 1
        device.online_history = []
        device.scan_history = []
        device.total_scans = 0
        self._observe(device, now)
        self._devices[device.address] = device
        return True

    def _reconcile(self, record: DeviceRecord, now: datetime) -> bool:
        """Applies the add-or-update rule; returns True for a new address."""
        existing = self._devices.get(record.address)
        if existing is None:
            return self._insert(record, now)

        device = copy.deepcopy(record)
        device.first_discovered = existing.first_discovered
        device.discovery_count = existing.discovery_count + 1
        device.online_history = list(existing.online_history)
        device.scan_history = list(existing.scan_history)
        device.total_scans = existing.total_scans
        if device.last_seen is None:
            device.last_seen = existing.last_seen
        self._observe(device, now)
        self._devices[device.address] = device
        return False

    def _merge_live_state(self, record: DeviceRecord, now: datetime) -> bool:
        existing = self._devices.get(record.address)
        if existing is None:
            return self._insert(record, now)

        existing.online = record.online
        if record.last_seen is not None:
            existing.last_seen = record.last_seen
        existing.response_time_ms = record.response_time_ms
        existing.hostname = record.hostname
        existing.hardware_address = record.hardware_address
        existing.open_ports = copy.deepcopy(record.open_ports)
        existing.device_type = record.device_type
        existing.discovery_count += 1
        self._observe(existing, now)
        return False

    # --- Mutations ---

    def add_or_update(self, record: DeviceRecord) -> None:
        """Inserts a new device or replaces the observation of a known one.

        A known device keeps its first-discovered time and gains one
        discovery; every scan-derived field comes from ``record``.
        """
        with self._publish_lock:
            with self._lock:
                is_new = self._reconcile(record, datetime.now())
                devices = self._sorted_copy()
            if is_new:
                logger.info("New device added: %s (%s)", record.address, record.hostname)
            self._changed(devices)

    def update_devices(self, batch: Iterable[DeviceRecord]) -> None:
        """Reconciles a full sweep; known devices missing from it go offline."""
        now = datetime.now()
        with self._publish_lock:
            added = []
            with self._lock:
                seen = set()
                for record in batch:
                    if self._reconcile(record, now):
                        added.append(record.address)
                    seen.add(record.address)
                went_offline = self._retire(seen, now)
                devices = self._sorted_copy()
            for address in added:
                logger.info("New device added: %s", address)
            self._log_offline(went_offline)
            self._changed(devices)

    def retire_absent(self, present: Iterable[str]) -> None:
        """Closes a sweep whose finds were already added one by one.

        Every known device outside ``present`` is counted as scanned and
        offline; devices in ``present`` are left as they are.
        """
        with self._publish_lock:
            with self._lock:
                went_offline = self._retire(set(present), datetime.now())
                devices = self._sorted_copy()
            self._log_offline(went_offline)
            self._changed(devices)

    def _retire(self, present: set, now: datetime) -> List[str]:
        went_offline = []
        for address, device in self._devices.items():
            if address in present:
                continue
            if self._observe_absent(device, now):
                went_offline.append(address)
        return went_offline

    @staticmethod
    def _log_offline(addresses: List[str]):
        for address in addresses:
            logger.info("Device went offline: %s", address)

    def merge_devices(self, batch: Iterable[DeviceRecord]) -> None:
        """Folds incremental observations into known devices in place.

        Only live state (online flag, last seen, response time, hostname,
        hardware address, ports and type) is overwritten; enrichment such as
        manufacturer and operating system is kept.
        """
        now = datetime.now()
        with self._publish_lock:
            added = []
            with self._lock:
                for record in batch:
                    if self._merge_live_state(record, now):
                        added.append(record.address)
                devices = self._sorted_copy()
            for address in added:
                logger.info("New device added: %s", address)
            self._changed(devices)

    def mark_offline(self, address: str) -> bool:
        """Flags a known device offline after a check that got no answer.

        The check counts towards the device's scan history; every other
        field is kept.
        """
        with self._publish_lock:
            with self._lock:
                device = self._devices.get(address)
                if device is None:
                    return False
                self._observe_absent(device, datetime.now())
                devices = self._sorted_copy()
            self._changed(devices)
        return True

    def clear(self) -> None:
        with self._publish_lock:
            with self._lock:
                self._devices.clear()
            self._changed([])

    def _changed(self, devices: List[DeviceRecord]):
        self._schedule_save()
        self.changed.emit(devices)

    # --- Persistence ---

    def _schedule_save(self):
        if self.state_file is None:
            return
        with self._timer_lock:
            self._dirty = True
            if self._timer is not None:
                return
            self._timer = threading.Timer(self.save_delay, self._save)
            self._timer.daemon = True
            self._timer.start()

    def _save(self) -> bool:
        with self._timer_lock:
            self._timer = None
        with self._write_gate:
            with self._timer_lock:
                self._dirty = False
            with self._lock:
                devices = self._sorted_copy()
            saved = save_snapshot(devices, self.state_file)
        if saved:
            logger.debug("Saved %d devices to %s", len(devices), self.state_file)
        return saved

    def _cancel_timer(self):
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> bool:
        """Writes the snapshot now, replacing any pending delayed save."""
        if self.state_file is None:
            return False
        self._cancel_timer()
        return self._save()

    def close(self) -> None:
        """Cancels the delayed save and writes any unsaved changes.

        Waits for a save already running on the timer thread.
        """
        if self.state_file is None:
            return
        self._cancel_timer()
        with self._write_gate:
            with self._timer_lock:
                dirty = self._dirty
        if dirty:
            self._save()
