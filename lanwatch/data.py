# lanwatch/data.py
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .device import DeviceRecord

logger = logging.getLogger(__name__)


@dataclass
class PersistedSnapshot:
    last_updated: Optional[datetime] = None
    devices: List[DeviceRecord] = field(default_factory=list)


def load_snapshot(json_file: Path) -> PersistedSnapshot:
    """Loads the device snapshot from the JSON file.

    Missing, unreadable or corrupt files yield an empty snapshot; malformed
    device entries are skipped.

    Args:
        json_file (Path): Path to the JSON file.

    Returns:
        PersistedSnapshot: The last-updated timestamp and the stored devices.
    """
    try:
        with json_file.open("r", encoding="utf-8") as file:
            data = json.load(file)
    except FileNotFoundError:
        logger.info("No device snapshot at %s. Starting empty.", json_file)
        return PersistedSnapshot()
    except json.JSONDecodeError as err:
        logger.warning("Error decoding device snapshot %s: %s. Starting empty.", json_file, err)
        return PersistedSnapshot()
    except OSError as err:
        logger.warning("Could not read device snapshot %s: %s. Starting empty.", json_file, err)
        return PersistedSnapshot()

    if not isinstance(data, dict):
        logger.warning("Unexpected snapshot layout in %s. Starting empty.", json_file)
        return PersistedSnapshot()

    snapshot = PersistedSnapshot()
    try:
        snapshot.last_updated = datetime.fromisoformat(data["lastUpdated"]) if data.get("lastUpdated") else None
    except (TypeError, ValueError) as err:
        logger.warning("Ignoring invalid lastUpdated in %s: %s", json_file, err)

    for entry in data.get("devices") or []:
        try:
            snapshot.devices.append(DeviceRecord.from_dict(entry))
        except (KeyError, TypeError, ValueError, AttributeError) as err:
            logger.warning("Skipping malformed device entry in %s: %s", json_file, err)
    return snapshot


def save_snapshot(devices: List[DeviceRecord], json_file: Path,
                  last_updated: Optional[datetime] = None) -> bool:
    """Saves the full device list to the JSON file.

    The snapshot is written to a temporary file beside ``json_file`` and
    moved into place, so readers never see a partial file.

    Args:
        devices (List[DeviceRecord]): The devices to save, in display order.
        json_file (Path): Path to the JSON file.
        last_updated (datetime, optional): Defaults to now.

    Returns:
        bool: True when the snapshot was written.
    """
    data = {
        "lastUpdated": (last_updated or datetime.now()).isoformat(),
        "devices": [device.to_dict() for device in devices],
    }
    tmp_name = None
    try:
        json_file.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=json_file.parent,
                                         prefix=f".{json_file.name}.", suffix=".tmp") as file:
            tmp_name = file.name
            json.dump(data, file, indent=4)
        os.replace(tmp_name, json_file)
        return True
    except OSError as err:
        logger.error("File system error while saving device snapshot: %s", err)
    except (TypeError, ValueError) as err:
        logger.error("Unexpected error while serializing device snapshot: %s", err)
    if tmp_name is not None:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
    return False
