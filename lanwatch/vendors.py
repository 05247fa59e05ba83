# lanwatch/vendors.py
import logging
from typing import Optional, Protocol

from mac_vendor_lookup import AsyncMacLookup, InvalidMacError, MacLookup, VendorNotFoundError

logger = logging.getLogger(__name__)


class VendorLookup(Protocol):
    async def lookup(self, mac: str) -> Optional[str]:
        ...


class MacVendorLookup:
    """Manufacturer lookup backed by the IEEE OUI list of mac-vendor-lookup."""

    def __init__(self):
        self._lookup = AsyncMacLookup()

    async def lookup(self, mac: str) -> Optional[str]:
        try:
            return await self._lookup.lookup(mac)
        except (VendorNotFoundError, InvalidMacError, KeyError, ValueError) as err:
            logger.debug("Could not determine vendor for MAC %s: %s", mac, err)
            return None


def update_vendor_database() -> None:
    """Downloads the latest OUI list into the local mac-vendor-lookup cache."""
    MacLookup().update_vendors()
