# lanwatch/__init__.py
from .cancel import CancellationToken, ScanCancelled
from .classifier import DeviceType, RiskLevel
from .coordinator import ScanCoordinator, run_periodic_refresh
from .device import DeviceRecord, PortObservation, ScanOptions, ScanProgress
from .orchestrator import ScanOrchestrator
from .probe import HostProbe
from .registry import DeviceRegistry
from .scanner import PortScanner

__all__ = [
    "CancellationToken",
    "DeviceRecord",
    "DeviceRegistry",
    "DeviceType",
    "HostProbe",
    "PortObservation",
    "PortScanner",
    "RiskLevel",
    "ScanCancelled",
    "ScanCoordinator",
    "ScanOptions",
    "ScanOrchestrator",
    "ScanProgress",
    "run_periodic_refresh",
]
