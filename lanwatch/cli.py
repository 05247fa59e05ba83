# lanwatch/cli.py
import argparse
import asyncio
import logging
import signal
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import section, settings
from .coordinator import ScanCoordinator, run_periodic_refresh
from .device import DeviceRecord, ScanOptions
from .neighbors import get_neighbor_table
from .orchestrator import ScanOrchestrator
from .probe import HostProbe
from .registry import DeviceRegistry
from .vendors import MacVendorLookup, update_vendor_database

logger = logging.getLogger(__name__)


def _parse_ports(value: str) -> List[int]:
    try:
        return [int(p) for p in value.split(",") if p.strip()]
    except ValueError as err:
        raise argparse.ArgumentTypeError(f"invalid port list: {value}") from err


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover and track devices on the local network")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--update-mac-db", action="store_true", help="Force update of the MAC vendor database")
    parser.add_argument("--state-file", type=Path, help="Override the device snapshot location")
    commands = parser.add_subparsers(dest="command")

    scan = commands.add_parser("scan", help="Sweep an address range")
    scan.add_argument("--range", dest="ip_range", help='Range to sweep, e.g. "192.168.1" or "10.0"')
    scan.add_argument("--start", type=int, help="First host offset")
    scan.add_argument("--end", type=int, help="Last host offset")
    scan.add_argument("--no-ports", action="store_true", help="Skip port scanning")
    scan.add_argument("--extended", action="store_true", help="Use the extended port set")
    scan.add_argument("--ports", type=_parse_ports, help="Comma-separated ports, overrides the port set")

    commands.add_parser("refresh", help="Re-check known devices one at a time")
    watch = commands.add_parser("watch", help="Refresh known devices periodically")
    watch.add_argument("--interval", type=float, help="Seconds between refreshes")
    commands.add_parser("list", help="Show the stored devices")
    return parser


def scan_options(args: argparse.Namespace) -> ScanOptions:
    options = ScanOptions.from_settings(settings)
    overrides = {}
    if getattr(args, "ip_range", None):
        overrides["ip_range"] = args.ip_range
    if getattr(args, "start", None) is not None:
        overrides["start_address"] = args.start
    if getattr(args, "end", None) is not None:
        overrides["end_address"] = args.end
    if getattr(args, "no_ports", False):
        overrides["scan_ports"] = False
    if getattr(args, "extended", False):
        overrides["quick_scan"] = False
    if getattr(args, "ports", None):
        overrides["custom_ports"] = tuple(args.ports)
    return replace(options, **overrides)


def refresh_options(options: ScanOptions) -> ScanOptions:
    refresh = section("refresh")
    return replace(
        options,
        ping_timeout_ms=int(refresh.get("ping_timeout_ms", options.ping_timeout_ms)),
        port_timeout_ms=int(refresh.get("port_timeout_ms", 300)),
        quick_scan=True,
        custom_ports=(),
    )


def build_registry(args: argparse.Namespace) -> DeviceRegistry:
    general = section("general")
    state_file = args.state_file or Path(general.get("state_file", "data/devices.json"))
    return DeviceRegistry(
        state_file=state_file,
        save_delay=float(general.get("save_delay", 0.5)),
        history_limit=int(general.get("history_limit", 50)),
    )


def build_coordinator(args: argparse.Namespace, registry: DeviceRegistry) -> ScanCoordinator:
    probe = HostProbe(neighbors=get_neighbor_table(settings), vendors=MacVendorLookup())
    options = scan_options(args)
    return ScanCoordinator(
        ScanOrchestrator(probe=probe),
        registry,
        options=options,
        refresh_options=refresh_options(options),
        refresh_delay=int(section("refresh").get("device_delay_ms", 100)) / 1000,
    )


def print_devices(devices: List[DeviceRecord]) -> None:
    for device in devices:
        ports = ",".join(str(p) for p in device.open_port_numbers) or "-"
        status = "online" if device.online else "offline"
        print(f"{device.address:<16} {status:<8} {device.hostname:<28} {device.hardware_address:<18} "
              f"{device.device_type.value:<15} risk={device.risk_level.value}({device.risk_score}) "
              f"seen={device.discovery_count} trend={device.uptime_trend} ports={ports}")


def _on_interrupt(callback) -> None:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl+C will abort immediately")


async def _scan(coordinator: ScanCoordinator) -> None:
    _on_interrupt(coordinator.stop_scan)
    coordinator.progress_changed.subscribe(
        lambda p: logger.debug("%s (%d/%d)", p.current_action, p.scanned_addresses, p.total_addresses)
    )
    await coordinator.start_scan()


async def _refresh(coordinator: ScanCoordinator) -> None:
    _on_interrupt(coordinator.stop_scan)
    await coordinator.refresh_known_devices()


async def _watch(coordinator: ScanCoordinator, interval: float, initial_delay: float) -> None:
    stop = asyncio.Event()

    def _stop():
        coordinator.stop_scan()
        stop.set()

    _on_interrupt(_stop)
    await run_periodic_refresh(coordinator, interval, initial_delay, stop)


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    if args.update_mac_db:
        update_vendor_database()

    registry = build_registry(args)
    try:
        if args.command in (None, "list"):
            print_devices(registry.get_all())
            return

        coordinator = build_coordinator(args, registry)
        if args.command == "scan":
            asyncio.run(_scan(coordinator))
        elif args.command == "refresh":
            asyncio.run(_refresh(coordinator))
        elif args.command == "watch":
            refresh = section("refresh")
            interval = args.interval or float(refresh.get("interval_seconds", 30))
            asyncio.run(_watch(coordinator, interval, float(refresh.get("initial_delay_seconds", 10))))
        print_devices(registry.get_all())
    finally:
        registry.close()


if __name__ == "__main__":
    main()
