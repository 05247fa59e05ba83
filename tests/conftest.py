import asyncio
from datetime import datetime

import pytest

from lanwatch.cancel import CancellationToken
from lanwatch.device import DeviceRecord, PortObservation
from lanwatch.probe import PingResult
from lanwatch.registry import DeviceRegistry


class FakeProbe:
    """Stands in for HostProbe without touching the network."""

    def __init__(self, online=(), slow=(), delay=0.0, failing=()):
        self.online = set(online)
        self.slow = set(slow)
        self.delay = delay
        self.failing = set(failing)
        self.active = 0
        self.max_active = 0
        self.pinged = []

    async def ping(self, address, timeout_ms, token: CancellationToken):
        self.pinged.append(address)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if address in self.slow:
                await token.run(asyncio.sleep(30))
            elif self.delay:
                await token.run(asyncio.sleep(self.delay))
        finally:
            self.active -= 1
        return PingResult(online=address in self.online, response_time_ms=3, ttl=64)

    async def resolve_hostname(self, address, token):
        if address in self.failing:
            raise RuntimeError("resolver exploded")
        return f"host-{address.rsplit('.', 1)[-1]}"

    async def hardware_address(self, address, token):
        return "aa:bb:cc:dd:ee:" + format(int(address.rsplit(".", 1)[-1]) % 256, "02x")

    async def manufacturer(self, mac):
        return "Acme"


class FakePortScanner:
    def __init__(self, open_ports=()):
        self.open_ports = list(open_ports)
        self.calls = []

    async def scan(self, address, ports, timeout_ms, token, concurrency=64, banner_timeout_ms=500):
        self.calls.append((address, list(ports)))
        return [PortObservation(port=p, is_open=True) for p in self.open_ports if p in ports]


def make_device(address, online=True, ports=(), hostname="Unknown", **kwargs):
    return DeviceRecord(
        address=address,
        online=online,
        hostname=hostname,
        last_seen=datetime.now() if online else None,
        open_ports=[PortObservation(port=p, is_open=True) for p in ports],
        **kwargs,
    )


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "devices.json"
