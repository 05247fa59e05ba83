import asyncio

import pytest

from lanwatch.neighbors import (
    LocalNeighborTable,
    RouterNeighborTable,
    get_neighbor_table,
    parse_arp_table,
)
from lanwatch.utils import find_mac, format_mac, is_valid_ipv4

IP_NEIGH = """192.168.1.1 dev eth0 lladdr 3c:22:fb:00:00:01 REACHABLE
192.168.1.9 dev eth0  FAILED
192.168.1.20 dev eth0 lladdr b8:27:eb:1a:2b:3c STALE
"""

MAC_ARP = """? (192.168.1.1) at 3c:22:fb:0:0:1 on en0 ifscope [ethernet]
? (192.168.1.7) at (incomplete) on en0 ifscope [ethernet]
"""

WINDOWS_ARP = """Interface: 192.168.1.10 --- 0x4
  Internet Address      Physical Address      Type
  192.168.1.1           3c-22-fb-00-00-01     dynamic
  192.168.1.255         ff-ff-ff-ff-ff-ff     static
"""


def test_parse_ip_neigh():
    assert parse_arp_table(IP_NEIGH) == {
        "192.168.1.1": "3c:22:fb:00:00:01",
        "192.168.1.20": "b8:27:eb:1a:2b:3c",
    }


def test_parse_bsd_arp_pads_octets():
    assert parse_arp_table(MAC_ARP) == {"192.168.1.1": "3c:22:fb:00:00:01"}


def test_parse_windows_arp_skips_broadcast():
    assert parse_arp_table(WINDOWS_ARP) == {"192.168.1.1": "3c:22:fb:00:00:01"}


def test_mac_helpers():
    assert format_mac("AA-BB-CC-D-E-F") == "aa:bb:cc:0d:0e:0f"
    assert find_mac("nothing here") is None
    assert find_mac("00:00:00:00:00:00 then 11:22:33:44:55:66") == "11:22:33:44:55:66"
    assert is_valid_ipv4("10.0.0.1")
    assert not is_valid_ipv4("10.0.0.256")


def test_local_command_per_platform(mocker):
    assert LocalNeighborTable.command("10.0.0.1", "Windows") == ["arp", "-a", "10.0.0.1"]
    assert LocalNeighborTable.command("10.0.0.1", "Darwin") == ["arp", "-n", "10.0.0.1"]
    mocker.patch("shutil.which", return_value="/usr/sbin/ip")
    assert LocalNeighborTable.command("10.0.0.1", "Linux") == ["ip", "neigh", "show", "10.0.0.1"]


def test_router_table_is_cached(mocker):
    table = RouterNeighborTable("192.168.1.1", "admin", cache_seconds=60)
    fetch = mocker.patch.object(table, "fetch_table", return_value={"192.168.1.20": "b8:27:eb:1a:2b:3c"})

    async def scenario():
        return [await table.lookup("192.168.1.20"), await table.lookup("192.168.1.99")]

    assert asyncio.run(scenario()) == ["b8:27:eb:1a:2b:3c", None]
    assert fetch.call_count == 1


def test_router_fetch_reads_arp_over_ssh(mocker):
    client = mocker.patch("lanwatch.neighbors.SSHClient")
    client.return_value.connect.return_value = True
    client.return_value.execute_command.return_value = IP_NEIGH

    table = RouterNeighborTable("192.168.1.1", "admin", password="secret", arp_cmd="ip neigh")

    assert table.fetch_table()["192.168.1.1"] == "3c:22:fb:00:00:01"
    client.return_value.execute_command.assert_called_once_with("ip neigh")
    client.return_value.close.assert_called_once()


def test_router_fetch_without_connection_is_empty(mocker):
    client = mocker.patch("lanwatch.neighbors.SSHClient")
    client.return_value.connect.return_value = False

    assert RouterNeighborTable("192.168.1.1", "admin").fetch_table() == {}


def test_neighbor_table_factory():
    assert isinstance(get_neighbor_table({"general": {"neighbor_source": "local"}}), LocalNeighborTable)

    router = get_neighbor_table({
        "general": {"neighbor_source": "router"},
        "router": {"router_ip": "192.168.1.1", "router_user": "admin", "cache_seconds": 5},
    })
    assert isinstance(router, RouterNeighborTable)
    assert router.cache_seconds == 5.0
    assert router.password is None

    with pytest.raises(ValueError):
        get_neighbor_table({"general": {"neighbor_source": "snmp"}})
