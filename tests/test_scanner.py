import asyncio
import socket

from lanwatch.cancel import CancellationToken
from lanwatch.device import ScanOptions
from lanwatch.ports import EXTENDED_PORTS, QUICK_PORTS
from lanwatch.scanner import PortScanner, select_ports


def _closed_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def _serve(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


async def _silent(reader, writer):
    await asyncio.sleep(0.5)
    writer.close()


def test_select_ports_precedence():
    assert select_ports(ScanOptions(scan_ports=False, custom_ports=(22,))) == []
    assert select_ports(ScanOptions(custom_ports=(22, 80, 22, 0, 70000))) == [22, 80]
    assert select_ports(ScanOptions()) == list(QUICK_PORTS)
    assert select_ports(ScanOptions(quick_scan=False)) == list(EXTENDED_PORTS)


def test_open_and_closed_ports():
    closed = _closed_port()

    async def scenario():
        server, port = await _serve(_silent)
        async with server:
            return port, await PortScanner().scan("127.0.0.1", [closed, port], 500, CancellationToken())

    port, results = asyncio.run(scenario())

    assert [r.port for r in results] == [port]
    assert results[0].is_open
    assert results[0].protocol == "TCP"
    assert results[0].banner == ""


def test_http_server_header_is_captured():
    async def http(reader, writer):
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 200 OK\r\nServer: nginx/1.24.0\r\nContent-Length: 0\r\n\r\n")
        await writer.drain()
        writer.close()

    async def scenario():
        server, port = await _serve(http)
        async with server:
            scanner = PortScanner(http_ports={port}, passive_ports=())
            return await scanner.scan("127.0.0.1", [port], 500, CancellationToken())

    results = asyncio.run(scenario())

    assert results[0].banner == "nginx/1.24.0"


def test_greeting_banner_is_captured():
    async def ssh(reader, writer):
        writer.write(b"SSH-2.0-OpenSSH_9.6\r\n")
        await writer.drain()
        await asyncio.sleep(0.2)
        writer.close()

    async def scenario():
        server, port = await _serve(ssh)
        async with server:
            scanner = PortScanner(http_ports=(), passive_ports={port})
            return await scanner.scan("127.0.0.1", [port], 500, CancellationToken())

    results = asyncio.run(scenario())

    assert results[0].banner == "SSH-2.0-OpenSSH_9.6"


def test_silent_service_still_counts_as_open():
    async def scenario():
        server, port = await _serve(_silent)
        async with server:
            scanner = PortScanner(http_ports=(), passive_ports={port})
            return await scanner.scan("127.0.0.1", [port], 500, CancellationToken(), banner_timeout_ms=50)

    results = asyncio.run(scenario())

    assert results[0].is_open
    assert results[0].banner == ""


def test_connections_per_host_are_bounded(mocker):
    state = {"active": 0, "peak": 0}

    async def refuse(host, port):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        raise ConnectionRefusedError()

    mocker.patch("asyncio.open_connection", side_effect=refuse)

    results = asyncio.run(PortScanner().scan("10.0.0.1", list(range(1, 41)), 500, CancellationToken(),
                                             concurrency=4))

    assert results == []
    assert state["peak"] == 4


def test_no_ports_means_no_work():
    assert asyncio.run(PortScanner().scan("10.0.0.1", [], 500, CancellationToken())) == []
