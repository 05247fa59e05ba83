from lanwatch import cli
from lanwatch.cli import build_parser, refresh_options, scan_options
from lanwatch.data import save_snapshot
from lanwatch.device import ScanOptions

from .conftest import make_device


def test_scan_flags_override_settings(mocker):
    mocker.patch("lanwatch.device.local_range_hint", return_value="192.168.50")
    args = build_parser().parse_args(["scan", "--range", "10.0", "--end", "20", "--ports", "22,80", "--no-ports"])

    options = scan_options(args)

    assert options.ip_range == "10.0"
    assert options.end_address == 20
    assert options.custom_ports == (22, 80)
    assert options.scan_ports is False


def test_scan_without_flags_uses_settings(mocker):
    mocker.patch("lanwatch.device.local_range_hint", return_value="192.168.50")

    options = scan_options(build_parser().parse_args(["scan"]))

    assert options.ip_range == "192.168.50"
    assert options.quick_scan is True


def test_refresh_options_use_short_timeouts(mocker):
    mocker.patch.object(cli, "section", return_value={"ping_timeout_ms": 400})
    base = ScanOptions(ip_range="10.0.0", quick_scan=False, custom_ports=(22,))

    options = refresh_options(base)

    assert options.ping_timeout_ms == 400
    assert options.port_timeout_ms == 300
    assert options.quick_scan is True
    assert options.custom_ports == ()
    assert options.ip_range == "10.0.0"


def test_list_prints_stored_devices(tmp_path, capsys):
    state_file = tmp_path / "devices.json"
    save_snapshot([make_device("192.168.1.42", hostname="nas.lan", ports=(445, 139))], state_file)

    cli.main(["--state-file", str(state_file), "list"])

    out = capsys.readouterr().out
    assert "192.168.1.42" in out
    assert "nas.lan" in out
    assert "offline" in out
    assert "ports=445,139" in out
