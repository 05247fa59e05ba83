from datetime import datetime, timedelta

import pytest

from lanwatch.classifier import (
    DeviceType,
    RiskLevel,
    classify,
    guess_connection_type,
    guess_os,
    risk_level,
    risk_score,
    uptime_trend,
)


@pytest.mark.parametrize("ports, expected", [
    ({9100, 80, 443}, DeviceType.PRINTER),
    ({631}, DeviceType.PRINTER),
    ({554, 8080}, DeviceType.CAMERA),
    ({554}, DeviceType.UNKNOWN),
    ({32400, 80}, DeviceType.MEDIA_SERVER),
    ({1883}, DeviceType.SMART_HOME),
    ({5432, 22}, DeviceType.DATABASE_SERVER),
    ({25, 443}, DeviceType.MAIL_SERVER),
    ({445, 139, 80}, DeviceType.FILE_SERVER),
    ({445}, DeviceType.UNKNOWN),
    ({3389, 445}, DeviceType.COMPUTER),
    ({80, 53, 443}, DeviceType.ROUTER),
    ({62078}, DeviceType.PHONE),
    ({8008, 8443}, DeviceType.SMART_TV),
    ({8008}, DeviceType.UNKNOWN),
    ({443}, DeviceType.WEB_SERVER),
    ({8080, 22}, DeviceType.WEB_SERVER),
    (set(), DeviceType.UNKNOWN),
])
def test_classify(ports, expected):
    assert classify(ports) == expected


def test_earlier_rules_win():
    # A NAS with Plex and SMB is a media server before it is a file server.
    assert classify({32400, 445, 139}) == DeviceType.MEDIA_SERVER
    # A router exposing a database port is classified by the database.
    assert classify({80, 53, 3306}) == DeviceType.DATABASE_SERVER


def test_risk_score_weights():
    assert risk_score({23, 21}) == 50
    assert risk_score({443}) == 1
    assert risk_score({12345}) == 0
    assert risk_score([22, 22]) == 10


def test_risk_score_is_capped():
    ports = {23, 21, 3389, 5900, 5901, 5902, 445, 22, 139}
    assert sum([30, 20, 15, 15, 15, 15, 15, 10, 10]) > 100

    assert risk_score(ports) == 100


def test_risk_level_bands_are_monotonic():
    assert risk_level(0) == RiskLevel.LOW
    assert risk_level(14) == RiskLevel.LOW
    assert risk_level(15) == RiskLevel.MEDIUM
    assert risk_level(30) == RiskLevel.HIGH
    assert risk_level(50) == RiskLevel.CRITICAL
    assert risk_level(100) == RiskLevel.CRITICAL

    order = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]
    levels = [order.index(risk_level(score)) for score in range(101)]
    assert levels == sorted(levels)


def _history(count):
    start = datetime(2024, 1, 1)
    return [start + timedelta(minutes=i) for i in range(count)]


def _trend(scans):
    """Trend of a device observed once per flag in ``scans``."""
    return uptime_trend(_history(sum(scans)), scans, len(scans))


@pytest.mark.parametrize("scans, expected", [
    ([], "New"),
    ([False] * 8, "New"),
    ([True] + [False] * 7, "New"),
    ([True] * 3 + [False] * 2, "Tracking"),
    ([True] * 5, "Tracking"),
    ([True] * 10, "Always On"),
    ([False] + [True] * 9, "Always On"),
    ([True, True, False] * 4, "Frequent"),
    ([True, False] * 10, "Frequent"),
    ([True] * 3 + [False] * 7, "Sporadic"),
    ([True, True] + [False] * 8, "Sporadic"),
    ([True, True] + [False] * 9, "Rare"),
])
def test_uptime_trend(scans, expected):
    assert _trend(scans) == expected


def test_offline_scans_lower_the_trend():
    # Ten sightings look steady until the scans that missed the device count too.
    assert uptime_trend(_history(10), [True] * 10, 10) == "Always On"
    assert uptime_trend(_history(10), [True, False] * 10, 20) == "Frequent"


def test_uptime_trend_only_counts_recent_window():
    assert _trend([False] * 30 + [True] * 10) == "Always On"
    assert _trend([True] * 30 + [False] * 10) == "Rare"


def test_uptime_trend_with_trimmed_scan_history():
    # Only the retained flags are weighed once older ones have been dropped.
    assert uptime_trend(_history(40), [True] * 4, 100) == "Always On"


def test_guess_os_prefers_banners():
    assert guess_os(128, ["SSH-2.0-OpenSSH_8.9p1 Ubuntu-3ubuntu0.1"]) == "Linux"
    assert guess_os(64, ["Microsoft-IIS/10.0"]) == "Windows"


def test_guess_os_from_ttl():
    assert guess_os(0) == "Unknown"
    assert guess_os(64) == "Linux/Unix"
    assert guess_os(57) == "Linux/Unix"
    assert guess_os(128) == "Windows"
    assert guess_os(255) == "Network Device"


def test_guess_connection_type():
    assert guess_connection_type("00:0c:29:12:34:56") == "Virtual"
    assert guess_connection_type("02:42:ac:11:00:02") == "Virtual"
    assert guess_connection_type("da:a1:19:00:00:01") == "WiFi"
    assert guess_connection_type("3c:22:fb:00:00:01") == "Unknown"
    assert guess_connection_type("Unknown") == "Unknown"
