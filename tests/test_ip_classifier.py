import json

import pytest

from Tracking_module.ip_classifier import (
    DEFAULT_IP_RULES,
    GOOGLE,
    GOOGLEBOT,
    MICROSOFT,
    YAHOO,
    IpKind,
    classify_ip,
    load_ip_rules,
    sentinel_device,
    sentinel_location,
)


@pytest.mark.parametrize("ip", [
    None, "", "Unknown", "unknown",
    "127.0.0.1", "127.8.8.8", "::1",
    "10.1.2.3", "172.16.5.4", "172.31.255.255", "192.168.1.10",
])
def test_local_addresses(ip):
    result = classify_ip(ip)
    assert result.kind == IpKind.LOCAL
    assert not result.needs_lookup


def test_just_outside_private_range_is_unclassified():
    assert classify_ip("172.32.0.1").kind == IpKind.UNCLASSIFIED


@pytest.mark.parametrize("ip,provider", [
    ("66.102.8.1", GOOGLE),
    ("74.125.1.1", GOOGLE),
    ("209.85.200.1", GOOGLE),
    ("40.92.1.1", MICROSOFT),
    ("40.107.3.4", MICROSOFT),
    ("104.47.10.1", MICROSOFT),
    ("98.137.1.1", YAHOO),
    ("66.196.80.1", YAHOO),
    ("74.6.1.1", YAHOO),
])
def test_known_proxies(ip, provider):
    result = classify_ip(ip)
    assert result.kind == IpKind.KNOWN_PROXY
    assert result.provider == provider


def test_proxy_wins_over_overlapping_scanner_block():
    # 52.100.0.0/14 sits inside the 52.0.0.0/8 scanner block
    result = classify_ip("52.101.0.1")
    assert result.kind == IpKind.KNOWN_PROXY
    assert result.provider == MICROSOFT


def test_priority_does_not_depend_on_table_order():
    reversed_rules = list(reversed(DEFAULT_IP_RULES))
    assert classify_ip("52.101.0.1", reversed_rules).kind == IpKind.KNOWN_PROXY
    assert classify_ip("10.0.0.1", reversed_rules).kind == IpKind.LOCAL


def test_googlebot_is_not_gmail_proxy():
    result = classify_ip("66.249.66.1")
    assert result.kind == IpKind.UNCLASSIFIED
    assert result.provider == GOOGLEBOT
    assert result.needs_lookup


@pytest.mark.parametrize("ip", ["3.5.5.5", "35.190.1.1", "54.1.1.1", "146.75.1.1", "151.101.1.1"])
def test_security_scanners(ip):
    assert classify_ip(ip).kind == IpKind.SECURITY_SCANNER


def test_ipv4_mapped_address_uses_ipv4_rules():
    result = classify_ip("::ffff:66.102.0.5")
    assert result.kind == IpKind.KNOWN_PROXY
    assert result.provider == GOOGLE


@pytest.mark.parametrize("ip", ["8.8.8.8", "81.2.69.160", "2001:db8::1", "not-an-ip"])
def test_everything_else_is_unclassified(ip):
    result = classify_ip(ip)
    assert result.kind == IpKind.UNCLASSIFIED
    assert result.provider is None


def test_classification_is_deterministic():
    assert classify_ip("74.125.1.1") == classify_ip("74.125.1.1")


def test_load_ip_rules_appends_file_rows(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([
        {"network": "203.0.113.0/24", "kind": "known_proxy", "provider": "Example"},
        {"network": "198.51.100.0/24", "kind": "security_scanner"},
    ]))

    rules = load_ip_rules(str(path))

    assert len(rules) == len(DEFAULT_IP_RULES) + 2
    proxy = classify_ip("203.0.113.7", rules)
    assert proxy.kind == IpKind.KNOWN_PROXY
    assert proxy.provider == "Example"
    assert classify_ip("198.51.100.9", rules).kind == IpKind.SECURITY_SCANNER
    # Defaults are untouched by the extra rows
    assert classify_ip("203.0.113.7").kind == IpKind.UNCLASSIFIED


def test_load_ip_rules_without_file_returns_defaults():
    assert load_ip_rules(None) == list(DEFAULT_IP_RULES)


def test_sentinels():
    assert sentinel_location(classify_ip("192.168.0.2")).city == "Local Network"
    assert sentinel_location(classify_ip("3.3.3.3")).city == "Security Scanner"
    assert sentinel_location(classify_ip("8.8.8.8")) is None

    gmail = classify_ip("74.125.1.1")
    location = sentinel_location(gmail)
    assert location.city == "Gmail Proxy"
    assert location.country == "Google Servers"
    assert location.isp == "Google LLC"
    assert location.is_proxy and location.is_hosting

    device = sentinel_device(gmail)
    assert device.browser == "Gmail Image Proxy"
    assert device.device_type == "Email Proxy"
    assert device.is_proxy
    assert sentinel_device(classify_ip("3.3.3.3")) is None


def test_sentinel_for_custom_provider(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([{"network": "203.0.113.0/24", "kind": "known_proxy", "provider": "Example"}]))
    classification = classify_ip("203.0.113.1", load_ip_rules(str(path)))

    assert sentinel_location(classification).city == "Example Proxy"
    assert sentinel_device(classification).proxy_name == "Example Proxy"
