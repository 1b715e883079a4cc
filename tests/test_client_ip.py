"""Tests for campus_guard/security/client_ip.py — client identity resolution."""

import pytest
from starlette.datastructures import Headers

from campus_guard.security.client_ip import (
    HIGH,
    LOW,
    MEDIUM,
    anonymize_ip,
    clean_ip,
    is_internal_ip,
    parse_header_ips,
    resolve_client_identity,
)


class TestResolutionOrder:

    def test_cdn_header_wins(self):
        identity = resolve_client_identity(
            {
                "cf-connecting-ip": "198.51.100.10",
                "x-real-ip": "198.51.100.20",
                "x-forwarded-for": "198.51.100.30",
            },
            socket_ip="10.0.0.1",
        )
        assert identity.ip == "198.51.100.10"
        assert identity.confidence == HIGH
        assert identity.source == "cf-connecting-ip"

    def test_real_ip_before_forwarded_for(self):
        identity = resolve_client_identity(
            {"x-real-ip": "198.51.100.20", "x-forwarded-for": "198.51.100.30"},
        )
        assert identity.ip == "198.51.100.20"
        assert identity.confidence == MEDIUM
        assert identity.source == "x-real-ip"

    def test_forwarded_for_takes_left_most(self):
        identity = resolve_client_identity(
            {"x-forwarded-for": "203.0.113.7, 10.0.0.2, 10.0.0.3"},
        )
        assert identity.ip == "203.0.113.7"
        assert identity.confidence == MEDIUM
        assert identity.chain == ["203.0.113.7", "10.0.0.2", "10.0.0.3"]

    def test_socket_fallback_is_low_confidence(self):
        identity = resolve_client_identity({}, socket_ip="192.0.2.44")
        assert identity.ip == "192.0.2.44"
        assert identity.confidence == LOW
        assert identity.source == "socket"

    def test_nothing_resolvable(self):
        identity = resolve_client_identity({"user-agent": "pytest"})
        assert identity.ip is None
        assert identity.confidence == LOW
        assert identity.source == "none"

    def test_non_ip_socket_value(self):
        identity = resolve_client_identity({}, socket_ip="testclient")
        assert identity.ip is None

    def test_header_names_case_insensitive(self):
        identity = resolve_client_identity({"CF-Connecting-IP": "198.51.100.10"})
        assert identity.ip == "198.51.100.10"
        assert identity.confidence == HIGH

    def test_invalid_header_falls_through(self):
        identity = resolve_client_identity(
            {"cf-connecting-ip": "not-an-ip", "x-forwarded-for": "203.0.113.7"},
        )
        assert identity.ip == "203.0.113.7"
        assert identity.source == "x-forwarded-for"

    def test_empty_header_ignored(self):
        identity = resolve_client_identity({"x-real-ip": "", "x-forwarded-for": "203.0.113.7"})
        assert identity.source == "x-forwarded-for"

    def test_rfc7239_forwarded(self):
        identity = resolve_client_identity(
            {"forwarded": 'for="[2001:db8::17]:4711";proto=https, for=198.51.100.5'},
        )
        assert identity.ip == "2001:db8::17"
        assert identity.confidence == MEDIUM
        assert identity.chain == ["2001:db8::17", "198.51.100.5"]

    @pytest.mark.parametrize("header", ["true-client-ip", "fastly-client-ip", "x-vercel-ip"])
    def test_platform_headers_are_high_confidence(self, header):
        assert resolve_client_identity({header: "198.51.100.10"}).confidence == HIGH

    def test_repeated_header_lines_keep_left_most(self):
        headers = Headers(raw=[
            (b"x-forwarded-for", b"198.51.100.9"),
            (b"x-forwarded-for", b"192.0.2.1"),
        ])
        identity = resolve_client_identity(headers)
        assert identity.ip == "198.51.100.9"
        assert identity.chain == ["198.51.100.9", "192.0.2.1"]

    def test_internal_hop_skipped(self):
        identity = resolve_client_identity({"x-forwarded-for": "10.0.0.1, 203.0.113.7"})
        assert identity.ip == "203.0.113.7"
        assert identity.chain == ["10.0.0.1", "203.0.113.7"]

    def test_internal_header_yields_to_lower_priority_public_ip(self):
        identity = resolve_client_identity(
            {"x-real-ip": "192.168.1.20", "x-forwarded-for": "198.51.100.30"},
        )
        assert identity.ip == "198.51.100.30"
        assert identity.source == "x-forwarded-for"

    def test_internal_only_chain_still_resolves(self):
        identity = resolve_client_identity({"x-forwarded-for": "10.0.0.1, 10.0.0.2"})
        assert identity.ip == "10.0.0.1"
        assert identity.confidence == MEDIUM


class TestIsInternalIp:

    @pytest.mark.parametrize("ip", ["10.1.2.3", "172.20.0.1", "192.168.0.5", "127.0.0.1",
                                    "169.254.1.1", "100.64.0.9", "::1", "fd00::1", "fe80::1"])
    def test_internal(self, ip):
        assert is_internal_ip(ip) is True

    @pytest.mark.parametrize("ip", ["203.0.113.7", "198.51.100.1", "8.8.8.8", "2001:db8::1"])
    def test_client_addresses(self, ip):
        assert is_internal_ip(ip) is False


class TestCleanIp:

    @pytest.mark.parametrize("raw, expected", [
        ("203.0.113.7", "203.0.113.7"),
        ("  203.0.113.7 ", "203.0.113.7"),
        ("203.0.113.7:8080", "203.0.113.7"),
        ('"203.0.113.7"', "203.0.113.7"),
        ("[2001:db8::1]:443", "2001:db8::1"),
        ("[2001:db8::1]", "2001:db8::1"),
        ("::ffff:203.0.113.7", "203.0.113.7"),
        ("::1", "::1"),
    ])
    def test_normalizes(self, raw, expected):
        assert clean_ip(raw) == expected

    @pytest.mark.parametrize("raw", ["", "unknown", "999.1.1.1", "example.com"])
    def test_rejects_non_ips(self, raw):
        assert clean_ip(raw) is None


class TestParseHeaderIps:

    def test_skips_garbage_entries(self):
        assert parse_header_ips("x-forwarded-for", "unknown, 203.0.113.7") == ["203.0.113.7"]

    def test_forwarded_unknown_token(self):
        assert parse_header_ips("forwarded", "for=unknown") == []


class TestAnonymizeIp:

    def test_ipv4_zeroes_last_octet(self):
        assert anonymize_ip("203.0.113.7") == "203.0.113.0"

    def test_ipv6_keeps_first_48_bits(self):
        assert anonymize_ip("2001:db8:abcd:12::1") == "2001:db8:abcd::"

    @pytest.mark.parametrize("raw", [None, "", "garbage"])
    def test_unknown_values(self, raw):
        assert anonymize_ip(raw) == "0.0.0.0"
