"""Unit tests for ping round-trip parsing (pure function tests).

Covers the parse_ping_rtt_ms() function across ping output formats without
subprocess calls or OS-specific setup.
"""

import pytest

from latmon.collector_ping import parse_ping_rtt_ms


class TestParsePingRttLinuxMacOS:
    """Test parsing Linux and macOS ping output formats."""

    def test_linux_standard_format(self):
        """Test standard Linux ping output: time=12.3 ms"""
        output = "64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=12.3 ms"
        assert parse_ping_rtt_ms(output) == 12.3

    def test_linux_multiline_output(self):
        """Test parsing from multi-line Linux output."""
        output = """
PING 10.0.0.1 (10.0.0.1) 56(84) bytes of data.
64 bytes from 10.0.0.1: icmp_seq=1 ttl=117 time=12.3 ms

--- 10.0.0.1 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
rtt min/avg/max/mdev = 12.345/12.345/12.345/0.000 ms
"""
        assert parse_ping_rtt_ms(output) == 12.3

    def test_macos_format(self):
        """Test standard macOS ping output."""
        output = "64 bytes from 172.217.14.206: icmp_seq=0 ttl=56 time=8.123 ms"
        assert parse_ping_rtt_ms(output) == 8.123

    def test_integer_value(self):
        """Test parsing integer latency values."""
        assert parse_ping_rtt_ms("time=100 ms") == 100.0


class TestParsePingRttWindows:
    """Test parsing Windows ping output formats."""

    def test_windows_standard_format(self):
        """Test standard Windows ping output: time=15ms (no space)."""
        output = "Reply from 142.250.185.46: bytes=32 time=15ms TTL=117"
        assert parse_ping_rtt_ms(output) == 15.0

    @pytest.mark.parametrize(
        "output",
        [
            "Reply from 192.168.1.1: bytes=32 time= 20 ms TTL=64",
            "Reply from 192.168.1.1: bytes=32 time = 20 ms TTL=64",
        ],
    )
    def test_spacing_around_equals(self, output):
        """Whitespace around '=' is tolerated."""
        assert parse_ping_rtt_ms(output) == 20.0

    @pytest.mark.parametrize(
        "output, expected",
        [
            ("Reply from 127.0.0.1: bytes=32 time<1ms TTL=128", 0.5),
            ("Reply from 192.168.1.1: bytes=32 time<10ms TTL=64", 5.0),
        ],
    )
    def test_less_than_is_halved(self, output, expected):
        """time<N is read as N/2."""
        assert parse_ping_rtt_ms(output) == expected

    def test_case_insensitive(self):
        """Keyword and unit match regardless of case."""
        assert parse_ping_rtt_ms("TIME=15.5 MS") == 15.5
        assert parse_ping_rtt_ms("Time=20.3 Ms") == 20.3


class TestParsePingRttNoReply:
    """Outputs without a reply line yield None."""

    @pytest.mark.parametrize(
        "output",
        [
            None,
            "",
            "Request timed out.",
            "From 192.168.1.1 icmp_seq=1 Destination Host Unreachable",
            "Reply from 10.0.0.1: bytes=32 Zeit=15ms TTL=117",
        ],
    )
    def test_returns_none(self, output):
        """Timeouts, unreachable hosts and localized output are loss."""
        assert parse_ping_rtt_ms(output) is None

    def test_summary_line_alone_not_parsed(self):
        """A 'time 0ms' summary without '=' is not a reply."""
        output = "1 packets transmitted, 0 received, 100% packet loss, time 0ms"
        assert parse_ping_rtt_ms(output) is None
