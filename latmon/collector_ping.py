"""ICMP prober backed by the system ping command."""

import logging
import platform
import re
import shutil
import subprocess
from math import ceil

from latmon.errors import ProbeFailure
from latmon.models import ProbeResult

logger = logging.getLogger(__name__)

# Windows prints "time<1ms" for sub-millisecond replies
_LESS_THAN_PATTERN = re.compile(r"time<(\d+)", re.IGNORECASE)
_RTT_PATTERN = re.compile(r"time\s*[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)

_PERMISSION_MARKERS = ("permission denied", "operation not permitted")


def parse_ping_rtt_ms(output: str | None) -> float | None:
    """Extract the round-trip time from ping output.

    Handles ``time=12.3 ms`` (Linux/macOS), ``time=12ms`` and ``time<1ms``
    (Windows). ``time<N`` is read as N/2. Returns None when no reply line is
    present, which callers treat as packet loss.

    Examples:
        >>> parse_ping_rtt_ms("64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=12.3 ms")
        12.3
        >>> parse_ping_rtt_ms("Reply from 10.0.0.1: bytes=32 time<1ms TTL=128")
        0.5
        >>> parse_ping_rtt_ms("Request timed out.")
    """
    if not output:
        return None

    match = _LESS_THAN_PATTERN.search(output)
    if match:
        return float(match.group(1)) / 2.0

    match = _RTT_PATTERN.search(output)
    if match:
        return float(match.group(1))

    return None


class PingProber:
    """Sends one echo request per probe using the OS ping binary.

    Parsing relies on the English keyword "time"; localized Windows output
    is reported as loss.
    """

    def __init__(self, timeout_ms: int = 1000, ping_path: str | None = None):
        """Initialize prober.

        Args:
            timeout_ms: Maximum time to wait for a reply in milliseconds
            ping_path: Explicit ping binary; looked up on PATH when omitted

        Raises:
            ValueError: if timeout_ms is not positive
            FileNotFoundError: if no ping binary can be found
        """
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

        self.timeout_ms = timeout_ms
        self.timeout_seconds = timeout_ms / 1000.0
        self.system = platform.system()
        self.ping_path = ping_path or shutil.which("ping")
        if self.ping_path is None:
            raise FileNotFoundError("ping command not found on PATH")

        logger.debug(
            "PingProber initialized: timeout_ms=%d, system=%s, ping=%s",
            timeout_ms,
            self.system,
            self.ping_path,
        )

    def probe(self, ip: str) -> ProbeResult:
        """Ping ``ip`` once.

        Returns:
            ProbeResult with the parsed round-trip time, or a failed result
            on timeout, non-zero exit or unparseable output

        Raises:
            ProbeFailure: if ping cannot be executed at all
        """
        cmd = self._build_ping_command(ip)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds + 0.5,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            logger.debug("Ping timeout: ip=%s (host may be offline)", ip)
            return ProbeResult.failed()
        except OSError as e:
            raise ProbeFailure(ip, f"cannot execute {self.ping_path}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").lower()
            if any(marker in stderr for marker in _PERMISSION_MARKERS):
                raise ProbeFailure(ip, "permission denied (NET_RAW capability required)")
            logger.debug("Ping failed: ip=%s, returncode=%d", ip, result.returncode)
            return ProbeResult.failed()

        latency = parse_ping_rtt_ms(result.stdout)
        if latency is None:
            logger.debug(
                "Parse failed: ip=%s, output_preview=%s",
                ip,
                result.stdout[:100] if result.stdout else "(empty)",
            )
            return ProbeResult.failed()

        return ProbeResult(success=True, latency_ms=latency)

    def _build_ping_command(self, ip: str) -> list[str]:
        if self.system == "Windows":
            return [self.ping_path, "-n", "1", "-w", str(self.timeout_ms), ip]
        if self.system == "Linux":
            return [self.ping_path, "-c", "1", "-W", str(max(1, ceil(self.timeout_seconds))), ip]
        # macOS/BSD -W has different units; rely on the subprocess timeout
        return [self.ping_path, "-c", "1", ip]
