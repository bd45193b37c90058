"""Simulated prober for development and testing."""

import random
import threading

from latmon.models import ProbeResult


class FakeProber:
    """Generates plausible round-trip times without touching the network."""

    def __init__(self, seed: int | None = None, unreachable: set[str] | None = None):
        """Initialize with optional random seed and a set of IPs that never answer."""
        # One generator shared by every pool thread; draws happen under the lock
        self._random = random.Random(seed)
        self._lock = threading.Lock()
        self.unreachable = set(unreachable or ())

        self.base_latency = 25.0
        self.latency_variance = 5.0
        self.spike_probability = 0.05
        self.spike_multiplier = 3.0
        self.loss_probability = 0.02

    def probe(self, ip: str) -> ProbeResult:
        if not ip or not ip.strip():
            raise ValueError("IP cannot be empty")

        if ip in self.unreachable:
            return ProbeResult.failed()

        with self._lock:
            if self._random.random() < self.loss_probability:
                return ProbeResult.failed()
            latency = self.base_latency + self._random.gauss(0, self.latency_variance)
            if self._random.random() < self.spike_probability:
                latency *= self.spike_multiplier

        return ProbeResult(success=True, latency_ms=round(max(0.1, latency), 2))
