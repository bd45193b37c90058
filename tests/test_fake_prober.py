"""Unit tests for FakeProber."""

import threading

import pytest

from latmon.fake_prober import FakeProber


class TestFakeProber:
    """Test the simulated prober."""

    def test_seed_is_deterministic(self):
        """Two probers with the same seed produce the same sequence."""
        first = FakeProber(seed=42)
        second = FakeProber(seed=42)

        assert [first.probe("10.0.0.1") for _ in range(20)] == [second.probe("10.0.0.1") for _ in range(20)]

    def test_latency_positive(self):
        """Successful probes carry a positive latency."""
        prober = FakeProber(seed=7)

        for _ in range(200):
            result = prober.probe("10.0.0.1")
            if result.success:
                assert result.latency_ms > 0
            else:
                assert result.latency_ms is None

    def test_unreachable_always_fails(self):
        """IPs marked unreachable never answer."""
        prober = FakeProber(seed=1, unreachable={"10.0.0.99"})

        assert not any(prober.probe("10.0.0.99").success for _ in range(10))

    def test_no_loss_when_disabled(self):
        """With loss_probability 0 every probe succeeds."""
        prober = FakeProber(seed=3)
        prober.loss_probability = 0.0

        assert all(prober.probe("10.0.0.1").success for _ in range(50))

    @pytest.mark.parametrize("ip", ["", "   "])
    def test_empty_ip_rejected(self, ip):
        """An empty IP is a programming error."""
        with pytest.raises(ValueError):
            FakeProber().probe(ip)

    def test_concurrent_probes(self):
        """Probes from many threads share one generator without errors."""
        prober = FakeProber(seed=5)
        results = []
        errors = []

        def run():
            try:
                for _ in range(500):
                    results.append(prober.probe("10.0.0.1"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(results) == 4000
        assert all(r.latency_ms > 0 for r in results if r.success)
