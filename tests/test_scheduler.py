"""Unit tests for MonitoringScheduler."""

import threading

import pytest
from PySide6.QtCore import Qt

from latmon.errors import ProbeFailure, StorageError
from latmon.fake_prober import FakeProber
from latmon.metrics import MetricsAggregator
from latmon.models import ProbeResult
from latmon.recorder import MeasurementRecorder
from latmon.scheduler import MonitoringScheduler


class ScriptedProber:
    """Prober returning fixed latencies and raising for selected IPs."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []
        self._lock = threading.Lock()

    def probe(self, ip):
        with self._lock:
            self.calls.append(ip)
        if ip in self.failing:
            raise RuntimeError(f"cannot reach {ip}")
        return ProbeResult(success=True, latency_ms=10.0)


class BlockingProber:
    """Prober that holds every probe until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def probe(self, ip):
        self.started.set()
        self.release.wait(5)
        return ProbeResult(success=True, latency_ms=1.0)


class BrokenRegistry:
    def list_enabled(self):
        raise StorageError("database is locked")


@pytest.fixture
def recorder(store):
    recorder = MeasurementRecorder(store)
    recorder.start()
    yield recorder
    recorder.stop()


@pytest.fixture
def make_scheduler(qapp, registry, recorder):
    schedulers = []

    def make(prober, registry=registry, metrics=None, **kwargs):
        kwargs.setdefault("interval_ms", 1000)
        kwargs.setdefault("max_concurrent", 4)
        scheduler = MonitoringScheduler(registry, prober, recorder, metrics=metrics, **kwargs)
        schedulers.append(scheduler)
        return scheduler

    yield make
    for scheduler in schedulers:
        scheduler.stop()
        scheduler.wait_for_done(5000)


def run_tick(scheduler, recorder):
    count = scheduler.tick()
    assert scheduler.wait_for_done(5000)
    recorder.flush()
    return count


class TestMonitoringScheduler:
    """Test suite for MonitoringScheduler class."""

    def test_initial_state(self, make_scheduler):
        """Verify scheduler starts in correct initial state."""
        scheduler = make_scheduler(FakeProber(seed=1))

        assert not scheduler.is_running
        assert scheduler.in_flight() == set()
        assert scheduler.thread_pool.maxThreadCount() == 4

    def test_tick_records_one_measurement_per_ip(self, make_scheduler, registry, store, recorder):
        """Each enabled IP gets exactly one measurement per tick."""
        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            registry.enable(ip)

        scheduler = make_scheduler(FakeProber(seed=1))
        assert run_tick(scheduler, recorder) == 3

        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            assert store.count_measurements(ip) == 1
        assert scheduler.in_flight() == set()

    def test_disabled_ips_not_probed(self, make_scheduler, registry, recorder):
        """Only enabled IPs are probed."""
        registry.enable("10.0.0.1")
        registry.enable("10.0.0.2")
        registry.disable("10.0.0.2")
        prober = ScriptedProber()

        scheduler = make_scheduler(prober)
        run_tick(scheduler, recorder)

        assert prober.calls == ["10.0.0.1"]

    def test_empty_registry(self, make_scheduler, recorder):
        """A tick with no enabled IPs dispatches nothing."""
        scheduler = make_scheduler(ScriptedProber())

        assert run_tick(scheduler, recorder) == 0

    def test_failing_probe_recorded_as_loss(self, make_scheduler, registry, store, recorder):
        """A raising prober for one IP does not affect the others."""
        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            registry.enable(ip)
        errors = []

        scheduler = make_scheduler(ScriptedProber(failing={"10.0.0.2"}))
        scheduler.error.connect(lambda ip, message: errors.append(ip), Qt.ConnectionType.DirectConnection)
        run_tick(scheduler, recorder)

        assert errors == ["10.0.0.2"]
        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            assert store.count_measurements(ip) == 1
        assert store.get_statistics("10.0.0.2").packet_loss_percent == 100.0

    def test_probe_failure_recorded_as_loss(self, make_scheduler, registry, database, recorder):
        """ProbeFailure becomes a packet-loss sample."""
        registry.enable("10.0.0.1")

        class DeniedProber:
            def probe(self, ip):
                raise ProbeFailure(ip, "Operation not permitted")

        scheduler = make_scheduler(DeniedProber())
        run_tick(scheduler, recorder)

        with database.transaction() as conn:
            row = conn.execute("SELECT latency, packet_loss FROM latency_measurements").fetchone()
        assert row["latency"] is None
        assert row["packet_loss"] == 1

    def test_measurement_ready_emitted(self, make_scheduler, registry, recorder):
        """measurement_ready fires once per recorded probe."""
        registry.enable("10.0.0.1")
        ready = []

        scheduler = make_scheduler(ScriptedProber())
        scheduler.measurement_ready.connect(ready.append, Qt.ConnectionType.DirectConnection)
        run_tick(scheduler, recorder)

        assert [m.ip for m in ready] == ["10.0.0.1"]
        assert ready[0].latency_ms == 10.0

    def test_in_flight_ip_skipped(self, make_scheduler, registry, store, recorder):
        """An IP whose previous probe is still running is not probed again."""
        registry.enable("10.0.0.1")
        prober = BlockingProber()
        scheduler = make_scheduler(prober)

        assert scheduler.tick() == 1
        assert prober.started.wait(5)
        assert scheduler.in_flight() == {"10.0.0.1"}

        assert scheduler.tick() == 0
        assert scheduler.skipped_total == 1

        prober.release.set()
        assert scheduler.wait_for_done(5000)
        recorder.flush()

        assert scheduler.in_flight() == set()
        assert store.count_measurements("10.0.0.1") == 1

    def test_disable_does_not_cancel_in_flight(self, make_scheduler, registry, store, recorder):
        """Disabling an IP mid-probe still records that probe."""
        registry.enable("10.0.0.1")
        prober = BlockingProber()
        scheduler = make_scheduler(prober)

        scheduler.tick()
        assert prober.started.wait(5)
        registry.disable("10.0.0.1")
        prober.release.set()
        scheduler.wait_for_done(5000)
        recorder.flush()

        assert store.count_measurements("10.0.0.1") == 1
        assert scheduler.tick() == 0

    def test_registry_failure_skips_tick(self, make_scheduler):
        """A registry error is logged and the tick dispatches nothing."""
        scheduler = make_scheduler(ScriptedProber(), registry=BrokenRegistry())

        assert scheduler.tick() == 0

    def test_tick_completed_signal(self, make_scheduler, registry, recorder):
        """tick_completed carries the dispatch count."""
        registry.enable("10.0.0.1")
        counts = []

        scheduler = make_scheduler(ScriptedProber())
        scheduler.tick_completed.connect(counts.append)
        run_tick(scheduler, recorder)

        assert counts == [1]

    def test_metrics_reported(self, make_scheduler, registry, recorder):
        """Each tick bumps the scheduler run counter."""
        registry.enable("10.0.0.1")
        metrics = MetricsAggregator()

        scheduler = make_scheduler(ScriptedProber(), metrics=metrics)
        scheduler.start()
        run_tick(scheduler, recorder)
        run_tick(scheduler, recorder)

        snapshot = metrics.get_all_metrics().scheduler
        assert snapshot.runs_total == 2
        assert snapshot.enabled == 1
        assert snapshot.next_run_timestamp > snapshot.last_run_timestamp - 1

    def test_start_stop(self, make_scheduler):
        """start() arms the timer and stop() disarms it."""
        scheduler = make_scheduler(ScriptedProber())

        scheduler.start()
        assert scheduler.is_running
        assert scheduler.timer.isActive()
        assert scheduler.timer.interval() == 1000

        scheduler.start()
        assert scheduler.is_running

        scheduler.stop()
        assert not scheduler.is_running
        assert not scheduler.timer.isActive()

    def test_set_interval(self, make_scheduler):
        """Changing the interval updates a running timer."""
        scheduler = make_scheduler(ScriptedProber())
        scheduler.start()

        scheduler.set_interval(250)

        assert scheduler.interval_ms == 250
        assert scheduler.timer.interval() == 250

    def test_get_status(self, make_scheduler, registry):
        """Status reports running flag, enabled count and pool bounds."""
        registry.enable("10.0.0.1")
        registry.enable("10.0.0.2")
        scheduler = make_scheduler(ScriptedProber(), max_concurrent=8)

        assert scheduler.get_status() == {
            "running": False,
            "enabledIpsCount": 2,
            "inFlight": 0,
            "intervalMs": 1000,
            "maxConcurrent": 8,
        }
