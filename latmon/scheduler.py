"""Periodic multi-IP probe scheduler with bounded concurrency."""

import logging
import threading
import time

from PySide6.QtCore import QObject, Qt, QThreadPool, QTimer, Signal

from latmon.collector import Prober
from latmon.errors import StorageError
from latmon.workers import ProbeWorker

logger = logging.getLogger(__name__)


class MonitoringScheduler(QObject):
    """Probes every enabled IP once per tick.

    Key features:
    - The enabled set is snapshotted from the registry at the start of each tick
    - Probes run on a dedicated thread pool (bounded fan-out), so one slow host
      never delays the others or the next tick
    - Per-IP in-flight tracking: an IP whose previous probe has not finished
      is skipped (and logged) rather than probed twice concurrently
    - Disabling an IP does not cancel a probe already started for it

    In-flight bookkeeping runs on pool threads and is guarded by a lock.
    """

    measurement_ready = Signal(object)  # Measurement
    error = Signal(str, str)  # (ip, error message)
    tick_completed = Signal(int)  # probes dispatched

    def __init__(
        self,
        registry,
        prober: Prober,
        recorder,
        metrics=None,
        interval_ms: int = 15000,
        max_concurrent: int = 20,
        parent=None,
    ):
        """Initialize scheduler.

        Args:
            registry: MonitoringRegistry providing the enabled IP set
            prober: Prober used for every probe
            recorder: MeasurementRecorder receiving each measurement
            metrics: Optional MetricsAggregator for scheduler gauges
            interval_ms: Tick interval in milliseconds
            max_concurrent: Maximum number of probes running at once
            parent: Qt parent object
        """
        super().__init__(parent)

        self.registry = registry
        self.prober = prober
        self.recorder = recorder
        self.metrics = metrics
        self.interval_ms = interval_ms
        self.max_concurrent = max_concurrent

        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self.skipped_total = 0

        self.thread_pool = QThreadPool(self)
        self.thread_pool.setMaxThreadCount(max_concurrent)

        self.timer = QTimer(self)
        self.timer.timeout.connect(self.tick)

        self.is_running = False

    def start(self):
        if self.is_running:
            logger.warning("Scheduler already started")
            return

        self.is_running = True
        self.timer.start(self.interval_ms)
        self._report(last_run=None)
        logger.info("Latency monitoring scheduler started (every %d ms)", self.interval_ms)

    def stop(self):
        """Stop ticking. Probes already in flight still complete and are recorded."""
        if not self.is_running:
            return

        self.is_running = False
        self.timer.stop()
        self._report(last_run=None)
        logger.info("Latency monitoring scheduler stopped")

    def set_interval(self, interval_ms: int):
        self.interval_ms = interval_ms
        if self.timer.isActive():
            self.timer.setInterval(interval_ms)
        logger.debug("Interval updated: %dms", interval_ms)

    def tick(self) -> int:
        """Run one monitoring cycle and return the number of probes dispatched."""
        try:
            ips = self.registry.list_enabled()
        except StorageError as e:
            logger.error("Cannot read enabled IPs, skipping tick: %s", e)
            return 0

        dispatched = 0
        for ip in sorted(ips):
            with self._lock:
                if ip in self._in_flight:
                    self.skipped_total += 1
                    logger.warning("Skipping %s: previous probe still in flight", ip)
                    continue
                self._in_flight.add(ip)
            self._dispatch(ip)
            dispatched += 1

        if dispatched:
            logger.debug("Dispatched %d probes (enabled: %d)", dispatched, len(ips))
        self._report(last_run=time.time())
        self.tick_completed.emit(dispatched)
        return dispatched

    def wait_for_done(self, msecs: int = -1) -> bool:
        """Block until every dispatched probe has finished."""
        return self.thread_pool.waitForDone(msecs)

    def in_flight(self) -> set[str]:
        with self._lock:
            return set(self._in_flight)

    def get_status(self) -> dict:
        try:
            enabled_count = len(self.registry.list_enabled())
        except StorageError as e:
            logger.error("Cannot read enabled IPs: %s", e)
            enabled_count = None
        return {
            "running": self.is_running,
            "enabledIpsCount": enabled_count,
            "inFlight": len(self.in_flight()),
            "intervalMs": self.interval_ms,
            "maxConcurrent": self.max_concurrent,
        }

    def _dispatch(self, ip: str):
        worker = ProbeWorker(self.prober, self.recorder, ip)
        # Direct connections: slots run on the pool thread, no event loop needed
        worker.signals.measurement_ready.connect(self.measurement_ready.emit, Qt.ConnectionType.DirectConnection)
        worker.signals.error.connect(self.error.emit, Qt.ConnectionType.DirectConnection)
        worker.signals.finished.connect(self._on_probe_finished, Qt.ConnectionType.DirectConnection)
        self.thread_pool.start(worker)

    def _on_probe_finished(self, ip: str):
        with self._lock:
            self._in_flight.discard(ip)

    def _report(self, last_run: float | None):
        if self.metrics is None:
            return
        next_run = time.time() + self.interval_ms / 1000.0 if self.is_running else None
        self.metrics.update_scheduler_metrics(self.is_running, last_run=last_run, next_run=next_run)
