"""Bounded, non-blocking dispatch of measurements to the store.

Probe workers hand finished measurements to the recorder and return
immediately; one background thread drains the queue and writes each sample,
so measurements for an IP reach the store in probe-completion order.

Backpressure: when the queue is full, ``submit`` blocks for at most
``put_timeout`` seconds (or drops immediately with ``drop_on_full``), then
drops the newest sample and logs it.
"""

import logging
import threading
from queue import Empty, Full, Queue

from latmon.errors import StorageError
from latmon.models import Measurement

logger = logging.getLogger(__name__)


class MeasurementRecorder:
    """Single-writer queue in front of MeasurementStore."""

    def __init__(
        self,
        store,
        *,
        queue_max: int = 1000,
        drop_on_full: bool = False,
        put_timeout: float = 5.0,
    ):
        self.store = store
        self.drop_on_full = drop_on_full
        self.put_timeout = put_timeout

        self._q: Queue[Measurement] = Queue(maxsize=queue_max)
        self._stop = threading.Event()
        self._t: threading.Thread | None = None

        self._lock = threading.Lock()
        self.written = 0
        self.fallbacks = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._t is not None and self._t.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._worker, name="measurement-recorder", daemon=True)
        self._t.start()
        logger.debug("Recorder started (queue_max=%d)", self._q.maxsize)

    def stop(self, timeout: float = 5.0):
        """Stop after draining whatever is already queued."""
        if self._t is None:
            return
        self._stop.set()
        self._t.join(timeout=timeout)
        if self._t.is_alive():
            logger.warning("Recorder did not stop within %.1fs (%d pending)", timeout, self._q.qsize())
        self._t = None
        logger.debug("Recorder stopped: written=%d fallbacks=%d dropped=%d", self.written, self.fallbacks, self.dropped)

    def submit(self, measurement: Measurement) -> bool:
        """Enqueue a measurement; returns False if it had to be dropped."""
        try:
            self._q.put_nowait(measurement)
            return True
        except Full:
            pass

        if not self.drop_on_full:
            try:
                self._q.put(measurement, timeout=self.put_timeout)
                return True
            except Full:
                pass

        with self._lock:
            self.dropped += 1
        logger.warning("Recorder queue full, dropped measurement for %s", measurement.ip)
        return False

    def flush(self):
        """Block until every queued measurement has been written (or failed)."""
        self._q.join()

    def pending(self) -> int:
        return self._q.qsize()

    def _worker(self):
        while not (self._stop.is_set() and self._q.empty()):
            try:
                measurement = self._q.get(timeout=0.2)
            except Empty:
                continue
            try:
                self._write(measurement)
            except Exception:
                logger.exception("Unexpected error recording measurement for %s", measurement.ip)
            finally:
                self._q.task_done()

    def _write(self, measurement: Measurement):
        """Write one sample; on failure try exactly one packet-loss fallback."""
        try:
            self.store.create_measurement(
                measurement.ip,
                measurement.latency_ms,
                measurement.packet_loss,
                measured_at=measurement.measured_at,
            )
            with self._lock:
                self.written += 1
            return
        except StorageError as e:
            logger.error("Failed to record measurement for %s: %s", measurement.ip, e)

        try:
            self.store.create_measurement(measurement.ip, None, True, measured_at=measurement.measured_at)
            with self._lock:
                self.fallbacks += 1
        except StorageError as e:
            logger.error("Failed to record packet loss for %s: %s", measurement.ip, e)
