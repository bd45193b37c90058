"""Worker classes for background probe tasks."""

import logging

from PySide6.QtCore import QObject, QRunnable, Signal

from latmon.collector import Prober
from latmon.errors import ProbeFailure
from latmon.models import Measurement, ProbeResult

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    """Signals emitted from the pool thread running a ProbeWorker."""

    measurement_ready = Signal(object)  # Measurement
    error = Signal(str, str)  # (ip, error message)
    finished = Signal(str)  # ip


class ProbeWorker(QRunnable):
    """Probes one IP and hands the measurement to the recorder.

    Any failure of the probe is recorded as packet loss; a failure to enqueue
    is logged. Neither propagates out of run().
    """

    def __init__(self, prober: Prober, recorder, ip: str):
        super().__init__()
        self.prober = prober
        self.recorder = recorder
        self.ip = ip
        self.signals = WorkerSignals()

    def run(self):
        try:
            measurement = Measurement.from_probe(self.ip, self._probe())
            logger.debug(
                "Probe completed: ip=%s, latency=%s, loss=%s",
                self.ip,
                measurement.latency_ms,
                measurement.packet_loss,
            )
            if self.recorder.submit(measurement):
                self.signals.measurement_ready.emit(measurement)
        except Exception as e:
            logger.exception("Worker exception: ip=%s, error=%s", self.ip, str(e))
            self.signals.error.emit(self.ip, str(e))
        finally:
            self.signals.finished.emit(self.ip)

    def _probe(self) -> ProbeResult:
        try:
            return self.prober.probe(self.ip)
        except ProbeFailure as e:
            logger.error("%s", e)
            self.signals.error.emit(self.ip, e.reason)
        except Exception as e:
            logger.warning("Probe error: ip=%s, error=%s", self.ip, str(e), exc_info=True)
            self.signals.error.emit(self.ip, str(e))
        return ProbeResult.failed()
