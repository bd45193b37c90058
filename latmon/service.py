"""Explicitly constructed service wiring the monitoring pipeline together.

``init()`` opens the database, applies the stored tuning profile, starts the
recorder and (optionally) the scheduler. ``close()`` stops them in reverse
order and performs a final WAL checkpoint.
"""

import logging

from latmon.collector import Prober
from latmon.config import Settings
from latmon.database import Database, utc_now
from latmon.errors import StorageError
from latmon.metrics import MetricsAggregator
from latmon.recorder import MeasurementRecorder
from latmon.registry import MonitoringRegistry
from latmon.scheduler import MonitoringScheduler
from latmon.store import MeasurementStore
from latmon.tuning import DatabaseTuner

logger = logging.getLogger(__name__)

SHUTDOWN_WAIT_MS = 10000


class MonitoringService:
    """Owns the database handle, registry, store, recorder, scheduler and metrics."""

    def __init__(
        self,
        settings: Settings,
        prober: Prober,
        metrics: MetricsAggregator | None = None,
        clock=utc_now,
    ):
        self.settings = settings
        self.metrics = metrics if metrics is not None else MetricsAggregator()

        self.database = Database(settings.database_path)
        self.tuner = DatabaseTuner(self.database)
        self.registry = MonitoringRegistry(self.database)
        self.store = MeasurementStore(self.database, clock=clock)
        self.recorder = MeasurementRecorder(self.store, queue_max=settings.recorder_queue_max)
        self.scheduler = MonitoringScheduler(
            self.registry,
            prober,
            self.recorder,
            metrics=self.metrics,
            interval_ms=settings.poll_interval_ms,
            max_concurrent=settings.max_concurrent_probes,
        )
        self.is_initialized = False

    def init(self, start_scheduler: bool = True):
        if self.is_initialized:
            return

        self.database.open()
        try:
            self.tuner.initialize()
        except StorageError as e:
            logger.warning("Failed to apply stored database config, continuing with defaults: %s", e)
        self.tuner.checkpointed.connect(self._on_checkpointed)

        self.recorder.start()
        if start_scheduler:
            self.scheduler.start()

        self.is_initialized = True
        self.refresh_database_metrics()
        logger.info("Monitoring service initialized (database=%s)", self.settings.database_path)

    def close(self):
        if not self.is_initialized:
            return

        self.scheduler.stop()
        if not self.scheduler.wait_for_done(SHUTDOWN_WAIT_MS):
            logger.warning("Probes still running after %d ms, closing anyway", SHUTDOWN_WAIT_MS)
        self.recorder.stop()
        self.tuner.close()
        self.database.close()
        self.is_initialized = False
        logger.info("Monitoring service closed")

    def purge_measurements(self, days: int | None = None) -> int:
        """Delete measurements older than ``days`` (default: configured retention)."""
        if days is None:
            days = self.settings.retention_days
        return self.store.delete_older_than(days)

    def refresh_database_metrics(self):
        """Push row counts and file size to the metrics aggregator (best effort)."""
        try:
            stats = self.tuner.get_stats()
            oldest = self.store.oldest_measurement_time()
            self.metrics.update_database_metrics(
                self.store.count_measurements(),
                self.registry.count(),
                stats["dbSize"] + stats["walSize"],
                oldest.timestamp() if oldest else None,
            )
        except StorageError as e:
            logger.error("Failed to refresh database metrics: %s", e)

    def _on_checkpointed(self, _result):
        self.refresh_database_metrics()
