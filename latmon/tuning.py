"""Storage tuning layer: WAL mode, durability, cache sizing and checkpoints.

The periodic scheduler writes every tick while HTTP handlers read on demand.
WAL mode plus a busy timeout let a reader wait for the writer instead of
failing outright. Because the WAL side file can be lost on an ungraceful
container restart, the Docker profile checkpoints right after being applied
and then on a recurring timer.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace

from PySide6.QtCore import QObject, Qt, QThread, QTimer, Signal

from latmon.config import CHECKPOINT_INTERVAL_MS, PERFORMANCE_CONFIG_KEY
from latmon.database import Database
from latmon.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

JOURNAL_MODES = ("WAL", "DELETE", "TRUNCATE", "PERSIST", "MEMORY", "OFF")
CHECKPOINT_MODES = ("PASSIVE", "FULL", "RESTART", "TRUNCATE")

# snake_case field -> camelCase key used in the persisted JSON
_JSON_KEYS = {
    "wal_mode": "walMode",
    "wal_checkpoint_interval": "walCheckpointInterval",
    "wal_auto_checkpoint": "walAutoCheckpoint",
    "synchronous": "synchronous",
    "cache_size": "cacheSize",
    "page_size": "pageSize",
    "journal_size_limit": "journalSizeLimit",
    "busy_timeout": "busyTimeout",
    "temp_store": "tempStore",
    "optimize_for_docker": "optimizeForDocker",
}


@dataclass(frozen=True)
class DatabasePerformanceConfig:
    """Tuning profile. Units follow SQLite: cache_size < 0 is KiB, otherwise pages."""

    wal_mode: str = "WAL"
    wal_checkpoint_interval: int = 1000  # pages
    wal_auto_checkpoint: bool = True
    synchronous: int = 1  # 0 OFF, 1 NORMAL, 2 FULL
    cache_size: int = -64000
    page_size: int = 4096
    journal_size_limit: int = -1  # KiB, applied only when > 0
    busy_timeout: int = 5000  # ms
    temp_store: int = 0  # 0 default, 1 file, 2 memory
    optimize_for_docker: bool = True

    @classmethod
    def from_dict(cls, data: dict, base: "DatabasePerformanceConfig | None" = None):
        """Merge camelCase (or snake_case) keys over ``base``; unknown keys are ignored."""
        if not isinstance(data, dict):
            raise ValidationError("Database configuration must be a JSON object")

        base = base or cls()
        changes = {}
        for f in fields(cls):
            for key in (_JSON_KEYS[f.name], f.name):
                if key in data:
                    changes[f.name] = _coerce(f.name, data[key], type(getattr(base, f.name)))
                    break
        config = replace(base, **changes)
        config.validate()
        return config

    def to_dict(self) -> dict:
        return {_JSON_KEYS[name]: value for name, value in asdict(self).items()}

    def validate(self):
        errors = []
        if self.wal_mode not in JOURNAL_MODES:
            errors.append(f"walMode must be one of {', '.join(JOURNAL_MODES)}")
        if self.synchronous not in (0, 1, 2):
            errors.append("synchronous must be 0, 1 or 2")
        if self.temp_store not in (0, 1, 2):
            errors.append("tempStore must be 0, 1 or 2")
        if not (512 <= self.page_size <= 65536) or self.page_size & (self.page_size - 1):
            errors.append("pageSize must be a power of two between 512 and 65536")
        if self.busy_timeout < 0:
            errors.append("busyTimeout must be >= 0")
        if self.wal_checkpoint_interval < 0:
            errors.append("walCheckpointInterval must be >= 0")
        if errors:
            raise ValidationError("Invalid database configuration", details=errors)


def _coerce(name: str, value, kind):
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{_JSON_KEYS[name]} must be a boolean")
    if kind is int:
        if isinstance(value, bool):
            raise ValidationError(f"{_JSON_KEYS[name]} must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{_JSON_KEYS[name]} must be an integer") from None
    if kind is str:
        return str(value).upper()
    return value


class DatabaseTuner(QObject):
    """Pushes a DatabasePerformanceConfig to the live database.

    Owns a single QTimer for the recurring WAL checkpoint, so reconfiguring
    never leaves two timers running.
    """

    checkpointed = Signal(object)  # checkpoint result dict
    _reschedule_requested = Signal()

    def __init__(self, database: Database, checkpoint_interval_ms: int = CHECKPOINT_INTERVAL_MS, parent=None):
        super().__init__(parent)
        self._db = database
        self.config = DatabasePerformanceConfig()
        self.checkpoint_interval_ms = checkpoint_interval_ms

        self.timer = QTimer(self)
        self.timer.timeout.connect(self._on_checkpoint_timer)
        # QTimer can only be started or stopped from the thread that owns it
        self._reschedule_requested.connect(self._reschedule_checkpoints, Qt.ConnectionType.QueuedConnection)

    @property
    def is_checkpoint_scheduled(self) -> bool:
        return self.timer.isActive()

    def load_config(self) -> DatabasePerformanceConfig:
        """Return the stored profile merged over the defaults."""
        raw = self._db.get_app_config(PERFORMANCE_CONFIG_KEY)
        if not raw:
            return DatabasePerformanceConfig()
        try:
            return DatabasePerformanceConfig.from_dict(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Stored database config is unreadable, using defaults: %s", e)
            return DatabasePerformanceConfig()

    def apply_config(self, config: DatabasePerformanceConfig | None = None) -> DatabasePerformanceConfig:
        """Apply every setting in order; the first failure aborts the rest.

        Raises:
            StorageError: if any pragma cannot be applied
        """
        if config is None:
            config = self.load_config()

        wal_autocheckpoint = config.wal_checkpoint_interval if config.wal_auto_checkpoint else 0
        session = {
            "synchronous": config.synchronous,
            "cache_size": config.cache_size,
            "busy_timeout": config.busy_timeout,
            "temp_store": config.temp_store,
            "wal_autocheckpoint": wal_autocheckpoint,
        }
        if config.journal_size_limit > 0:
            session["journal_size_limit"] = config.journal_size_limit * 1024

        mode = str(self._db.pragma("journal_mode", config.wal_mode)).upper()
        if mode != config.wal_mode:
            raise StorageError(f"journal_mode: requested {config.wal_mode}, database reports {mode}")
        logger.info("Journal mode set to: %s", mode)

        self._db.pragma("page_size", config.page_size)
        logger.info("Page size set to: %d bytes (effective for new files or after VACUUM)", config.page_size)

        for name, value in session.items():
            self._db.pragma(name, value)
            logger.info("%s set to: %s", name, value)

        self._db.set_session_pragmas(session)

        if config.optimize_for_docker:
            self.checkpoint_wal()
            logger.info("Docker optimizations applied: immediate WAL checkpoint")

        self._db.set_app_config(PERFORMANCE_CONFIG_KEY, json.dumps(config.to_dict()))
        self.config = config
        logger.info("Database performance configuration applied")
        return config

    def save_config(self, changes: dict) -> DatabasePerformanceConfig:
        """Merge partial changes into the current profile, apply and persist them."""
        config = DatabasePerformanceConfig.from_dict(changes, base=self.load_config())
        self.apply_config(config)
        self._request_reschedule()
        return config

    def initialize(self) -> DatabasePerformanceConfig:
        """Apply the stored profile and arm the periodic checkpoint.

        The timer is armed even if applying fails, following the last
        successfully applied profile (the defaults at startup).
        """
        try:
            return self.apply_config()
        finally:
            self._reschedule_checkpoints()

    def checkpoint_wal(self, mode: str = "TRUNCATE") -> dict:
        """Merge the write-ahead log into the main database file."""
        mode = mode.upper()
        if mode not in CHECKPOINT_MODES:
            raise ValidationError(f"Checkpoint mode must be one of {', '.join(CHECKPOINT_MODES)}")

        with self._db.transaction() as conn:
            busy, log_pages, checkpointed_pages = conn.execute(f"PRAGMA wal_checkpoint({mode})").fetchone()

        result = {"busy": busy == 1, "logPages": log_pages, "checkpointedPages": checkpointed_pages}
        if busy:
            logger.warning("WAL checkpoint (%s) could not complete: database busy", mode)
        else:
            logger.debug("WAL checkpoint (%s): %s", mode, result)
        self.checkpointed.emit(result)
        return result

    def get_stats(self) -> dict:
        """Read-only introspection of the live settings and file sizes."""
        page_size = self._db.pragma("page_size")
        page_count = self._db.pragma("page_count")
        wal_path = f"{self._db.path}-wal"
        return {
            "pageSize": page_size,
            "pageCount": page_count,
            "cacheSize": self._db.pragma("cache_size"),
            "synchronous": self._db.pragma("synchronous"),
            "journalMode": str(self._db.pragma("journal_mode")).upper(),
            "busyTimeout": self._db.pragma("busy_timeout"),
            "walSize": os.path.getsize(wal_path) if os.path.exists(wal_path) else 0,
            "dbSize": page_size * page_count,
        }

    def close(self):
        """Stop the timer and flush the WAL one last time."""
        self.timer.stop()
        try:
            self.checkpoint_wal()
        except StorageError as e:
            logger.error("Final WAL checkpoint failed: %s", e)

    def _request_reschedule(self):
        if QThread.currentThread() == self.thread():
            self._reschedule_checkpoints()
        else:
            self._reschedule_requested.emit()

    def _reschedule_checkpoints(self):
        self.timer.stop()
        if self.config.wal_auto_checkpoint and self.config.optimize_for_docker:
            self.timer.start(self.checkpoint_interval_ms)
            logger.info("Periodic WAL checkpoint enabled (every %d s)", self.checkpoint_interval_ms // 1000)
        else:
            logger.info("Periodic WAL checkpoint disabled")

    def _on_checkpoint_timer(self):
        try:
            self.checkpoint_wal()
        except StorageError as e:
            logger.error("Periodic WAL checkpoint failed: %s", e)
