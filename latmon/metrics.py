"""Process-wide, label-free operational metrics.

Counters are aggregated in memory with no per-user, per-IP or per-route
dimension, so exporting them to a time-series backend never creates an
unbounded number of series. The only keyed fields are HTTP status codes and
security event levels, both from closed sets.

Every update method is fire-and-forget: it never raises to its caller.
"""

import copy
import functools
import logging
import threading
import time
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)

AUTH_LOGIN_STATUSES = ("success", "failed", "blocked")
SECURITY_LEVELS = ("info", "warning", "error")
OTHER_KEY = "other"


@dataclass
class ScanMetrics:
    last_scan_duration_ms: float = 0.0
    last_scan_timestamp: float = 0.0
    last_scan_scanned: int = 0
    last_scan_found: int = 0
    last_scan_updated: int = 0
    latency_sum: float = 0.0
    latency_count: int = 0
    latency_min: float | None = None
    latency_max: float = 0.0
    scan_count: int = 0


@dataclass
class AuthMetrics:
    login_success_total: int = 0
    login_failed_total: int = 0
    login_blocked_total: int = 0
    ip_blocked_total: int = 0
    sessions_active: int = 0


@dataclass
class ApiMetrics:
    requests_total: int = 0
    requests_by_status: dict[str, int] = field(default_factory=dict)
    errors_total: int = 0
    duration_sum_ms: float = 0.0
    duration_count: int = 0
    duration_min_ms: float | None = None
    duration_max_ms: float = 0.0


@dataclass
class SecurityMetrics:
    events_by_level: dict[str, int] = field(default_factory=dict)
    settings_changed_total: int = 0
    blocked_ips_count: int = 0


@dataclass
class SchedulerMetrics:
    enabled: int = 0
    last_run_timestamp: float = 0.0
    next_run_timestamp: float = 0.0
    runs_total: int = 0


@dataclass
class DatabaseMetrics:
    measurement_entries_total: int = 0
    target_entries_total: int = 0
    size_bytes: int = 0
    oldest_entry_timestamp: float = 0.0


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of all six metric families."""

    scan: ScanMetrics
    auth: AuthMetrics
    api: ApiMetrics
    security: SecurityMetrics
    scheduler: SchedulerMetrics
    database: DatabaseMetrics

    def as_dict(self) -> dict:
        return asdict(self)


def _fire_and_forget(method):
    """Run an update under the aggregator lock and swallow any failure."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            with self._lock:
                method(self, *args, **kwargs)
        except Exception:
            logger.debug("Metrics update %s failed", method.__name__, exc_info=True)

    return wrapper


class MetricsAggregator:
    """In-memory counters for scan, auth, api, security, scheduler and database activity."""

    def __init__(self, clock=time.time):
        self._lock = threading.Lock()
        self._clock = clock
        self._scan = ScanMetrics()
        self._auth = AuthMetrics()
        self._api = ApiMetrics()
        self._security = SecurityMetrics()
        self._scheduler = SchedulerMetrics()
        self._database = DatabaseMetrics()

    @_fire_and_forget
    def record_scan_complete(self, duration_ms, scanned, found, updated, latencies=()):
        """Record one finished scan; call once per scan, after it completes."""
        latencies = [float(value) for value in latencies]

        scan = self._scan
        scan.last_scan_duration_ms = float(duration_ms)
        scan.last_scan_timestamp = self._clock()
        scan.last_scan_scanned = int(scanned)
        scan.last_scan_found = int(found)
        scan.last_scan_updated = int(updated)
        scan.scan_count += 1

        if latencies:
            scan.latency_sum += sum(latencies)
            scan.latency_count += len(latencies)
            low, high = min(latencies), max(latencies)
            if scan.latency_min is None or low < scan.latency_min:
                scan.latency_min = low
            if high > scan.latency_max:
                scan.latency_max = high

    @_fire_and_forget
    def record_auth_login(self, status: str):
        if status == "success":
            self._auth.login_success_total += 1
        elif status == "failed":
            self._auth.login_failed_total += 1
        elif status == "blocked":
            self._auth.login_blocked_total += 1
        else:
            logger.debug("Ignoring unknown login status %r", status)

    @_fire_and_forget
    def record_ip_blocked(self):
        self._auth.ip_blocked_total += 1

    @_fire_and_forget
    def update_sessions_active(self, count: int):
        self._auth.sessions_active = int(count)

    @_fire_and_forget
    def record_api_request(self, status_code: int, duration_ms: float):
        """Count one request by status code only (never by route or client)."""
        status_code = int(status_code)
        duration_ms = float(duration_ms)
        key = str(status_code) if 100 <= status_code <= 599 else OTHER_KEY

        api = self._api
        api.requests_total += 1
        api.requests_by_status[key] = api.requests_by_status.get(key, 0) + 1
        if status_code >= 400:
            api.errors_total += 1

        api.duration_sum_ms += duration_ms
        api.duration_count += 1
        if api.duration_min_ms is None or duration_ms < api.duration_min_ms:
            api.duration_min_ms = duration_ms
        if duration_ms > api.duration_max_ms:
            api.duration_max_ms = duration_ms

    @_fire_and_forget
    def record_security_event(self, level: str):
        key = level if level in SECURITY_LEVELS else OTHER_KEY
        events = self._security.events_by_level
        events[key] = events.get(key, 0) + 1

    @_fire_and_forget
    def record_security_settings_changed(self):
        self._security.settings_changed_total += 1

    @_fire_and_forget
    def update_blocked_ips_count(self, count: int):
        self._security.blocked_ips_count = int(count)

    @_fire_and_forget
    def update_scheduler_metrics(self, enabled: bool, last_run: float | None = None, next_run: float | None = None):
        """Update scheduler gauges; the run counter moves only when last_run is given."""
        scheduler = self._scheduler
        scheduler.enabled = 1 if enabled else 0
        if last_run is not None:
            scheduler.last_run_timestamp = float(last_run)
            scheduler.runs_total += 1
        if next_run is not None:
            scheduler.next_run_timestamp = float(next_run)

    @_fire_and_forget
    def update_database_metrics(
        self,
        measurement_entries: int,
        target_entries: int,
        size_bytes: int,
        oldest_entry_timestamp: float | None = None,
    ):
        database = self._database
        database.measurement_entries_total = int(measurement_entries)
        database.target_entries_total = int(target_entries)
        database.size_bytes = int(size_bytes)
        if oldest_entry_timestamp is not None:
            database.oldest_entry_timestamp = float(oldest_entry_timestamp)

    def get_all_metrics(self) -> MetricsSnapshot:
        """Return a deep copy; mutating it never touches aggregator state."""
        with self._lock:
            return MetricsSnapshot(
                scan=copy.deepcopy(self._scan),
                auth=copy.deepcopy(self._auth),
                api=copy.deepcopy(self._api),
                security=copy.deepcopy(self._security),
                scheduler=copy.deepcopy(self._scheduler),
                database=copy.deepcopy(self._database),
            )

    def reset(self):
        """Zero the scan and api families.

        Auth, security, scheduler and database counters are cumulative for
        the life of the process and are left untouched.
        """
        with self._lock:
            self._scan = ScanMetrics()
            self._api = ApiMetrics()
