"""HTTP surface: latency monitoring, database tuning and metrics snapshot.

Every response is ``{"success": bool, "result"?: ..., "error"?: {"message", "details"?}}``.
Malformed input yields 400; storage faults yield 500. Unknown IPs are not an
error and return empty or null results.
"""

import functools
import logging
import time

from flask import Blueprint, Flask, current_app, g, jsonify, request

from latmon.errors import StorageError, ValidationError
from latmon.store import DEFAULT_DAYS
from latmon.validation import validate_ip, validate_ip_batch

logger = logging.getLogger(__name__)

latency_bp = Blueprint("latency_monitoring", __name__, url_prefix="/api/latency-monitoring")
database_bp = Blueprint("database", __name__, url_prefix="/api/database")
metrics_bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")


def _service():
    return current_app.extensions["latmon"]


def _ok(result):
    return jsonify({"success": True, "result": result})


def _fail(status: int, message: str, details=None):
    error = {"message": message}
    if details is not None:
        error["details"] = details
    return jsonify({"success": False, "error": error}), status


def _storage_failure(message: str):
    """Turn StorageError raised by the wrapped view into a 500 response."""

    def decorator(view):
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except StorageError as e:
                logger.error("%s: %s", message, e)
                return _fail(500, message, str(e))

        return wrapper

    return decorator


def _days_param() -> int:
    try:
        days = int(request.args.get("days", ""))
    except ValueError:
        return DEFAULT_DAYS
    return days if days > 0 else DEFAULT_DAYS


@latency_bp.get("/status")
@_storage_failure("Failed to get monitoring status")
def monitoring_status():
    return _ok(sorted(_service().registry.list_enabled()))


@latency_bp.post("/enable/<ip>")
@_storage_failure("Failed to enable monitoring")
def enable_monitoring(ip):
    validate_ip(ip)
    _service().registry.enable(ip)
    return _ok({"ip": ip, "enabled": True})


@latency_bp.post("/disable/<ip>")
@_storage_failure("Failed to disable monitoring")
def disable_monitoring(ip):
    validate_ip(ip)
    _service().registry.disable(ip)
    return _ok({"ip": ip, "enabled": False})


@latency_bp.get("/measurements/<ip>")
@_storage_failure("Failed to get measurements")
def measurements(ip):
    validate_ip(ip)
    samples = _service().store.get_measurements(ip, _days_param())
    return _ok([m.to_dict() for m in samples])


@latency_bp.get("/stats/<ip>")
@_storage_failure("Failed to get statistics")
def statistics(ip):
    validate_ip(ip)
    return _ok(_service().store.get_statistics(ip).to_dict())


@latency_bp.post("/stats/batch")
@_storage_failure("Failed to get batch statistics")
def statistics_batch():
    ips = validate_ip_batch(request.get_json(silent=True))
    stats = _service().store.get_statistics_batch(ips)
    return _ok({ip: s.to_dict() for ip, s in stats.items()})


@latency_bp.post("/status/batch")
@_storage_failure("Failed to get batch status")
def status_batch():
    ips = validate_ip_batch(request.get_json(silent=True))
    return _ok(_service().registry.batch_status(ips))


@latency_bp.get("/scheduler")
def scheduler_status():
    return _ok(_service().scheduler.get_status())


@database_bp.get("/stats")
@_storage_failure("Failed to get database stats")
def database_stats():
    return _ok(_service().tuner.get_stats())


@database_bp.get("/config")
@_storage_failure("Failed to get database config")
def database_config():
    return _ok(_service().tuner.load_config().to_dict())


@database_bp.post("/config")
@_storage_failure("Failed to save database config")
def save_database_config():
    config = _service().tuner.save_config(request.get_json(silent=True))
    return _ok(config.to_dict())


@database_bp.post("/checkpoint")
@_storage_failure("Failed to checkpoint WAL")
def checkpoint():
    return _ok(_service().tuner.checkpoint_wal())


@metrics_bp.get("/snapshot")
def metrics_snapshot():
    return _ok(_service().metrics.get_all_metrics().as_dict())


def _handle_validation_error(e: ValidationError):
    return _fail(400, e.message, e.details)


def _start_timer():
    g.request_started = time.perf_counter()


def _record_request(response):
    started = g.pop("request_started", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        _service().metrics.record_api_request(response.status_code, duration_ms)
    return response


def _release_connection(_exc):
    _service().database.release()


def create_app(service) -> Flask:
    """Build the Flask application bound to a MonitoringService."""
    app = Flask(__name__)
    app.extensions["latmon"] = service

    app.register_blueprint(latency_bp)
    app.register_blueprint(database_bp)
    app.register_blueprint(metrics_bp)

    app.register_error_handler(ValidationError, _handle_validation_error)
    app.before_request(_start_timer)
    app.after_request(_record_request)
    app.teardown_request(_release_connection)
    return app
