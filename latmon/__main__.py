"""Entry point for the LatMon service."""

import logging
import signal
import sys
import threading

from PySide6.QtCore import QCoreApplication, QTimer
from werkzeug.serving import make_server

from latmon.api import create_app
from latmon.config import Settings
from latmon.fake_prober import FakeProber
from latmon.logging_config import configure_logging
from latmon.service import MonitoringService

logger = logging.getLogger(__name__)


def build_prober(settings: Settings):
    """Return the configured prober, falling back to FakeProber if ping is unusable."""
    if settings.prober == "fake":
        logger.info("Using FakeProber (LATMON_PROBER=fake)")
        return FakeProber()

    try:
        from latmon.collector_ping import PingProber

        prober = PingProber(timeout_ms=settings.probe_timeout_ms)
    except ValueError as e:
        logger.error("PingProber configuration invalid: %s", e)
    except OSError as e:
        logger.warning("Ping command unavailable: %s", e)
    else:
        logger.info("PingProber initialized successfully")
        return prober

    logger.warning("Using simulated data (real network probing unavailable)")
    return FakeProber()


def main():
    configure_logging()
    app = QCoreApplication(sys.argv)

    try:
        settings = Settings.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    service = MonitoringService(settings, build_prober(settings))
    service.init()

    server = make_server(settings.bind_host, settings.port, create_app(service), threaded=True)
    server_thread = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    server_thread.start()
    logger.info("HTTP API listening on %s:%d", settings.bind_host, settings.port)

    def request_quit(signum, _frame):
        logger.info("Received signal %d, shutting down", signum)
        app.quit()

    signal.signal(signal.SIGINT, request_quit)
    signal.signal(signal.SIGTERM, request_quit)

    # Wake the interpreter periodically so Python signal handlers run
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(500)

    exit_code = app.exec()

    server.shutdown()
    server_thread.join(timeout=5)
    service.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
