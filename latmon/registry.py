"""Monitoring registry: which IPs the scheduler probes."""

import logging

from latmon.database import Database, chunked, format_timestamp, parse_timestamp, utc_now
from latmon.models import MonitoringTarget

logger = logging.getLogger(__name__)


class MonitoringRegistry:
    """Persistent enable/disable flags keyed by IP.

    Rows are created on first enable and never deleted; disabling is the only
    way to stop monitoring an IP. Both operations are idempotent.
    """

    def __init__(self, database: Database):
        self._db = database

    def enable(self, ip: str):
        now = format_timestamp(utc_now())
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO latency_monitoring (ip, enabled, created_at, updated_at)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(ip) DO UPDATE SET enabled = 1, updated_at = excluded.updated_at
                """,
                (ip, now, now),
            )
        logger.info("Started monitoring for IP: %s", ip)

    def disable(self, ip: str):
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE latency_monitoring SET enabled = 0, updated_at = ? WHERE ip = ?",
                (format_timestamp(utc_now()), ip),
            )
        logger.info("Stopped monitoring for IP: %s", ip)

    def is_enabled(self, ip: str) -> bool:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT enabled FROM latency_monitoring WHERE ip = ?", (ip,)).fetchone()
        return bool(row and row["enabled"] == 1)

    def list_enabled(self) -> set[str]:
        """Return the IPs currently enabled (a snapshot, not a live view)."""
        with self._db.transaction() as conn:
            rows = conn.execute("SELECT ip FROM latency_monitoring WHERE enabled = 1").fetchall()
        return {row["ip"] for row in rows}

    def batch_status(self, ips: list[str]) -> dict[str, bool]:
        """Return an entry for every requested IP; unknown IPs map to False."""
        result = {ip: False for ip in ips}
        if not ips:
            return result

        with self._db.transaction() as conn:
            for chunk in chunked(list(result)):
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT ip, enabled FROM latency_monitoring WHERE ip IN ({placeholders})",
                    chunk,
                ).fetchall()
                for row in rows:
                    result[row["ip"]] = row["enabled"] == 1
        return result

    def get_target(self, ip: str) -> MonitoringTarget | None:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT ip, enabled, created_at, updated_at FROM latency_monitoring WHERE ip = ?",
                (ip,),
            ).fetchone()
        if row is None:
            return None
        return MonitoringTarget(
            ip=row["ip"],
            enabled=row["enabled"] == 1,
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def count(self) -> int:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM latency_monitoring").fetchone()
        return row["count"]
