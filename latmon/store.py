"""Measurement store and statistics engine.

The store owns the ``latency_measurements`` table. Rows are append-only;
the only other mutation is the retention purge. Statistics are computed by
SQLite at query time in a single statement so each result reflects one
consistent snapshot of the table.
"""

import logging
from datetime import datetime, timedelta

from latmon.database import Database, chunked, format_timestamp, parse_timestamp, utc_now
from latmon.models import BatchStatistics, Measurement, Statistics

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 30

# MIN/MAX/AVG skip NULLs, so rows without a latency never skew the aggregates.
_STATISTICS_COLUMNS = """
    COUNT(*) AS total,
    COALESCE(SUM(packet_loss), 0) AS lost,
    MIN(CASE WHEN packet_loss = 0 THEN latency END) AS min_latency,
    MAX(CASE WHEN packet_loss = 0 THEN latency END) AS max_latency,
    AVG(CASE WHEN packet_loss = 0 AND measured_at >= :since_1h THEN latency END) AS avg_1h,
    AVG(CASE WHEN packet_loss = 0 AND measured_at >= :since_24h THEN latency END) AS avg_24h
"""


class MeasurementStore:
    """Durable per-IP latency samples with windowed aggregates."""

    def __init__(self, database: Database, clock=utc_now):
        self._db = database
        self._clock = clock

    def create_measurement(
        self,
        ip: str,
        latency_ms: float | None,
        packet_loss: bool,
        measured_at: datetime | None = None,
    ) -> Measurement:
        """Append one sample.

        Raises:
            StorageError: if the underlying storage is unavailable
        """
        measurement = Measurement(
            ip=ip,
            measured_at=measured_at or self._clock(),
            latency_ms=latency_ms,
            packet_loss=packet_loss,
        )
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO latency_measurements (ip, latency, packet_loss, measured_at) VALUES (?, ?, ?, ?)",
                (
                    measurement.ip,
                    measurement.latency_ms,
                    1 if measurement.packet_loss else 0,
                    format_timestamp(measurement.measured_at),
                ),
            )
        return measurement

    def get_measurements(self, ip: str, days: int = DEFAULT_DAYS) -> list[Measurement]:
        """Return samples of the trailing ``days`` window, oldest first."""
        since = format_timestamp(self._clock() - timedelta(days=days))
        with self._db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT ip, latency, packet_loss, measured_at FROM latency_measurements
                WHERE ip = ? AND measured_at >= ?
                ORDER BY measured_at ASC, id ASC
                """,
                (ip, since),
            ).fetchall()
        return [self._row_to_measurement(row) for row in rows]

    def get_statistics(self, ip: str) -> Statistics:
        """Compute aggregates for one IP.

        avg_1h and avg_24h cover the trailing hour and day; min, max and the
        packet-loss percentage cover every retained sample. An IP without
        samples yields null latency fields and 0% loss.
        """
        params = self._window_params()
        params["ip"] = ip
        with self._db.transaction() as conn:
            row = conn.execute(
                f"SELECT {_STATISTICS_COLUMNS} FROM latency_measurements WHERE ip = :ip",
                params,
            ).fetchone()
        return self._row_to_statistics(row)

    def get_statistics_batch(self, ips: list[str]) -> dict[str, BatchStatistics]:
        """Return avg_1h/max for every requested IP; IPs without data get nulls."""
        result = {ip: BatchStatistics() for ip in ips}
        if not ips:
            return result

        params = self._window_params()
        with self._db.transaction() as conn:
            for chunk in chunked(list(result)):
                chunk_params = dict(params)
                names = []
                for index, ip in enumerate(chunk):
                    chunk_params[f"ip{index}"] = ip
                    names.append(f":ip{index}")
                rows = conn.execute(
                    f"""
                    SELECT ip, {_STATISTICS_COLUMNS} FROM latency_measurements
                    WHERE ip IN ({",".join(names)})
                    GROUP BY ip
                    """,
                    chunk_params,
                ).fetchall()
                for row in rows:
                    result[row["ip"]] = BatchStatistics(avg_1h=row["avg_1h"], max=row["max_latency"])
        return result

    def delete_older_than(self, days: int) -> int:
        """Purge samples older than ``days`` days and return how many were removed."""
        cutoff = format_timestamp(self._clock() - timedelta(days=days))
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM latency_measurements WHERE measured_at < ?", (cutoff,))
            deleted = cursor.rowcount
        logger.info("Purged %d measurements older than %d days", deleted, days)
        return deleted

    def count_measurements(self, ip: str | None = None) -> int:
        with self._db.transaction() as conn:
            if ip is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM latency_measurements").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM latency_measurements WHERE ip = ?", (ip,)
                ).fetchone()
        return row["count"]

    def oldest_measurement_time(self) -> datetime | None:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT MIN(measured_at) AS oldest FROM latency_measurements").fetchone()
        return parse_timestamp(row["oldest"]) if row["oldest"] else None

    def _window_params(self) -> dict:
        now = self._clock()
        return {
            "since_1h": format_timestamp(now - timedelta(hours=1)),
            "since_24h": format_timestamp(now - timedelta(hours=24)),
        }

    @staticmethod
    def _row_to_statistics(row) -> Statistics:
        total = row["total"]
        if not total:
            return Statistics()
        return Statistics(
            avg_1h=row["avg_1h"],
            max=row["max_latency"],
            min=row["min_latency"],
            avg_24h=row["avg_24h"],
            packet_loss_percent=row["lost"] / total * 100,
            total_measurements=total,
        )

    @staticmethod
    def _row_to_measurement(row) -> Measurement:
        latency = row["latency"]
        return Measurement(
            ip=row["ip"],
            measured_at=parse_timestamp(row["measured_at"]),
            latency_ms=float(latency) if latency is not None else None,
            packet_loss=row["packet_loss"] == 1,
        )
