"""Data models for LatMon monitoring targets, measurements and statistics."""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe as reported by a prober."""

    success: bool
    latency_ms: float | None = None

    @classmethod
    def failed(cls) -> "ProbeResult":
        return cls(success=False, latency_ms=None)


@dataclass(frozen=True)
class Measurement:
    """Durable record of one probe outcome for one IP."""

    ip: str
    measured_at: datetime
    latency_ms: float | None  # None indicates packet loss
    packet_loss: bool

    def __post_init__(self):
        """Ensure exactly one of latency or packet loss holds."""
        if self.packet_loss:
            object.__setattr__(self, "latency_ms", None)
        elif self.latency_ms is None:
            object.__setattr__(self, "packet_loss", True)

    @classmethod
    def from_probe(cls, ip: str, result: ProbeResult, measured_at: datetime | None = None):
        """Build a measurement from a probe result.

        A successful probe without a latency value is treated as loss.
        """
        if measured_at is None:
            measured_at = datetime.now(timezone.utc)
        if result.success and result.latency_ms is not None:
            return cls(ip=ip, measured_at=measured_at, latency_ms=float(result.latency_ms), packet_loss=False)
        return cls(ip=ip, measured_at=measured_at, latency_ms=None, packet_loss=True)

    def to_dict(self) -> dict:
        return {
            "latency": self.latency_ms,
            "packetLoss": self.packet_loss,
            "measuredAt": self.measured_at.isoformat(),
        }


@dataclass(frozen=True)
class MonitoringTarget:
    """Registry row for one monitored IP."""

    ip: str
    enabled: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Statistics:
    """Aggregates for one IP, computed at query time."""

    avg_1h: float | None = None
    max: float | None = None
    min: float | None = None
    avg_24h: float | None = None
    packet_loss_percent: float = 0.0
    total_measurements: int = 0

    def to_dict(self) -> dict:
        return {
            "avg1h": self.avg_1h,
            "max": self.max,
            "min": self.min,
            "avg24h": self.avg_24h,
            "packetLossPercent": self.packet_loss_percent,
            "totalMeasurements": self.total_measurements,
        }


@dataclass(frozen=True)
class BatchStatistics:
    """Reduced statistics returned by the batch query."""

    avg_1h: float | None = None
    max: float | None = None

    def to_dict(self) -> dict:
        return {"avg1h": self.avg_1h, "max": self.max}
