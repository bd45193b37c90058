"""Probe capability consumed by the scheduler."""

from typing import Protocol

from latmon.models import ProbeResult


class Prober(Protocol):
    """Anything that can check reachability and round-trip time of one IP."""

    def probe(self, ip: str) -> ProbeResult:
        """Probe ``ip`` once.

        A host that does not answer is reported as ``ProbeResult.failed()``.
        Implementations may raise (ProbeFailure or anything else) when the
        probe itself cannot run; callers record that as packet loss too.
        """
        ...
