"""Exception hierarchy for LatMon."""


class LatmonError(Exception):
    """Base class for all LatMon errors."""


class ValidationError(LatmonError):
    """Malformed input rejected at the boundary (HTTP 400)."""

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class StorageError(LatmonError):
    """The underlying store is unavailable, locked past its timeout, or full."""


class ProbeFailure(LatmonError):
    """A probe could not be carried out (timeout, unreachable, transport fault)."""

    def __init__(self, ip: str, reason: str):
        super().__init__(f"Probe failed for {ip}: {reason}")
        self.ip = ip
        self.reason = reason
