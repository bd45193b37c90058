"""Boundary validation for IP addresses and batch request bodies."""

import logging
import re

from latmon.errors import ValidationError

logger = logging.getLogger(__name__)

# ASCII digit-count check only; octet range is not enforced here.
IP_PATTERN = re.compile(r"^([0-9]{1,3}\.){3}[0-9]{1,3}$")


def is_valid_ip(ip) -> bool:
    """Return True if ip looks like a dotted quad (A.B.C.D, 1-3 digits each)."""
    if not isinstance(ip, str) or not ip:
        return False
    if not IP_PATTERN.fullmatch(ip):
        return False
    if any(int(octet) > 255 for octet in ip.split(".")):
        # Accepted for compatibility with existing clients, but surfaced.
        logger.warning("IP %s passes format check but has an octet above 255", ip)
    return True


def validate_ip(ip) -> str:
    """Return ip unchanged or raise ValidationError."""
    if not is_valid_ip(ip):
        raise ValidationError("Invalid IP address format", details={"ip": ip})
    return ip


def validate_ip_batch(body) -> list[str]:
    """Extract and validate the ``ips`` list of a batch request body.

    Raises:
        ValidationError: if the body is not ``{"ips": [...]}`` with at least
            one entry, or if any entry fails the format check. The error
            names every offending entry.
    """
    ips = body.get("ips") if isinstance(body, dict) else None
    if not isinstance(ips, list) or len(ips) == 0:
        raise ValidationError("Invalid request body. Expected { ips: string[] }")

    invalid = [ip for ip in ips if not is_valid_ip(ip)]
    if invalid:
        raise ValidationError(
            "Invalid IP addresses: " + ", ".join(str(ip) for ip in invalid),
            details={"invalidIps": invalid},
        )
    return ips
