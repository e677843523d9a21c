"""
Expiry evaluation.

Pure decision function: no I/O, no clock access unless the caller omits
`now`. Missing material means rotation is required; unreadable dates
raise MaterialCorrupt so callers fail closed.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import MaterialCorrupt
from .models import CertificateMaterial, ExpiryState


DEFAULT_THRESHOLD_DAYS = 30


def needs_rotation(
    material: Optional[CertificateMaterial],
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    now: Optional[datetime] = None,
) -> ExpiryState:
    """
    Decide whether a domain's live material must be replaced.

    Args:
        material: Live material, or None when the domain has no slot yet
        threshold_days: Rotate when fewer than this many days remain
        now: Reference time (timezone-aware); defaults to current UTC time

    Returns:
        EXPIRED when now >= notAfter, EXPIRING_SOON when notAfter - now is
        below the threshold, VALID otherwise

    Raises:
        MaterialCorrupt: If notAfter is missing or not a timezone-aware datetime
        ValueError: If threshold_days is negative
    """
    if threshold_days < 0:
        raise ValueError(f"threshold_days must be >= 0, got {threshold_days}")

    if material is None:
        return ExpiryState.EXPIRED

    not_after = material.not_after
    if not isinstance(not_after, datetime) or not_after.tzinfo is None:
        raise MaterialCorrupt(
            f"Unusable notAfter for {material.domain}: {not_after!r}",
            domain=material.domain,
        )

    now = now or datetime.now(timezone.utc)
    if now >= not_after:
        return ExpiryState.EXPIRED
    if not_after - now < timedelta(days=threshold_days):
        return ExpiryState.EXPIRING_SOON
    return ExpiryState.VALID


def days_until_expiry(material: CertificateMaterial, now: Optional[datetime] = None) -> int:
    """Whole days left (negative once expired), like `openssl -enddate` arithmetic."""
    now = now or datetime.now(timezone.utc)
    return int((material.not_after - now).total_seconds() // 86400)
