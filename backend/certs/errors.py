"""
Error taxonomy for the certificate lifecycle manager.

Every per-domain failure raised by the rotator derives from RotationError
so the scheduler can record it and move on to the next domain.
ConfigError is the only batch-level (fatal) error.
"""
from typing import Optional


class CertLifecycleError(Exception):
    """Base class for certificate lifecycle errors."""

    pass


class ConfigError(CertLifecycleError):
    """Domain configuration cannot be read. Fatal for a whole pass."""

    pass


class MaterialCorrupt(CertLifecycleError):
    """Existing material cannot be parsed. Callers must fail closed."""

    def __init__(self, message: str, domain: Optional[str] = None):
        super().__init__(message)
        self.domain = domain


class RotationError(CertLifecycleError):
    """A rotation attempt for one domain failed without changing the pointer."""

    def __init__(self, domain: str, message: str):
        super().__init__(f"{domain}: {message}")
        self.domain = domain
        self.reason = message


class IssuanceFailed(RotationError):
    """The issuance backend was unreachable or rejected the request."""

    pass


class IssuanceInvalid(RotationError):
    """The issuance backend returned material that failed validation."""

    pass


class SlotWriteFailed(RotationError):
    """The new versioned slot could not be written."""

    pass


class BackupFailed(RotationError):
    """Snapshotting the live slot failed; rotation aborted before publish."""

    pass


class PublishFailed(RotationError):
    """
    The pointer swap failed.

    retry_safe is True when the pointer was re-read after the failure and
    still references the previous slot.
    """

    def __init__(self, domain: str, message: str, retry_safe: bool = True):
        super().__init__(domain, message)
        self.retry_safe = retry_safe


class RotationCancelled(RotationError):
    """The attempt was cancelled (timeout or shutdown) before publish."""

    pass


class RotationInProgress(RotationError):
    """Another rotation holds the domain lock."""

    pass


class ReloadFailed(CertLifecycleError):
    """The proxy could not be told to re-read its certificate material."""

    pass
