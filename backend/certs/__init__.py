"""
Certificate lifecycle management for the reverse proxy.

Decides when a domain's TLS material must be replaced, obtains new
material from an issuance backend, and switches the proxy over through a
single atomically replaced `current` pointer.
"""
from .errors import (
    BackupFailed,
    CertLifecycleError,
    ConfigError,
    IssuanceFailed,
    IssuanceInvalid,
    MaterialCorrupt,
    PublishFailed,
    ReloadFailed,
    RotationCancelled,
    RotationError,
    RotationInProgress,
    SlotWriteFailed,
)
from .expiry import needs_rotation
from .models import (
    BackupSnapshot,
    CertificateMaterial,
    Domain,
    ExpiryState,
    RotationOutcome,
    RotationRecord,
    RotationResult,
)

__all__ = [
    "BackupFailed",
    "BackupSnapshot",
    "CertLifecycleError",
    "CertificateMaterial",
    "ConfigError",
    "Domain",
    "ExpiryState",
    "IssuanceFailed",
    "IssuanceInvalid",
    "MaterialCorrupt",
    "PublishFailed",
    "ReloadFailed",
    "RotationCancelled",
    "RotationError",
    "RotationInProgress",
    "RotationOutcome",
    "RotationRecord",
    "RotationResult",
    "SlotWriteFailed",
    "needs_rotation",
]
