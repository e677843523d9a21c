"""
Issuance backends.

Supported backends:
- self_signed: locally generated certificates
- certbot: ACME certificates through the certbot CLI
"""
from pathlib import Path

from .base import IssuanceBackend, IssuanceError
from .certbot import CertbotBackend
from .self_signed import SelfSignedBackend

__all__ = [
    "IssuanceBackend",
    "IssuanceError",
    "CertbotBackend",
    "SelfSignedBackend",
    "get_issuance_backend",
]


def get_issuance_backend(settings) -> IssuanceBackend:
    """
    Get an issuance backend instance from manager settings.

    Args:
        settings: ManagerSettings with `issuance` and `policy` sections

    Returns:
        IssuanceBackend instance

    Raises:
        ValueError: If the backend is not supported
    """
    issuance = settings.issuance
    policy = settings.policy
    backend_name = issuance.backend.lower().strip()

    if backend_name == "self_signed":
        return SelfSignedBackend(
            key_size=policy.key_size,
            country=policy.country,
            state=policy.state,
            locality=policy.locality,
            organization=policy.organization,
            organizational_unit=policy.organizational_unit,
        )
    elif backend_name == "certbot":
        return CertbotBackend(
            email=issuance.certbot_email,
            config_dir=Path(issuance.certbot_config_dir),
            webroot=issuance.certbot_webroot,
            staging=issuance.certbot_staging,
            binary=issuance.certbot_binary,
            key_size=policy.key_size,
        )
    else:
        raise ValueError(f"Unsupported issuance backend: {issuance.backend}")
