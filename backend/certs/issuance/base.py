"""
Base issuance backend interface.
"""
from abc import ABC, abstractmethod
from typing import Sequence

from ..models import CertificateMaterial


class IssuanceError(Exception):
    """The backend could not produce material (unreachable, rejected, tool failure)."""

    pass


class IssuanceBackend(ABC):
    """
    Abstract base class for issuance backends.

    Implementations produce a new private key and certificate chain for a
    domain. The rotator validates whatever comes back, so backends do not
    need to re-check their own output.
    """

    name: str = "base"

    @abstractmethod
    def issue(
        self,
        domain: str,
        alternative_names: Sequence[str],
        validity_days: int,
    ) -> CertificateMaterial:
        """
        Issue new material for a domain.

        Args:
            domain: Primary FQDN (also the certificate CN)
            alternative_names: Additional DNS names to include as SANs
            validity_days: Requested validity period (CA backends may ignore it)

        Returns:
            New CertificateMaterial

        Raises:
            IssuanceError: If issuance fails
        """
        pass
