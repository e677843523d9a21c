"""
Self-signed issuance backend.

Generates an RSA key and a self-signed certificate whose SANs list the
primary name and every alternative name. Used for development and for
deployments that terminate public TLS elsewhere.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ..material import load_material
from ..models import CertificateMaterial
from .base import IssuanceBackend, IssuanceError


logger = logging.getLogger(__name__)

# Backdate notBefore slightly so clients with skewed clocks accept the cert
_CLOCK_SKEW = timedelta(minutes=5)


class SelfSignedBackend(IssuanceBackend):
    """Issues self-signed certificates locally."""

    name = "self_signed"

    def __init__(
        self,
        key_size: int = 2048,
        country: str = "US",
        state: str = "State",
        locality: str = "City",
        organization: str = "Organization",
        organizational_unit: str = "OrganizationUnit",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.key_size = key_size
        self.country = country
        self.state = state
        self.locality = locality
        self.organization = organization
        self.organizational_unit = organizational_unit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _subject(self, domain: str) -> x509.Name:
        attrs = [
            (NameOID.COUNTRY_NAME, self.country),
            (NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (NameOID.LOCALITY_NAME, self.locality),
            (NameOID.ORGANIZATION_NAME, self.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (NameOID.COMMON_NAME, domain),
        ]
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in attrs if value])

    def issue(
        self,
        domain: str,
        alternative_names: Sequence[str],
        validity_days: int,
    ) -> CertificateMaterial:
        if validity_days <= 0:
            raise IssuanceError(f"validity_days must be positive, got {validity_days}")

        names = [domain] + [n for n in alternative_names if n != domain]
        logger.info("[CERT-ISSUE] Generating self-signed certificate for %s (%s)", domain, ", ".join(names))

        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            now = self._clock()
            subject = self._subject(domain)
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - _CLOCK_SKEW)
                .not_valid_after(now + timedelta(days=validity_days))
                .add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
                    critical=False,
                )
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .sign(key, hashes.SHA256())
            )
        except ValueError as e:
            raise IssuanceError(f"Self-signed generation failed for {domain}: {e}") from e

        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        return load_material(domain, key_pem, cert_pem)
