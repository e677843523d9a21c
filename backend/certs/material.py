"""
Certificate material parsing and validation.

Turns PEM bytes into CertificateMaterial and checks the properties the
rotator relies on: the chain parses, the private key matches the leaf
certificate, the certificate is not already expired and its SANs cover
every configured name for the domain.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtensionOID, NameOID

from .errors import MaterialCorrupt
from .models import CertificateMaterial, Domain


logger = logging.getLogger(__name__)


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""


def load_chain(chain_pem: bytes) -> list[x509.Certificate]:
    """Load every certificate in a PEM bundle, leaf first."""
    try:
        certs = x509.load_pem_x509_certificates(chain_pem)
    except ValueError as e:
        raise MaterialCorrupt(f"Certificate chain does not parse: {e}")
    if not certs:
        raise MaterialCorrupt("Certificate chain is empty")
    return certs


def load_private_key(key_pem: bytes):
    """Load an unencrypted PEM private key."""
    try:
        return serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise MaterialCorrupt(f"Private key does not parse: {e}")


def certificate_names(cert: x509.Certificate) -> tuple[str, ...]:
    """Subject CN plus every DNS SAN, lowercased, without duplicates."""
    names: list[str] = []
    cn = _common_name(cert.subject)
    if cn:
        names.append(cn.lower())
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        for value in san_ext.value.get_values_for_type(x509.DNSName):
            value = value.lower()
            if value not in names:
                names.append(value)
    except x509.ExtensionNotFound:
        logger.debug("[CERT-MATERIAL] Certificate for %s has no SAN extension", cn)
    return tuple(names)


def san_names(cert: x509.Certificate) -> tuple[str, ...]:
    """DNS names from the SAN extension only (CN is not used for matching)."""
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return ()
    return tuple(v.lower() for v in san_ext.value.get_values_for_type(x509.DNSName))


def load_material(domain: str, key_pem: bytes, chain_pem: bytes) -> CertificateMaterial:
    """
    Parse a key/chain pair into CertificateMaterial.

    Raises:
        MaterialCorrupt: If either half cannot be parsed
    """
    try:
        certs = load_chain(chain_pem)
        load_private_key(key_pem)
    except MaterialCorrupt as e:
        raise MaterialCorrupt(str(e), domain=domain)

    leaf = certs[0]
    try:
        not_before = leaf.not_valid_before_utc
        not_after = leaf.not_valid_after_utc
    except ValueError as e:
        raise MaterialCorrupt(f"Certificate validity dates unreadable: {e}", domain=domain)

    try:
        names = certificate_names(leaf)
        subject = leaf.subject.rfc4514_string()
        issuer = leaf.issuer.rfc4514_string()
    except (ValueError, x509.DuplicateExtension) as e:
        raise MaterialCorrupt(f"Certificate names or extensions unreadable: {e}", domain=domain)

    return CertificateMaterial(
        domain=domain,
        private_key=key_pem,
        certificate_chain=chain_pem,
        not_before=not_before,
        not_after=not_after,
        subject=subject,
        issuer=issuer,
        names=names,
        serial_number=format(leaf.serial_number, "x"),
    )


def key_matches_certificate(key_pem: bytes, chain_pem: bytes) -> bool:
    """True if the private key's public half is the leaf certificate's key."""
    key = load_private_key(key_pem)
    leaf = load_chain(chain_pem)[0]
    fmt = (serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return key.public_key().public_bytes(*fmt) == leaf.public_key().public_bytes(*fmt)


def name_is_covered(name: str, cert_names: Iterable[str]) -> bool:
    """Exact match, or a single-label wildcard such as *.example.test."""
    name = name.lower()
    for candidate in cert_names:
        candidate = candidate.lower()
        if candidate == name:
            return True
        if candidate.startswith("*."):
            suffix = candidate[1:]
            head, _, rest = name.partition(".")
            if head and "." + rest == suffix:
                return True
    return False


def missing_names(domain: Domain, cert_names: Iterable[str]) -> list[str]:
    """Configured names the certificate does not cover."""
    cert_names = list(cert_names)
    return [n for n in domain.all_names if not name_is_covered(n, cert_names)]


def validate_material(
    material: CertificateMaterial,
    domain: Domain,
    now: Optional[datetime] = None,
) -> list[str]:
    """
    Check freshly issued or imported material before it may be published.

    Args:
        material: The candidate material
        domain: Configured domain the material must serve
        now: Reference time (defaults to the current UTC time)

    Returns:
        List of problems; an empty list means the material is publishable
    """
    now = now or datetime.now(timezone.utc)
    problems: list[str] = []

    try:
        leaf = load_chain(material.certificate_chain)[0]
    except MaterialCorrupt as e:
        return [str(e)]

    try:
        if not key_matches_certificate(material.private_key, material.certificate_chain):
            problems.append("private key does not match certificate")
    except MaterialCorrupt as e:
        problems.append(str(e))

    if leaf.not_valid_after_utc <= now:
        problems.append(f"certificate already expired at {leaf.not_valid_after_utc.isoformat()}")

    try:
        sans = san_names(leaf)
    except (ValueError, x509.DuplicateExtension) as e:
        problems.append(f"subject alternative names unreadable: {e}")
        return problems
    if not sans:
        problems.append("certificate has no subject alternative names")
    else:
        missing = missing_names(domain, sans)
        if missing:
            problems.append(f"certificate does not cover: {', '.join(missing)}")

    return problems


def fingerprint(chain_pem: bytes) -> str:
    """SHA-256 fingerprint of the leaf certificate (hex)."""
    leaf = load_chain(chain_pem)[0]
    return hashlib.sha256(leaf.public_bytes(serialization.Encoding.DER)).hexdigest()


def split_chain(chain_pem: bytes) -> tuple[bytes, bytes]:
    """Split a bundle into (leaf PEM, intermediates PEM)."""
    certs = load_chain(chain_pem)
    leaf = certs[0].public_bytes(serialization.Encoding.PEM)
    rest = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs[1:])
    return leaf, rest
