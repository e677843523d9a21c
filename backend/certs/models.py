"""
Data model for certificate lifecycle management.

Domains, certificate material, versioned slots, backup snapshots and
rotation records. Everything here is immutable once created; rotation
only ever produces new objects.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class ExpiryState(str, Enum):
    """Result of evaluating a domain's live material."""

    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    VALID = "valid"

    @property
    def needs_rotation(self) -> bool:
        return self is not ExpiryState.VALID


class RotationOutcome(str, Enum):
    """Outcome stored in a RotationRecord."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Domain:
    """A configured site: primary FQDN plus subject alternative names."""

    name: str
    alternative_names: tuple[str, ...] = ()

    @property
    def all_names(self) -> tuple[str, ...]:
        """Primary name first, then alternatives without duplicates."""
        names = [self.name]
        for alt in self.alternative_names:
            if alt not in names:
                names.append(alt)
        return tuple(names)


@dataclass(frozen=True)
class CertificateMaterial:
    """A private key and its certificate chain. Never split, never mutated."""

    domain: str
    private_key: bytes = field(repr=False)
    certificate_chain: bytes = field(repr=False)
    not_before: datetime
    not_after: datetime
    subject: str
    issuer: str
    names: tuple[str, ...] = ()
    serial_number: str = ""

    @property
    def is_self_signed(self) -> bool:
        return self.subject == self.issuer


@dataclass(frozen=True)
class SlotInfo:
    """Location of one VersionedSlot on disk."""

    domain: str
    generation: str
    path: Path

    @property
    def key_path(self) -> Path:
        return self.path / "privkey.pem"

    @property
    def cert_path(self) -> Path:
        return self.path / "fullchain.pem"

    @property
    def meta_path(self) -> Path:
        return self.path / "meta.json"


@dataclass(frozen=True)
class BackupSnapshot:
    """Copy of the material that was live immediately before a rotation."""

    domain: str
    timestamp: datetime
    source_generation: str
    path: Path

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "timestamp": self.timestamp.isoformat(),
            "source_generation": self.source_generation,
            "path": str(self.path),
        }


@dataclass(frozen=True)
class RotationRecord:
    """One line of the append-only rotation log."""

    domain: str
    timestamp: datetime
    outcome: RotationOutcome
    reason: str
    generation: Optional[str] = None
    state: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["outcome"] = self.outcome.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RotationRecord":
        return cls(
            domain=data["domain"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            outcome=RotationOutcome(data["outcome"]),
            reason=data.get("reason", ""),
            generation=data.get("generation"),
            state=data.get("state"),
            error_type=data.get("error_type"),
        )


@dataclass(frozen=True)
class RotationResult:
    """What the rotator did for one request."""

    domain: str
    rotated: bool
    generation: Optional[str]
    previous_generation: Optional[str] = None
    backup: Optional[BackupSnapshot] = None
    reason: str = ""
