"""
Status and validation reports over the live material.

Read-only: nothing here takes a domain lock or touches a pointer. Reports
are derived from whatever the current pointer resolves to at call time.
"""
import logging
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import MaterialCorrupt
from .expiry import days_until_expiry, needs_rotation
from .material import validate_material
from .models import Domain, ExpiryState, RotationOutcome, RotationRecord, SlotInfo
from .rotation_log import RotationLog
from .storage import CERT_FILE, CERT_MODE, CHAIN_FILE, FULLCHAIN_FILE, KEY_FILE, KEY_MODE, SlotStore


logger = logging.getLogger(__name__)

SEVERITY_OK = "ok"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"


@dataclass
class DomainStatus:
    """What the proxy is serving for one domain."""

    domain: str
    state: str  # ExpiryState value, "missing" or "corrupt"
    severity: str
    generation: Optional[str] = None
    days_until_expiry: Optional[int] = None
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    subject: Optional[str] = None
    issuer: Optional[str] = None
    self_signed: Optional[bool] = None
    names: list[str] = field(default_factory=list)
    error: Optional[str] = None
    last_record: Optional[RotationRecord] = None
    expired_rotation_failed: bool = False

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "state": self.state,
            "severity": self.severity,
            "generation": self.generation,
            "days_until_expiry": self.days_until_expiry,
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "subject": self.subject,
            "issuer": self.issuer,
            "self_signed": self.self_signed,
            "names": self.names,
            "error": self.error,
            "last_record": self.last_record.to_dict() if self.last_record else None,
            "expired_rotation_failed": self.expired_rotation_failed,
        }


def _severity(state: str) -> str:
    if state == ExpiryState.VALID.value:
        return SEVERITY_OK
    if state == ExpiryState.EXPIRING_SOON.value:
        return SEVERITY_WARNING
    return SEVERITY_CRITICAL


def domain_status(
    store: SlotStore,
    rotation_log: Optional[RotationLog],
    domain: str,
    threshold_days: int,
    now: Optional[datetime] = None,
) -> DomainStatus:
    """Build the status of one domain from its current pointer and last record."""
    now = now or datetime.now(timezone.utc)
    last = rotation_log.last(domain) if rotation_log is not None else None

    try:
        generation = store.current_generation(domain)
        material = store.read_current(domain) if generation is not None else None
    except MaterialCorrupt as e:
        status = DomainStatus(
            domain=domain, state="corrupt", severity=SEVERITY_CRITICAL,
            error=str(e), last_record=last,
        )
        status.expired_rotation_failed = last is not None and last.outcome == RotationOutcome.FAILURE
        return status

    if material is None:
        status = DomainStatus(domain=domain, state="missing", severity=SEVERITY_CRITICAL, last_record=last)
        status.expired_rotation_failed = last is not None and last.outcome == RotationOutcome.FAILURE
        return status

    state = needs_rotation(material, threshold_days, now=now).value
    return DomainStatus(
        domain=domain,
        state=state,
        severity=_severity(state),
        generation=generation,
        days_until_expiry=days_until_expiry(material, now=now),
        not_before=material.not_before,
        not_after=material.not_after,
        subject=material.subject,
        issuer=material.issuer,
        self_signed=material.is_self_signed,
        names=list(material.names),
        last_record=last,
        expired_rotation_failed=(
            state == ExpiryState.EXPIRED.value
            and last is not None
            and last.outcome == RotationOutcome.FAILURE
        ),
    )


def all_statuses(
    store: SlotStore,
    rotation_log: Optional[RotationLog],
    domains: list[Domain],
    threshold_days: int,
    now: Optional[datetime] = None,
) -> list[DomainStatus]:
    now = now or datetime.now(timezone.utc)
    return [domain_status(store, rotation_log, d.name, threshold_days, now=now) for d in domains]


def check_permissions(slot: SlotInfo) -> list[str]:
    """Private keys must be 0600 and certificates 0644."""
    problems = []
    expected = {
        KEY_FILE: KEY_MODE,
        FULLCHAIN_FILE: CERT_MODE,
        CERT_FILE: CERT_MODE,
        CHAIN_FILE: CERT_MODE,
    }
    for name, mode in expected.items():
        path = slot.path / name
        if not path.exists():
            continue
        actual = stat.S_IMODE(path.stat().st_mode)
        if actual != mode:
            problems.append(f"{name} has mode {actual:04o}, expected {mode:04o}")
    return problems


@dataclass
class ValidationReport:
    """Whether the live pair of one domain is fit to serve."""

    domain: str
    generation: Optional[str]
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict:
        return {"domain": self.domain, "generation": self.generation, "ok": self.ok, "problems": self.problems}


def validate_domain(store: SlotStore, domain: Domain, now: Optional[datetime] = None) -> ValidationReport:
    """Check the live pair parses, matches, covers the configured names and is unexpired."""
    try:
        slot = store.current_slot(domain.name)
        if slot is None:
            return ValidationReport(domain=domain.name, generation=None, problems=["no live certificate"])
        material = store.read_slot(slot)
    except MaterialCorrupt as e:
        return ValidationReport(domain=domain.name, generation=None, problems=[str(e)])

    problems = validate_material(material, domain, now=now)
    problems.extend(check_permissions(slot))
    if problems:
        logger.warning("[CERT-STORAGE] %s slot %s failed validation: %s", domain.name, slot.generation, "; ".join(problems))
    return ValidationReport(domain=domain.name, generation=slot.generation, problems=problems)


def validate_all(store: SlotStore, domains: list[Domain], now: Optional[datetime] = None) -> list[ValidationReport]:
    return [validate_domain(store, d, now=now) for d in domains]
