"""
Atomic rotation of a domain's certificate material.

A rotation either makes a new, validated, matching key/certificate pair
live or leaves the current pointer exactly where it was. Steps, all under
the per-domain lock:

    issue -> validate -> write new slot -> back up live slot -> publish

Only publish changes what the proxy observes, and publish is a single
symlink replace. A failure anywhere earlier leaves at most an orphaned
slot that nothing references.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .backup import BackupManager
from .errors import (
    IssuanceFailed,
    IssuanceInvalid,
    MaterialCorrupt,
    PublishFailed,
    RotationCancelled,
    SlotWriteFailed,
)
from .expiry import DEFAULT_THRESHOLD_DAYS, needs_rotation
from .issuance import IssuanceBackend, IssuanceError
from .locks import DomainLockTable
from .material import load_material, validate_material
from .models import BackupSnapshot, CertificateMaterial, Domain, ExpiryState, RotationResult
from .storage import SlotStore


logger = logging.getLogger(__name__)


class AtomicRotator:
    """Sole writer of every domain's current pointer."""

    def __init__(
        self,
        store: SlotStore,
        backups: BackupManager,
        backend: IssuanceBackend,
        locks: DomainLockTable,
        validity_days: int = 365,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.backups = backups
        self.backend = backend
        self.locks = locks
        self.validity_days = validity_days
        self.threshold_days = threshold_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    def evaluate(self, domain: str) -> ExpiryState:
        """
        Evaluate a domain's live material.

        Unreadable material is reported as EXPIRED so it gets replaced.
        """
        try:
            material = self.store.read_current(domain)
            return needs_rotation(material, self.threshold_days, now=self.now())
        except MaterialCorrupt as e:
            logger.warning("[CERT-ROTATE] Live material for %s is corrupt, rotation required: %s", domain, e)
            return ExpiryState.EXPIRED

    def _previous_generation(self, domain: str) -> Optional[str]:
        try:
            return self.store.current_generation(domain)
        except MaterialCorrupt as e:
            # Nothing usable to back up; publish will replace the broken pointer
            logger.warning("[CERT-ROTATE] %s", e)
            return None

    @staticmethod
    def _check_cancel(domain: str, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RotationCancelled(domain, "rotation cancelled before publish")

    def rotate(
        self,
        domain: Domain,
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> RotationResult:
        """
        Rotate a domain if its material is due (or unconditionally with force).

        A request that had to wait for the lock re-evaluates first, so it
        becomes a no-op when the rotation it waited on already succeeded.

        Returns:
            RotationResult; `rotated` is False when the domain was still valid

        Raises:
            RotationInProgress: If the domain lock is not obtained in time
            IssuanceFailed, IssuanceInvalid, SlotWriteFailed, BackupFailed,
            PublishFailed, RotationCancelled: The pointer was not changed
                (PublishFailed.retry_safe tells whether that was verified)
        """
        name = domain.name
        with self.locks.hold(name):
            previous = self._previous_generation(name)

            if not force:
                state = self.evaluate(name)
                if not state.needs_rotation:
                    logger.debug("[CERT-ROTATE] %s is valid, nothing to do", name)
                    return RotationResult(
                        domain=name, rotated=False, generation=previous,
                        previous_generation=previous, reason=state.value,
                    )
                reason = state.value
            else:
                reason = "forced"

            self._check_cancel(name, cancel_event)
            material = self._issue(domain)
            return self._install(domain, material, previous, reason, self.backend.name, cancel_event)

    def import_material(
        self,
        domain: Domain,
        key_pem: bytes,
        chain_pem: bytes,
        cancel_event: Optional[threading.Event] = None,
    ) -> RotationResult:
        """
        Publish operator-supplied material through the same validated pipeline.

        Raises:
            IssuanceInvalid: If the PEM data does not parse or fails validation
        """
        name = domain.name
        try:
            material = load_material(name, key_pem, chain_pem)
        except MaterialCorrupt as e:
            logger.error("[CERT-SECURITY] Rejected imported material for %s: %s", name, e)
            raise IssuanceInvalid(name, f"imported material unreadable: {e}") from e

        with self.locks.hold(name):
            previous = self._previous_generation(name)
            return self._install(domain, material, previous, "imported", "import", cancel_event)

    def _issue(self, domain: Domain) -> CertificateMaterial:
        name = domain.name
        logger.info("[CERT-ROTATE] Requesting new material for %s from %s", name, self.backend.name)
        try:
            material = self.backend.issue(name, list(domain.alternative_names), self.validity_days)
        except MaterialCorrupt as e:
            logger.error("[CERT-SECURITY] Issuance backend returned unreadable material for %s: %s", name, e)
            raise IssuanceInvalid(name, f"unreadable material: {e}") from e
        except IssuanceError as e:
            logger.error("[CERT-ROTATE] Issuance failed for %s: %s", name, e)
            raise IssuanceFailed(name, str(e)) from e
        except Exception as e:
            logger.exception("[CERT-ROTATE] Issuance backend error for %s: %s", name, e)
            raise IssuanceFailed(name, f"backend error: {e}") from e
        return material

    def _install(
        self,
        domain: Domain,
        material: CertificateMaterial,
        previous: Optional[str],
        reason: str,
        source: str,
        cancel_event: Optional[threading.Event],
    ) -> RotationResult:
        name = domain.name

        problems = validate_material(material, domain, now=self.now())
        if material.domain != name:
            problems.append(f"material was issued for {material.domain}")
        if problems:
            detail = "; ".join(problems)
            logger.error("[CERT-SECURITY] Rejected new material for %s: %s", name, detail)
            raise IssuanceInvalid(name, detail)

        try:
            slot = self.store.write_slot(material, source=source)
        except (OSError, MaterialCorrupt) as e:
            logger.error("[CERT-ROTATE] Could not write new slot for %s: %s", name, e)
            raise SlotWriteFailed(name, str(e)) from e

        backup: Optional[BackupSnapshot] = None
        if previous is not None:
            backup = self.backups.snapshot(name, self.store.slot(name, previous), now=self.now())

        self._check_cancel(name, cancel_event)
        self._publish(name, slot.generation, previous)

        logger.info(
            "[CERT-ROTATE] %s rotated: slot %s -> %s (%s), expires %s",
            name, previous or "none", slot.generation, reason, material.not_after.isoformat(),
        )
        return RotationResult(
            domain=name,
            rotated=True,
            generation=slot.generation,
            previous_generation=previous,
            backup=backup,
            reason=reason,
        )

    def _publish(self, domain: str, generation: str, previous: Optional[str]) -> None:
        try:
            self.store.publish(domain, generation)
            return
        except OSError as e:
            error = e

        # Re-read the pointer to learn which side of the swap we are on
        try:
            actual = self.store.current_generation(domain)
        except MaterialCorrupt:
            actual = None
            verified = False
        else:
            verified = True

        if verified and actual == generation:
            logger.warning("[CERT-ROTATE] Publish for %s reported %s but pointer is at %s", domain, error, generation)
            return

        retry_safe = verified and actual == previous
        logger.error(
            "[CERT-ROTATE] Publish failed for %s (pointer at %s, retry safe: %s): %s",
            domain, actual, retry_safe, error,
        )
        raise PublishFailed(domain, f"pointer swap failed: {error}", retry_safe=retry_safe) from error
