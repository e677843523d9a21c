"""
Domain scheduler and periodic rotation runner.

A pass evaluates every configured domain, rotates the ones that are due
and appends one RotationRecord per domain whatever happens. Domains run
concurrently in worker threads (bounded by max_workers); one domain's
failure never stops the others. The reload notifier fires once per pass,
and only if something rotated.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import CertLifecycleError, ReloadFailed, RotationError
from .models import Domain, ExpiryState, RotationOutcome, RotationRecord
from .reload import ReloadNotifier
from .rotation_log import RotationLog
from .rotator import AtomicRotator


logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """Aggregate outcome of one scheduling pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    records: list[RotationRecord] = field(default_factory=list)
    reloaded: bool = False
    reload_error: Optional[str] = None

    @property
    def rotated(self) -> list[str]:
        return [r.domain for r in self.records if r.outcome == RotationOutcome.SUCCESS]

    @property
    def failed(self) -> list[str]:
        return [r.domain for r in self.records if r.outcome == RotationOutcome.FAILURE]

    @property
    def any_rotated(self) -> bool:
        return bool(self.rotated)

    @property
    def ok(self) -> bool:
        return not self.failed and self.reload_error is None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "rotated": self.rotated,
            "failed": self.failed,
            "reloaded": self.reloaded,
            "reload_error": self.reload_error,
            "records": [r.to_dict() for r in self.records],
        }


class DomainScheduler:
    """Runs passes over the configured domain set."""

    def __init__(
        self,
        rotator: AtomicRotator,
        rotation_log: RotationLog,
        notifier: ReloadNotifier,
        domains: Callable[[], Sequence[Domain]],
        max_workers: int = 4,
        reload_marker: Optional[Path] = None,
    ):
        """
        Args:
            rotator: The rotator that owns the current pointers
            rotation_log: Where every evaluation is recorded
            notifier: Proxy reload notifier
            domains: Returns the configured domains; may raise ConfigError,
                which aborts the pass
            max_workers: Domains processed concurrently
            reload_marker: File that records an undelivered reload across
                passes and restarts (kept in memory when None)
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.rotator = rotator
        self.rotation_log = rotation_log
        self.notifier = notifier
        self._domains = domains
        self.max_workers = max_workers
        self.reload_marker = reload_marker
        self._reload_pending = False
        self._cancel = threading.Event()

    def domains(self) -> list[Domain]:
        return list(self._domains())

    def find_domain(self, name: str) -> Domain:
        """
        Raises:
            KeyError: If the domain is not configured
        """
        name = name.strip().lower()
        for domain in self.domains():
            if domain.name == name:
                return domain
        raise KeyError(name)

    def cancel(self) -> None:
        """Ask in-flight rotations to stop before publishing."""
        self._cancel.set()

    def record(self, record: RotationRecord) -> RotationRecord:
        try:
            self.rotation_log.append(record)
        except OSError as e:
            logger.error("[CERT-SCHED] Could not append rotation record for %s: %s", record.domain, e)
        return record

    def process_domain(self, domain: Domain, force: bool = False) -> RotationRecord:
        """Evaluate and, if due, rotate one domain. Never raises for domain-level failures."""
        name = domain.name
        state: Optional[ExpiryState] = None
        try:
            state = self.rotator.evaluate(name)
            result = self.rotator.rotate(domain, force=force, cancel_event=self._cancel)
        except RotationError as e:
            if state == ExpiryState.EXPIRED:
                logger.critical("[CERT-SCHED] %s is expired and rotation failed: %s", name, e.reason)
            else:
                logger.error("[CERT-SCHED] Rotation failed for %s: %s", name, e.reason)
            return self.record(RotationRecord(
                domain=name,
                timestamp=self.rotator.now(),
                outcome=RotationOutcome.FAILURE,
                reason=e.reason,
                generation=self._safe_generation(name),
                state=state.value if state is not None else None,
                error_type=type(e).__name__,
            ))
        except Exception as e:
            logger.exception("[CERT-SCHED] Unexpected error rotating %s: %s", name, e)
            return self.record(RotationRecord(
                domain=name,
                timestamp=self.rotator.now(),
                outcome=RotationOutcome.FAILURE,
                reason=str(e) or type(e).__name__,
                generation=self._safe_generation(name),
                state=state.value if state is not None else None,
                error_type=type(e).__name__,
            ))

        if result.rotated:
            outcome = RotationOutcome.SUCCESS
        else:
            outcome = RotationOutcome.SKIPPED
        return self.record(RotationRecord(
            domain=name,
            timestamp=self.rotator.now(),
            outcome=outcome,
            reason=result.reason,
            generation=result.generation,
            state=state.value,
        ))

    def import_domain(self, domain: Domain, key_pem: bytes, chain_pem: bytes) -> RotationRecord:
        """
        Publish operator-supplied material and record the outcome.

        Raises:
            RotationError: If the material is rejected or cannot be published
        """
        name = domain.name
        try:
            result = self.rotator.import_material(domain, key_pem, chain_pem, cancel_event=self._cancel)
        except RotationError as e:
            self.record(RotationRecord(
                domain=name,
                timestamp=self.rotator.now(),
                outcome=RotationOutcome.FAILURE,
                reason=e.reason,
                generation=self._safe_generation(name),
                error_type=type(e).__name__,
            ))
            raise
        return self.record(RotationRecord(
            domain=name,
            timestamp=self.rotator.now(),
            outcome=RotationOutcome.SUCCESS,
            reason=result.reason,
            generation=result.generation,
        ))

    def _safe_generation(self, name: str) -> Optional[str]:
        try:
            return self.rotator.store.current_generation(name)
        except CertLifecycleError:
            return None

    @property
    def reload_pending(self) -> bool:
        """True if a rotation happened whose reload was never delivered."""
        if self._reload_pending or self.reload_marker is None:
            return self._reload_pending
        return self.reload_marker.exists()

    def _set_reload_pending(self, pending: bool) -> None:
        self._reload_pending = pending
        if self.reload_marker is None:
            return
        try:
            if pending:
                self.reload_marker.parent.mkdir(parents=True, exist_ok=True)
                self.reload_marker.write_text(datetime.now(timezone.utc).isoformat() + "\n")
            else:
                self.reload_marker.unlink(missing_ok=True)
        except OSError as e:
            logger.error("[CERT-SCHED] Could not update reload marker %s: %s", self.reload_marker, e)

    async def notify(self, result: PassResult) -> None:
        """
        Send one reload notification if the pass rotated something or an
        earlier reload is still undelivered. A failure leaves the reload
        pending so the next pass retries it.
        """
        pending = self.reload_pending
        if not result.any_rotated and not pending:
            return
        if pending and not result.any_rotated:
            logger.info("[CERT-SCHED] Retrying reload notification left pending by an earlier pass")
        try:
            await self.notifier.notify_reload()
        except ReloadFailed as e:
            result.reload_error = str(e)
            self._set_reload_pending(True)
            logger.error("[CERT-SCHED] Reload notification failed (rotated: %s): %s", ", ".join(result.rotated) or "none", e)
            return
        result.reloaded = True
        if pending:
            self._set_reload_pending(False)

    async def run_pass(self, force: bool = False, only: Optional[Sequence[str]] = None) -> PassResult:
        """
        Run one pass over the configured domains.

        Args:
            force: Rotate every selected domain regardless of expiry
            only: Restrict the pass to these domain names

        Raises:
            ConfigError: If the domain configuration cannot be read
            KeyError: If a name in `only` is not configured
        """
        domains = self.domains()
        if only is not None:
            domains = [self.find_domain(n) for n in only]

        self._cancel.clear()
        result = PassResult(started_at=datetime.now(timezone.utc))
        logger.info("[CERT-SCHED] Starting pass over %s domain(s)", len(domains))

        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(domain: Domain) -> RotationRecord:
            async with semaphore:
                return await asyncio.to_thread(self.process_domain, domain, force)

        result.records = list(await asyncio.gather(*(worker(d) for d in domains)))
        await self.notify(result)
        result.finished_at = datetime.now(timezone.utc)

        logger.info(
            "[CERT-SCHED] Pass finished: %s rotated, %s failed, %s evaluated",
            len(result.rotated), len(result.failed), len(result.records),
        )
        return result


class RotationRunner:
    """
    Background task that runs a pass every check_interval seconds.

    Provides methods to start, stop, and manually trigger passes.
    """

    def __init__(self, scheduler_factory: Callable[[], DomainScheduler]):
        self._scheduler_factory = scheduler_factory
        self._task: Optional[asyncio.Task] = None
        self._check_interval: int = 86400
        self._scheduler: Optional[DomainScheduler] = None
        self.last_result: Optional[PassResult] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        """Check if the background task is running."""
        return self._task is not None and not self._task.done()

    async def trigger(self, force: bool = False) -> PassResult:
        """Run one pass now."""
        self._scheduler = self._scheduler_factory()
        try:
            result = await self._scheduler.run_pass(force=force)
        except CertLifecycleError as e:
            self.last_error = str(e)
            raise
        self.last_result = result
        self.last_error = None
        return result

    async def _loop(self) -> None:
        logger.info("[CERT-SCHED] Rotation runner started (checking every %s seconds)", self._check_interval)
        while True:
            try:
                await self.trigger()
            except asyncio.CancelledError:
                logger.info("[CERT-SCHED] Rotation runner cancelled")
                raise
            except CertLifecycleError as e:
                logger.error("[CERT-SCHED] Pass aborted: %s", e)
            except Exception as e:
                self.last_error = str(e)
                logger.exception("[CERT-SCHED] Error in rotation runner: %s", e)

            await asyncio.sleep(self._check_interval)

    def start(self, check_interval: int = 86400) -> None:
        """
        Start the periodic runner.

        Args:
            check_interval: Interval between passes in seconds
        """
        if self.is_running:
            logger.warning("[CERT-SCHED] Rotation runner already running")
            return
        self._check_interval = check_interval
        self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        """Stop the runner; in-flight rotations abort before publishing."""
        if self._scheduler is not None:
            self._scheduler.cancel()
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("[CERT-SCHED] Rotation runner stopped")
