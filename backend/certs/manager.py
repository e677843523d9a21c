"""
Wiring of the lifecycle components from settings.

Everything a pass needs is built from an explicit ManagerSettings; the
only process-wide state is the cached instance returned by get_manager().
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .backup import BackupManager
from .issuance import get_issuance_backend
from .locks import DomainLockTable
from .reload import get_reload_notifier
from .rotation_log import RotationLog
from .rotator import AtomicRotator
from .scheduler import DomainScheduler, RotationRunner
from .storage import SlotStore


logger = logging.getLogger(__name__)


@dataclass
class CertificateManager:
    """The components of one configured certificate manager."""

    settings: object
    store: SlotStore
    backups: BackupManager
    rotation_log: RotationLog
    rotator: AtomicRotator
    scheduler: DomainScheduler

    @classmethod
    def from_settings(cls, settings, clock=None) -> "CertificateManager":
        """
        Build every component from a ManagerSettings instance.

        Raises:
            ValueError: If the issuance backend or reload mode is misconfigured
        """
        store = SlotStore(Path(settings.certs_dir))
        backups = BackupManager(Path(settings.backup_dir))
        rotation_log = RotationLog(Path(settings.log_dir))
        locks = DomainLockTable(Path(settings.state_dir) / "locks", timeout=settings.lock_timeout)
        rotator = AtomicRotator(
            store=store,
            backups=backups,
            backend=get_issuance_backend(settings),
            locks=locks,
            validity_days=settings.policy.validity_days,
            threshold_days=settings.threshold_days,
            clock=clock,
        )
        scheduler = DomainScheduler(
            rotator=rotator,
            rotation_log=rotation_log,
            notifier=get_reload_notifier(settings),
            domains=settings.enabled_domains,
            max_workers=settings.max_workers,
            reload_marker=Path(settings.state_dir) / "reload-pending",
        )
        return cls(
            settings=settings,
            store=store,
            backups=backups,
            rotation_log=rotation_log,
            rotator=rotator,
            scheduler=scheduler,
        )


_manager: Optional[CertificateManager] = None
_manager_settings = None


def get_manager() -> CertificateManager:
    """
    Manager for the current settings, rebuilt whenever the settings change.

    Raises:
        ConfigError: If the configuration file is invalid
    """
    global _manager, _manager_settings
    from config import get_settings

    settings = get_settings()
    if _manager is None or _manager_settings is not settings:
        _manager = CertificateManager.from_settings(settings)
        _manager_settings = settings
        logger.debug("[CERT-SCHED] Built certificate manager for %s domain(s)", len(settings.domains))
    return _manager


def reset_manager() -> None:
    """Drop the cached manager (tests, settings reload)."""
    global _manager, _manager_settings
    _manager = None
    _manager_settings = None


# Global runner instance; each pass uses the manager for the current settings
rotation_runner = RotationRunner(lambda: get_manager().scheduler)
