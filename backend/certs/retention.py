"""
Opt-in pruning of superseded slots, old snapshots and orphaned temp dirs.

Nothing is pruned unless a keep count is configured. The live slot is
never a candidate, and pruning holds the domain lock so it cannot race a
rotation that is about to publish.
"""
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .rotator import AtomicRotator


logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    domain: str
    removed_slots: list[str] = field(default_factory=list)
    removed_backups: list[str] = field(default_factory=list)
    removed_orphans: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "removed_slots": self.removed_slots,
            "removed_backups": self.removed_backups,
            "removed_orphans": self.removed_orphans,
        }


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    else:
        shutil.rmtree(path)


def prune(
    rotator: AtomicRotator,
    domain: str,
    keep_slots: Optional[int] = None,
    keep_backups: Optional[int] = None,
    orphan_max_age_hours: float = 24.0,
) -> PruneResult:
    """
    Prune one domain's history.

    Args:
        rotator: Provides the slot store, backup manager and lock table
        domain: Domain name
        keep_slots: Keep this many newest slots besides the live one (None keeps all)
        keep_backups: Keep this many newest snapshots (None keeps all)
        orphan_max_age_hours: Remove temporary directories older than this

    Raises:
        RotationInProgress: If the domain lock is not obtained in time
    """
    store = rotator.store
    backups = rotator.backups
    result = PruneResult(domain=domain)
    max_age = orphan_max_age_hours * 3600

    with rotator.locks.hold(domain):
        for orphan in store.orphans(domain, max_age_seconds=max_age) + backups.orphans(domain, max_age_seconds=max_age):
            try:
                _remove_path(orphan)
                result.removed_orphans.append(orphan.name)
            except OSError as e:
                logger.warning("[CERT-STORAGE] Could not remove orphan %s: %s", orphan, e)

        if keep_slots is not None:
            live = store.current_generation(domain)
            candidates = [g for g in store.list_generations(domain) if g != live]
            for generation in candidates[:max(0, len(candidates) - keep_slots)]:
                store.remove_slot(domain, generation)
                result.removed_slots.append(generation)

        if keep_backups is not None:
            snapshots = backups.list_snapshots(domain)
            for snapshot in snapshots[:max(0, len(snapshots) - keep_backups)]:
                backups.remove_snapshot(snapshot)
                result.removed_backups.append(snapshot.path.name)

    if result.removed_slots or result.removed_backups or result.removed_orphans:
        logger.info(
            "[CERT-STORAGE] Pruned %s: %s slot(s), %s backup(s), %s orphan(s)",
            domain, len(result.removed_slots), len(result.removed_backups), len(result.removed_orphans),
        )
    return result


def prune_all(rotator: AtomicRotator, domains: list[str], retention) -> list[PruneResult]:
    """Prune every domain with the configured RetentionSettings."""
    return [
        prune(
            rotator,
            domain,
            keep_slots=retention.keep_slots,
            keep_backups=retention.keep_backups,
            orphan_max_age_hours=retention.orphan_max_age_hours,
        )
        for domain in domains
    ]
