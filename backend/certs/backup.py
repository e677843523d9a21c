"""
Backup manager.

Copies (never moves) the slot that is live right before a rotation into
<backup_dir>/<domain>/<timestamp>-g<generation>/. Snapshots are written
to a temporary directory first and renamed into place, and are never
deleted automatically.
"""
import json
import logging
import os
import secrets
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import BackupFailed
from .models import BackupSnapshot, SlotInfo
from .storage import TMP_PREFIX, fsync_dir, write_file


logger = logging.getLogger(__name__)

BACKUP_META_FILE = "backup.json"
_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


class BackupManager:
    """Creates and lists immutable backup snapshots."""

    def __init__(self, backup_dir: Path):
        self.backup_dir = Path(backup_dir)

    def domain_dir(self, domain: str) -> Path:
        return self.backup_dir / domain

    def _unique_name(self, domain: str, timestamp: datetime, generation: str) -> str:
        base = f"{timestamp.strftime(_TIMESTAMP_FORMAT)}-g{generation}"
        name = base
        counter = 1
        while (self.domain_dir(domain) / name).exists():
            name = f"{base}-{counter}"
            counter += 1
        return name

    def snapshot(self, domain: str, slot: SlotInfo, now: Optional[datetime] = None) -> BackupSnapshot:
        """
        Copy a slot's files into a new snapshot.

        Calling this twice for the same slot yields two distinct snapshots.

        Raises:
            BackupFailed: If the copy cannot be completed
        """
        timestamp = now or datetime.now(timezone.utc)
        target_dir = self.domain_dir(domain)
        tmp: Optional[Path] = None
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            name = self._unique_name(domain, timestamp, slot.generation)
            tmp = target_dir / f"{TMP_PREFIX}{name}-{secrets.token_hex(4)}"
            tmp.mkdir(mode=0o700)

            copied = 0
            for src in sorted(slot.path.iterdir()):
                if src.is_file():
                    shutil.copy2(src, tmp / src.name)
                    copied += 1
            if not (tmp / "privkey.pem").exists() or not (tmp / "fullchain.pem").exists():
                raise BackupFailed(domain, f"slot {slot.generation} is missing its key or certificate")

            meta = {
                "domain": domain,
                "timestamp": timestamp.isoformat(),
                "source_generation": slot.generation,
                "files": copied,
            }
            write_file(tmp / BACKUP_META_FILE, json.dumps(meta, indent=2).encode("utf-8"), 0o644)
            for f in tmp.iterdir():
                fd = os.open(f, os.O_RDONLY)
                try:
                    os.fsync(fd)
                finally:
                    os.close(fd)
            fsync_dir(tmp)

            final = target_dir / name
            os.rename(tmp, final)
            tmp = None
            fsync_dir(target_dir)
        except OSError as e:
            logger.error("[CERT-BACKUP] Backup of %s slot %s failed: %s", domain, slot.generation, e)
            raise BackupFailed(domain, f"backup of slot {slot.generation} failed: {e}") from e
        finally:
            if tmp is not None and tmp.exists():
                shutil.rmtree(tmp, ignore_errors=True)

        logger.info("[CERT-BACKUP] Backed up %s slot %s to %s", domain, slot.generation, final)
        return BackupSnapshot(
            domain=domain,
            timestamp=timestamp,
            source_generation=slot.generation,
            path=final,
        )

    def _load(self, domain: str, path: Path) -> Optional[BackupSnapshot]:
        try:
            meta = json.loads((path / BACKUP_META_FILE).read_text())
            return BackupSnapshot(
                domain=domain,
                timestamp=datetime.fromisoformat(meta["timestamp"]),
                source_generation=str(meta["source_generation"]),
                path=path,
            )
        except (OSError, ValueError, KeyError) as e:
            logger.warning("[CERT-BACKUP] Ignoring unreadable snapshot %s: %s", path, e)
            return None

    def list_snapshots(self, domain: str) -> list[BackupSnapshot]:
        """Snapshots for a domain, oldest first."""
        target_dir = self.domain_dir(domain)
        if not target_dir.is_dir():
            return []
        snapshots = []
        for path in sorted(target_dir.iterdir()):
            if not path.is_dir() or path.name.startswith("."):
                continue
            snapshot = self._load(domain, path)
            if snapshot is not None:
                snapshots.append(snapshot)
        snapshots.sort(key=lambda s: (s.timestamp, s.path.name))
        return snapshots

    def remove_snapshot(self, snapshot: BackupSnapshot) -> None:
        shutil.rmtree(snapshot.path)
        logger.info("[CERT-BACKUP] Removed snapshot %s", snapshot.path)

    def orphans(self, domain: str, max_age_seconds: float = 0) -> list[Path]:
        """Temporary snapshot directories left by interrupted backups."""
        target_dir = self.domain_dir(domain)
        if not target_dir.is_dir():
            return []
        now = datetime.now(timezone.utc).timestamp()
        found: list[Path] = []
        for p in target_dir.iterdir():
            if not p.name.startswith(TMP_PREFIX):
                continue
            try:
                age = now - p.lstat().st_mtime
            except FileNotFoundError:
                continue
            if age >= max_age_seconds:
                found.append(p)
        return found
