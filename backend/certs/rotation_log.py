"""
Append-only rotation log.

One JSON object per line in <log_dir>/rotation-log.jsonl. Records are
only ever appended (under an exclusive file lock so concurrent processes
never interleave lines); nothing rewrites or truncates the file.
"""
import fcntl
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .models import RotationRecord


logger = logging.getLogger(__name__)

LOG_FILE_NAME = "rotation-log.jsonl"


class RotationLog:
    """Audit trail of every evaluation and its outcome."""

    def __init__(self, log_dir: Path):
        self.path = Path(log_dir) / LOG_FILE_NAME

    def append(self, record: RotationRecord) -> None:
        """Append one record and fsync it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = (json.dumps(record.to_dict(), sort_keys=True) + "\n").encode("utf-8")
        with open(self.path, "a+b") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                # Terminate a torn line left by a crash so this record stays parseable
                if f.seek(0, os.SEEK_END) > 0:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        f.write(b"\n")
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        logger.debug(
            "[CERT-LOG] %s %s %s", record.domain, record.outcome.value, record.reason,
        )

    def read(self, domain: Optional[str] = None, limit: Optional[int] = None) -> list[RotationRecord]:
        """
        Read records, newest first.

        Args:
            domain: Only return records for this domain
            limit: Maximum number of records to return
        """
        if not self.path.exists():
            return []

        records: list[RotationRecord] = []
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = RotationRecord.from_dict(json.loads(line))
                except (ValueError, KeyError) as e:
                    # A crash mid-append can leave a torn final line
                    logger.warning("[CERT-LOG] Skipping unreadable line %d in %s: %s", lineno, self.path, e)
                    continue
                if domain is None or record.domain == domain:
                    records.append(record)

        records.reverse()
        if limit is not None:
            records = records[:limit]
        return records

    def last(self, domain: str) -> Optional[RotationRecord]:
        """Most recent record for a domain."""
        records = self.read(domain=domain, limit=1)
        return records[0] if records else None
