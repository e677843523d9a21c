"""
Versioned slot storage and the per-domain current pointer.

Layout for one domain:

    <certs_dir>/<domain>/slots/000001/{privkey.pem,fullchain.pem,cert.pem,meta.json}
    <certs_dir>/<domain>/slots/000002/...
    <certs_dir>/<domain>/current -> slots/000002

A slot is written into a temporary directory and renamed into place only
once every file is on disk, so a slot name never refers to a partial
write. The pointer is a relative symlink replaced with a single
os.replace(), which is atomic on POSIX filesystems: readers see either the
old slot or the new one.
"""
import json
import logging
import os
import secrets
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import MaterialCorrupt
from .material import fingerprint, load_material, split_chain
from .models import CertificateMaterial, SlotInfo


logger = logging.getLogger(__name__)

KEY_FILE = "privkey.pem"
FULLCHAIN_FILE = "fullchain.pem"
CERT_FILE = "cert.pem"
CHAIN_FILE = "chain.pem"
META_FILE = "meta.json"

KEY_MODE = 0o600
CERT_MODE = 0o644

TMP_PREFIX = ".tmp-"
POINTER_NAME = "current"


def fsync_dir(path: Path) -> None:
    """Flush a directory entry change (rename, symlink) to disk."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_file(path: Path, data: bytes, mode: int) -> None:
    """Create a new file (never overwrite), set its mode and fsync it."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        os.write(fd, data)
        os.fchmod(fd, mode)
        os.fsync(fd)
    finally:
        os.close(fd)


class SlotStore:
    """Manages VersionedSlots and CurrentPointers under one certs directory."""

    def __init__(self, certs_dir: Path):
        self.certs_dir = Path(certs_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def domain_dir(self, domain: str) -> Path:
        return self.certs_dir / domain

    def slots_dir(self, domain: str) -> Path:
        return self.domain_dir(domain) / "slots"

    def pointer_path(self, domain: str) -> Path:
        return self.domain_dir(domain) / POINTER_NAME

    def slot(self, domain: str, generation: str) -> SlotInfo:
        return SlotInfo(domain=domain, generation=generation, path=self.slots_dir(domain) / generation)

    def consumer_paths(self, domain: str) -> tuple[Path, Path]:
        """(key, certificate) paths the proxy is configured with."""
        pointer = self.pointer_path(domain)
        return pointer / KEY_FILE, pointer / FULLCHAIN_FILE

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def list_generations(self, domain: str) -> list[str]:
        """Completed slot names, oldest first."""
        slots_dir = self.slots_dir(domain)
        if not slots_dir.is_dir():
            return []
        return sorted(
            p.name for p in slots_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".") and p.name.isdigit()
        )

    def next_generation(self, domain: str) -> str:
        """Next monotonically increasing generation name. Call under the domain lock."""
        existing = self.list_generations(domain)
        last = int(existing[-1]) if existing else 0
        return f"{last + 1:06d}"

    def current_generation(self, domain: str) -> Optional[str]:
        """
        Generation the pointer references, or None if the domain has no pointer.

        Raises:
            MaterialCorrupt: If the pointer exists but does not name a slot
        """
        pointer = self.pointer_path(domain)
        try:
            target = os.readlink(pointer)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise MaterialCorrupt(f"Current pointer for {domain} is not a symlink: {e}", domain=domain)

        generation = Path(target).name
        if not (self.slots_dir(domain) / generation).is_dir():
            raise MaterialCorrupt(f"Current pointer for {domain} dangles: {target}", domain=domain)
        return generation

    def current_slot(self, domain: str) -> Optional[SlotInfo]:
        generation = self.current_generation(domain)
        if generation is None:
            return None
        return self.slot(domain, generation)

    def read_slot(self, slot: SlotInfo) -> CertificateMaterial:
        """
        Load the material stored in a slot.

        Raises:
            MaterialCorrupt: If a file is missing or unparsable
        """
        try:
            key_pem = slot.key_path.read_bytes()
            chain_pem = slot.cert_path.read_bytes()
        except OSError as e:
            raise MaterialCorrupt(f"Slot {slot.generation} of {slot.domain} unreadable: {e}", domain=slot.domain)
        return load_material(slot.domain, key_pem, chain_pem)

    def read_current(self, domain: str) -> Optional[CertificateMaterial]:
        """Live material for a domain, None if it has never been published."""
        slot = self.current_slot(domain)
        if slot is None:
            return None
        return self.read_slot(slot)

    def read_meta(self, slot: SlotInfo) -> dict:
        try:
            return json.loads(slot.meta_path.read_text())
        except (OSError, ValueError) as e:
            logger.debug("[CERT-STORAGE] No readable metadata for %s/%s: %s", slot.domain, slot.generation, e)
            return {}

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_slot(self, material: CertificateMaterial, source: str = "") -> SlotInfo:
        """
        Write material into a brand-new slot. Call under the domain lock.

        Raises:
            OSError: If any write fails; the temporary directory is left
                behind as an orphan and never referenced
            FileExistsError: If the generation name is already taken
        """
        domain = material.domain
        slots_dir = self.slots_dir(domain)
        slots_dir.mkdir(parents=True, exist_ok=True)

        generation = self.next_generation(domain)
        final = slots_dir / generation
        if final.exists():
            raise FileExistsError(f"Slot {generation} already exists for {domain}")

        tmp = slots_dir / f"{TMP_PREFIX}{generation}-{os.getpid()}-{secrets.token_hex(4)}"
        tmp.mkdir(mode=0o700)

        leaf_pem, intermediates_pem = split_chain(material.certificate_chain)
        write_file(tmp / KEY_FILE, material.private_key, KEY_MODE)
        write_file(tmp / FULLCHAIN_FILE, material.certificate_chain, CERT_MODE)
        write_file(tmp / CERT_FILE, leaf_pem, CERT_MODE)
        if intermediates_pem:
            write_file(tmp / CHAIN_FILE, intermediates_pem, CERT_MODE)

        meta = {
            "domain": domain,
            "generation": generation,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "not_before": material.not_before.isoformat(),
            "not_after": material.not_after.isoformat(),
            "subject": material.subject,
            "issuer": material.issuer,
            "serial_number": material.serial_number,
            "names": list(material.names),
            "fingerprint": fingerprint(material.certificate_chain),
            "source": source,
        }
        write_file(tmp / META_FILE, json.dumps(meta, indent=2).encode("utf-8"), CERT_MODE)
        os.chmod(tmp, 0o755)
        fsync_dir(tmp)

        os.rename(tmp, final)
        fsync_dir(slots_dir)
        logger.info("[CERT-STORAGE] Wrote slot %s for %s", generation, domain)
        return self.slot(domain, generation)

    def publish(self, domain: str, generation: str) -> None:
        """
        Atomically repoint `current` at a completed slot.

        A temporary symlink is created next to the pointer and renamed over
        it; rename(2) replaces the directory entry in one step.
        """
        if not (self.slots_dir(domain) / generation).is_dir():
            raise FileNotFoundError(f"Slot {generation} does not exist for {domain}")

        domain_dir = self.domain_dir(domain)
        tmp_link = domain_dir / f"{TMP_PREFIX}{POINTER_NAME}-{os.getpid()}-{secrets.token_hex(4)}"
        os.symlink(f"slots/{generation}", tmp_link)
        try:
            os.replace(tmp_link, self.pointer_path(domain))
        except OSError:
            try:
                tmp_link.unlink()
            except OSError:
                logger.warning("[CERT-STORAGE] Could not remove temporary pointer %s", tmp_link)
            raise
        fsync_dir(domain_dir)
        logger.info("[CERT-STORAGE] %s now points at slot %s", domain, generation)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def remove_slot(self, domain: str, generation: str) -> None:
        """Delete a superseded slot. Refuses to delete the live one."""
        if generation == self.current_generation(domain):
            raise ValueError(f"Refusing to delete live slot {generation} of {domain}")
        shutil.rmtree(self.slots_dir(domain) / generation)
        logger.info("[CERT-STORAGE] Removed slot %s of %s", generation, domain)

    def orphans(self, domain: str, max_age_seconds: float = 0) -> list[Path]:
        """Temporary slot directories and pointer links left by interrupted attempts."""
        now = time.time()
        found: list[Path] = []
        for parent in (self.slots_dir(domain), self.domain_dir(domain)):
            if not parent.is_dir():
                continue
            for p in parent.iterdir():
                if not p.name.startswith(TMP_PREFIX):
                    continue
                try:
                    age = now - p.lstat().st_mtime
                except FileNotFoundError:
                    continue
                if age >= max_age_seconds:
                    found.append(p)
        return found
