"""
Certbot issuance backend.

Runs `certbot certonly` against an isolated config directory and reads
the resulting live/<domain>/ files. Certbot's own renewal bookkeeping is
never consulted: every call asks for a fresh certificate and the rotator
decides what to publish.
"""
import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from ..errors import MaterialCorrupt
from ..material import load_material
from ..models import CertificateMaterial
from .base import IssuanceBackend, IssuanceError


logger = logging.getLogger(__name__)


class CertbotBackend(IssuanceBackend):
    """Obtains certificates from an ACME CA through the certbot CLI."""

    name = "certbot"

    def __init__(
        self,
        email: str,
        config_dir: Path,
        webroot: Optional[str] = None,
        staging: bool = False,
        binary: str = "certbot",
        key_size: int = 2048,
        timeout: int = 600,
    ):
        if not email:
            raise ValueError("certbot backend requires an email address")
        self.email = email
        self.config_dir = Path(config_dir)
        self.webroot = webroot
        self.staging = staging
        self.binary = binary
        self.key_size = key_size
        self.timeout = timeout

    def build_command(self, domain: str, alternative_names: Sequence[str]) -> list[str]:
        """Build the certbot argument vector (no shell)."""
        cmd = [
            self.binary, "certonly",
            "--non-interactive",
            "--agree-tos",
            "--email", self.email,
            "--cert-name", domain,
            "--config-dir", str(self.config_dir),
            "--work-dir", str(self.config_dir / "work"),
            "--logs-dir", str(self.config_dir / "logs"),
            "--rsa-key-size", str(int(self.key_size)),
            "--force-renewal",
        ]
        if self.webroot:
            cmd += ["--webroot", "--webroot-path", self.webroot]
        else:
            cmd.append("--standalone")
        if self.staging:
            cmd.append("--staging")
        for name in [domain] + [n for n in alternative_names if n != domain]:
            cmd += ["-d", name]
        return cmd

    def live_dir(self, domain: str) -> Path:
        return self.config_dir / "live" / domain

    def issue(
        self,
        domain: str,
        alternative_names: Sequence[str],
        validity_days: int,
    ) -> CertificateMaterial:
        # The CA decides validity; validity_days is ignored here.
        cmd = self.build_command(domain, alternative_names)
        logger.info("[CERT-ISSUE] Requesting certificate for %s via certbot", domain)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise IssuanceError(f"certbot binary not found: {self.binary}") from e
        except subprocess.TimeoutExpired as e:
            raise IssuanceError(f"certbot timed out after {self.timeout}s") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()
            tail = detail[-1] if detail else "no output"
            raise IssuanceError(f"certbot exited with code {result.returncode}: {tail}")

        live = self.live_dir(domain)
        try:
            key_pem = (live / "privkey.pem").read_bytes()
            chain_pem = (live / "fullchain.pem").read_bytes()
        except OSError as e:
            raise IssuanceError(f"certbot output missing under {live}: {e}") from e

        try:
            return load_material(domain, key_pem, chain_pem)
        except MaterialCorrupt as e:
            raise IssuanceError(f"certbot produced unreadable material: {e}") from e
