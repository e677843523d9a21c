"""
Unit tests for the issuance backends.
"""
import subprocess
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from certs.issuance import (
    CertbotBackend,
    IssuanceError,
    SelfSignedBackend,
    get_issuance_backend,
)
from certs.material import key_matches_certificate, validate_material
from config import IssuanceSettings, ManagerSettings
from tests.factories import DOMAIN, make_pair


class TestSelfSignedBackend:
    """Tests for SelfSignedBackend."""

    def test_issues_valid_material(self):
        material = SelfSignedBackend().issue(DOMAIN.name, DOMAIN.alternative_names, 90)

        assert material.domain == DOMAIN.name
        assert set(material.names) >= {"example.test", "www.example.test"}
        assert material.is_self_signed
        assert key_matches_certificate(material.private_key, material.certificate_chain)
        assert validate_material(material, DOMAIN) == []

    def test_validity_from_clock(self):
        fixed = datetime(2030, 1, 1, tzinfo=timezone.utc)
        material = SelfSignedBackend(clock=lambda: fixed).issue(DOMAIN.name, [], 30)
        assert material.not_after == fixed + timedelta(days=30)
        assert material.not_before < fixed

    def test_rejects_non_positive_validity(self):
        with pytest.raises(IssuanceError):
            SelfSignedBackend().issue(DOMAIN.name, [], 0)


class TestCertbotBackend:
    """Tests for CertbotBackend."""

    def make_backend(self, tmp_path, **kwargs):
        return CertbotBackend(email="ops@example.test", config_dir=tmp_path / "le", **kwargs)

    def test_build_command_standalone(self, tmp_path):
        cmd = self.make_backend(tmp_path).build_command(DOMAIN.name, DOMAIN.alternative_names)

        assert cmd[:2] == ["certbot", "certonly"]
        assert "--standalone" in cmd
        assert "--staging" not in cmd
        assert cmd[-4:] == ["-d", "example.test", "-d", "www.example.test"]

    def test_build_command_webroot_staging(self, tmp_path):
        backend = self.make_backend(tmp_path, webroot="/var/www/acme", staging=True)
        cmd = backend.build_command(DOMAIN.name, [])

        assert "--webroot-path" in cmd
        assert cmd[cmd.index("--webroot-path") + 1] == "/var/www/acme"
        assert "--staging" in cmd
        assert "--standalone" not in cmd

    def test_requires_email(self, tmp_path):
        with pytest.raises(ValueError):
            CertbotBackend(email="", config_dir=tmp_path)

    def test_issue_reads_live_files(self, tmp_path):
        backend = self.make_backend(tmp_path)
        key, cert = make_pair()
        live = backend.live_dir(DOMAIN.name)

        def fake_certbot(cmd, **kwargs):
            live.mkdir(parents=True)
            (live / "privkey.pem").write_bytes(key)
            (live / "fullchain.pem").write_bytes(cert)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        with patch("certs.issuance.certbot.subprocess.run", side_effect=fake_certbot):
            material = backend.issue(DOMAIN.name, DOMAIN.alternative_names, 90)

        assert material.certificate_chain == cert

    def test_nonzero_exit(self, tmp_path):
        failed = subprocess.CompletedProcess([], 1, "", "Some challenges have failed.")
        with patch("certs.issuance.certbot.subprocess.run", return_value=failed):
            with pytest.raises(IssuanceError, match="challenges have failed"):
                self.make_backend(tmp_path).issue(DOMAIN.name, [], 90)

    def test_missing_binary(self, tmp_path):
        with patch("certs.issuance.certbot.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(IssuanceError, match="not found"):
                self.make_backend(tmp_path).issue(DOMAIN.name, [], 90)

    def test_missing_output(self, tmp_path):
        with patch("certs.issuance.certbot.subprocess.run", return_value=subprocess.CompletedProcess([], 0, "", "")):
            with pytest.raises(IssuanceError, match="missing"):
                self.make_backend(tmp_path).issue(DOMAIN.name, [], 90)


class TestGetIssuanceBackend:
    """Tests for get_issuance_backend()."""

    def test_default_is_self_signed(self):
        backend = get_issuance_backend(ManagerSettings())
        assert isinstance(backend, SelfSignedBackend)
        assert backend.key_size == 2048

    def test_certbot(self, tmp_path):
        settings = ManagerSettings(
            issuance=IssuanceSettings(
                backend="certbot", certbot_email="Ops@Example.test", certbot_config_dir=str(tmp_path),
            ),
        )
        backend = get_issuance_backend(settings)
        assert isinstance(backend, CertbotBackend)
        assert backend.email == "ops@example.test"
