"""
Unit tests for settings loading and validation.
"""
import json
import stat

import pytest
from pydantic import ValidationError

import config
from certs.errors import ConfigError
from config import DomainConfig, ManagerSettings


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "cert_manager.json"
    monkeypatch.setattr(config, "CONFIG_FILE", path)
    monkeypatch.delenv("CERTS_DIR", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    config.clear_settings_cache()
    yield path
    config.clear_settings_cache()


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_file_gives_defaults(self, config_file):
        settings = config.load_settings()
        assert settings.domains == []
        assert settings.threshold_days == 30
        assert settings.issuance.backend == "self_signed"
        assert settings.retention.keep_slots is None

    def test_reads_domains(self, config_file):
        config_file.write_text(json.dumps({
            "threshold_days": 14,
            "domains": [{"name": "example.test", "alternative_names": ["www.example.test"]}],
        }))
        settings = config.load_settings()
        assert settings.threshold_days == 14
        assert [d.name for d in settings.enabled_domains()] == ["example.test"]

    def test_is_cached(self, config_file):
        assert config.get_settings() is config.get_settings()

    def test_unparseable_file_is_config_error(self, config_file):
        config_file.write_text("{not json")
        with pytest.raises(ConfigError):
            config.load_settings()

    def test_invalid_values_are_config_error(self, config_file):
        config_file.write_text(json.dumps({"threshold_days": -1}))
        with pytest.raises(ConfigError):
            config.load_settings()

    def test_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("CERTS_DIR", "/srv/certs")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = config.load_settings()
        assert settings.certs_dir == "/srv/certs"
        assert settings.log_level == "DEBUG"

    def test_save_and_reload(self, config_file):
        settings = ManagerSettings(domains=[DomainConfig(name="example.test")], threshold_days=10)
        assert config.save_settings(settings)
        assert stat.S_IMODE(config_file.stat().st_mode) == 0o600

        config.clear_settings_cache()
        loaded = config.load_settings()
        assert loaded.threshold_days == 10
        assert loaded.get_domain("EXAMPLE.test").name == "example.test"


class TestDomainConfig:
    """Tests for domain normalisation and validation."""

    def test_normalises_names(self):
        domain = DomainConfig(
            name=" HTTPS://Example.Test/ ",
            alternative_names=["WWW.example.test", "www.example.test", "example.test"],
        )
        assert domain.name == "example.test"
        assert domain.alternative_names == ["www.example.test", "example.test"]
        assert domain.to_domain().alternative_names == ("www.example.test",)

    @pytest.mark.parametrize("name", ["", "  ", "bad name.test", ".example.test", "example.test/path"])
    def test_rejects_invalid_names(self, name):
        with pytest.raises(ValidationError):
            DomainConfig(name=name)

    def test_rejects_duplicate_domains(self):
        with pytest.raises(ValidationError, match="duplicate"):
            ManagerSettings(domains=[DomainConfig(name="example.test"), DomainConfig(name="Example.test")])

    def test_disabled_domains_not_managed(self):
        settings = ManagerSettings(domains=[
            DomainConfig(name="example.test"),
            DomainConfig(name="old.test", enabled=False),
        ])
        assert [d.name for d in settings.enabled_domains()] == ["example.test"]

    def test_rejects_bad_log_level(self):
        with pytest.raises(ValidationError):
            ManagerSettings(log_level="LOUD")
