"""
Certificate manager configuration.

Settings live in $CONFIG_DIR/cert_manager.json and are cached per process.
A missing file yields defaults (no domains). A file that exists but cannot
be read or validated raises ConfigError: nothing may be rotated against a
configuration we do not understand.
"""
import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from certs.errors import ConfigError
from certs.models import Domain


logger = logging.getLogger(__name__)

# Config file location
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
CONFIG_FILE = CONFIG_DIR / "cert_manager.json"


def normalize_domain(v: str) -> str:
    """Strip whitespace, scheme and trailing slash; lowercase."""
    v = v.strip().lower()
    # Remove protocol if accidentally included
    if v.startswith("http://"):
        v = v[7:]
    elif v.startswith("https://"):
        v = v[8:]
    return v.rstrip("/")


class DomainConfig(BaseModel):
    """One served site."""

    name: str
    alternative_names: list[str] = Field(default_factory=list)
    enabled: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = normalize_domain(v)
        if not v:
            raise ValueError("domain name must not be empty")
        if "/" in v or " " in v or v.startswith("."):
            raise ValueError(f"invalid domain name: {v!r}")
        return v

    @field_validator("alternative_names")
    @classmethod
    def validate_alternative_names(cls, v: list[str]) -> list[str]:
        names: list[str] = []
        for name in v:
            name = normalize_domain(name)
            if name and name not in names:
                names.append(name)
        return names

    def to_domain(self) -> Domain:
        alts = tuple(n for n in self.alternative_names if n != self.name)
        return Domain(name=self.name, alternative_names=alts)


class RotationPolicy(BaseModel):
    """Validity and subject fields for newly issued material."""

    validity_days: int = Field(default=365, ge=1)
    key_size: int = Field(default=2048, ge=2048)
    country: str = "US"
    state: str = "State"
    locality: str = "City"
    organization: str = "Organization"
    organizational_unit: str = "OrganizationUnit"


class IssuanceSettings(BaseModel):
    """Which issuance backend produces new material."""

    backend: Literal["self_signed", "certbot"] = "self_signed"

    # certbot backend
    certbot_email: str = ""
    certbot_webroot: Optional[str] = None  # None means --standalone
    certbot_staging: bool = False
    certbot_config_dir: str = Field(default_factory=lambda: str(CONFIG_DIR / "letsencrypt"))
    certbot_binary: str = "certbot"

    @field_validator("certbot_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return v.strip().lower()


class ReloadSettings(BaseModel):
    """How the proxy is told to re-read its certificates."""

    mode: Literal["none", "command", "signal", "webhook"] = "none"
    command: list[str] = Field(default_factory=list)  # e.g. ["docker", "exec", "nginx-proxy", "nginx", "-s", "reload"]
    test_command: list[str] = Field(default_factory=list)  # e.g. ["docker", "exec", "nginx-proxy", "nginx", "-t"]
    pid_file: str = ""
    signal: str = "SIGHUP"
    webhook_url: str = ""
    timeout: float = Field(default=30.0, gt=0)


class RetentionSettings(BaseModel):
    """Opt-in pruning. None keeps everything."""

    keep_slots: Optional[int] = Field(default=None, ge=1)
    keep_backups: Optional[int] = Field(default=None, ge=1)
    orphan_max_age_hours: float = Field(default=24.0, ge=0)


class ManagerSettings(BaseModel):
    """Top-level certificate manager configuration."""

    certs_dir: str = Field(default_factory=lambda: str(CONFIG_DIR / "certs"))
    backup_dir: str = Field(default_factory=lambda: str(CONFIG_DIR / "backups"))
    log_dir: str = Field(default_factory=lambda: str(CONFIG_DIR / "logs"))
    state_dir: str = Field(default_factory=lambda: str(CONFIG_DIR / "state"))

    threshold_days: int = Field(default=30, ge=0)
    max_workers: int = Field(default=4, ge=1)
    check_interval: int = Field(default=86400, ge=60)  # Seconds between scheduled passes
    lock_timeout: Optional[float] = Field(default=300.0, ge=0)  # None waits forever
    log_level: str = "INFO"

    domains: list[DomainConfig] = Field(default_factory=list)
    policy: RotationPolicy = Field(default_factory=RotationPolicy)
    issuance: IssuanceSettings = Field(default_factory=IssuanceSettings)
    reload: ReloadSettings = Field(default_factory=ReloadSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {v}")
        return v

    @model_validator(mode="after")
    def check_unique_domains(self) -> "ManagerSettings":
        seen: set[str] = set()
        for domain in self.domains:
            if domain.name in seen:
                raise ValueError(f"duplicate domain: {domain.name}")
            seen.add(domain.name)
        return self

    def enabled_domains(self) -> list[Domain]:
        return [d.to_domain() for d in self.domains if d.enabled]

    def get_domain(self, name: str) -> Optional[DomainConfig]:
        name = normalize_domain(name)
        for domain in self.domains:
            if domain.name == name:
                return domain
        return None


# In-memory cache of settings
_cached_settings: Optional[ManagerSettings] = None


def _apply_env_overrides(settings: ManagerSettings) -> ManagerSettings:
    updates = {}
    if os.environ.get("CERTS_DIR"):
        updates["certs_dir"] = os.environ["CERTS_DIR"]
    if os.environ.get("LOG_LEVEL"):
        updates["log_level"] = os.environ["LOG_LEVEL"].strip().upper()
    if updates:
        settings = settings.model_copy(update=updates)
    return settings


def load_settings() -> ManagerSettings:
    """
    Load settings from file or return defaults.

    Raises:
        ConfigError: If the config file exists but is unreadable or invalid
    """
    global _cached_settings

    if _cached_settings is not None:
        return _cached_settings

    if CONFIG_FILE.exists():
        logger.info("[CERT-CONFIG] Loading settings from %s", CONFIG_FILE)
        try:
            data = json.loads(CONFIG_FILE.read_text())
            settings = ManagerSettings(**data)
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error("[CERT-CONFIG] Failed to load settings from %s: %s", CONFIG_FILE, e)
            raise ConfigError(f"Invalid configuration in {CONFIG_FILE}: {e}") from e
        logger.info("[CERT-CONFIG] Loaded settings, %s domain(s)", len(settings.domains))
    else:
        logger.info("[CERT-CONFIG] Using default settings (no config file found)")
        settings = ManagerSettings()

    _cached_settings = _apply_env_overrides(settings)
    return _cached_settings


def save_settings(settings: ManagerSettings) -> bool:
    """Save settings to file. Returns True if successful."""
    global _cached_settings

    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        tmp = CONFIG_FILE.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(settings.model_dump(), indent=2))
        os.chmod(tmp, 0o600)
        os.replace(tmp, CONFIG_FILE)
        _cached_settings = settings
        logger.info("[CERT-CONFIG] Settings saved to %s", CONFIG_FILE)
        return True
    except (PermissionError, OSError) as e:
        logger.warning("[CERT-CONFIG] Cannot save settings to %s: %s", CONFIG_FILE, e)
        _cached_settings = settings
        return False


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.debug("[CERT-CONFIG] Settings cache cleared")


def get_settings() -> ManagerSettings:
    """Get the current settings."""
    return load_settings()
