"""
Shared fixtures: temporary stores, settings and an ASGI client.
"""
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from certs.backup import BackupManager
from certs.locks import DomainLockTable
from certs.rotation_log import RotationLog
from certs.rotator import AtomicRotator
from certs.storage import SlotStore
from tests.factories import DOMAIN, StaticBackend, make_material


@pytest.fixture
def store(tmp_path) -> SlotStore:
    return SlotStore(tmp_path / "certs")


@pytest.fixture
def backups(tmp_path) -> BackupManager:
    return BackupManager(tmp_path / "backups")


@pytest.fixture
def rotation_log(tmp_path) -> RotationLog:
    return RotationLog(tmp_path / "logs")


@pytest.fixture
def lock_table(tmp_path) -> DomainLockTable:
    return DomainLockTable(tmp_path / "state" / "locks", timeout=2.0)


@pytest.fixture
def backend() -> StaticBackend:
    return StaticBackend()


@pytest.fixture
def rotator(store, backups, backend, lock_table) -> AtomicRotator:
    return AtomicRotator(store=store, backups=backups, backend=backend, locks=lock_table)


@pytest.fixture
def published(store):
    """Publish material for example.test expiring in `days` days; returns the generation."""

    def _publish(days: float = 365, domain: str = DOMAIN.name, **kwargs) -> str:
        slot = store.write_slot(make_material(domain, days=days, **kwargs))
        store.publish(domain, slot.generation)
        return slot.generation

    return _publish


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    """
    Point config at a temporary cert_manager.json and return a writer.

    The writer takes a dict of settings overrides, saves the file and
    clears every cache so the next get_settings() reads it.
    """
    import json

    import config
    from certs import manager as manager_module

    config_file = tmp_path / "cert_manager.json"
    monkeypatch.setattr(config, "CONFIG_FILE", config_file)
    monkeypatch.delenv("CERTS_DIR", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    def _write(**overrides) -> Path:
        data = {
            "certs_dir": str(tmp_path / "certs"),
            "backup_dir": str(tmp_path / "backups"),
            "log_dir": str(tmp_path / "logs"),
            "state_dir": str(tmp_path / "state"),
            "lock_timeout": 2.0,
            "domains": [{"name": DOMAIN.name, "alternative_names": list(DOMAIN.alternative_names)}],
            "policy": {"validity_days": 90},
        }
        data.update(overrides)
        config_file.write_text(json.dumps(data))
        config.clear_settings_cache()
        manager_module.reset_manager()
        return config_file

    _write()
    yield _write
    config.clear_settings_cache()
    manager_module.reset_manager()


@pytest_asyncio.fixture
async def async_client(settings_env):
    """httpx client bound to the FastAPI app (no lifespan, no background runner)."""
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
