"""
Unit tests for the certificate endpoints.

Tests: status, validate, run, rotate, import, backups, history, prune
Uses a temporary configuration with one self-signed domain (example.test).
"""
import pytest
from unittest.mock import patch

from certs.errors import RotationInProgress
from tests.factories import make_malformed_san_pair, make_pair


async def rotate(client, force=False):
    params = {"force": "true"} if force else {}
    return await client.post("/api/certificates/example.test/rotate", params=params)


class TestStatus:
    """Tests for GET /api/certificates/status endpoints."""

    @pytest.mark.asyncio
    async def test_missing_domain_is_critical(self, async_client):
        response = await async_client.get("/api/certificates/status")
        assert response.status_code == 200
        data = response.json()
        assert data["domains"][0]["state"] == "missing"
        assert data["critical"] == ["example.test"]

    @pytest.mark.asyncio
    async def test_status_after_rotation(self, async_client):
        await rotate(async_client)
        response = await async_client.get("/api/certificates/status/example.test")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "valid"
        assert data["generation"] == "000001"
        assert data["self_signed"] is True

    @pytest.mark.asyncio
    async def test_unknown_domain_404(self, async_client):
        response = await async_client.get("/api/certificates/status/missing.test")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_config_error_500(self, async_client, settings_env):
        settings_env(domains="not-a-list")
        response = await async_client.get("/api/certificates/status")
        assert response.status_code == 500
        assert "Configuration error" in response.json()["detail"]


class TestValidate:
    """Tests for GET /api/certificates/validate."""

    @pytest.mark.asyncio
    async def test_validate(self, async_client):
        data = (await async_client.get("/api/certificates/validate")).json()
        assert data["valid"] is False

        await rotate(async_client)

        data = (await async_client.get("/api/certificates/validate")).json()
        assert data["valid"] is True
        assert data["domains"][0]["problems"] == []


class TestRotation:
    """Tests for POST /api/certificates/run and /{domain}/rotate."""

    @pytest.mark.asyncio
    async def test_run_pass(self, async_client):
        response = await async_client.post("/api/certificates/run")
        assert response.status_code == 200
        data = response.json()
        assert data["rotated"] == ["example.test"]
        assert data["failed"] == []

    @pytest.mark.asyncio
    async def test_rotate_then_noop(self, async_client):
        first = await rotate(async_client)
        assert first.status_code == 200
        assert first.json()["rotated"] is True

        second = await rotate(async_client)
        assert second.status_code == 200
        assert second.json()["rotated"] is False
        assert second.json()["reason"] == "valid"
        assert second.json()["generation"] == "000001"

    @pytest.mark.asyncio
    async def test_force_rotate(self, async_client):
        await rotate(async_client)
        data = (await rotate(async_client, force=True)).json()
        assert data["rotated"] is True
        assert data["generation"] == "000002"
        assert data["reason"] == "forced"

    @pytest.mark.asyncio
    async def test_rotate_unknown_domain_404(self, async_client):
        response = await async_client.post("/api/certificates/missing.test/rotate")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_rotation_in_progress_409(self, async_client):
        with patch(
            "certs.rotator.AtomicRotator.rotate",
            side_effect=RotationInProgress("example.test", "already rotating"),
        ):
            response = await rotate(async_client)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_issuance_failure_502(self, async_client, settings_env):
        settings_env(issuance={"backend": "certbot", "certbot_email": "ops@example.test",
                               "certbot_binary": "/nonexistent/certbot"})
        response = await rotate(async_client)
        assert response.status_code == 502
        assert "IssuanceFailed" in response.json()["detail"]


class TestImport:
    """Tests for POST /api/certificates/{domain}/import."""

    @pytest.mark.asyncio
    async def test_import_valid_pair(self, async_client):
        key, cert = make_pair()
        response = await async_client.post(
            "/api/certificates/example.test/import",
            files={"cert_file": ("fullchain.pem", cert), "key_file": ("privkey.pem", key)},
        )
        assert response.status_code == 200
        assert response.json()["generation"] == "000001"

        status = (await async_client.get("/api/certificates/status/example.test")).json()
        assert status["generation"] == "000001"

    @pytest.mark.asyncio
    async def test_import_uncovered_names_400(self, async_client):
        key, cert = make_pair(names=["example.test"])
        response = await async_client.post(
            "/api/certificates/example.test/import",
            files={"cert_file": ("fullchain.pem", cert), "key_file": ("privkey.pem", key)},
        )
        assert response.status_code == 400
        assert "www.example.test" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_import_malformed_san_400(self, async_client):
        key, cert = make_malformed_san_pair()
        response = await async_client.post(
            "/api/certificates/example.test/import",
            files={"cert_file": ("fullchain.pem", cert), "key_file": ("privkey.pem", key)},
        )
        assert response.status_code == 400
        assert "unreadable" in response.json()["detail"]


class TestHistory:
    """Tests for backups, history and prune."""

    @pytest.mark.asyncio
    async def test_backups_after_second_rotation(self, async_client):
        await rotate(async_client)
        await rotate(async_client, force=True)

        data = (await async_client.get("/api/certificates/example.test/backups")).json()

        assert len(data["backups"]) == 1
        assert data["backups"][0]["source_generation"] == "000001"

    @pytest.mark.asyncio
    async def test_history_newest_first(self, async_client):
        await rotate(async_client)
        await rotate(async_client)

        records = (await async_client.get("/api/certificates/history", params={"domain": "example.test"})).json()["records"]

        assert [r["outcome"] for r in records] == ["skipped", "success"]

    @pytest.mark.asyncio
    async def test_history_rejects_bad_limit(self, async_client):
        response = await async_client.get("/api/certificates/history", params={"limit": 0})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_prune_with_retention(self, async_client, settings_env):
        settings_env(retention={"keep_slots": 1, "keep_backups": 1})
        for force in (False, True, True, True):
            await rotate(async_client, force=force)

        data = (await async_client.post("/api/certificates/prune")).json()

        result = data["results"][0]
        assert result["removed_slots"] == ["000001", "000002"]
        assert len(result["removed_backups"]) == 2
