"""
Integration tests for application lifecycle (startup/shutdown).

Tests: Verify startup_event loads settings and starts the rotation
       runner, a broken configuration leaves the runner stopped, and
       shutdown stops it.
"""
import pytest
from unittest.mock import patch, MagicMock

from certs.errors import ConfigError


class TestStartupInitialization:
    """Verify startup_event starts the periodic runner."""

    @pytest.mark.asyncio
    async def test_startup_starts_runner(self, monkeypatch):
        """startup_event should start the runner with the configured interval."""
        monkeypatch.delenv("CERT_MANAGER_DISABLE_RUNNER", raising=False)
        with patch("main.get_settings") as mock_settings, \
             patch("main.set_log_level") as mock_log_level, \
             patch("main.rotation_runner") as mock_runner:
            mock_settings.return_value = MagicMock(check_interval=3600, log_level="DEBUG", domains=[])

            from main import startup_event
            await startup_event()

            mock_log_level.assert_called_once_with("DEBUG")
            mock_runner.start.assert_called_once_with(check_interval=3600)

    @pytest.mark.asyncio
    async def test_startup_config_error_skips_runner(self):
        """A broken configuration is logged and the runner is not started."""
        with patch("main.get_settings", side_effect=ConfigError("bad json")), \
             patch("main.set_log_level"), \
             patch("main.rotation_runner") as mock_runner:
            from main import startup_event
            await startup_event()

            mock_runner.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_startup_runner_disabled_by_env(self, monkeypatch):
        """CERT_MANAGER_DISABLE_RUNNER=1 serves the API without the runner."""
        monkeypatch.setenv("CERT_MANAGER_DISABLE_RUNNER", "1")
        with patch("main.get_settings") as mock_settings, \
             patch("main.set_log_level"), \
             patch("main.rotation_runner") as mock_runner:
            mock_settings.return_value = MagicMock(check_interval=3600, log_level="INFO", domains=[])

            from main import startup_event
            await startup_event()

            mock_runner.start.assert_not_called()


class TestShutdown:
    """Verify shutdown_event stops background work."""

    @pytest.mark.asyncio
    async def test_shutdown_stops_runner(self):
        """shutdown_event should stop the rotation runner."""
        with patch("main.rotation_runner") as mock_runner:
            from main import shutdown_event
            await shutdown_event()

            mock_runner.stop.assert_called_once()
