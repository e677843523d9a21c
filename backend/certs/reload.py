"""
Reload notification for the consuming proxy.

The manager's obligation ends at telling the proxy that at least one
current pointer changed. How the proxy re-reads its material is its own
business; these notifiers only deliver the signal.
"""
import asyncio
import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

import httpx

from .errors import ReloadFailed


logger = logging.getLogger(__name__)


class ReloadNotifier(ABC):
    """Signals the proxy to re-read certificate material."""

    name: str = "base"

    @abstractmethod
    async def notify_reload(self) -> None:
        """
        Deliver one reload notification.

        Raises:
            ReloadFailed: If the notification could not be delivered
        """
        pass


class NoopReloadNotifier(ReloadNotifier):
    """Only logs; for proxies that watch the files themselves."""

    name = "none"

    async def notify_reload(self) -> None:
        logger.info("[CERT-RELOAD] Certificate material changed (no reload mechanism configured)")


def _run(cmd: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    return subprocess.run(list(cmd), capture_output=True, text=True, timeout=timeout, check=False)


class CommandReloadNotifier(ReloadNotifier):
    """
    Runs a reload command, e.g. `docker exec nginx-proxy nginx -s reload`.

    If a test command is configured (e.g. `nginx -t`) it must succeed first;
    a failing config test means the reload is not attempted.
    """

    name = "command"

    def __init__(self, command: Sequence[str], test_command: Optional[Sequence[str]] = None, timeout: float = 30.0):
        if not command:
            raise ValueError("command reload mode requires a command")
        self.command = list(command)
        self.test_command = list(test_command) if test_command else None
        self.timeout = timeout

    async def _execute(self, cmd: list[str], label: str) -> None:
        try:
            result = await asyncio.to_thread(_run, cmd, self.timeout)
        except FileNotFoundError as e:
            raise ReloadFailed(f"{label} not found: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ReloadFailed(f"{label} timed out after {self.timeout}s") from e
        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise ReloadFailed(f"{label} exited with code {result.returncode}: {output}")

    async def notify_reload(self) -> None:
        if self.test_command:
            await self._execute(self.test_command, "configuration test")
            logger.debug("[CERT-RELOAD] Configuration test passed")
        await self._execute(self.command, "reload command")
        logger.info("[CERT-RELOAD] Proxy reloaded via %s", self.command[0])


class SignalReloadNotifier(ReloadNotifier):
    """Sends a signal (SIGHUP by default) to the pid stored in a pid file."""

    name = "signal"

    def __init__(self, pid_file: Path, signal_name: str = "SIGHUP"):
        self.pid_file = Path(pid_file)
        try:
            self.signum = signal.Signals[signal_name.upper()]
        except KeyError:
            raise ValueError(f"Unknown signal: {signal_name}")

    def _read_pid(self) -> int:
        try:
            pid = int(self.pid_file.read_text().strip())
        except (OSError, ValueError) as e:
            raise ReloadFailed(f"Cannot read pid from {self.pid_file}: {e}") from e
        if pid <= 1:
            raise ReloadFailed(f"Refusing to signal pid {pid}")
        return pid

    async def notify_reload(self) -> None:
        pid = self._read_pid()
        try:
            os.kill(pid, self.signum)
        except ProcessLookupError as e:
            raise ReloadFailed(f"Proxy process {pid} is not running") from e
        except PermissionError as e:
            raise ReloadFailed(f"Not permitted to signal process {pid}") from e
        logger.info("[CERT-RELOAD] Sent %s to proxy (PID: %s)", self.signum.name, pid)


class WebhookReloadNotifier(ReloadNotifier):
    """POSTs to an HTTP endpoint that triggers the reload."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0):
        if not url:
            raise ValueError("webhook reload mode requires a URL")
        self.url = url
        self.timeout = timeout

    async def notify_reload(self) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json={"event": "certificates_rotated"})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ReloadFailed(f"Reload webhook failed: {e}") from e
        logger.info("[CERT-RELOAD] Reload webhook accepted (%s)", resp.status_code)


def get_reload_notifier(settings) -> ReloadNotifier:
    """
    Build the notifier selected by `settings.reload.mode`.

    Raises:
        ValueError: If the mode is unknown or incompletely configured
    """
    reload = settings.reload
    mode = reload.mode

    if mode == "none":
        return NoopReloadNotifier()
    elif mode == "command":
        return CommandReloadNotifier(reload.command, reload.test_command, timeout=reload.timeout)
    elif mode == "signal":
        if not reload.pid_file:
            raise ValueError("signal reload mode requires pid_file")
        return SignalReloadNotifier(Path(reload.pid_file), reload.signal)
    elif mode == "webhook":
        return WebhookReloadNotifier(reload.webhook_url, timeout=reload.timeout)
    else:
        raise ValueError(f"Unsupported reload mode: {mode}")
