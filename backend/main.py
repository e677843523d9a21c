"""
Certificate manager API process.

Serves the operator API and runs the periodic rotation runner in the
background.
"""
import logging
import os

from fastapi import FastAPI

from certs.errors import ConfigError
from certs.manager import rotation_runner
from config import get_settings
from routers import all_routers


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def set_log_level(level: str) -> None:
    """Configure the root logger for the API process and the CLI."""
    numeric = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(numeric)
    # Keep request logs out of debug output
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))


app = FastAPI(
    title="Proxy Certificate Manager",
    description="Certificate lifecycle management for the reverse proxy",
    version=os.environ.get("CERT_MANAGER_VERSION", "unknown"),
)

for _router in all_routers:
    app.include_router(_router)


@app.on_event("startup")
async def startup_event():
    """Load settings and start the periodic rotation runner."""
    try:
        settings = get_settings()
    except ConfigError as e:
        set_log_level("INFO")
        logger.critical("[CERT-CONFIG] %s; rotation runner not started", e)
        return

    set_log_level(settings.log_level)
    logger.info("[CERT-SCHED] Starting with %s configured domain(s)", len(settings.domains))

    if os.environ.get("CERT_MANAGER_DISABLE_RUNNER") == "1":
        logger.info("[CERT-SCHED] Periodic rotation disabled by environment")
        return
    rotation_runner.start(check_interval=settings.check_interval)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the rotation runner; in-flight rotations abort before publish."""
    rotation_runner.stop()
    logger.info("[CERT-SCHED] Shutdown complete")
