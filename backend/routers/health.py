"""
Health router: liveness plus a summary of the rotation runner.
"""
import os

from fastapi import APIRouter

from certs.manager import rotation_runner

router = APIRouter(tags=["Health"])


@router.get("/api/health")
async def health_check():
    """Health check endpoint returning version and runner status."""
    version = os.environ.get("CERT_MANAGER_VERSION", "unknown")
    git_commit = os.environ.get("GIT_COMMIT", "unknown")

    last = rotation_runner.last_result
    return {
        "status": "healthy",
        "service": "proxy-cert-manager",
        "version": version,
        "git_commit": git_commit,
        "runner_running": rotation_runner.is_running,
        "last_pass": last.finished_at.isoformat() if last and last.finished_at else None,
        "last_pass_failed": last.failed if last else [],
        "last_error": rotation_runner.last_error,
    }
