"""
Certificate API endpoints.

Provides REST endpoints for:
- Per-domain status and validation of the live material
- Scheduling passes and forced rotation of one domain
- Manual certificate import
- Backup listing, rotation history and pruning
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, UploadFile

from certs.errors import ConfigError, IssuanceInvalid, RotationError, RotationInProgress
from certs.manager import CertificateManager, get_manager
from certs.models import Domain, RotationOutcome
from certs.retention import prune_all
from certs.scheduler import PassResult
from certs.status import all_statuses, domain_status, validate_all


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


def _manager() -> CertificateManager:
    try:
        return get_manager()
    except ConfigError as e:
        raise HTTPException(500, f"Configuration error: {e}")


def _domain(manager: CertificateManager, name: str) -> Domain:
    try:
        return manager.scheduler.find_domain(name)
    except KeyError:
        raise HTTPException(404, f"Domain not configured: {name}")


# ============================================================================
# Status
# ============================================================================


@router.get("/status")
async def get_status():
    """Status of every configured domain."""
    manager = _manager()
    statuses = await asyncio.to_thread(
        all_statuses,
        manager.store,
        manager.rotation_log,
        manager.scheduler.domains(),
        manager.settings.threshold_days,
    )
    return {
        "domains": [s.to_dict() for s in statuses],
        "critical": [s.domain for s in statuses if s.severity == "critical"],
    }


@router.get("/status/{domain}")
async def get_domain_status(domain: str):
    """Status of one domain."""
    manager = _manager()
    target = _domain(manager, domain)
    status = await asyncio.to_thread(
        domain_status,
        manager.store,
        manager.rotation_log,
        target.name,
        manager.settings.threshold_days,
    )
    return status.to_dict()


@router.get("/validate")
async def validate_certificates():
    """Check that every live pair parses, matches, covers its names and is unexpired."""
    manager = _manager()
    reports = await asyncio.to_thread(validate_all, manager.store, manager.scheduler.domains())
    return {
        "valid": all(r.ok for r in reports),
        "domains": [r.to_dict() for r in reports],
    }


# ============================================================================
# Rotation
# ============================================================================


@router.post("/run")
async def run_pass(force: bool = False):
    """Run one scheduling pass over all configured domains now."""
    manager = _manager()
    try:
        result = await manager.scheduler.run_pass(force=force)
    except ConfigError as e:
        raise HTTPException(500, f"Configuration error: {e}")
    return result.to_dict()


def _single_domain_response(result: PassResult) -> dict:
    record = result.records[0]
    if record.outcome == RotationOutcome.FAILURE:
        if record.error_type == RotationInProgress.__name__:
            raise HTTPException(409, record.reason)
        raise HTTPException(502, f"Rotation failed ({record.error_type}): {record.reason}")
    return {
        "success": True,
        "rotated": record.outcome == RotationOutcome.SUCCESS,
        "generation": record.generation,
        "reason": record.reason,
        "reloaded": result.reloaded,
        "reload_error": result.reload_error,
    }


@router.post("/{domain}/rotate")
async def rotate_domain(domain: str, force: bool = False):
    """Rotate one domain if due, or unconditionally with force=true."""
    manager = _manager()
    target = _domain(manager, domain)
    result = await manager.scheduler.run_pass(force=force, only=[target.name])
    return _single_domain_response(result)


@router.post("/{domain}/import")
async def import_certificate(
    domain: str,
    cert_file: UploadFile = File(...),
    key_file: UploadFile = File(...),
):
    """
    Import an operator-supplied certificate and private key.

    The pair goes through the same validation and atomic publish as an
    issued certificate.
    """
    manager = _manager()
    target = _domain(manager, domain)
    cert_content = await cert_file.read()
    key_content = await key_file.read()

    try:
        record = await asyncio.to_thread(manager.scheduler.import_domain, target, key_content, cert_content)
    except RotationInProgress as e:
        raise HTTPException(409, e.reason)
    except IssuanceInvalid as e:
        raise HTTPException(400, f"Invalid certificate/key pair: {e.reason}")
    except RotationError as e:
        raise HTTPException(500, f"Import failed ({type(e).__name__}): {e.reason}")

    result = PassResult(started_at=record.timestamp, records=[record])
    await manager.scheduler.notify(result)
    return {
        "success": True,
        "generation": record.generation,
        "reloaded": result.reloaded,
        "reload_error": result.reload_error,
    }


# ============================================================================
# History
# ============================================================================


@router.get("/{domain}/backups")
async def list_backups(domain: str):
    """Backup snapshots of a domain, oldest first."""
    manager = _manager()
    target = _domain(manager, domain)
    snapshots = await asyncio.to_thread(manager.backups.list_snapshots, target.name)
    return {"domain": target.name, "backups": [s.to_dict() for s in snapshots]}


@router.get("/history")
async def get_history(domain: Optional[str] = None, limit: int = 100):
    """Rotation records, newest first."""
    if limit < 1:
        raise HTTPException(400, "limit must be positive")
    manager = _manager()
    records = await asyncio.to_thread(manager.rotation_log.read, domain, limit)
    return {"records": [r.to_dict() for r in records]}


@router.post("/prune")
async def prune_history():
    """Apply the configured retention to every configured domain."""
    manager = _manager()
    names = [d.name for d in manager.scheduler.domains()]
    try:
        results = await asyncio.to_thread(prune_all, manager.rotator, names, manager.settings.retention)
    except RotationInProgress as e:
        raise HTTPException(409, e.reason)
    return {"results": [r.to_dict() for r in results]}
