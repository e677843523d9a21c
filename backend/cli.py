"""
Operator command line for the certificate manager.

Thin presentation over the same components the API uses. `run` is the
entry point for cron; it exits non-zero when any domain failed.
"""
import asyncio
import json
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from certs.errors import ConfigError, RotationError
from certs.manager import CertificateManager
from certs.retention import prune_all
from certs.scheduler import PassResult
from certs.status import all_statuses, validate_all
from config import get_settings
from main import set_log_level


console = Console()

app = typer.Typer(
    add_completion=False,
    help="Certificate lifecycle manager for the reverse proxy.",
)

JSON_OPTION = typer.Option(False, "--json", help="Print machine-readable JSON.")

_SEVERITY_STYLE = {"ok": "green", "warning": "yellow", "critical": "bold red"}


def _fail(message: str, rc: int = 2) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=rc)


def _load_manager() -> CertificateManager:
    try:
        settings = get_settings()
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    set_log_level(settings.log_level)
    try:
        return CertificateManager.from_settings(settings)
    except ValueError as e:
        _fail(f"Configuration error: {e}")


def _find(manager: CertificateManager, name: str):
    try:
        return manager.scheduler.find_domain(name)
    except KeyError:
        _fail(f"Domain not configured: {name}")


@app.command()
def status(as_json: bool = JSON_OPTION) -> None:
    """Show generation, expiry, subject and issuer of every domain."""
    manager = _load_manager()
    statuses = all_statuses(
        manager.store, manager.rotation_log, manager.scheduler.domains(), manager.settings.threshold_days,
    )
    if as_json:
        typer.echo(json.dumps([s.to_dict() for s in statuses], indent=2))
    else:
        table = Table("Domain", "Gen", "State", "Days", "Expires", "Issuer", "Self-signed")
        for s in statuses:
            style = _SEVERITY_STYLE.get(s.severity, "")
            state = s.state + (" (rotation failed)" if s.expired_rotation_failed else "")
            table.add_row(
                s.domain,
                s.generation or "-",
                f"[{style}]{state}[/{style}]",
                "-" if s.days_until_expiry is None else str(s.days_until_expiry),
                s.not_after.strftime("%Y-%m-%d %H:%M") if s.not_after else "-",
                s.issuer or s.error or "-",
                "-" if s.self_signed is None else ("yes" if s.self_signed else "no"),
            )
        console.print(table)

    if any(s.severity == "critical" for s in statuses):
        raise typer.Exit(code=1)


@app.command()
def validate(as_json: bool = JSON_OPTION) -> None:
    """Check every live key/certificate pair."""
    manager = _load_manager()
    reports = validate_all(manager.store, manager.scheduler.domains())
    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in reports], indent=2))
    else:
        for report in reports:
            if report.ok:
                console.print(f"[green]OK[/green]   {report.domain} (slot {report.generation})")
            else:
                console.print(f"[red]FAIL[/red] {report.domain}: {'; '.join(report.problems)}")
    if not all(r.ok for r in reports):
        raise typer.Exit(code=1)


def _print_pass(result, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    table = Table("Domain", "Outcome", "Generation", "Reason")
    for record in result.records:
        table.add_row(record.domain, record.outcome.value, record.generation or "-", record.reason)
    console.print(table)
    if result.reload_error:
        console.print(f"[red]Reload failed:[/red] {result.reload_error}")
    elif result.reloaded:
        console.print("[green]Proxy reload notified.[/green]")


@app.command()
def run(
    force: bool = typer.Option(False, "--force", help="Rotate every domain regardless of expiry."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Run one scheduling pass over all configured domains."""
    manager = _load_manager()
    try:
        result = asyncio.run(manager.scheduler.run_pass(force=force))
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    _print_pass(result, as_json)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def rotate(
    domain: str = typer.Argument(..., help="Domain to rotate."),
    force: bool = typer.Option(False, "--force", help="Rotate even if the certificate is still valid."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Rotate one domain if it is due (or unconditionally with --force)."""
    manager = _load_manager()
    target = _find(manager, domain)
    result = asyncio.run(manager.scheduler.run_pass(force=force, only=[target.name]))
    _print_pass(result, as_json)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("import")
def import_certificate(
    domain: str = typer.Argument(..., help="Domain the material is for."),
    cert: Path = typer.Option(..., "--cert", exists=True, dir_okay=False, help="Certificate chain (PEM)."),
    key: Path = typer.Option(..., "--key", exists=True, dir_okay=False, help="Private key (PEM)."),
) -> None:
    """Publish an existing certificate and key after validating them."""
    manager = _load_manager()
    target = _find(manager, domain)
    try:
        record = manager.scheduler.import_domain(target, key.read_bytes(), cert.read_bytes())
    except RotationError as e:
        _fail(f"Import failed ({type(e).__name__}): {e.reason}", rc=1)

    result = PassResult(started_at=record.timestamp, records=[record])
    asyncio.run(manager.scheduler.notify(result))
    console.print(f"[green]Imported[/green] {target.name} as slot {record.generation}")
    if result.reload_error:
        console.print(f"[red]Reload failed:[/red] {result.reload_error}")
        raise typer.Exit(code=1)


@app.command()
def backups(domain: str = typer.Argument(..., help="Domain to list.")) -> None:
    """List backup snapshots of a domain, oldest first."""
    manager = _load_manager()
    target = _find(manager, domain)
    snapshots = manager.backups.list_snapshots(target.name)
    if not snapshots:
        console.print(f"No backups for {target.name}.")
        return
    table = Table("Timestamp", "Source slot", "Path")
    for snapshot in snapshots:
        table.add_row(snapshot.timestamp.isoformat(), snapshot.source_generation, str(snapshot.path))
    console.print(table)


@app.command()
def history(
    domain: Optional[str] = typer.Option(None, "--domain", help="Only show this domain."),
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum records to show."),
) -> None:
    """Show the rotation log, newest first."""
    manager = _load_manager()
    records = manager.rotation_log.read(domain=domain, limit=limit)
    table = Table("Time", "Domain", "Outcome", "State", "Generation", "Reason")
    for r in records:
        table.add_row(
            r.timestamp.isoformat(timespec="seconds"), r.domain, r.outcome.value,
            r.state or "-", r.generation or "-", r.reason,
        )
    console.print(table)


@app.command()
def prune() -> None:
    """Apply the configured retention to every configured domain."""
    manager = _load_manager()
    names = [d.name for d in manager.scheduler.domains()]
    try:
        results = prune_all(manager.rotator, names, manager.settings.retention)
    except RotationError as e:
        _fail(str(e), rc=1)
    for r in results:
        console.print(
            f"{r.domain}: {len(r.removed_slots)} slot(s), {len(r.removed_backups)} backup(s), "
            f"{len(r.removed_orphans)} orphan(s) removed"
        )


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(6180, "--port", min=1, max=65535),
) -> None:
    """Run the API with the periodic rotation runner."""
    import uvicorn

    uvicorn.run("main:app", host=host, port=port)


if __name__ == "__main__":
    app()
