"""Typer-based command line interface for fieldguard."""
from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from .config import AppConfig, dump_default_config, load_config
from .exceptions import FieldGuardError, InvalidPassword, KeyAlreadyExists, MalformedBackup, NoKeyMaterial
from .logging import configure_logging
from .session import Session, build_session

T = TypeVar("T")

app = typer.Typer(help="fieldguard key management and record encryption")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", metavar="PATH"),
    offline: bool = typer.Option(False, "--offline", help="Never contact the key server"),
) -> None:
    app_config = load_config(config)
    configure_logging(app_config.logging.normalized_level())
    ctx.obj = {"config": app_config, "offline": offline}


def _run(ctx: typer.Context, action: Callable[[Session], Awaitable[T]]) -> T:
    config: AppConfig = ctx.obj["config"]

    async def runner() -> T:
        async with build_session(config, offline=ctx.obj["offline"]) as session:
            return await action(session)

    return asyncio.run(runner())


def _prompt_password(label: str = "Key password", confirm: bool = False) -> str:
    return typer.prompt(label, hide_input=True, confirmation_prompt=confirm)


def _read_records(path: Path) -> Any:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, (dict, list)):
        raise typer.BadParameter("input must be a JSON object or a list of objects")
    return data


def _emit(data: Any, output: Optional[Path]) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if output:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Written to {output}")
    else:
        typer.echo(text)


@app.command()
def init(ctx: typer.Context) -> None:
    """Generate a keypair protected by a new password."""
    password = _prompt_password("New key password", confirm=True)

    async def action(session: Session):
        return await session.keys.generate_and_store(password)

    try:
        status = _run(ctx, action)
    except KeyAlreadyExists as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    typer.echo(f"Created keypair {status.fingerprint}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show local key status."""

    async def action(session: Session):
        return session.keys.get_status()

    typer.echo(json.dumps(_run(ctx, action).as_dict(), indent=2))


@app.command("unlock-check")
def unlock_check(ctx: typer.Context) -> None:
    """Verify that a password unlocks the stored key."""
    password = _prompt_password()

    async def action(session: Session):
        return await session.keys.unlock(password)

    if not _run(ctx, action):
        typer.echo("Unlock failed", err=True)
        raise typer.Exit(code=1)
    typer.echo("Unlock succeeded")


@app.command("change-password")
def change_password(ctx: typer.Context) -> None:
    """Re-wrap the private key under a new password."""
    old = _prompt_password("Current key password")
    new = _prompt_password("New key password", confirm=True)

    async def action(session: Session):
        return await session.keys.change_password(old, new)

    if not _run(ctx, action):
        typer.echo("Password change failed; nothing was modified", err=True)
        raise typer.Exit(code=1)
    typer.echo("Password changed")


@app.command("export")
def export_backup(
    ctx: typer.Context,
    output: Path = typer.Option(..., "-o", "--output", help="Backup file"),
) -> None:
    """Write a password-protected backup of the keypair."""
    password = _prompt_password("Backup password", confirm=True)

    async def action(session: Session):
        return await session.keys.export_backup(password)

    try:
        token = _run(ctx, action)
    except NoKeyMaterial as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    output.write_text(token + "\n", encoding="utf-8")
    typer.echo(f"Backup written to {output}")


@app.command("import")
def import_backup(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, readable=True),
) -> None:
    """Restore a keypair from a backup file (it stays locked)."""
    token = source.read_text(encoding="utf-8").strip()
    password = _prompt_password("Backup password")

    async def action(session: Session):
        return await session.keys.import_backup(token, password)

    try:
        restored = _run(ctx, action)
    except MalformedBackup as exc:
        typer.echo(f"Not a valid backup: {exc}", err=True)
        raise typer.Exit(code=2)
    except InvalidPassword:
        typer.echo("Wrong backup password or damaged backup", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Imported keypair {restored.fingerprint}")


@app.command()
def delete(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
) -> None:
    """Irreversibly delete the keypair locally and on the server."""
    if not yes:
        typer.confirm("Encrypted data will become unreadable. Delete the keypair?", abort=True)

    async def action(session: Session):
        await session.keys.delete_key_pair()

    _run(ctx, action)
    typer.echo("Keypair deleted")


@app.command()
def pull(ctx: typer.Context) -> None:
    """Fetch the server copy of the key, verifying it with the password."""
    password = _prompt_password()

    async def action(session: Session):
        return await session.keys.sync_from_server(password)

    if not _run(ctx, action):
        typer.echo("Could not restore the key from the server", err=True)
        raise typer.Exit(code=1)
    typer.echo("Key restored from server")


@app.command()
def push(ctx: typer.Context) -> None:
    """Upload the local public key and wrapped private key."""

    async def action(session: Session):
        return await session.keys.sync_to_server()

    if not _run(ctx, action):
        typer.echo("Upload failed", err=True)
        raise typer.Exit(code=1)
    typer.echo("Key uploaded")


@app.command("server-status")
def server_status(ctx: typer.Context) -> None:
    """Report whether the server holds a key: present, absent or unauthorized."""

    async def action(session: Session):
        return await session.keys.check_server_key()

    typer.echo(_run(ctx, action).value)


@app.command("capability")
def capability(ctx: typer.Context) -> None:
    """Show what the current key state allows."""

    async def action(session: Session):
        return session.records.check_encryption_capability()

    typer.echo(json.dumps(asdict(_run(ctx, action)), indent=2))


@app.command("encrypt-record")
def encrypt_record(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, readable=True),
    field_set: str = typer.Option("generic", "--field-set", help="generic|interview|patient or a configured set"),
    output: Optional[Path] = typer.Option(None, "-o", "--output"),
) -> None:
    """Encrypt sensitive fields of a JSON record (or list of records)."""
    data = _read_records(source)

    async def action(session: Session):
        public_key = session.keys.get_public_key()
        if not public_key:
            raise NoKeyMaterial("No public key; run `fieldguard init` first")
        if isinstance(data, list):
            return session.records.encrypt_batch(data, field_set, public_key)
        return session.records.encrypt_record(data, field_set, public_key)

    try:
        _emit(_run(ctx, action), output)
    except (FieldGuardError, KeyError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)


@app.command("decrypt-record")
def decrypt_record(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, readable=True),
    field_set: str = typer.Option("generic", "--field-set"),
    output: Optional[Path] = typer.Option(None, "-o", "--output"),
) -> None:
    """Unlock the key and decrypt a JSON record (or list of records)."""
    data = _read_records(source)
    password = _prompt_password()

    async def action(session: Session):
        if not await session.keys.unlock(password):
            raise InvalidPassword("Unlock failed")
        private_key = session.keys.get_private_key()
        if isinstance(data, list):
            return session.records.decrypt_batch(data, field_set, private_key)
        return session.records.decrypt_record(data, field_set, private_key)

    try:
        _emit(_run(ctx, action), output)
    except InvalidPassword:
        typer.echo("Unlock failed", err=True)
        raise typer.Exit(code=1)


@app.command("config-dump")
def config_dump(target: Path = typer.Argument(Path(".fieldguard/config.yaml"))) -> None:
    """Write the default configuration as YAML."""
    dump_default_config(target)
    typer.echo(f"Default configuration written to {target}")


@app.command()
def version() -> None:
    from .version import __version__

    typer.echo(f"fieldguard {__version__}")


if __name__ == "__main__":  # pragma: no cover
    app()
