import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

from .config import Settings, env_var_names
from .manager import KeyManager, create_key_manager
from .models import Service
from .validation import mask_key

app = typer.Typer(help="Manage API keys for AI and image-search providers")


class _State:
    data_dir: Path | None = None


_state = _State()


def _manager() -> KeyManager:
    settings = Settings(data_dir=_state.data_dir) if _state.data_dir else Settings()
    return create_key_manager(settings)


@app.callback()
def main(
    data_dir: Annotated[
        Path | None, typer.Option(help="Directory holding the key store")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show log output")
    ] = False,
):
    """Store, inspect and validate provider API keys."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    _state.data_dir = data_dir


@app.command()
def get(
    service: Annotated[Service, typer.Argument(help="Service name")],
):
    """Print the effective key for a service."""
    value = _manager().get(service)
    if value:
        typer.echo(value)
    else:
        typer.echo(f"No key for {service.value}", err=True)
        raise typer.Exit(1)


@app.command("set")
def set_key(
    service: Annotated[Service, typer.Argument(help="Service name")],
    value: Annotated[str, typer.Argument(help="API key")],
    validate: Annotated[
        bool, typer.Option("--validate", help="Check the key with the provider first")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", help="Store even if the format looks wrong")
    ] = False,
):
    """Store an API key."""
    manager = _manager()

    if not force and not manager.validate_format(service, value):
        typer.echo(f"✗ Invalid {service.value} key format", err=True)
        raise typer.Exit(1)

    if validate:
        result = asyncio.run(manager.validate_live(service, value))
        if not result.valid:
            typer.echo(f"✗ {result.message} ({result.reason.name})", err=True)
            raise typer.Exit(1)

    if manager.set(service, value):
        typer.echo(f"✓ Stored key for {service.value}")
    else:
        typer.echo(f"⚠ Key for {service.value} could not be saved", err=True)
        raise typer.Exit(1)


@app.command()
def remove(
    service: Annotated[Service, typer.Argument(help="Service name")],
):
    """Remove a stored API key."""
    if _manager().remove(service):
        typer.echo(f"✓ Removed key for {service.value}")
    else:
        typer.echo(f"✗ Failed to remove key for {service.value}", err=True)
        raise typer.Exit(1)


@app.command("list")
def list_keys(
    reveal: Annotated[
        bool, typer.Option("--reveal", help="Show full key values")
    ] = False,
):
    """List every service and where its key comes from."""
    manager = _manager()
    for service in Service:
        resolved = manager.resolve(service)
        if not resolved:
            typer.echo(f"✗ {service.value}: not set")
            continue
        shown = resolved.value if reveal else mask_key(resolved.value)
        typer.echo(f"✓ {service.value}: {shown} ({resolved.source.value})")


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask")] = False,
):
    """Remove every stored API key."""
    if not yes:
        typer.confirm("Remove all stored API keys?", abort=True)
    if _manager().clear():
        typer.echo("✓ Cleared all keys")
    else:
        typer.echo("✗ Failed to clear keys", err=True)
        raise typer.Exit(1)


@app.command()
def validate(
    service: Annotated[Service, typer.Argument(help="Service name")],
    key: Annotated[
        str | None, typer.Option(help="Key to check instead of the stored one")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option(help="Seconds to wait for the provider")
    ] = None,
    offline: Annotated[
        bool, typer.Option("--offline", help="Only check the key format")
    ] = False,
):
    """Check a key with the provider."""
    manager = _manager()

    if offline:
        candidate = key if key is not None else manager.get(service)
        if manager.validate_format(service, candidate):
            typer.echo(f"✓ {service.value} key format is valid")
            return
        typer.echo(f"✗ Invalid {service.value} key format", err=True)
        raise typer.Exit(1)

    result = asyncio.run(manager.validate_live(service, key, timeout=timeout))
    if result.valid:
        typer.echo(f"✓ {result.message}")
    else:
        typer.echo(f"✗ {result.message} ({result.reason.name})", err=True)
        raise typer.Exit(1)


@app.command("export-env")
def export_env():
    """Output export commands for the stored keys (source in shell)."""
    keys = _manager().get_all()
    for service in Service:
        value = keys.get(service)
        if not value:
            continue
        # Escape single quotes in value
        escaped = value.replace("'", "'\"'\"'")
        typer.echo(f"export {env_var_names(service)[0]}='{escaped}'")


if __name__ == "__main__":
    app()
