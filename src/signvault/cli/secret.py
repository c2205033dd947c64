"""Managed secret commands: list, get, set, delete."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ..errors import NoActiveBackendError
from ..models import ManagedSecretType
from ._common import console, fail, home_option, load_runtime


def register_secret_commands(main: click.Group) -> None:
    """Register the secret command group."""

    @main.group()
    def secret():
        """Managed secrets -- API keys, keystores and other files."""

    @secret.command("list")
    @home_option
    def secret_list(home: str):
        """List managed secrets in the active backend."""
        secrets = load_runtime(home).managed.list_secrets()
        if not secrets:
            console.print("[dim]No managed secrets.[/]")
            return
        table = Table(title="Managed Secrets", show_header=True, header_style="bold")
        table.add_column("Key", style="cyan")
        table.add_column("Type")
        table.add_column("Description")
        table.add_column("Updated", style="dim")
        for item in secrets:
            table.add_row(item.key, item.type.value, item.description or "",
                          item.updated_at.strftime("%Y-%m-%d %H:%M"))
        console.print(table)

    @secret.command("get")
    @click.argument("key")
    @click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
                  help="Write the value to a file instead of stdout.")
    @home_option
    def secret_get(key: str, output: Optional[str], home: str):
        """Print (or save) a managed secret's value."""
        value = load_runtime(home).managed.get_value(key)
        if value is None:
            fail(f"Secret not found: {key}")
        if output:
            Path(output).write_bytes(value)
            console.print(f"[green]Wrote[/] {len(value)} bytes to {output}")
        else:
            click.echo(value.decode("utf-8", errors="replace"))

    @secret.command("set")
    @click.argument("key")
    @click.option("--value", default=None, help="String value.")
    @click.option("--file", "file_path", type=click.Path(exists=True, dir_okay=False),
                  default=None, help="Store a file's contents.")
    @click.option("--description", default=None, help="Free-form description.")
    @home_option
    def secret_set(key: str, value: Optional[str], file_path: Optional[str],
                   description: Optional[str], home: str):
        """Create or update a managed secret."""
        if (value is None) == (file_path is None):
            fail("Give exactly one of --value or --file.")
        if file_path:
            data = Path(file_path).read_bytes()
            kind = ManagedSecretType.FILE
        else:
            data = value.encode("utf-8")
            kind = ManagedSecretType.STRING

        managed = load_runtime(home).managed
        try:
            if managed.get_secret(key) is not None:
                ok = managed.update(key, data, description)
            else:
                ok = managed.create(
                    key, data, kind, description,
                    Path(file_path).name if file_path else None,
                )
        except (NoActiveBackendError, ValueError) as exc:
            fail(str(exc))
        if not ok:
            fail(f"Storing {key} failed. Run with -v for details.")
        console.print(f"[green]Stored[/] {key}")

    @secret.command("delete")
    @click.argument("key")
    @home_option
    def secret_delete(key: str, home: str):
        """Delete a managed secret."""
        try:
            ok = load_runtime(home).managed.delete(key)
        except NoActiveBackendError as exc:
            fail(str(exc))
        if not ok:
            fail(f"Delete of {key} failed.")
        console.print(f"[green]Deleted[/] {key}")
