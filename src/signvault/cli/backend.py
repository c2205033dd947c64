"""Backend commands: types, list, add, remove, activate, deactivate, test."""

from __future__ import annotations

from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ..backends import display_name, required_settings, secret_setting_keys, supported_types
from ..errors import ConfigurationError
from ..models import BackendConfig, BackendType
from ._common import console, fail, home_option, load_runtime, parse_assignments

_TYPE_CHOICES = [t.value for t in BackendType if t != BackendType.NONE]


def register_backend_commands(main: click.Group) -> None:
    """Register the backend command group."""

    @main.group()
    def backend():
        """Remote secret backends -- where certificates travel.

        Configure Infisical, Azure Key Vault, AWS Secrets Manager,
        Google Secret Manager or 1Password, and pick the active one.
        """

    @backend.command("types")
    def backend_types():
        """Show supported backend types and their settings."""
        for backend_type in supported_types():
            table = Table(show_header=True, header_style="bold", box=None)
            table.add_column("Key", style="cyan")
            table.add_column("Required")
            table.add_column("Secret")
            table.add_column("Default", style="dim")
            for setting in required_settings(backend_type):
                table.add_row(
                    setting.key,
                    "yes" if setting.is_required else "no",
                    "[yellow]yes[/]" if setting.is_secret else "no",
                    setting.default_value or "",
                )
            console.print(Panel(
                table,
                title=f"{display_name(backend_type)} ([cyan]{backend_type.value}[/])",
                border_style="blue",
            ))

    @backend.command("list")
    @home_option
    def backend_list(home: str):
        """List configured backends."""
        runtime = load_runtime(home)
        configs = runtime.registry.list_configs()
        if not configs:
            console.print("[dim]No backends configured. Add one with 'signvault backend add'.[/]")
            return

        active = runtime.registry.active_config
        table = Table(title="Secret Backends", show_header=True, header_style="bold")
        table.add_column("", width=1)
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        for config in configs:
            marker = "[bold green]*[/]" if active and active.id == config.id else ""
            table.add_row(marker, config.id, config.name, display_name(config.backend_type))
        console.print(table)

    @backend.command("add")
    @click.argument("backend_type", type=click.Choice(_TYPE_CHOICES))
    @click.option("--name", required=True, help="Display name for this backend.")
    @click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE",
                  help="Backend setting (repeatable).")
    @click.option("--activate", is_flag=True, help="Make it the active backend.")
    @home_option
    def backend_add(backend_type: str, name: str, assignments: tuple, activate: bool, home: str):
        """Add a backend configuration.

        Required secret settings that are not passed with --set are
        prompted for without echo.

        Examples:

            signvault backend add infisical --name Team --set ClientId=abc --set ProjectId=p1

            signvault backend add onepassword --name Personal --set Vault=Private --activate
        """
        kind = BackendType(backend_type)
        settings = parse_assignments(assignments)
        secret_keys = secret_setting_keys(kind)
        for setting in required_settings(kind):
            if setting.key in secret_keys and setting.is_required and not settings.get(setting.key):
                settings[setting.key] = click.prompt(setting.label, hide_input=True)

        runtime = load_runtime(home)
        config = BackendConfig(name=name, backend_type=kind, settings=settings)
        runtime.registry.save_config(config)
        console.print(f"[green]Saved backend[/] {name} ([dim]{config.id}[/])")

        if activate:
            try:
                runtime.registry.set_active(config.id)
            except ConfigurationError as exc:
                fail(str(exc))
            console.print(f"[green]Active backend:[/] {name}")

    @backend.command("remove")
    @click.argument("backend_id")
    @home_option
    def backend_remove(backend_id: str, home: str):
        """Remove a backend configuration and its stored credentials."""
        runtime = load_runtime(home)
        if not runtime.registry.delete_config(backend_id):
            fail(f"Unknown backend: {backend_id}")
        console.print(f"[green]Removed backend[/] {backend_id}")

    @backend.command("activate")
    @click.argument("backend_id")
    @home_option
    def backend_activate(backend_id: str, home: str):
        """Make a configured backend the active one."""
        runtime = load_runtime(home)
        try:
            runtime.registry.set_active(backend_id)
        except ConfigurationError as exc:
            fail(str(exc))
        console.print(f"[green]Active backend:[/] {backend_id}")

    @backend.command("deactivate")
    @home_option
    def backend_deactivate(home: str):
        """Clear the active backend selection."""
        load_runtime(home).registry.set_active(None)
        console.print("[yellow]No active backend.[/]")

    @backend.command("test")
    @click.argument("backend_id", required=False)
    @home_option
    def backend_test(backend_id: Optional[str], home: str):
        """Test connectivity of a backend (default: the active one)."""
        runtime = load_runtime(home)
        if backend_id is None:
            active = runtime.registry.active_config
            if active is None:
                fail("No active backend configured.")
            backend_id = active.id
        try:
            ok = runtime.registry.test_connection(backend_id)
        except ConfigurationError as exc:
            fail(str(exc))
        if not ok:
            fail(f"Connection to {backend_id} failed. Run with -v for details.")
        console.print(f"[bold green]Connection OK[/] ({backend_id})")
