"""Settings commands: show."""

from __future__ import annotations

import click
from rich.panel import Panel

from ..backends import display_name
from ._common import console, home_option, load_runtime


def register_settings_commands(main: click.Group) -> None:
    """Register the settings command group."""

    @main.group()
    def settings():
        """Encrypted application settings."""

    @settings.command("show")
    @home_option
    def settings_show(home: str):
        """Summarize the encrypted settings document (no secrets shown)."""
        runtime = load_runtime(home)
        doc = runtime.settings.load()
        backends = "\n".join(
            f"  {'*' if b.id == doc.active_backend_id else '-'} {b.name} "
            f"({display_name(b.backend_type)})"
            for b in doc.backends
        ) or "  [dim]none[/]"
        identities = "\n".join(
            f"  - {i.name} (key {i.key_id})" for i in doc.identities
        ) or "  [dim]none[/]"
        stored = "[green]yes[/]" if runtime.settings.exists() else "[yellow]not yet saved[/]"
        console.print(Panel(
            f"File: [cyan]{runtime.settings.path}[/] ({stored})\n"
            f"Schema version: {doc.version}\n"
            f"Last modified: {doc.last_modified.isoformat()}\n"
            f"Theme: {doc.preferences.theme}\n"
            f"Auto backup: {'on' if doc.preferences.auto_backup_enabled else 'off'}\n"
            f"Backends:\n{backends}\n"
            f"Identities:\n{identities}\n"
            f"Publishers: {len(doc.publishers)}",
            title="SignVault Settings",
            border_style="blue",
        ))
