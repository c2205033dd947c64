"""Backup commands: export, import, validate."""

from __future__ import annotations

from pathlib import Path

import click
from rich.panel import Panel

from ..backup import validate_backup
from ..errors import AuthenticationError, BackupFormatError
from ._common import console, fail, home_option, load_runtime


def register_backup_commands(main: click.Group) -> None:
    """Register the backup command group."""

    @main.group()
    def backup():
        """Portable backups -- settings that move between machines.

        Backups are encrypted with a password, not with this machine's
        keychain, so they can be restored anywhere.
        """

    @backup.command("export")
    @click.argument("output", type=click.Path())
    @click.password_option("--password", help="Backup password.")
    @home_option
    def backup_export(output: str, password: str, home: str):
        """Export all settings to an encrypted backup file.

        Examples:

            signvault backup export ~/Desktop/

            signvault backup export /mnt/usb/signvault.svbak
        """
        runtime = load_runtime(home)
        try:
            path = runtime.backups.export_to_file(Path(output), password)
        except ValueError as exc:
            fail(str(exc))
        console.print(Panel(
            f"[bold green]Backup written[/]\nPath: [cyan]{path}[/]\n"
            f"Size: {path.stat().st_size} bytes",
            title="Backup Complete",
            border_style="green",
        ))

    @backup.command("import")
    @click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--password", prompt=True, hide_input=True, help="Backup password.")
    @click.option("--apply", is_flag=True, help="Replace current settings with the backup.")
    @home_option
    def backup_import(backup_file: str, password: str, apply: bool, home: str):
        """Decrypt a backup and show (or apply) its contents."""
        runtime = load_runtime(home)
        data = Path(backup_file).read_bytes()
        try:
            if apply:
                doc = runtime.backups.restore(data, password)
            else:
                doc = runtime.backups.import_backup(data, password)
        except BackupFormatError as exc:
            fail(str(exc))
        except AuthenticationError:
            fail("Wrong password or corrupted backup.")
        except ValueError as exc:
            fail(str(exc))

        state = "[bold green]Restored[/]" if apply else "[cyan]Verified (not applied)[/]"
        console.print(Panel(
            f"{state}\n"
            f"Identities: {len(doc.identities)}\n"
            f"Backends: {len(doc.backends)}\n"
            f"Publishers: {len(doc.publishers)}\n"
            f"Last modified: {doc.last_modified.isoformat()}",
            title="Backup",
            border_style="green" if apply else "blue",
        ))

    @backup.command("validate")
    @click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
    def backup_validate(backup_file: str):
        """Check that a file looks like a signvault backup (no password needed)."""
        if not validate_backup(Path(backup_file).read_bytes()):
            fail(f"{backup_file} is not a signvault backup.")
        console.print(f"[green]{backup_file} is a signvault backup.[/]")
