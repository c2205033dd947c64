"""Certificate commands: status, upload, install, delete, meta."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ..certsync import sanitize_serial
from ..models import CertificateRef
from ._common import console, fail, home_option, load_runtime, location_label


def register_cert_commands(main: click.Group) -> None:
    """Register the cert command group."""

    @main.group()
    def cert():
        """Signing certificates -- keychain vs. cloud.

        Check where each certificate's private key lives, push it to
        the active backend, or install it on this machine.
        """

    @cert.command("status")
    @click.option("--serial", "serials", multiple=True,
                  help="Certificate serial to check (repeatable). Defaults to local identities.")
    @home_option
    def cert_status(serials: tuple, home: str):
        """Show where each certificate's private key is stored."""
        runtime = load_runtime(home)
        if serials:
            certificates = [CertificateRef(id=s, serial_number=s) for s in serials]
        else:
            certificates = [
                CertificateRef(id=i.serial_number, serial_number=i.serial_number, name=i.common_name)
                for i in runtime.local_store.list_signing_identities()
                if i.serial_number
            ]
        if not certificates:
            console.print("[dim]No certificates to check.[/]")
            return

        table = Table(title="Certificate Storage", show_header=True, header_style="bold")
        table.add_column("Serial", style="cyan")
        table.add_column("Name")
        table.add_column("Location")
        names = {c.id: c.name for c in certificates}
        for info in runtime.certificates.get_statuses(certificates):
            table.add_row(info.serial_number, names.get(info.certificate_id, ""),
                          location_label(info.location))
        console.print(table)

    @cert.command("upload")
    @click.argument("p12_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--serial", required=True, help="Certificate serial number.")
    @click.option("--id", "cert_id", default=None, help="Developer portal certificate ID.")
    @click.option("--name", default="", help="Certificate common name.")
    @click.option("--type", "cert_type", default="", help="Certificate type (Development, Distribution...).")
    @click.password_option("--password", help="Password protecting the P12 file.")
    @home_option
    def cert_upload(p12_file: str, serial: str, cert_id: Optional[str], name: str,
                    cert_type: str, password: str, home: str):
        """Upload a P12 and its password to the active backend.

        Examples:

            signvault cert upload dist.p12 --serial 3561ADFB67EF2B1D --name "Apple Distribution"
        """
        runtime = load_runtime(home)
        if runtime.registry.active_config is None:
            fail("No active backend configured.")
        certificate = CertificateRef(
            id=cert_id or sanitize_serial(serial),
            serial_number=serial,
            name=name,
            certificate_type=cert_type,
        )
        if not runtime.certificates.upload_to_cloud(
            certificate, Path(p12_file).read_bytes(), password
        ):
            fail(f"Upload of {serial} failed. Run with -v for details.")
        console.print(Panel(
            f"[bold green]Uploaded[/] {serial}\nBackend: {runtime.registry.active_config.name}",
            title="Certificate Uploaded",
            border_style="green",
        ))

    @cert.command("install")
    @click.argument("serial", required=False)
    @click.option("--id", "cert_id", default=None, help="Resolve by certificate ID instead.")
    @home_option
    def cert_install(serial: Optional[str], cert_id: Optional[str], home: str):
        """Download a certificate from the backend and import it locally."""
        if not serial and not cert_id:
            fail("Give a SERIAL or --id.")
        runtime = load_runtime(home)
        if serial:
            ok = runtime.certificates.download_and_install_by_serial(serial)
        else:
            ok = runtime.certificates.download_and_install(cert_id)
        if not ok:
            fail("Install failed. Run with -v for details.")
        console.print(f"[bold green]Installed[/] {serial or cert_id}")

    @cert.command("delete")
    @click.argument("serial")
    @click.confirmation_option(prompt="Delete this certificate from the cloud backend?")
    @home_option
    def cert_delete(serial: str, home: str):
        """Delete a certificate's secrets from the active backend."""
        runtime = load_runtime(home)
        if not runtime.certificates.delete_from_cloud(serial):
            fail(f"Delete of {serial} failed.")
        console.print(f"[green]Deleted[/] {serial} from cloud storage")

    @cert.command("meta")
    @click.argument("serial")
    @home_option
    def cert_meta(serial: str, home: str):
        """Show the metadata stored with a certificate."""
        meta = load_runtime(home).certificates.get_certificate_metadata(serial)
        if meta is None:
            fail(f"No metadata stored for {serial}.")
        expires = meta.expiration_date.isoformat() if meta.expiration_date else "-"
        console.print(Panel(
            f"Certificate ID: {meta.certificate_id}\n"
            f"Serial: [cyan]{meta.serial_number}[/]\n"
            f"Name: {meta.common_name}\n"
            f"Type: {meta.certificate_type}\n"
            f"Expires: {expires}\n"
            f"Uploaded by: {meta.created_by_machine} at {meta.created_at.isoformat()}",
            title="Certificate Metadata",
            border_style="blue",
        ))
