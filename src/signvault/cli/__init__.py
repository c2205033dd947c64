"""
SignVault CLI -- signing certificates and secrets from the terminal.

The main Click group is defined here and every command group is
registered from its own module.

Entry point: signvault.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="signvault")
@click.option("--verbose", "-v", is_flag=True, help="Log at INFO level.")
def main(verbose: bool):
    """SignVault -- code-signing secrets that follow you.

    Sync signing certificates between this keychain and a remote
    secret backend, and keep settings encrypted at rest.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups from modular files
# ---------------------------------------------------------------------------

from .backend import register_backend_commands
from .cert import register_cert_commands
from .secret import register_secret_commands
from .backup import register_backup_commands
from .settings_cmd import register_settings_commands

register_backend_commands(main)
register_cert_commands(main)
register_secret_commands(main)
register_backup_commands(main)
register_settings_commands(main)
