"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the ``--home`` option, runtime
loading and status formatting helpers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console

from .. import SIGNVAULT_HOME
from ..models import SecretLocation
from ..runtime import SignVaultRuntime, get_runtime

console = Console()
logger = logging.getLogger("signvault.cli")

home_option = click.option(
    "--home", default=SIGNVAULT_HOME, type=click.Path(), help="SignVault home directory."
)


def load_runtime(home: str) -> SignVaultRuntime:
    """Build the runtime for a ``--home`` value.

    Applies the configured log level unless ``--verbose`` was given.
    """
    runtime = get_runtime(Path(home).expanduser())
    ctx = click.get_current_context(silent=True)
    if not (ctx and ctx.find_root().params.get("verbose")):
        logging.getLogger("signvault").setLevel(runtime.config.log_level)
    return runtime


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    console.print(f"[bold red]{message}[/]")
    raise SystemExit(1)


def location_label(location: SecretLocation) -> str:
    """Map a secret location to a Rich-formatted label.

    Args:
        location: Where the certificate's key material lives.

    Returns:
        str: Rich markup string.
    """
    return {
        SecretLocation.BOTH: "[bold green]BOTH[/]",
        SecretLocation.LOCAL_ONLY: "[yellow]LOCAL ONLY[/]",
        SecretLocation.CLOUD_ONLY: "[cyan]CLOUD ONLY[/]",
        SecretLocation.NONE: "[dim]NONE[/]",
    }.get(location, "[dim]UNKNOWN[/]")


def parse_assignments(values: tuple[str, ...]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` option values into a dict.

    Raises:
        click.BadParameter: On an entry without ``=``.
    """
    settings = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--set")
        key, value = item.split("=", 1)
        settings[key.strip()] = value
    return settings
