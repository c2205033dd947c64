"""
Ambient configuration loaded from ``<home>/config.yaml``.

Everything here has a sensible default; the file is optional.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from . import SIGNVAULT_HOME

logger = logging.getLogger("signvault.config")

CONFIG_FILENAME = "config.yaml"


class SignVaultConfig(BaseModel):
    """Tunable settings for one signvault home."""

    backend_timeout: float = Field(
        default=30.0, gt=0, description="Seconds before a remote backend call gives up"
    )
    keyring_service: str = Field(
        default="signvault", description="keyring service name for protected slots"
    )
    log_level: str = Field(default="WARNING")
    identity_cache_seconds: int = Field(
        default=300, ge=0, description="How long keychain identity listings are reused"
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the home directory, falling back to ``SIGNVAULT_HOME``."""
    return Path(home or SIGNVAULT_HOME).expanduser()


def load_config(home: Path) -> SignVaultConfig:
    """Load configuration from disk.

    Args:
        home: SignVault home directory.

    Returns:
        SignVaultConfig from config.yaml, or defaults.
    """
    config_file = home / CONFIG_FILENAME
    if not config_file.exists():
        return SignVaultConfig()
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        return SignVaultConfig(**data)
    except (yaml.YAMLError, ValidationError, TypeError) as exc:
        logger.warning("Failed to load %s, using defaults: %s", config_file, exc)
        return SignVaultConfig()


def save_config(home: Path, config: SignVaultConfig) -> Path:
    """Write configuration to ``<home>/config.yaml``."""
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILENAME
    config_file.write_text(
        yaml.dump(config.model_dump(), default_flow_style=False),
        encoding="utf-8",
    )
    return config_file
