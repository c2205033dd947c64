"""
Backend factory -- backend type to class, plus settings metadata.

Pure lookup: nothing here touches the network or spawns processes.
"""

from __future__ import annotations

from ..errors import ConfigurationError
from ..models import BackendConfig, BackendSetting, BackendType
from .base import DEFAULT_TIMEOUT, SecretBackend, registered_backends


def _backend_class(backend_type: BackendType) -> type:
    cls = registered_backends().get(BackendType(backend_type))
    if cls is None:
        raise ConfigurationError(f"Unsupported backend: {backend_type}")
    return cls


def create_backend(config: BackendConfig, timeout: float = DEFAULT_TIMEOUT) -> SecretBackend:
    """Factory function to create the backend for a config.

    Args:
        config: Backend configuration with its full settings map.
        timeout: Per-call remote timeout in seconds.

    Returns:
        Instantiated SecretBackend.

    Raises:
        ConfigurationError: If the backend type is not supported.
    """
    return _backend_class(config.backend_type)(config, timeout=timeout)


def supported_types() -> list[BackendType]:
    """Backend types that can be instantiated, in declaration order."""
    available = registered_backends()
    return [t for t in BackendType if t in available]


def required_settings(backend_type: BackendType) -> list[BackendSetting]:
    """Every setting declared for a backend type (required or optional).

    Returns an empty list for unsupported types.
    """
    cls = registered_backends().get(BackendType(backend_type))
    if cls is None:
        return []
    return [s.model_copy() for s in cls.SETTINGS]


def display_name(backend_type: BackendType) -> str:
    """Human-readable name for a backend type."""
    cls = registered_backends().get(BackendType(backend_type))
    if cls is None:
        return "None" if backend_type == BackendType.NONE else str(backend_type)
    return cls.display_name


def secret_setting_keys(backend_type: BackendType) -> set[str]:
    """Setting keys that must go through the protected slot."""
    return {s.key for s in required_settings(backend_type) if s.is_secret}


def missing_settings(config: BackendConfig) -> list[str]:
    """Required setting keys with neither a value nor a default."""
    missing = []
    for setting in required_settings(config.backend_type):
        if setting.is_required and not (config.settings.get(setting.key) or setting.default_value):
            missing.append(setting.key)
    return missing


def validate_config(config: BackendConfig) -> None:
    """Raise unless a config names a supported type and has every required setting.

    Raises:
        ConfigurationError: On an unsupported type or missing settings.
    """
    _backend_class(config.backend_type)
    missing = missing_settings(config)
    if missing:
        raise ConfigurationError(
            f"Backend '{config.name}' is missing required settings: {', '.join(missing)}"
        )
