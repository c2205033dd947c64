"""
Remote secret backends.

Importing this package registers every backend implementation with
the factory.
"""

from .base import SecretBackend, register_backend, registered_backends
from .infisical import InfisicalBackend
from .azure import AzureKeyVaultBackend
from .aws import AwsSecretsManagerBackend
from .google import GoogleSecretManagerBackend
from .onepassword import OnePasswordBackend
from .factory import (
    create_backend,
    display_name,
    missing_settings,
    required_settings,
    secret_setting_keys,
    supported_types,
    validate_config,
)

__all__ = [
    "SecretBackend",
    "register_backend",
    "registered_backends",
    "InfisicalBackend",
    "AzureKeyVaultBackend",
    "AwsSecretsManagerBackend",
    "GoogleSecretManagerBackend",
    "OnePasswordBackend",
    "create_backend",
    "display_name",
    "missing_settings",
    "required_settings",
    "secret_setting_keys",
    "supported_types",
    "validate_config",
]
