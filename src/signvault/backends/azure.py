"""
Azure Key Vault backend -- service principal auth via azure-identity.

Requires the ``azure`` extra: pip install signvault[azure]
"""

from __future__ import annotations

import base64
import logging
import threading
from typing import Any, Optional

from ..models import BackendConfig, BackendSetting, BackendType
from .base import DEFAULT_TIMEOUT, SecretBackend, is_cancelled, register_backend

logger = logging.getLogger("signvault.backends.azure")

MAX_NAME_LENGTH = 127


def sanitize_key(key: str) -> str:
    """Key Vault names: alphanumerics and hyphens, starting with a letter."""
    result = "".join(c if c.isalnum() else "-" for c in key)
    if result and not result[0].isalpha():
        result = "S" + result
    return result[:MAX_NAME_LENGTH]


def listed_key(name: str) -> str:
    """Map a vault secret name back to the underscore form callers use."""
    return name.replace("-", "_").upper()


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "status_code", None) == 404 or type(exc).__name__ == "ResourceNotFoundError"


@register_backend(BackendType.AZURE_KEY_VAULT)
class AzureKeyVaultBackend(SecretBackend):
    """Secrets stored as Key Vault secrets, metadata as secret tags."""

    display_name = "Azure Key Vault"
    SETTINGS = [
        BackendSetting(
            key="VaultUrl", label="Vault URL",
            description="Key Vault URI",
            placeholder="https://my-vault.vault.azure.net/",
        ),
        BackendSetting(key="TenantId", label="Tenant ID", description="Azure AD tenant ID"),
        BackendSetting(key="ClientId", label="Client ID", description="Service principal application ID"),
        BackendSetting(
            key="ClientSecret", label="Client Secret",
            description="Service principal client secret", is_secret=True,
        ),
    ]

    def __init__(self, config: BackendConfig, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(config, timeout)
        self._client: Any = None

    def _get_client(self) -> Any:
        """Create (once) a SecretClient.

        Raises:
            RuntimeError: If the Azure SDK is not installed.
        """
        if self._client is not None:
            return self._client
        try:
            from azure.identity import ClientSecretCredential
            from azure.keyvault.secrets import SecretClient
        except ImportError:
            raise RuntimeError(
                "Azure backend requires azure-keyvault-secrets and azure-identity: "
                "pip install signvault[azure]"
            )
        credential = ClientSecretCredential(
            tenant_id=self.setting("TenantId"),
            client_id=self.setting("ClientId"),
            client_secret=self.setting("ClientSecret"),
        )
        self._client = SecretClient(
            vault_url=self.setting("VaultUrl"),
            credential=credential,
            connection_timeout=self.timeout,
            read_timeout=self.timeout,
        )
        return self._client

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        missing = self.missing_settings()
        if missing:
            logger.error("Azure config incomplete, missing: %s", ", ".join(missing))
            return False
        if is_cancelled(cancel):
            return False
        try:
            # Pulling one page is enough to prove auth and reachability.
            pages = self._get_client().list_properties_of_secrets().by_page()
            next(pages, None)
            logger.info("Azure Key Vault connection test succeeded")
            return True
        except Exception as exc:
            logger.error("Azure Key Vault connection test failed: %s", exc)
            return False

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            self._get_client().set_secret(
                sanitize_key(key),
                base64.b64encode(value).decode("ascii"),
                tags=dict(metadata) if metadata else None,
            )
            logger.info("Stored secret %s", key)
            return True
        except Exception as exc:
            logger.error("Azure Key Vault store of %s failed: %s", key, exc)
            return False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        if is_cancelled(cancel):
            return None
        try:
            secret = self._get_client().get_secret(sanitize_key(key))
            if secret.value is None:
                return None
            return base64.b64decode(secret.value)
        except Exception as exc:
            if _is_not_found(exc):
                return None
            logger.error("Azure Key Vault get of %s failed: %s", key, exc)
            return None

    def delete_secret(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            self._get_client().begin_delete_secret(sanitize_key(key)).wait()
            logger.info("Deleted secret %s", key)
            return True
        except Exception as exc:
            if _is_not_found(exc):
                logger.info("Secret %s already absent", key)
                return True
            logger.error("Azure Key Vault delete of %s failed: %s", key, exc)
            return False

    def secret_exists(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            self._get_client().get_secret(sanitize_key(key))
            return True
        except Exception as exc:
            if not _is_not_found(exc):
                logger.error("Azure Key Vault exists check of %s failed: %s", key, exc)
            return False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        if is_cancelled(cancel):
            return []
        wanted = listed_key(sanitize_key(prefix)) if prefix else ""
        try:
            keys = []
            for props in self._get_client().list_properties_of_secrets():
                name = listed_key(props.name)
                if not wanted or name.startswith(wanted):
                    keys.append(name)
            return keys
        except Exception as exc:
            logger.error("Azure Key Vault list failed: %s", exc)
            return []
