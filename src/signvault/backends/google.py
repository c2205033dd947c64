"""
Google Secret Manager backend -- service-account JSON credentials.

Each key is one secret with automatic replication; every store adds
a new version and reads always take ``versions/latest``.
Requires the ``gcp`` extra: pip install signvault[gcp]
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

from ..models import BackendConfig, BackendSetting, BackendType
from .base import DEFAULT_TIMEOUT, SecretBackend, is_cancelled, register_backend

logger = logging.getLogger("signvault.backends.google")

MAX_ID_LENGTH = 255
MAX_LABEL_LENGTH = 63


def sanitize_secret_id(key: str) -> str:
    """Secret IDs: alphanumerics, ``-`` and ``_``, starting with a letter."""
    result = "".join(c if (c.isalnum() or c in "-_") else "-" for c in key)
    if result and not result[0].isalpha():
        result = "S" + result
    return result[:MAX_ID_LENGTH]


def sanitize_label(value: str) -> str:
    """Labels: lowercase, alphanumerics, ``-`` and ``_``, starting with a letter."""
    result = "".join(c if (c.isalnum() or c in "-_") else "-" for c in value.lower())
    if result and not result[0].isalpha():
        result = "l" + result
    return result[:MAX_LABEL_LENGTH]


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "code", None) == 404 or type(exc).__name__ == "NotFound"


@register_backend(BackendType.GOOGLE_SECRET_MANAGER)
class GoogleSecretManagerBackend(SecretBackend):
    """Secrets stored in one Google Cloud project."""

    display_name = "Google Secret Manager"
    SETTINGS = [
        BackendSetting(key="ProjectId", label="Project ID", description="Google Cloud project ID"),
        BackendSetting(
            key="CredentialsJson", label="Service Account JSON",
            description="Contents of the service account key file", is_secret=True,
        ),
        BackendSetting(
            key="SecretPrefix", label="Secret Prefix",
            description="Optional prefix for every secret ID",
            is_required=False, placeholder="signvault",
        ),
    ]

    def __init__(self, config: BackendConfig, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(config, timeout)
        self._client: Any = None

    def _get_client(self) -> Any:
        """Create (once) a SecretManagerServiceClient.

        Raises:
            RuntimeError: If google-cloud-secret-manager is not installed.
        """
        if self._client is not None:
            return self._client
        try:
            from google.cloud import secretmanager
        except ImportError:
            raise RuntimeError(
                "Google backend requires google-cloud-secret-manager: "
                "pip install signvault[gcp]"
            )
        info = json.loads(self.setting("CredentialsJson"))
        self._client = secretmanager.SecretManagerServiceClient.from_service_account_info(info)
        return self._client

    @property
    def _parent(self) -> str:
        return f"projects/{self.setting('ProjectId')}"

    def _secret_id(self, key: str) -> str:
        prefix = self.setting("SecretPrefix")
        return sanitize_secret_id(f"{prefix}-{key}" if prefix else key)

    def _strip_prefix(self, secret_id: str) -> str:
        prefix = self.setting("SecretPrefix")
        if not prefix:
            return secret_id
        head = sanitize_secret_id(f"{prefix}-")
        if secret_id.lower().startswith(head.lower()):
            return secret_id[len(head):]
        return secret_id

    def _exists(self, name: str) -> bool:
        try:
            self._get_client().get_secret(request={"name": name}, timeout=self.timeout)
            return True
        except Exception as exc:
            if _is_not_found(exc):
                return False
            raise

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        missing = self.missing_settings()
        if missing:
            logger.error("Google config incomplete, missing: %s", ", ".join(missing))
            return False
        if is_cancelled(cancel):
            return False
        try:
            pager = self._get_client().list_secrets(
                request={"parent": self._parent, "page_size": 1}, timeout=self.timeout
            )
            next(iter(pager.pages), None)
            logger.info("Google Secret Manager connection test succeeded for %s",
                        self.setting("ProjectId"))
            return True
        except Exception as exc:
            logger.error("Google Secret Manager connection test failed: %s", exc)
            return False

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        secret_id = self._secret_id(key)
        name = f"{self._parent}/secrets/{secret_id}"
        try:
            client = self._get_client()
            if not self._exists(name):
                secret: dict[str, Any] = {"replication": {"automatic": {}}}
                if metadata:
                    secret["labels"] = {
                        sanitize_label(k): sanitize_label(v) for k, v in metadata.items()
                    }
                created = client.create_secret(
                    request={"parent": self._parent, "secret_id": secret_id, "secret": secret},
                    timeout=self.timeout,
                )
                name = created.name
            client.add_secret_version(
                request={"parent": name, "payload": {"data": value}}, timeout=self.timeout
            )
            logger.info("Stored secret %s", key)
            return True
        except Exception as exc:
            logger.error("Google Secret Manager store of %s failed: %s", key, exc)
            return False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        if is_cancelled(cancel):
            return None
        name = f"{self._parent}/secrets/{self._secret_id(key)}/versions/latest"
        try:
            response = self._get_client().access_secret_version(
                request={"name": name}, timeout=self.timeout
            )
            return bytes(response.payload.data)
        except Exception as exc:
            if not _is_not_found(exc):
                logger.error("Google Secret Manager get of %s failed: %s", key, exc)
            return None

    def delete_secret(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        name = f"{self._parent}/secrets/{self._secret_id(key)}"
        try:
            self._get_client().delete_secret(request={"name": name}, timeout=self.timeout)
            logger.info("Deleted secret %s", key)
            return True
        except Exception as exc:
            if _is_not_found(exc):
                logger.info("Secret %s already absent", key)
                return True
            logger.error("Google Secret Manager delete of %s failed: %s", key, exc)
            return False

    def secret_exists(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            return self._exists(f"{self._parent}/secrets/{self._secret_id(key)}")
        except Exception as exc:
            logger.error("Google Secret Manager exists check of %s failed: %s", key, exc)
            return False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        if is_cancelled(cancel):
            return []
        wanted = self._secret_id(prefix or "").lower() if (prefix or self.setting("SecretPrefix")) else ""
        try:
            keys = []
            for secret in self._get_client().list_secrets(
                request={"parent": self._parent}, timeout=self.timeout
            ):
                secret_id = secret.name.rsplit("/", 1)[-1]
                if wanted and not secret_id.lower().startswith(wanted):
                    continue
                keys.append(self._strip_prefix(secret_id))
            return keys
        except Exception as exc:
            logger.error("Google Secret Manager list failed: %s", exc)
            return []
