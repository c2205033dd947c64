"""
Managed secrets -- arbitrary user secrets kept in the active backend.

Value and metadata live under separate keys:

    signvault-secrets/<key>        raw value
    signvault-secrets-meta/<key>   ManagedSecret JSON

Metadata keys are what listing relies on, because backends may
rewrite value key names when sanitizing them.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from .errors import NoActiveBackendError
from .models import ManagedSecret, ManagedSecretType
from .registry import BackendRegistry

logger = logging.getLogger("signvault.managed")

SECRET_PREFIX = "signvault-secrets/"
METADATA_PREFIX = "signvault-secrets-meta/"


class ManagedSecretsService:
    """CRUD for user secrets on top of the backend registry."""

    def __init__(self, registry: BackendRegistry):
        self.registry = registry

    def _require_backend(self) -> None:
        if self.registry.active_config is None:
            raise NoActiveBackendError("No active secret backend configured.")

    def _load_metadata(self, meta_key: str, cancel: Optional[threading.Event]) -> Optional[ManagedSecret]:
        raw = self.registry.get_secret(meta_key, cancel)
        if raw is None:
            return None
        try:
            return ManagedSecret.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Failed to load metadata for '%s': %s", meta_key, exc)
            return None

    def _save_metadata(self, meta: ManagedSecret, cancel: Optional[threading.Event]) -> None:
        if not self.registry.store_secret(
            METADATA_PREFIX + meta.key, meta.model_dump_json().encode("utf-8"), None, cancel
        ):
            logger.warning("Failed to store metadata for managed secret %s", meta.key)

    def list_secrets(self, cancel: Optional[threading.Event] = None) -> list[ManagedSecret]:
        """Every managed secret with readable metadata."""
        if self.registry.active_config is None:
            return []
        secrets = []
        for meta_key in self.registry.list_secrets(METADATA_PREFIX, cancel):
            meta = self._load_metadata(meta_key, cancel)
            if meta is not None:
                secrets.append(meta)
        return secrets

    def get_secret(self, key: str, cancel: Optional[threading.Event] = None) -> Optional[ManagedSecret]:
        if self.registry.active_config is None:
            return None
        return self._load_metadata(METADATA_PREFIX + key, cancel)

    def get_value(self, key: str, cancel: Optional[threading.Event] = None) -> Optional[bytes]:
        if self.registry.active_config is None:
            return None
        return self.registry.get_secret(SECRET_PREFIX + key, cancel)

    def create(
        self,
        key: str,
        value: bytes,
        secret_type: ManagedSecretType = ManagedSecretType.STRING,
        description: Optional[str] = None,
        original_file_name: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Store a new secret and its metadata.

        Raises:
            NoActiveBackendError: If no backend is active.
            ValueError: If the key is empty.
        """
        self._require_backend()
        if not key or not key.strip():
            raise ValueError("Secret key cannot be empty.")

        if not self.registry.store_secret(SECRET_PREFIX + key, value, None, cancel):
            return False
        now = datetime.now(timezone.utc)
        self._save_metadata(ManagedSecret(
            key=key,
            type=secret_type,
            description=description,
            original_file_name=original_file_name,
            created_at=now,
            updated_at=now,
        ), cancel)
        logger.info("Created managed secret %s (%s)", key, secret_type.value)
        return True

    def update(
        self,
        key: str,
        value: Optional[bytes] = None,
        description: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Replace the value and/or description of an existing secret.

        Returns:
            False if the secret does not exist or the value store failed.

        Raises:
            NoActiveBackendError: If no backend is active.
        """
        self._require_backend()
        existing = self._load_metadata(METADATA_PREFIX + key, cancel)
        if existing is None:
            return False
        if value is not None and not self.registry.store_secret(SECRET_PREFIX + key, value, None, cancel):
            return False
        self._save_metadata(existing.model_copy(update={
            "description": description if description is not None else existing.description,
            "updated_at": datetime.now(timezone.utc),
        }), cancel)
        logger.info("Updated managed secret %s", key)
        return True

    def delete(self, key: str, cancel: Optional[threading.Event] = None) -> bool:
        """Delete value and metadata. The result reflects the value only.

        Raises:
            NoActiveBackendError: If no backend is active.
        """
        self._require_backend()
        deleted = self.registry.delete_secret(SECRET_PREFIX + key, cancel)
        if not self.registry.delete_secret(METADATA_PREFIX + key, cancel):
            logger.warning("Failed to delete metadata for managed secret %s", key)
        logger.info("Deleted managed secret %s", key)
        return deleted
