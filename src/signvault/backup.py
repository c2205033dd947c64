"""
Portable backups -- password-protected export of the settings document.

Independent of any secret backend and of this machine's keychain:
the key comes from the password (PBKDF2-HMAC-SHA256, 100k rounds,
random 32-byte salt) and the payload is sealed with AES-256-GCM.

Layout::

    [magic "SVBAK001" 8][salt 32][nonce 12][tag 16][ciphertext]
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .crypto import (
    MIN_SEALED_SIZE,
    SALT_SIZE,
    derive_password_key,
    generate_salt,
    open_sealed,
    seal,
)
from .errors import BackupFormatError, ConfigurationError
from .models import IdentityRecord, SettingsDocument
from .registry import BackendRegistry
from .settings import EncryptedSettingsStore

logger = logging.getLogger("signvault.backup")

MAGIC = b"SVBAK001"
HEADER_SIZE = len(MAGIC) + SALT_SIZE
MIN_BACKUP_SIZE = HEADER_SIZE + MIN_SEALED_SIZE

IdentitySource = Callable[[], list[IdentityRecord]]


def validate_backup(data: bytes) -> bool:
    """Cheap check: does the blob start with the backup magic?"""
    return data is not None and len(data) >= len(MAGIC) and data[: len(MAGIC)] == MAGIC


def encrypt_document(doc: SettingsDocument, password: str) -> bytes:
    """Seal a settings document under a password.

    Raises:
        ValueError: If the password is empty.
    """
    if not password:
        raise ValueError("Password is required")
    salt = generate_salt()
    key = derive_password_key(password, salt)
    return MAGIC + salt + seal(doc.model_dump_json().encode("utf-8"), key)


def decrypt_document(data: bytes, password: str) -> SettingsDocument:
    """Open a backup blob.

    The magic is checked before any key derivation.

    Raises:
        ValueError: If the password is empty.
        BackupFormatError: If the blob is not a backup or is truncated.
        AuthenticationError: If the password is wrong or data was altered.
    """
    if not password:
        raise ValueError("Password is required")
    if not validate_backup(data):
        raise BackupFormatError("Invalid backup file format")
    if len(data) < MIN_BACKUP_SIZE:
        raise BackupFormatError("Backup file is too small")

    salt = data[len(MAGIC):HEADER_SIZE]
    plaintext = open_sealed(data[HEADER_SIZE:], derive_password_key(password, salt))
    return SettingsDocument.model_validate_json(plaintext)


class BackupService:
    """Export and import the full settings document.

    Args:
        settings: Encrypted settings store to read from / restore into.
        registry: Optional backend registry; when present, backend configs
            (secret settings included) and the active id are taken from it.
        identity_source: Optional callable returning identities with their
            p8 content filled in from the protected store.
    """

    def __init__(
        self,
        settings: EncryptedSettingsStore,
        registry: Optional[BackendRegistry] = None,
        identity_source: Optional[IdentitySource] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.identity_source = identity_source

    def _snapshot(self) -> SettingsDocument:
        doc = self.settings.load()
        update: dict = {}

        if self.identity_source is not None:
            identities = self.identity_source()
            if identities:
                created = {i.id: i.created_at for i in doc.identities}
                update["identities"] = [
                    i.model_copy(update={
                        "p8_content": i.p8_content or "",
                        "created_at": created.get(i.id, i.created_at),
                    })
                    for i in identities
                ]

        if self.registry is not None:
            update["backends"] = self.registry.list_configs()
            active = self.registry.active_config
            update["active_backend_id"] = active.id if active else None

        if not update:
            return doc
        return SettingsDocument.model_validate(doc.model_copy(update=update).model_dump())

    def export(self, password: str) -> bytes:
        """Produce a self-contained encrypted backup blob."""
        blob = encrypt_document(self._snapshot(), password)
        logger.info("Exported settings backup (%d bytes)", len(blob))
        return blob

    def import_backup(self, data: bytes, password: str) -> SettingsDocument:
        """Decrypt a backup without applying it."""
        return decrypt_document(data, password)

    def restore(self, data: bytes, password: str) -> SettingsDocument:
        """Decrypt a backup and make it the current settings.

        Backend configs are re-registered; the active selection is
        restored when the config is complete.
        """
        doc = decrypt_document(data, password)
        saved = self.settings.save(doc)

        if self.registry is not None:
            for config in doc.backends:
                self.registry.save_config(config)
            if doc.active_backend_id:
                try:
                    self.registry.set_active(doc.active_backend_id)
                except ConfigurationError as exc:
                    logger.warning("Restored backend not activated: %s", exc)

        logger.info("Restored settings from backup (%d backends, %d identities)",
                    len(doc.backends), len(doc.identities))
        return saved

    def export_to_file(self, path: Path, password: str) -> Path:
        """Write a backup to ``path`` (a directory gets a timestamped name)."""
        path = Path(path).expanduser()
        if path.is_dir():
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            path = path / f"signvault-backup-{stamp}.svbak"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.export(password))
        return path

    def import_from_file(self, path: Path, password: str) -> SettingsDocument:
        return self.import_backup(Path(path).expanduser().read_bytes(), password)
