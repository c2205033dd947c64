"""
Encrypted settings store.

The whole SettingsDocument is serialized to JSON, sealed with the
master key, and written to ``<home>/settings.enc`` in one replace.
The previous file is copied to ``settings.enc.bak`` first.

Reads after the first load come from memory until the next save.
A single lock covers every load and save, so ``transform`` is an
atomic read-modify-write within this process.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .crypto import open_sealed, seal
from .keys import PersistedKeyProvider
from .models import SettingsDocument

logger = logging.getLogger("signvault.settings")

SETTINGS_FILENAME = "settings.enc"

SettingsListener = Callable[[SettingsDocument], None]


class EncryptedSettingsStore:
    """Load and save the encrypted settings document.

    Args:
        home: SignVault home directory.
        key_provider: Source of the AES-256 master key.
    """

    def __init__(self, home: Path, key_provider: PersistedKeyProvider):
        self.home = home
        self.path = home / SETTINGS_FILENAME
        self.backup_path = home / (SETTINGS_FILENAME + ".bak")
        self._keys = key_provider
        self._lock = threading.Lock()
        self._cache: Optional[SettingsDocument] = None
        self._listeners: list[SettingsListener] = []

    def subscribe(self, listener: SettingsListener) -> None:
        """Call ``listener`` with the new document after every save."""
        self._listeners.append(listener)

    def exists(self) -> bool:
        """Whether a settings file has been written yet."""
        return self.path.exists()

    def load(self) -> SettingsDocument:
        """Return the settings document.

        Returns an empty default document when nothing has been saved.

        Raises:
            AuthenticationError: If the file cannot be decrypted.
            pydantic.ValidationError: If the decrypted JSON is corrupted.
        """
        with self._lock:
            return self._load_locked().model_copy(deep=True)

    def save(self, doc: SettingsDocument) -> SettingsDocument:
        """Persist ``doc`` and return the stored copy with a fresh timestamp."""
        with self._lock:
            saved = self._save_locked(doc)
        self._notify(saved)
        return saved.model_copy(deep=True)

    def transform(
        self, fn: Callable[[SettingsDocument], SettingsDocument]
    ) -> SettingsDocument:
        """Apply ``fn`` to the current document and save the result.

        The lock is held across the read and the write.
        """
        with self._lock:
            current = self._load_locked().model_copy(deep=True)
            saved = self._save_locked(fn(current))
        self._notify(saved)
        return saved.model_copy(deep=True)

    def clear_cache(self) -> None:
        """Drop the in-memory copy so the next load reads from disk."""
        with self._lock:
            self._cache = None

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _load_locked(self) -> SettingsDocument:
        if self._cache is not None:
            return self._cache

        if not self.path.exists():
            self._cache = SettingsDocument()
            return self._cache

        plaintext = open_sealed(self.path.read_bytes(), self._keys.get_key())
        self._cache = SettingsDocument.model_validate_json(plaintext)
        logger.debug("Loaded settings from %s", self.path)
        return self._cache

    def _save_locked(self, doc: SettingsDocument) -> SettingsDocument:
        saved = SettingsDocument.model_validate(
            doc.model_copy(
                update={"last_modified": datetime.now(timezone.utc)}, deep=True
            ).model_dump()
        )
        blob = seal(saved.model_dump_json().encode("utf-8"), self._keys.get_key())

        self.home.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            try:
                shutil.copy2(self.path, self.backup_path)
            except OSError as exc:
                logger.warning("Could not back up settings before save: %s", exc)

        fd, tmp_name = tempfile.mkstemp(dir=self.home, prefix=".settings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self._cache = saved
        logger.info("Settings saved (%d bytes)", len(blob))
        return saved

    def _notify(self, doc: SettingsDocument) -> None:
        for listener in list(self._listeners):
            try:
                listener(doc.model_copy(deep=True))
            except Exception as exc:
                logger.warning("Settings listener failed: %s", exc)
