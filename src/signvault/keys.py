"""
Key material -- protected slots and the settings master key.

The protected slot is OS-level secure storage reached through the
``keyring`` library (macOS Keychain, Windows Credential Locker,
Secret Service on Linux). It holds the settings master key, the
secret slice of each backend config, and the active backend id.

Losing the slot makes ``settings.enc`` unrecoverable. There is no
rotation.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

import keyring
import keyring.errors

from .crypto import KEY_SIZE, generate_key

logger = logging.getLogger("signvault.keys")

MASTER_KEY_SLOT = "signvault_master_key"


class ProtectedSlot(ABC):
    """Named string storage backed by the platform's secure store."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        """Read a slot, or None if it has never been set."""

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        """Create or overwrite a slot."""

    @abstractmethod
    def remove(self, name: str) -> None:
        """Remove a slot. Removing a missing slot is not an error."""


class KeyringSlot(ProtectedSlot):
    """Protected slot stored in the OS keychain via ``keyring``.

    Every slot lives under one keyring service name with the slot name
    as the username.
    """

    def __init__(self, service: str = "signvault"):
        self.service = service

    def get(self, name: str) -> Optional[str]:
        return keyring.get_password(self.service, name)

    def set(self, name: str, value: str) -> None:
        keyring.set_password(self.service, name, value)

    def remove(self, name: str) -> None:
        try:
            keyring.delete_password(self.service, name)
        except keyring.errors.PasswordDeleteError:
            logger.debug("Slot %s already absent", name)


class PersistedKeyProvider:
    """Settings master key: generated once, then read back from the slot.

    Args:
        slot: Protected slot holding the base64-encoded key.
        slot_name: Name of the slot entry.
    """

    def __init__(self, slot: ProtectedSlot, slot_name: str = MASTER_KEY_SLOT):
        self._slot = slot
        self._slot_name = slot_name
        self._lock = threading.Lock()
        self._key: Optional[bytes] = None

    def get_key(self) -> bytes:
        """Return the master key, creating and persisting it on first use.

        Raises:
            ValueError: If the stored value is not a valid 32-byte key.
        """
        with self._lock:
            if self._key is not None:
                return self._key

            stored = self._slot.get(self._slot_name)
            if stored:
                try:
                    key = base64.b64decode(stored, validate=True)
                except binascii.Error as exc:
                    raise ValueError(f"Master key slot is corrupted: {exc}") from exc
                if len(key) != KEY_SIZE:
                    raise ValueError(
                        f"Master key slot holds {len(key)} bytes, expected {KEY_SIZE}"
                    )
            else:
                key = generate_key()
                self._slot.set(self._slot_name, base64.b64encode(key).decode("ascii"))
                logger.info("Generated new settings master key")

            self._key = key
            return key
