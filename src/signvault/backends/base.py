"""
Secret backend abstraction -- where signing secrets live remotely.

Every backend stores opaque byte values under string keys and can
list them. Backends never raise for connectivity, auth, timeout or
SDK faults: they log and return False / None / []. "Not found" is a
normal result, never an error, and deleting a missing key succeeds.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import ClassVar, Dict, Optional

from ..models import BackendConfig, BackendSetting, BackendType

logger = logging.getLogger("signvault.backends")

DEFAULT_TIMEOUT = 30.0

_BACKENDS: Dict[BackendType, type] = {}


def register_backend(backend_type: BackendType):
    """Decorator to register a backend class for a backend type.

    Args:
        backend_type: The BackendType the class implements.
    """
    def wrapper(cls):
        cls.backend_type = backend_type
        _BACKENDS[backend_type] = cls
        return cls
    return wrapper


def registered_backends() -> Dict[BackendType, type]:
    """Return a copy of the backend type -> class map."""
    return dict(_BACKENDS)


def is_cancelled(cancel: Optional[threading.Event]) -> bool:
    """True if a cancellation signal was given and has been set."""
    return cancel is not None and cancel.is_set()


class SecretBackend(ABC):
    """Abstract remote secret store.

    Args:
        config: Backend configuration, secret settings included.
        timeout: Seconds to wait on any single remote call.
    """

    backend_type: ClassVar[BackendType] = BackendType.NONE
    display_name: ClassVar[str] = "None"
    SETTINGS: ClassVar[list[BackendSetting]] = []

    def __init__(self, config: BackendConfig, timeout: float = DEFAULT_TIMEOUT):
        self.config = config
        self.timeout = timeout

    def setting(self, key: str) -> str:
        """Return a configured value, falling back to the declared default."""
        value = self.config.settings.get(key)
        if value:
            return value
        for declared in self.SETTINGS:
            if declared.key == key and declared.default_value:
                return declared.default_value
        return ""

    def missing_settings(self) -> list[str]:
        """Keys of required settings that have no value."""
        return [s.key for s in self.SETTINGS if s.is_required and not self.setting(s.key)]

    @abstractmethod
    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        """Probe reachability and credentials.

        Returns:
            True if the backend answered and accepted the credentials.
        """

    @abstractmethod
    def store_secret(
        self,
        key: str,
        value: bytes,
        metadata: Optional[dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Create or overwrite a secret.

        Args:
            key: Logical secret name; adapters sanitize it.
            value: Raw bytes to store.
            metadata: Optional string annotations (tags, labels).
            cancel: Optional cancellation signal.

        Returns:
            True if the value is durably stored.
        """

    @abstractmethod
    def get_secret(
        self, key: str, cancel: Optional[threading.Event] = None
    ) -> Optional[bytes]:
        """Fetch a secret value, or None if absent or unreachable."""

    @abstractmethod
    def delete_secret(self, key: str, cancel: Optional[threading.Event] = None) -> bool:
        """Delete a secret. Deleting an absent key returns True."""

    @abstractmethod
    def secret_exists(self, key: str, cancel: Optional[threading.Event] = None) -> bool:
        """Whether a secret is present."""

    @abstractmethod
    def list_secrets(
        self, prefix: Optional[str] = None, cancel: Optional[threading.Event] = None
    ) -> list[str]:
        """List secret keys, optionally only those starting with ``prefix``."""
