"""Shared test fixtures for signvault."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import pytest

from signvault.backends.base import SecretBackend, is_cancelled
from signvault.keychain import LocalCredentialStore
from signvault.keys import ProtectedSlot
from signvault.models import BackendConfig, BackendType, LocalSigningIdentity
from signvault.registry import BackendRegistry


class MemorySlot(ProtectedSlot):
    """Protected slot kept in a dict."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def set(self, name: str, value: str) -> None:
        self.values[name] = value

    def remove(self, name: str) -> None:
        self.values.pop(name, None)


class InMemoryBackend(SecretBackend):
    """Secret backend kept in a dict, with failure injection."""

    display_name = "Memory"

    def __init__(self, config: Optional[BackendConfig] = None, timeout: float = 30.0) -> None:
        super().__init__(
            config or BackendConfig(name="memory", backend_type=BackendType.ONEPASSWORD),
            timeout,
        )
        self.secrets: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.fail_store: set[str] = set()
        self.fail_delete: set[str] = set()
        self.list_error: Optional[Exception] = None
        self.after_store: Optional[Callable[[str], None]] = None
        self.calls: list[tuple[str, str]] = []

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        return True

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        self.calls.append(("store", key))
        if is_cancelled(cancel) or key in self.fail_store:
            return False
        self.secrets[key] = bytes(value)
        if metadata:
            self.metadata[key] = dict(metadata)
        if self.after_store:
            self.after_store(key)
        return True

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        self.calls.append(("get", key))
        return self.secrets.get(key)

    def delete_secret(self, key, cancel=None) -> bool:
        self.calls.append(("delete", key))
        if key in self.fail_delete:
            return False
        self.secrets.pop(key, None)
        return True

    def secret_exists(self, key, cancel=None) -> bool:
        return key in self.secrets

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        return [k for k in self.secrets if not prefix or k.upper().startswith(prefix.upper())]


class FakeCredentialStore(LocalCredentialStore):
    """Local credential store backed by a list."""

    def __init__(self, identities: Optional[list[LocalSigningIdentity]] = None,
                 supported: bool = True) -> None:
        self.identities = identities or []
        self.supported = supported
        self.imported: list[tuple[bytes, str]] = []
        self.import_result = True

    @property
    def is_supported(self) -> bool:
        return self.supported

    def list_signing_identities(self) -> list[LocalSigningIdentity]:
        return list(self.identities)

    def has_private_key(self, serial_number: str) -> bool:
        return any(i.serial_number == serial_number for i in self.identities)

    def export_p12(self, identity: str, password: str) -> bytes:
        return b"p12:" + identity.encode()

    def import_p12(self, data: bytes, password: str) -> bool:
        self.imported.append((data, password))
        return self.import_result

    def delete_identity(self, identity: str) -> None:
        self.identities = [i for i in self.identities if i.identity != identity]


def make_identity(serial: str, valid: bool = True, name: str = "Apple Development: Test") -> LocalSigningIdentity:
    """Build a local signing identity with a serial."""
    return LocalSigningIdentity(
        identity=f"{name} (ABCDE12345)",
        common_name=name,
        team_id="ABCDE12345",
        serial_number=serial,
        is_valid=valid,
    )


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary signvault home directory."""
    path = tmp_path / ".signvault"
    path.mkdir()
    return path


@pytest.fixture
def slot() -> MemorySlot:
    return MemorySlot()


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def registry(home: Path, slot: MemorySlot, memory_backend: InMemoryBackend) -> BackendRegistry:
    """Registry whose backends are all the shared in-memory backend."""
    reg = BackendRegistry(home, slot, builder=lambda config, timeout: memory_backend)
    reg.initialize()
    return reg


@pytest.fixture
def onepassword_config() -> BackendConfig:
    return BackendConfig(
        name="Personal",
        backend_type=BackendType.ONEPASSWORD,
        settings={"Vault": "Private", "ServiceAccountToken": "ops_token"},
    )


@pytest.fixture
def active_registry(registry: BackendRegistry, onepassword_config: BackendConfig) -> BackendRegistry:
    """Registry with one saved and active backend."""
    registry.save_config(onepassword_config)
    registry.set_active(onepassword_config.id)
    return registry


@pytest.fixture
def local_store() -> FakeCredentialStore:
    return FakeCredentialStore()
