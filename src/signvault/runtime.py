"""
SignVault runtime -- wires every component for one home directory.

The runtime owns the backend registry; consumers receive it from
here rather than from any module-level state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .backends import secret_setting_keys
from .backup import BackupService, IdentitySource
from .certsync import CertificateSyncEngine
from .config import load_config, resolve_home
from .keychain import KeychainCredentialStore, LocalCredentialStore
from .keys import KeyringSlot, PersistedKeyProvider, ProtectedSlot
from .managed import ManagedSecretsService
from .models import BackendConfig, SettingsDocument
from .registry import BackendRegistry
from .settings import EncryptedSettingsStore

logger = logging.getLogger("signvault.runtime")


class SignVaultRuntime:
    """All signvault services for one home directory.

    Args:
        home: Override home directory. Defaults to ``SIGNVAULT_HOME``.
        slot: Override the protected slot (defaults to the OS keyring).
        local_store: Override the local credential store.
        identity_source: Supplies identities with p8 content for backups.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        slot: Optional[ProtectedSlot] = None,
        local_store: Optional[LocalCredentialStore] = None,
        identity_source: Optional[IdentitySource] = None,
    ):
        self.home = resolve_home(home)
        self.config = load_config(self.home)
        self.slot = slot or KeyringSlot(self.config.keyring_service)

        self.settings = EncryptedSettingsStore(self.home, PersistedKeyProvider(self.slot))
        self.registry = BackendRegistry(
            self.home, self.slot, timeout=self.config.backend_timeout
        )
        self.local_store = local_store or KeychainCredentialStore(
            self.home,
            cache_seconds=self.config.identity_cache_seconds,
            timeout=self.config.backend_timeout,
        )
        self.certificates = CertificateSyncEngine(self.registry, self.local_store)
        self.managed = ManagedSecretsService(self.registry)
        self.backups = BackupService(self.settings, self.registry, identity_source)

        self.registry.initialize()
        self.registry.subscribe(self._mirror_backends)

    def _mirror_backends(self, active: Optional[BackendConfig]) -> None:
        """Keep the settings document's backend list in step with the registry.

        The registry is read inside the settings transform, so whichever
        notification is applied last writes the registry's current state.
        Only non-secret settings are copied into the document.
        """
        def apply(doc: SettingsDocument) -> SettingsDocument:
            registered, current = self.registry.snapshot()
            configs = []
            for config in registered:
                secret_keys = secret_setting_keys(config.backend_type)
                configs.append(config.model_copy(update={
                    "settings": {k: v for k, v in config.settings.items() if k not in secret_keys},
                }))
            logger.debug("Mirroring %d backend configs into settings", len(configs))
            return doc.model_copy(update={
                "backends": configs,
                "active_backend_id": current.id if current else None,
            })

        self.settings.transform(apply)


def get_runtime(home: Optional[Path] = None) -> SignVaultRuntime:
    """Build a runtime for ``home``.

    Args:
        home: Override home directory.

    Returns:
        A ready SignVaultRuntime.
    """
    return SignVaultRuntime(home=home)
