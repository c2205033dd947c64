"""
Active-backend registry -- configured backends and which one is live.

Persistence is split so that secrets never touch plain files:

    ~/.signvault/backends/index.json   # id, name, type per config
    ~/.signvault/backends/<id>.json    # non-secret settings
    protected slot signvault_backend_<id>   # secret settings (JSON)
    protected slot signvault_active_backend # active config id

Generic secret operations go to a lazily built instance of the
active backend. With no active backend they log a warning and
return False / None / [] instead of raising.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from .backends import create_backend, missing_settings, secret_setting_keys
from .backends.base import DEFAULT_TIMEOUT, SecretBackend
from .errors import ConfigurationError
from .keys import ProtectedSlot
from .models import BackendConfig, BackendType

logger = logging.getLogger("signvault.registry")

ACTIVE_BACKEND_SLOT = "signvault_active_backend"
BACKEND_SECRET_SLOT_PREFIX = "signvault_backend_"

BackendBuilder = Callable[[BackendConfig, float], SecretBackend]
ActiveListener = Callable[[Optional[BackendConfig]], None]


class BackendRegistry:
    """Owns backend configs and routes secret calls to the active one.

    Args:
        home: SignVault home directory.
        slot: Protected slot for secret settings and the active id.
        timeout: Per-call timeout handed to backend instances.
        builder: Turns a config into a backend instance.
    """

    def __init__(
        self,
        home: Path,
        slot: ProtectedSlot,
        timeout: float = DEFAULT_TIMEOUT,
        builder: BackendBuilder = create_backend,
    ):
        self.backends_dir = home / "backends"
        self.index_file = self.backends_dir / "index.json"
        self._slot = slot
        self._timeout = timeout
        self._builder = builder
        self._lock = threading.RLock()
        self._configs: dict[str, BackendConfig] = {}
        self._active_id: Optional[str] = None
        self._instance: Optional[SecretBackend] = None
        self._listeners: list[ActiveListener] = []
        self._loaded = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the config index and the persisted active selection.

        A persisted active id that no longer matches a config is cleared.
        """
        with self._lock:
            self._configs = {c.id: c for c in self._read_index()}
            active = self._slot.get(ACTIVE_BACKEND_SLOT)
            if active and active not in self._configs:
                logger.warning("Active backend %s no longer exists, clearing", active)
                self._slot.remove(ACTIVE_BACKEND_SLOT)
                active = None
            self._active_id = active or None
            self._instance = None
            self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.initialize()

    def _read_index(self) -> list[BackendConfig]:
        if not self.index_file.exists():
            return []
        entries = json.loads(self.index_file.read_text(encoding="utf-8"))
        configs = []
        for entry in entries:
            configs.append(BackendConfig(
                id=entry["id"],
                name=entry["name"],
                backend_type=BackendType(entry["backend_type"]),
                settings=self._read_settings(entry["id"]),
            ))
        return configs

    def _write_index(self) -> None:
        self.backends_dir.mkdir(parents=True, exist_ok=True)
        entries = [
            {"id": c.id, "name": c.name, "backend_type": c.backend_type.value}
            for c in self._configs.values()
        ]
        self.index_file.write_text(json.dumps(entries, indent=2), encoding="utf-8")

    def _settings_file(self, config_id: str) -> Path:
        return self.backends_dir / f"{config_id}.json"

    def _read_settings(self, config_id: str) -> dict[str, str]:
        settings: dict[str, str] = {}
        path = self._settings_file(config_id)
        if path.exists():
            settings.update(json.loads(path.read_text(encoding="utf-8")))
        secret_json = self._slot.get(BACKEND_SECRET_SLOT_PREFIX + config_id)
        if secret_json:
            settings.update(json.loads(secret_json))
        return settings

    # ------------------------------------------------------------------
    # Config management
    # ------------------------------------------------------------------

    def list_configs(self) -> list[BackendConfig]:
        """Every configured backend, secret settings included."""
        with self._lock:
            self._ensure_loaded()
            return [c.model_copy(deep=True) for c in self._configs.values()]

    def get_config(self, config_id: str) -> Optional[BackendConfig]:
        with self._lock:
            self._ensure_loaded()
            config = self._configs.get(config_id)
            return config.model_copy(deep=True) if config else None

    @property
    def active_config(self) -> Optional[BackendConfig]:
        """The active backend config, or None."""
        with self._lock:
            self._ensure_loaded()
            return self._active_copy()

    def snapshot(self) -> tuple[list[BackendConfig], Optional[BackendConfig]]:
        """Every config plus the active one, read under a single lock."""
        with self._lock:
            self._ensure_loaded()
            configs = [c.model_copy(deep=True) for c in self._configs.values()]
            return configs, self._active_copy()

    def _active_copy(self) -> Optional[BackendConfig]:
        if self._active_id is None:
            return None
        return self._configs[self._active_id].model_copy(deep=True)

    def save_config(self, config: BackendConfig) -> None:
        """Create or replace a backend config.

        Secret settings go to the protected slot, the rest to a JSON
        file. Saving the active config drops the cached instance.
        Incomplete configs may be saved; they fail connection tests.
        """
        secret_keys = secret_setting_keys(config.backend_type)
        secret = {k: v for k, v in config.settings.items() if k in secret_keys}
        plain = {k: v for k, v in config.settings.items() if k not in secret_keys}

        with self._lock:
            self._ensure_loaded()
            self.backends_dir.mkdir(parents=True, exist_ok=True)
            self._settings_file(config.id).write_text(
                json.dumps(plain, indent=2), encoding="utf-8"
            )
            slot_name = BACKEND_SECRET_SLOT_PREFIX + config.id
            if secret:
                self._slot.set(slot_name, json.dumps(secret))
            else:
                self._slot.remove(slot_name)

            self._configs[config.id] = config.model_copy(deep=True)
            self._write_index()
            if config.id == self._active_id:
                self._instance = None
            active = self._active_copy()
        self._notify(active)
        logger.info("Saved backend config %s (%s)", config.name, config.backend_type.value)

    def delete_config(self, config_id: str) -> bool:
        """Remove a config and both of its setting slices.

        Returns:
            False if no such config exists.
        """
        with self._lock:
            self._ensure_loaded()
            if config_id not in self._configs:
                return False
            self._settings_file(config_id).unlink(missing_ok=True)
            self._slot.remove(BACKEND_SECRET_SLOT_PREFIX + config_id)
            del self._configs[config_id]
            self._write_index()
            if config_id == self._active_id:
                self._set_active_locked(None)
            active = self._active_copy()
        self._notify(active)
        logger.info("Deleted backend config %s", config_id)
        return True

    def set_active(self, config_id: Optional[str]) -> None:
        """Select the active backend, or clear the selection with None.

        Raises:
            ConfigurationError: If the id is unknown or the config lacks
                required settings.
        """
        with self._lock:
            self._ensure_loaded()
            if config_id is not None:
                config = self._configs.get(config_id)
                if config is None:
                    raise ConfigurationError(f"Unknown backend config: {config_id}")
                missing = missing_settings(config)
                if missing:
                    raise ConfigurationError(
                        f"Backend '{config.name}' is missing required settings: "
                        f"{', '.join(missing)}"
                    )
            self._set_active_locked(config_id)
            active = self._active_copy()
        self._notify(active)
        logger.info("Active backend set to %s", config_id or "none")

    def _set_active_locked(self, config_id: Optional[str]) -> None:
        if config_id is None:
            self._slot.remove(ACTIVE_BACKEND_SLOT)
        else:
            self._slot.set(ACTIVE_BACKEND_SLOT, config_id)
        self._active_id = config_id
        self._instance = None

    def subscribe(self, listener: ActiveListener) -> None:
        """Call ``listener`` with the active config after every config or selection change."""
        self._listeners.append(listener)

    def _notify(self, active: Optional[BackendConfig]) -> None:
        for listener in list(self._listeners):
            try:
                listener(active)
            except Exception as exc:
                logger.warning("Active backend listener failed: %s", exc)

    def test_connection(self, config_id: str, cancel: Optional[threading.Event] = None) -> bool:
        """Probe a configured backend (not necessarily the active one).

        Raises:
            ConfigurationError: If the id is unknown.
        """
        config = self.get_config(config_id)
        if config is None:
            raise ConfigurationError(f"Unknown backend config: {config_id}")
        missing = missing_settings(config)
        if missing:
            logger.error("Backend %s is missing required settings: %s",
                         config.name, ", ".join(missing))
            return False
        return self._builder(config, self._timeout).test_connection(cancel)

    # ------------------------------------------------------------------
    # Routed secret operations
    # ------------------------------------------------------------------

    def backend(self) -> Optional[SecretBackend]:
        """The active backend instance, built on first use."""
        with self._lock:
            self._ensure_loaded()
            if self._active_id is None:
                return None
            if self._instance is None:
                self._instance = self._builder(self._configs[self._active_id], self._timeout)
            return self._instance

    def _require_backend(self, operation: str) -> Optional[SecretBackend]:
        backend = self.backend()
        if backend is None:
            logger.warning("No secret backend configured, %s skipped", operation)
        return backend

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        backend = self._require_backend("store")
        return backend.store_secret(key, value, metadata, cancel) if backend else False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        backend = self._require_backend("get")
        return backend.get_secret(key, cancel) if backend else None

    def delete_secret(self, key, cancel=None) -> bool:
        backend = self._require_backend("delete")
        return backend.delete_secret(key, cancel) if backend else False

    def secret_exists(self, key, cancel=None) -> bool:
        backend = self._require_backend("exists check")
        return backend.secret_exists(key, cancel) if backend else False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        backend = self._require_backend("list")
        return backend.list_secrets(prefix, cancel) if backend else []
