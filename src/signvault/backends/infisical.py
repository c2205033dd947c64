"""
Infisical backend -- REST API with universal-auth machine identities.

Values are base64-encoded because Infisical stores strings. Secret
names are folded to uppercase alphanumerics and underscores.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import Any, Dict, Optional

import requests

from ..models import BackendConfig, BackendSetting, BackendType
from .base import DEFAULT_TIMEOUT, SecretBackend, is_cancelled, register_backend

logger = logging.getLogger("signvault.backends.infisical")


class InfisicalError(Exception):
    """Non-success HTTP answer from the Infisical API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def not_found(self) -> bool:
        return self.status_code == 404 or "not found" in self.message.lower()


def sanitize_secret_name(name: str) -> str:
    """Uppercase, replace anything outside ``[A-Z0-9_]``, start with a letter."""
    sanitized = "".join(
        c if (c.isalnum() or c == "_") else "_" for c in name.upper()
    )
    if sanitized and not sanitized[0].isalpha():
        sanitized = "S" + sanitized
    return sanitized


@register_backend(BackendType.INFISICAL)
class InfisicalBackend(SecretBackend):
    """Secrets stored in one Infisical project environment and folder."""

    display_name = "Infisical"
    SETTINGS = [
        BackendSetting(
            key="SiteUrl", label="Site URL",
            description="Infisical instance URL (use the default for Infisical Cloud)",
            default_value="https://app.infisical.com",
            placeholder="https://app.infisical.com",
        ),
        BackendSetting(
            key="ClientId", label="Client ID",
            description="Machine identity universal-auth client ID",
        ),
        BackendSetting(
            key="ClientSecret", label="Client Secret",
            description="Machine identity universal-auth client secret",
            is_secret=True,
        ),
        BackendSetting(
            key="ProjectId", label="Project ID",
            description="Infisical project (workspace) ID",
        ),
        BackendSetting(
            key="Environment", label="Environment",
            description="Environment slug",
            default_value="prod", placeholder="prod",
        ),
        BackendSetting(
            key="SecretPath", label="Secret Path",
            description="Folder that holds signvault secrets",
            is_required=False, default_value="/signvault", placeholder="/signvault",
        ),
    ]

    def __init__(self, config: BackendConfig, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(config, timeout)
        self._token: Optional[str] = None

    @property
    def _base_url(self) -> str:
        return self.setting("SiteUrl").rstrip("/")

    def _scope(self) -> Dict[str, str]:
        return {
            "workspaceId": self.setting("ProjectId"),
            "environment": self.setting("Environment"),
            "secretPath": self.setting("SecretPath"),
        }

    def _login(self) -> str:
        """Exchange client credentials for an access token (cached)."""
        if self._token:
            return self._token
        resp = requests.request(
            "POST",
            f"{self._base_url}/api/v1/auth/universal-auth/login",
            json={
                "clientId": self.setting("ClientId"),
                "clientSecret": self.setting("ClientSecret"),
            },
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            raise InfisicalError(resp.status_code, resp.text)
        self._token = resp.json()["accessToken"]
        return self._token

    def _api_call(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated Infisical API call.

        Raises:
            InfisicalError: On a non-success status.
            requests.RequestException: On transport failure or timeout.
        """
        headers = {
            "Authorization": f"Bearer {self._login()}",
            "Content-Type": "application/json",
        }
        resp = requests.request(
            method,
            f"{self._base_url}{endpoint}",
            headers=headers,
            params=params,
            json=data,
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            if resp.status_code == 401:
                self._token = None
            raise InfisicalError(resp.status_code, resp.text)
        if not resp.content:
            return {}
        return resp.json()

    def _fetch(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            result = self._api_call("GET", f"/api/v3/secrets/raw/{name}", params=self._scope())
        except InfisicalError as exc:
            if exc.not_found:
                return None
            raise
        return result.get("secret")

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        missing = self.missing_settings()
        if missing:
            logger.error("Infisical config incomplete, missing: %s", ", ".join(missing))
            return False
        if is_cancelled(cancel):
            return False
        try:
            self._api_call("GET", "/api/v3/secrets/raw", params=self._scope())
            logger.info("Infisical connection test succeeded for project %s",
                        self.setting("ProjectId"))
            return True
        except (InfisicalError, requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical connection test failed: %s", exc)
            return False

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        name = sanitize_secret_name(key)
        body = dict(self._scope())
        body["secretValue"] = base64.b64encode(value).decode("ascii")
        body["type"] = "shared"
        try:
            if self._fetch(name) is not None:
                self._api_call("PATCH", f"/api/v3/secrets/raw/{name}", data=body)
            else:
                self._api_call("POST", f"/api/v3/secrets/raw/{name}", data=body)
            logger.info("Stored secret %s", key)
            return True
        except (InfisicalError, requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical store of %s failed: %s", key, exc)
            return False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        if is_cancelled(cancel):
            return None
        try:
            secret = self._fetch(sanitize_secret_name(key))
            if not secret or secret.get("secretValue") is None:
                return None
            return base64.b64decode(secret["secretValue"], validate=True)
        except binascii.Error as exc:
            logger.error("Infisical secret %s is not base64: %s", key, exc)
            return None
        except (InfisicalError, requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical get of %s failed: %s", key, exc)
            return None

    def delete_secret(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        body = dict(self._scope())
        body["type"] = "shared"
        try:
            self._api_call("DELETE", f"/api/v3/secrets/raw/{sanitize_secret_name(key)}", data=body)
            logger.info("Deleted secret %s", key)
            return True
        except InfisicalError as exc:
            if exc.not_found:
                logger.info("Secret %s already absent", key)
                return True
            logger.error("Infisical delete of %s failed: %s", key, exc)
            return False
        except (requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical delete of %s failed: %s", key, exc)
            return False

    def secret_exists(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            return self._fetch(sanitize_secret_name(key)) is not None
        except (InfisicalError, requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical exists check of %s failed: %s", key, exc)
            return False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        if is_cancelled(cancel):
            return []
        try:
            result = self._api_call("GET", "/api/v3/secrets/raw", params=self._scope())
        except (InfisicalError, requests.RequestException, KeyError, ValueError) as exc:
            logger.error("Infisical list failed: %s", exc)
            return []

        wanted = sanitize_secret_name(prefix).upper() if prefix else ""
        keys = []
        for secret in result.get("secrets", []):
            name = secret.get("secretKey", "")
            if wanted and not name.upper().startswith(wanted):
                continue
            keys.append(name)
        return keys
