"""
1Password backend -- driven through the ``op`` CLI.

All signvault secrets for one config live as concealed custom fields
of a single Secure Note item. The item is created on first store; a
missing item simply means nothing has been stored yet.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import subprocess
import threading
from typing import Any, Optional

from ..models import BackendSetting, BackendType
from .base import SecretBackend, is_cancelled, register_backend

logger = logging.getLogger("signvault.backends.onepassword")

OP_BINARY = "op"


class OpCommandError(Exception):
    """``op`` exited non-zero."""


def sanitize_field_label(key: str) -> str:
    """Escape characters that carry meaning in ``op`` assignment statements.

    ``.`` separates section from field; ``=`` and ``\\`` need escaping too.
    """
    out = []
    for c in key:
        if c in ".=\\":
            out.append("\\")
        out.append(c)
    return "".join(out)


def _custom_fields(item: dict[str, Any]) -> list[dict[str, Any]]:
    fields = item.get("fields")
    if not isinstance(fields, list):
        return []
    # Built-in fields (notesPlain and friends) carry a purpose.
    return [f for f in fields if isinstance(f, dict) and not f.get("purpose")]


def find_field_value(item: dict[str, Any], key: str) -> Optional[str]:
    """Value of the custom field labelled ``key``, matched case-insensitively.

    Both the escaped and the raw label are accepted.
    """
    candidates = {sanitize_field_label(key).lower(), key.lower()}
    for field in _custom_fields(item):
        label = field.get("label")
        if isinstance(label, str) and label.lower() in candidates:
            value = field.get("value")
            return value if isinstance(value, str) else None
    return None


def get_custom_field_labels(item: dict[str, Any]) -> list[str]:
    """Labels of every user-defined field on the item."""
    labels = []
    for field in _custom_fields(item):
        label = field.get("label")
        if isinstance(label, str) and label:
            labels.append(label)
    return labels


@register_backend(BackendType.ONEPASSWORD)
class OnePasswordBackend(SecretBackend):
    """Secrets folded into one 1Password Secure Note."""

    display_name = "1Password"
    SETTINGS = [
        BackendSetting(
            key="Vault", label="Vault",
            description="Vault name or ID", placeholder="Private",
        ),
        BackendSetting(
            key="ItemTitle", label="Item Title",
            description="Secure Note that holds the secrets",
            default_value="SignVault", placeholder="SignVault",
        ),
        BackendSetting(
            key="ServiceAccountToken", label="Service Account Token",
            description="Leave empty to use the signed-in desktop app session",
            is_required=False, is_secret=True,
        ),
    ]

    # ------------------------------------------------------------------
    # CLI helpers
    # ------------------------------------------------------------------

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        token = self.config.settings.get("ServiceAccountToken", "").strip()
        if token:
            env["OP_SERVICE_ACCOUNT_TOKEN"] = token
        env["OP_FORMAT"] = "json"
        return env

    def run_op(self, args: list[str]) -> tuple[int, str]:
        """Run ``op`` and return (exit code, output).

        Output is stdout, or stderr when the command failed silently.

        Raises:
            FileNotFoundError: If ``op`` is not on PATH.
            subprocess.TimeoutExpired: If the call exceeds the timeout.
        """
        result = subprocess.run(
            [OP_BINARY, *args],
            capture_output=True,
            text=True,
            env=self._env(),
            timeout=self.timeout,
            check=False,
        )
        output = result.stdout.strip()
        if result.returncode != 0 and not output:
            output = result.stderr.strip()
        return result.returncode, output

    def is_cli_installed(self) -> bool:
        try:
            code, _ = self.run_op(["--version"])
            return code == 0
        except (OSError, subprocess.SubprocessError):
            return False

    def _item_args(self, verb: str, *extra: str) -> list[str]:
        return ["item", verb, self.setting("ItemTitle"), "--vault", self.setting("Vault"), *extra]

    def _get_item(self) -> Optional[dict[str, Any]]:
        code, output = self.run_op(self._item_args("get", "--format", "json"))
        if code != 0 or not output.strip():
            return None
        return json.loads(output)

    def _ensure_item(self) -> None:
        if self._get_item() is not None:
            return
        logger.info("Creating 1Password Secure Note '%s' in vault '%s'",
                    self.setting("ItemTitle"), self.setting("Vault"))
        code, output = self.run_op([
            "item", "create", "--category", "Secure Note",
            "--title", self.setting("ItemTitle"), "--vault", self.setting("Vault"),
        ])
        if code != 0:
            raise OpCommandError(f"Failed to create 1Password item: {output}")

    # ------------------------------------------------------------------
    # SecretBackend
    # ------------------------------------------------------------------

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        missing = self.missing_settings()
        if missing:
            logger.error("1Password config incomplete, missing: %s", ", ".join(missing))
            return False
        if is_cancelled(cancel):
            return False
        if not self.is_cli_installed():
            logger.error("1Password CLI (op) is not installed or not on PATH")
            return False
        try:
            code, output = self.run_op(["vault", "list", "--format", "json"])
            if code != 0:
                logger.error("1Password connection test failed (exit %d): %s", code, output)
                return False
            vault = self.setting("Vault").lower()
            for entry in json.loads(output) or []:
                if vault in (str(entry.get("name", "")).lower(), str(entry.get("id", "")).lower()):
                    logger.info("1Password connection test succeeded, vault '%s' found",
                                self.setting("Vault"))
                    return True
            logger.error("1Password vault '%s' not found", self.setting("Vault"))
            return False
        except (OSError, subprocess.SubprocessError, ValueError, AttributeError) as exc:
            logger.error("1Password connection test failed: %s", exc)
            return False

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        assignment = f"{sanitize_field_label(key)}[concealed]={base64.b64encode(value).decode('ascii')}"
        try:
            self._ensure_item()
            code, output = self.run_op(self._item_args("edit", assignment))
            if code != 0:
                logger.error("1Password store of %s failed (exit %d): %s", key, code, output)
                return False
            logger.info("Stored secret %s", key)
            return True
        except (OSError, subprocess.SubprocessError, ValueError, OpCommandError) as exc:
            logger.error("1Password store of %s failed: %s", key, exc)
            return False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        if is_cancelled(cancel):
            return None
        try:
            item = self._get_item()
            if item is None:
                return None
            value = find_field_value(item, key)
            if value is None:
                return None
            return base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            logger.error("1Password secret %s is not base64: %s", key, exc)
            return None
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            logger.error("1Password get of %s failed: %s", key, exc)
            return None

    def delete_secret(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            code, output = self.run_op(self._item_args("edit", f"{sanitize_field_label(key)}[delete]"))
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("1Password delete of %s failed: %s", key, exc)
            return False
        if code != 0:
            lowered = output.lower()
            if "isn't a field" in lowered or "not found" in lowered:
                logger.info("Secret %s already absent", key)
                return True
            logger.error("1Password delete of %s failed (exit %d): %s", key, code, output)
            return False
        logger.info("Deleted secret %s", key)
        return True

    def secret_exists(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            item = self._get_item()
            return item is not None and find_field_value(item, key) is not None
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            logger.error("1Password exists check of %s failed: %s", key, exc)
            return False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        if is_cancelled(cancel):
            return []
        try:
            item = self._get_item()
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            logger.error("1Password list failed: %s", exc)
            return []
        if item is None:
            return []
        labels = get_custom_field_labels(item)
        if prefix:
            labels = [label for label in labels if label.lower().startswith(prefix.lower())]
        return labels
