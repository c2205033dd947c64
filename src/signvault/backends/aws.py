"""
AWS Secrets Manager backend -- boto3 with static access keys.

Values are stored as SecretBinary, metadata as resource tags.
Requires the ``aws`` extra: pip install signvault[aws]
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from ..models import BackendConfig, BackendSetting, BackendType
from .base import DEFAULT_TIMEOUT, SecretBackend, is_cancelled, register_backend

logger = logging.getLogger("signvault.backends.aws")

MAX_NAME_LENGTH = 512
_NAME_EXTRA_CHARS = set("/+=._-")


def sanitize_secret_name(name: str) -> str:
    """Keep the characters Secrets Manager accepts, replace the rest with ``-``."""
    result = "".join(c if (c.isalnum() or c in _NAME_EXTRA_CHARS) else "-" for c in name)
    return result[:MAX_NAME_LENGTH]


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return response.get("Error", {}).get("Code", "")


def _is_not_found(exc: Exception) -> bool:
    return _error_code(exc) == "ResourceNotFoundException"


@register_backend(BackendType.AWS_SECRETS_MANAGER)
class AwsSecretsManagerBackend(SecretBackend):
    """One Secrets Manager secret per key, optionally under a name prefix."""

    display_name = "AWS Secrets Manager"
    SETTINGS = [
        BackendSetting(
            key="Region", label="Region",
            description="AWS region", default_value="us-east-1", placeholder="us-east-1",
        ),
        BackendSetting(key="AccessKeyId", label="Access Key ID", description="IAM access key ID"),
        BackendSetting(
            key="SecretAccessKey", label="Secret Access Key",
            description="IAM secret access key", is_secret=True,
        ),
        BackendSetting(
            key="SecretPrefix", label="Secret Prefix",
            description="Optional path prefix for every secret name",
            is_required=False, placeholder="signvault",
        ),
    ]

    def __init__(self, config: BackendConfig, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(config, timeout)
        self._client: Any = None

    def _get_client(self) -> Any:
        """Create (once) a boto3 Secrets Manager client.

        Raises:
            RuntimeError: If boto3 is not installed.
        """
        if self._client is not None:
            return self._client
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise RuntimeError("AWS backend requires boto3: pip install signvault[aws]")
        self._client = boto3.client(
            "secretsmanager",
            region_name=self.setting("Region"),
            aws_access_key_id=self.setting("AccessKeyId"),
            aws_secret_access_key=self.setting("SecretAccessKey"),
            config=Config(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"max_attempts": 2},
            ),
        )
        return self._client

    def _secret_name(self, key: str) -> str:
        prefix = self.setting("SecretPrefix")
        return sanitize_secret_name(f"{prefix}/{key}" if prefix else key)

    def _strip_prefix(self, name: str) -> str:
        prefix = self.setting("SecretPrefix")
        if not prefix:
            return name
        head = sanitize_secret_name(f"{prefix}/")
        if name.lower().startswith(head.lower()):
            return name[len(head):]
        return name

    def test_connection(self, cancel: Optional[threading.Event] = None) -> bool:
        missing = self.missing_settings()
        if missing:
            logger.error("AWS config incomplete, missing: %s", ", ".join(missing))
            return False
        if is_cancelled(cancel):
            return False
        try:
            self._get_client().list_secrets(MaxResults=1)
            logger.info("AWS Secrets Manager connection test succeeded")
            return True
        except Exception as exc:
            logger.error("AWS Secrets Manager connection test failed: %s", exc)
            return False

    def _exists(self, name: str) -> bool:
        try:
            self._get_client().describe_secret(SecretId=name)
            return True
        except Exception as exc:
            if _is_not_found(exc):
                return False
            raise

    def store_secret(self, key, value, metadata=None, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        name = self._secret_name(key)
        try:
            client = self._get_client()
            if self._exists(name):
                client.put_secret_value(SecretId=name, SecretBinary=value)
            else:
                request: dict[str, Any] = {"Name": name, "SecretBinary": value}
                if metadata:
                    request["Tags"] = [{"Key": k, "Value": v} for k, v in metadata.items()]
                client.create_secret(**request)
            logger.info("Stored secret %s", key)
            return True
        except Exception as exc:
            logger.error("AWS Secrets Manager store of %s failed: %s", key, exc)
            return False

    def get_secret(self, key, cancel=None) -> Optional[bytes]:
        if is_cancelled(cancel):
            return None
        try:
            response = self._get_client().get_secret_value(SecretId=self._secret_name(key))
        except Exception as exc:
            if not _is_not_found(exc):
                logger.error("AWS Secrets Manager get of %s failed: %s", key, exc)
            return None
        if response.get("SecretBinary") is not None:
            return bytes(response["SecretBinary"])
        if response.get("SecretString") is not None:
            return response["SecretString"].encode("utf-8")
        return None

    def delete_secret(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            self._get_client().delete_secret(
                SecretId=self._secret_name(key), ForceDeleteWithoutRecovery=True
            )
            logger.info("Deleted secret %s", key)
            return True
        except Exception as exc:
            if _is_not_found(exc):
                logger.info("Secret %s already absent", key)
                return True
            logger.error("AWS Secrets Manager delete of %s failed: %s", key, exc)
            return False

    def secret_exists(self, key, cancel=None) -> bool:
        if is_cancelled(cancel):
            return False
        try:
            return self._exists(self._secret_name(key))
        except Exception as exc:
            logger.error("AWS Secrets Manager exists check of %s failed: %s", key, exc)
            return False

    def list_secrets(self, prefix=None, cancel=None) -> list[str]:
        wanted = self._secret_name(prefix or "").lower()
        keys: list[str] = []
        try:
            client = self._get_client()
            token: Optional[str] = None
            while True:
                if is_cancelled(cancel):
                    return []
                request: dict[str, Any] = {"MaxResults": 100}
                if token:
                    request["NextToken"] = token
                response = client.list_secrets(**request)
                for entry in response.get("SecretList", []):
                    name = entry.get("Name", "")
                    if wanted and not name.lower().startswith(wanted):
                        continue
                    keys.append(self._strip_prefix(name))
                token = response.get("NextToken")
                if not token:
                    return keys
        except Exception as exc:
            logger.error("AWS Secrets Manager list failed: %s", exc)
            return []
