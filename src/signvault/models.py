"""
SignVault data models.

Pydantic models for the persisted settings document, backend
configuration, certificate reconciliation results and managed
secrets. Everything that crosses a persistence or backend boundary
is defined here.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate an opaque identifier for configs and identities."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class BackendType(str, Enum):
    """Supported remote secret backends."""

    NONE = "none"
    INFISICAL = "infisical"
    AZURE_KEY_VAULT = "azure_key_vault"
    AWS_SECRETS_MANAGER = "aws_secrets_manager"
    GOOGLE_SECRET_MANAGER = "google_secret_manager"
    ONEPASSWORD = "onepassword"


class BackendSetting(BaseModel):
    """One configuration field declared by a backend type."""

    key: str
    label: str
    description: str = ""
    is_required: bool = True
    is_secret: bool = False
    default_value: Optional[str] = None
    placeholder: Optional[str] = None


class BackendConfig(BaseModel):
    """A configured secret backend.

    ``settings`` holds both secret and non-secret values in memory.
    On disk the registry splits them by each setting's ``is_secret``
    flag.
    """

    id: str = Field(default_factory=new_id)
    name: str
    backend_type: BackendType
    settings: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Settings document
# ---------------------------------------------------------------------------


class IdentityRecord(BaseModel):
    """An App Store Connect API identity.

    ``p8_content`` normally lives in the protected key store and is
    only carried in the document inside portable backups.
    """

    id: str = Field(default_factory=new_id)
    name: str
    key_id: str
    issuer_id: str
    p8_content: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class PublisherConfig(BaseModel):
    """A source-control publisher (GitHub, GitLab, ...) used for secret publishing."""

    id: str = Field(default_factory=new_id)
    provider_id: str
    name: str
    settings: dict[str, str] = Field(default_factory=dict)


class Preferences(BaseModel):
    """User preferences."""

    theme: str = "System"
    android_sdk_path: Optional[str] = None
    auto_backup_enabled: bool = True


class SettingsDocument(BaseModel):
    """The single persisted configuration root."""

    version: int = 1
    identities: list[IdentityRecord] = Field(default_factory=list)
    backends: list[BackendConfig] = Field(default_factory=list)
    active_backend_id: Optional[str] = None
    publishers: list[PublisherConfig] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    last_modified: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_active_backend(self) -> "SettingsDocument":
        if self.active_backend_id is not None:
            ids = {b.id for b in self.backends}
            if self.active_backend_id not in ids:
                raise ValueError(
                    f"active_backend_id {self.active_backend_id!r} does not "
                    "reference a configured backend"
                )
        return self


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class SecretLocation(str, Enum):
    """Where a certificate's private key material currently lives."""

    NONE = "none"
    LOCAL_ONLY = "local_only"
    CLOUD_ONLY = "cloud_only"
    BOTH = "both"


class CertificateRef(BaseModel):
    """A signing certificate as reported by the developer portal."""

    id: str
    serial_number: str
    name: str = ""
    certificate_type: str = ""
    expiration_date: Optional[datetime] = None


class LocalSigningIdentity(BaseModel):
    """A code-signing identity found in the local credential store."""

    identity: str
    common_name: str
    team_id: Optional[str] = None
    serial_number: Optional[str] = None
    expiration_date: Optional[datetime] = None
    is_valid: bool = True
    hash: Optional[str] = None


class CertificateSecretInfo(BaseModel):
    """Reconciliation result for one certificate. Never persisted."""

    certificate_id: str
    serial_number: str
    location: SecretLocation
    backend_id: Optional[str] = None
    secret_key: Optional[str] = None


class CertificateSecretMetadata(BaseModel):
    """Annotation stored next to an uploaded certificate."""

    certificate_id: str
    serial_number: str
    common_name: str = ""
    certificate_type: str = ""
    expiration_date: Optional[datetime] = None
    created_by_machine: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Managed secrets
# ---------------------------------------------------------------------------


class ManagedSecretType(str, Enum):
    """What kind of payload a managed secret holds."""

    STRING = "string"
    FILE = "file"


class ManagedSecret(BaseModel):
    """Metadata for a user-managed secret in the active backend."""

    key: str
    type: ManagedSecretType = ManagedSecretType.STRING
    description: Optional[str] = None
    original_file_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
