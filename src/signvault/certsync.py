"""
Certificate sync engine -- keychain identities vs. remote secrets.

Each uploaded certificate becomes three backend keys, all derived
from the sanitized serial number:

    CERT_<serial>_P12    PKCS#12 bytes (authoritative)
    CERT_<serial>_PWD    PKCS#12 password, UTF-8
    CERT_<serial>_META   CertificateSecretMetadata JSON (best effort)

Local and remote sides are joined on the sanitized serial only; two
certificates whose serials sanitize to the same string are treated as
one.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Iterable, Optional

from pydantic import ValidationError

from .backends.base import is_cancelled
from .keychain import LocalCredentialStore, sanitize_serial
from .models import (
    CertificateRef,
    CertificateSecretInfo,
    CertificateSecretMetadata,
    LocalSigningIdentity,
    SecretLocation,
)
from .registry import BackendRegistry

logger = logging.getLogger("signvault.certsync")

SECRET_PREFIX = "CERT"
VALUE_SUFFIX = "P12"
PASSWORD_SUFFIX = "PWD"
METADATA_SUFFIX = "META"


def value_key(serial: str) -> str:
    return f"{SECRET_PREFIX}_{sanitize_serial(serial)}_{VALUE_SUFFIX}"


def password_key(serial: str) -> str:
    return f"{SECRET_PREFIX}_{sanitize_serial(serial)}_{PASSWORD_SUFFIX}"


def metadata_key(serial: str) -> str:
    return f"{SECRET_PREFIX}_{sanitize_serial(serial)}_{METADATA_SUFFIX}"


def _split_key(key: str) -> tuple[str, str]:
    """(sanitized serial, suffix) of a remote key, or ("", "")."""
    parts = key.split("_")
    if len(parts) < 3 or parts[0].upper() != SECRET_PREFIX:
        return "", ""
    return sanitize_serial(parts[1]), parts[-1].upper()


class CertificateSyncEngine:
    """Reconcile, upload, download and delete certificate secrets.

    Args:
        registry: Routes secret calls to the active backend.
        local_store: Local keychain / certificate store.
    """

    def __init__(self, registry: BackendRegistry, local_store: LocalCredentialStore):
        self.registry = registry
        self.local_store = local_store
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _serial_lock(self, serial: str) -> threading.Lock:
        key = sanitize_serial(serial)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _local_serials(self) -> set[str]:
        if not self.local_store.is_supported:
            return set()
        serials = set()
        for identity in self.local_store.list_signing_identities():
            if not identity.is_valid:
                continue
            serial = sanitize_serial(identity.serial_number)
            if serial:
                serials.add(serial)
        return serials

    def _cloud_serials(self, cancel: Optional[threading.Event]) -> set[str]:
        if self.registry.active_config is None:
            return set()
        try:
            keys = self.registry.list_secrets(f"{SECRET_PREFIX}_", cancel)
        except Exception as exc:
            logger.warning("Could not list cloud secrets, treating as empty: %s", exc)
            return set()
        serials = set()
        for key in keys:
            serial, suffix = _split_key(key)
            if serial and suffix == VALUE_SUFFIX:
                serials.add(serial)
        return serials

    def get_statuses(
        self,
        certificates: Iterable[CertificateRef],
        cancel: Optional[threading.Event] = None,
    ) -> list[CertificateSecretInfo]:
        """Classify where each certificate's private key lives.

        Computed fresh on every call.
        """
        local = self._local_serials()
        cloud = self._cloud_serials(cancel)
        active = self.registry.active_config

        results = []
        for cert in certificates:
            serial = sanitize_serial(cert.serial_number)
            in_local = bool(serial) and serial in local
            in_cloud = bool(serial) and serial in cloud
            if in_local and in_cloud:
                location = SecretLocation.BOTH
            elif in_local:
                location = SecretLocation.LOCAL_ONLY
            elif in_cloud:
                location = SecretLocation.CLOUD_ONLY
            else:
                location = SecretLocation.NONE
            results.append(CertificateSecretInfo(
                certificate_id=cert.id,
                serial_number=cert.serial_number,
                location=location,
                backend_id=active.id if (in_cloud and active) else None,
                secret_key=value_key(cert.serial_number) if in_cloud else None,
            ))
        return results

    def find_local_identity(self, serial: str) -> Optional[LocalSigningIdentity]:
        """The local signing identity whose serial matches, if any."""
        wanted = sanitize_serial(serial)
        if not wanted or not self.local_store.is_supported:
            return None
        for identity in self.local_store.list_signing_identities():
            if sanitize_serial(identity.serial_number) == wanted:
                return identity
        return None

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def upload_to_cloud(
        self,
        certificate: CertificateRef,
        p12_data: bytes,
        password: str,
        metadata: Optional[CertificateSecretMetadata] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Store value, then password, then metadata.

        If the password cannot be stored (failure or cancellation), the
        value is deleted again so no unusable half-certificate remains.
        Metadata failures are logged only.
        """
        if self.registry.active_config is None:
            logger.warning("No active secret backend configured")
            return False
        serial = certificate.serial_number
        if not sanitize_serial(serial):
            logger.error("Certificate %s has no usable serial number", certificate.id)
            return False

        with self._serial_lock(serial):
            p12_key = value_key(serial)
            if is_cancelled(cancel):
                return False
            if not self.registry.store_secret(p12_key, p12_data, None, cancel):
                logger.error("Failed to store P12 for certificate %s", serial)
                return False

            stored = False
            if not is_cancelled(cancel):
                stored = self.registry.store_secret(
                    password_key(serial), password.encode("utf-8"), None, cancel
                )
            if not stored:
                logger.error("Failed to store password for certificate %s, rolling back", serial)
                # Rollback runs even when cancelled.
                if not self.registry.delete_secret(p12_key):
                    logger.error("Rollback of %s failed; it will show as a stray cloud key", p12_key)
                return False

            if metadata is None:
                metadata = CertificateSecretMetadata(
                    certificate_id=certificate.id,
                    serial_number=serial,
                    common_name=certificate.name,
                    certificate_type=certificate.certificate_type,
                    expiration_date=certificate.expiration_date,
                    created_by_machine=socket.gethostname(),
                )
            if not self.registry.store_secret(
                metadata_key(serial), metadata.model_dump_json().encode("utf-8"), None, cancel
            ):
                logger.warning("Failed to store metadata for certificate %s", serial)

        logger.info("Uploaded certificate %s to cloud storage", serial)
        return True

    def download_and_install_by_serial(
        self, serial: str, cancel: Optional[threading.Event] = None
    ) -> bool:
        """Fetch value and password and import them into the local store.

        Both secrets must exist. The key material stays in memory; only
        the local store's import step may touch a temporary file.
        """
        if self.registry.active_config is None:
            logger.warning("No active secret backend configured")
            return False

        with self._serial_lock(serial):
            p12_data = self.registry.get_secret(value_key(serial), cancel)
            if p12_data is None:
                logger.error("Certificate %s has no P12 in cloud storage", serial)
                return False
            password = self.registry.get_secret(password_key(serial), cancel)
            if password is None:
                logger.error("Certificate %s has no password in cloud storage", serial)
                return False
            if is_cancelled(cancel):
                return False

            try:
                installed = self.local_store.import_p12(p12_data, password.decode("utf-8"))
            except UnicodeDecodeError as exc:
                logger.error("Stored password for %s is not UTF-8: %s", serial, exc)
                return False

        if installed:
            logger.info("Installed certificate %s from cloud storage", serial)
        else:
            logger.error("Import of certificate %s into the local store failed", serial)
        return installed

    def download_and_install(
        self, certificate_id: str, cancel: Optional[threading.Event] = None
    ) -> bool:
        """Resolve a certificate id to its serial via stored metadata, then install."""
        if self.registry.active_config is None:
            logger.warning("No active secret backend configured")
            return False

        for key in self.registry.list_secrets(f"{SECRET_PREFIX}_", cancel):
            serial, suffix = _split_key(key)
            if suffix != METADATA_SUFFIX:
                continue
            metadata = self.get_certificate_metadata(serial, cancel)
            if metadata is not None and metadata.certificate_id == certificate_id:
                return self.download_and_install_by_serial(metadata.serial_number, cancel)

        logger.error("No cloud metadata found for certificate %s", certificate_id)
        return False

    def get_certificate_metadata(
        self, serial: str, cancel: Optional[threading.Event] = None
    ) -> Optional[CertificateSecretMetadata]:
        """Read the metadata stored next to a certificate, if any."""
        if self.registry.active_config is None:
            return None
        raw = self.registry.get_secret(metadata_key(serial), cancel)
        if raw is None:
            return None
        try:
            return CertificateSecretMetadata.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Unreadable metadata for certificate %s: %s", serial, exc)
            return None

    def delete_from_cloud(self, serial: str, cancel: Optional[threading.Event] = None) -> bool:
        """Delete all three keys; only the value deletion decides the result."""
        if self.registry.active_config is None:
            logger.error("No active secret backend configured")
            return False

        with self._serial_lock(serial):
            success = self.registry.delete_secret(value_key(serial), cancel)
            if not success:
                logger.warning("Failed to delete P12 secret for %s", serial)
            for key in (password_key(serial), metadata_key(serial)):
                if not self.registry.delete_secret(key, cancel):
                    logger.warning("Failed to delete secret %s", key)

        if success:
            logger.info("Deleted certificate %s from cloud storage", serial)
        return success
