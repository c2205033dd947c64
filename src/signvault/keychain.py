"""
Local credential store -- code-signing identities in the macOS keychain.

Everything goes through ``/usr/bin/security``. Serial numbers are not
part of ``find-identity`` output, so each identity's certificate is
looked up by SHA-1 hash once and the serial cached on disk in
``~/.signvault/cache/cert-serials.json``.

On other platforms every query returns an empty result.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import LocalSigningIdentity

logger = logging.getLogger("signvault.keychain")

SECURITY_BIN = "security"

IDENTITY_LINE = re.compile(r'^\s*\d+\)\s+(?P<hash>[A-Fa-f0-9]+)\s+"(?P<identity>[^"]+)"')
TEAM_ID = re.compile(r"\(([A-Z0-9]{10})\)\s*$")
INVALID_MARKERS = (
    "CSSMERR_TP_CERT_EXPIRED",
    "CSSMERR_TP_CERT_REVOKED",
    "CSSMERR_TP_NOT_TRUSTED",
)


def sanitize_serial(serial: Optional[str]) -> str:
    """Uppercase alphanumerics only, leading zeros stripped.

    The keychain and the developer portal format serials differently
    (case, separators, zero padding); this is the join key between them.
    """
    if not serial:
        return ""
    return "".join(c.upper() for c in serial if c.isalnum()).lstrip("0")


class LocalCredentialStore(ABC):
    """Where signing identities (certificate + private key) live locally."""

    @property
    @abstractmethod
    def is_supported(self) -> bool:
        """Whether this store works on the current platform."""

    @abstractmethod
    def list_signing_identities(self) -> list[LocalSigningIdentity]:
        """Every code-signing identity that has a private key."""

    @abstractmethod
    def has_private_key(self, serial_number: str) -> bool:
        """Whether an identity with this serial exists locally."""

    @abstractmethod
    def export_p12(self, identity: str, password: str) -> bytes:
        """Export an identity as a password-protected PKCS#12 blob."""

    @abstractmethod
    def import_p12(self, data: bytes, password: str) -> bool:
        """Import a PKCS#12 blob. Returns False on failure."""

    @abstractmethod
    def delete_identity(self, identity: str) -> None:
        """Remove an identity (certificate and key)."""


def parse_identity_line(line: str) -> Optional[LocalSigningIdentity]:
    """Parse one ``security find-identity`` output line.

    Example::

        1) 0A1B2C... "Apple Development: Jane Doe (ABCDE12345)"
        2) 3D4E5F... "Developer ID Application: Acme (ABCDE12345)" (CSSMERR_TP_CERT_EXPIRED)
    """
    match = IDENTITY_LINE.match(line)
    if not match:
        return None

    identity = match.group("identity")
    team = TEAM_ID.search(identity)
    common_name = identity
    if team:
        paren = identity.rfind("(")
        if paren > 0:
            common_name = identity[:paren].strip()

    return LocalSigningIdentity(
        identity=identity,
        common_name=common_name,
        team_id=team.group(1) if team else None,
        is_valid=not any(marker in line for marker in INVALID_MARKERS),
        hash=match.group("hash").upper(),
    )


def parse_certificate_dump(output: str) -> dict[str, str]:
    """Map SHA-1 hash -> PEM from ``security find-certificate -a -Z -p``."""
    pems: dict[str, str] = {}
    current_hash: Optional[str] = None
    lines: list[str] = []
    in_cert = False
    for raw in output.splitlines():
        line = raw.strip()
        if line.upper().startswith("SHA-1 HASH:"):
            current_hash = line.split(":", 1)[1].strip().upper()
            in_cert = False
        elif current_hash and "BEGIN CERTIFICATE" in line:
            in_cert = True
            lines = [line]
        elif in_cert:
            lines.append(line)
            if "END CERTIFICATE" in line:
                pems[current_hash] = "\n".join(lines) + "\n"
                in_cert = False
                current_hash = None
    return pems


def certificate_details(pem: str) -> tuple[str, Optional[datetime]]:
    """Serial (uppercase hex) and expiry of a PEM certificate."""
    from cryptography import x509

    cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
    return format(cert.serial_number, "X"), cert.not_valid_after_utc


class KeychainCredentialStore(LocalCredentialStore):
    """Signing identities in the user's login keychain.

    Args:
        home: SignVault home directory (for the serial cache).
        cache_seconds: How long an identity listing is reused.
        timeout: Seconds allowed for each ``security`` call.
        supported: Override platform detection.
    """

    def __init__(
        self,
        home: Path,
        cache_seconds: int = 300,
        timeout: float = 60.0,
        supported: Optional[bool] = None,
    ):
        self.serial_cache_file = home / "cache" / "cert-serials.json"
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._supported = sys.platform == "darwin" if supported is None else supported
        self._identities: Optional[list[LocalSigningIdentity]] = None
        self._expires_at = 0.0
        self._serials: Optional[dict[str, dict[str, Optional[str]]]] = None

    @property
    def is_supported(self) -> bool:
        return self._supported

    @property
    def login_keychain(self) -> str:
        return str(Path.home() / "Library" / "Keychains" / "login.keychain-db")

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [SECURITY_BIN, *args],
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def invalidate_cache(self) -> None:
        """Forget the cached identity listing."""
        self._identities = None
        self._expires_at = 0.0

    # ------------------------------------------------------------------
    # Serial cache
    # ------------------------------------------------------------------

    def _load_serials(self) -> dict[str, dict[str, Optional[str]]]:
        if self._serials is not None:
            return self._serials
        self._serials = {}
        if self.serial_cache_file.exists():
            try:
                self._serials = json.loads(self.serial_cache_file.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load serial cache: %s", exc)
        return self._serials

    def _save_serials(self) -> None:
        try:
            self.serial_cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.serial_cache_file.write_text(
                json.dumps(self._serials, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("Failed to save serial cache: %s", exc)

    def _resolve_serials(self, hashes: list[str]) -> dict[str, dict[str, Optional[str]]]:
        cache = self._load_serials()
        missing = [h for h in hashes if h not in cache]
        if missing:
            result = self._run("find-certificate", "-a", "-Z", "-p")
            if result.returncode == 0:
                pems = parse_certificate_dump(result.stdout)
                for h in missing:
                    if h not in pems:
                        continue
                    try:
                        serial, expires = certificate_details(pems[h])
                    except ValueError as exc:
                        logger.warning("Unparseable certificate %s: %s", h, exc)
                        continue
                    cache[h] = {
                        "serial": serial,
                        "expires": expires.isoformat() if expires else None,
                    }
                self._save_serials()
            else:
                logger.warning("security find-certificate failed: %s", result.stderr.strip())
        return cache

    # ------------------------------------------------------------------
    # LocalCredentialStore
    # ------------------------------------------------------------------

    def list_signing_identities(self) -> list[LocalSigningIdentity]:
        if not self._supported:
            logger.warning("Keychain access is only supported on macOS")
            return []
        if self._identities is not None and time.monotonic() < self._expires_at:
            return list(self._identities)

        try:
            result = self._run("find-identity", "-v", "-p", "codesigning")
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("Failed to query signing identities: %s", exc)
            return []
        if result.returncode != 0:
            logger.error("security find-identity failed (exit %d)", result.returncode)
            return []

        parsed = [i for i in map(parse_identity_line, result.stdout.splitlines()) if i]
        try:
            serials = self._resolve_serials([i.hash for i in parsed if i.hash])
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Serial lookup failed: %s", exc)
            serials = {}

        identities = []
        for identity in parsed:
            entry = serials.get(identity.hash or "")
            if entry:
                identity = identity.model_copy(update={
                    "serial_number": entry.get("serial"),
                    "expiration_date": (
                        datetime.fromisoformat(entry["expires"]) if entry.get("expires") else None
                    ),
                })
            identities.append(identity)

        logger.info("Found %d signing identities in keychain", len(identities))
        self._identities = identities
        self._expires_at = time.monotonic() + self.cache_seconds
        return list(identities)

    def has_private_key(self, serial_number: str) -> bool:
        wanted = sanitize_serial(serial_number)
        if not self._supported or not wanted:
            return False
        return any(
            sanitize_serial(i.serial_number) == wanted for i in self.list_signing_identities()
        )

    def export_p12(self, identity: str, password: str) -> bytes:
        """Export the login keychain's identities as PKCS#12.

        ``security export -t identities`` cannot select a single identity,
        so the blob holds every identity in the login keychain. ``identity``
        is checked and logged only.

        Raises:
            RuntimeError: Off macOS or when ``security export`` fails.
            ValueError: On an empty identity.
        """
        if not self._supported:
            raise RuntimeError("P12 export is only supported on macOS")
        if not identity:
            raise ValueError("Identity cannot be empty")

        fd, tmp_name = tempfile.mkstemp(suffix=".p12")
        os.close(fd)
        try:
            result = self._run(
                "export", "-t", "identities", "-f", "pkcs12",
                "-P", password, "-o", tmp_name, "-k", self.login_keychain,
            )
            if result.returncode != 0:
                raise RuntimeError(f"Failed to export P12: {result.stderr.strip()}")
            data = Path(tmp_name).read_bytes()
            logger.info("Exported P12 for %s (%d bytes)", identity, len(data))
            return data
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    def import_p12(self, data: bytes, password: str) -> bool:
        """Import into the login keychain via a temporary file.

        The temporary file is removed whether or not the import works.
        """
        if not self._supported:
            logger.warning("Cannot import P12: keychain not supported on this platform")
            return False

        fd, tmp_name = tempfile.mkstemp(suffix=".p12")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            result = self._run(
                "import", tmp_name, "-k", self.login_keychain, "-P", password,
                "-T", "/usr/bin/codesign", "-T", "/usr/bin/security",
            )
            if result.returncode != 0:
                logger.error("Failed to import P12: %s", result.stderr.strip())
                return False
            self.invalidate_cache()
            logger.info("Imported certificate into keychain")
            return True
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("Failed to import P12: %s", exc)
            return False
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    def delete_identity(self, identity: str) -> None:
        """Delete an identity, falling back to the certificate alone.

        Raises:
            RuntimeError: Off macOS or when both deletions fail.
            ValueError: On an empty identity.
        """
        if not self._supported:
            raise RuntimeError("Certificate deletion is only supported on macOS")
        if not identity:
            raise ValueError("Identity cannot be empty")

        result = self._run("delete-identity", "-t", "-c", identity)
        if result.returncode != 0:
            logger.warning("delete-identity failed, trying certificate only: %s",
                           result.stderr.strip())
            result = self._run("delete-certificate", "-c", identity)
            if result.returncode != 0:
                raise RuntimeError(f"Failed to delete certificate: {result.stderr.strip()}")
        self.invalidate_cache()
        logger.info("Deleted identity %s", identity)
