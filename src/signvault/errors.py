"""
SignVault exception hierarchy.

Only configuration mistakes, cryptographic failures and corrupted
backups raise. Backend connectivity problems never do; adapters turn
them into False / None / [] results instead.
"""

from __future__ import annotations


class SignVaultError(Exception):
    """Base class for every error raised by signvault."""


class ConfigurationError(SignVaultError, ValueError):
    """A backend configuration is incomplete, unknown, or unsupported."""


class AuthenticationError(SignVaultError):
    """Decryption failed: wrong key, wrong password, or tampered data."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class BackupFormatError(SignVaultError):
    """The blob is not a signvault backup, or it is truncated."""


class NoActiveBackendError(SignVaultError):
    """A write needs a secret backend but none is active."""
