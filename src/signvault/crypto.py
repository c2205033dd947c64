"""
Authenticated encryption and key derivation.

AES-256-GCM for sealing payloads and PBKDF2-HMAC-SHA256 for turning
a password into a key. Both come from the ``cryptography`` package;
nothing here implements a primitive itself.

Sealed blob layout (no length prefix)::

    [nonce 12][tag 16][ciphertext N]
"""

from __future__ import annotations

import os

from .errors import AuthenticationError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
SALT_SIZE = 32
PBKDF2_ITERATIONS = 100_000

MIN_SEALED_SIZE = NONCE_SIZE + TAG_SIZE


def generate_key() -> bytes:
    """Return 32 fresh random bytes suitable as an AES-256 key."""
    return os.urandom(KEY_SIZE)


def generate_salt() -> bytes:
    """Return a fresh random salt for password derivation."""
    return os.urandom(SALT_SIZE)


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt and authenticate a payload.

    Args:
        plaintext: Bytes to protect.
        key: 32-byte AES key.

    Returns:
        ``nonce || tag || ciphertext``.

    Raises:
        ValueError: If the key is not 32 bytes.
    """
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    if len(key) != KEY_SIZE:
        raise ValueError(f"AES-256-GCM needs a {KEY_SIZE}-byte key, got {len(key)}")

    nonce = os.urandom(NONCE_SIZE)
    ct_and_tag = AESGCM(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = ct_and_tag[:-TAG_SIZE], ct_and_tag[-TAG_SIZE:]
    return nonce + tag + ciphertext


def open_sealed(blob: bytes, key: bytes) -> bytes:
    """Verify and decrypt a sealed payload.

    Args:
        blob: Output of :func:`seal`.
        key: The 32-byte key used to seal it.

    Returns:
        The original plaintext.

    Raises:
        AuthenticationError: If the blob is truncated, was tampered with,
            or the key is wrong. The cause is deliberately not reported.
        ValueError: If the key is not 32 bytes.
    """
    from cryptography.exceptions import InvalidTag
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    if len(key) != KEY_SIZE:
        raise ValueError(f"AES-256-GCM needs a {KEY_SIZE}-byte key, got {len(key)}")
    if len(blob) < MIN_SEALED_SIZE:
        raise AuthenticationError()

    nonce = blob[:NONCE_SIZE]
    tag = blob[NONCE_SIZE:MIN_SEALED_SIZE]
    ciphertext = blob[MIN_SEALED_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise AuthenticationError() from None


def derive_password_key(password: str, salt: bytes) -> bytes:
    """Derive a 32-byte key from a password with PBKDF2-HMAC-SHA256.

    Args:
        password: User-supplied password.
        salt: Random salt, stored next to the ciphertext.

    Returns:
        Derived key bytes.
    """
    from cryptography.hazmat.primitives.hashes import SHA256
    from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))
