"""Content encryption for davsync.

This module provides:
- Key derivation using Argon2id
- Authenticated encryption using AES-256-GCM
- Encryptor: password-keyed encrypt/decrypt of whole files

Encrypted payload format: salt (16 bytes) || nonce (12 bytes) || ciphertext || tag
"""

from __future__ import annotations

import os
from typing import Protocol

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from davsync.core.errors import EncryptionError

# Argon2id parameters (OWASP recommendations for password hashing)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MiB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits

# AES-GCM constants
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)
SALT_SIZE = 16  # 128 bits
TAG_SIZE = 16
HEADER_SIZE = SALT_SIZE + NONCE_SIZE


class ContentCipher(Protocol):
    """Contract the sync orchestrator uses for content encryption."""

    def encrypt(self, data: bytes | str) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...

    def encrypted_size(self, size: int) -> int: ...


def generate_salt() -> bytes:
    """Generate a cryptographically secure random salt."""
    return os.urandom(SALT_SIZE)


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit encryption key from a password using Argon2id.

    Args:
        password: The user's secret.
        salt: A 16-byte random salt (use generate_salt()).

    Returns:
        32 bytes derived key suitable for AES-256.
    """
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID,
    )


class Encryptor:
    """Encrypts whole files with a key derived from a caller-supplied secret.

    Each payload carries its own salt. Derived keys are cached per salt so
    that a session only pays the Argon2 cost once for its own uploads.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise EncryptionError("Encryption key must not be empty")
        self._secret = secret
        self._salt = generate_salt()
        self._keys: dict[bytes, bytes] = {}

    def _key_for(self, salt: bytes) -> bytes:
        key = self._keys.get(salt)
        if key is None:
            key = derive_key(self._secret, salt)
            self._keys[salt] = key
        return key

    def encrypt(self, data: bytes | str) -> bytes:
        """Encrypt bytes or UTF-8 text."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self._key_for(self._salt)).encrypt(nonce, data, None)
        return self._salt + nonce + ciphertext

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt a payload produced by encrypt().

        Raises:
            EncryptionError: If the payload is truncated, tampered with, or
                was encrypted under a different secret.
        """
        if len(data) < HEADER_SIZE:
            raise EncryptionError("Encrypted payload is truncated")
        salt = data[:SALT_SIZE]
        nonce = data[SALT_SIZE:HEADER_SIZE]
        try:
            return AESGCM(self._key_for(salt)).decrypt(nonce, data[HEADER_SIZE:], None)
        except InvalidTag as e:
            raise EncryptionError("Authentication failed: wrong key or corrupted data") from e

    def encrypted_size(self, size: int) -> int:
        """Size of the payload encrypt() produces for size plaintext bytes."""
        return size + HEADER_SIZE + TAG_SIZE


class PassthroughCipher:
    """Cipher used when encryption is disabled."""

    def encrypt(self, data: bytes | str) -> bytes:
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    def decrypt(self, data: bytes) -> bytes:
        return data

    def encrypted_size(self, size: int) -> int:
        return size
