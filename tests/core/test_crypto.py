"""Tests for crypto module - Key derivation and content encryption."""

import pytest

from davsync.core.crypto import (
    HEADER_SIZE,
    Encryptor,
    PassthroughCipher,
    derive_key,
    generate_salt,
)
from davsync.core.errors import EncryptionError


class TestKeyDerivation:
    """Tests for Argon2id key derivation."""

    def test_derive_key_returns_32_bytes(self) -> None:
        """Key derivation should return exactly 32 bytes (256 bits)."""
        assert len(derive_key("test_password", generate_salt())) == 32

    def test_derive_key_deterministic(self) -> None:
        """Same password and salt should produce same key."""
        salt = generate_salt()
        assert derive_key("test_password", salt) == derive_key("test_password", salt)

    def test_derive_key_different_passwords(self) -> None:
        """Different passwords should produce different keys."""
        salt = generate_salt()
        assert derive_key("password1", salt) != derive_key("password2", salt)

    def test_derive_key_unicode_password(self) -> None:
        """Unicode passwords should work correctly."""
        assert len(derive_key("motdepässé日本語", generate_salt())) == 32


class TestEncryptor:
    """Tests for Encryptor."""

    @pytest.fixture(scope="class")
    def encryptor(self) -> Encryptor:
        return Encryptor("correct horse battery staple")

    def test_round_trip(self, encryptor: Encryptor) -> None:
        """Decrypting an encrypted payload should return the original bytes."""
        payload = encryptor.encrypt(b"hello world")
        assert encryptor.decrypt(payload) == b"hello world"

    def test_encrypts_text_as_utf8(self, encryptor: Encryptor) -> None:
        """String input should be encrypted as UTF-8."""
        assert encryptor.decrypt(encryptor.encrypt("naïve")) == "naïve".encode()

    def test_payload_layout(self, encryptor: Encryptor) -> None:
        """Payload should carry salt, nonce and a 16 byte tag."""
        payload = encryptor.encrypt(b"abc")
        assert len(payload) == HEADER_SIZE + 3 + 16

    def test_encrypted_size_matches_payload(self, encryptor: Encryptor) -> None:
        for size in (0, 1, 4096):
            assert encryptor.encrypted_size(size) == len(encryptor.encrypt(b"x" * size))

    def test_nonce_differs_per_call(self, encryptor: Encryptor) -> None:
        """Encrypting twice should never produce the same payload."""
        assert encryptor.encrypt(b"same") != encryptor.encrypt(b"same")

    def test_other_instance_same_secret_decrypts(self, encryptor: Encryptor) -> None:
        """Another session with the same secret should read the payload."""
        payload = encryptor.encrypt(b"shared")
        assert Encryptor("correct horse battery staple").decrypt(payload) == b"shared"

    def test_wrong_secret_fails(self, encryptor: Encryptor) -> None:
        """A different secret should raise EncryptionError."""
        payload = encryptor.encrypt(b"secret")
        with pytest.raises(EncryptionError):
            Encryptor("wrong").decrypt(payload)

    def test_tampered_payload_fails(self, encryptor: Encryptor) -> None:
        """Flipping a ciphertext byte should raise EncryptionError."""
        payload = bytearray(encryptor.encrypt(b"secret"))
        payload[-1] ^= 0x01
        with pytest.raises(EncryptionError):
            encryptor.decrypt(bytes(payload))

    def test_truncated_payload_fails(self, encryptor: Encryptor) -> None:
        """A payload shorter than the header should raise EncryptionError."""
        with pytest.raises(EncryptionError, match="truncated"):
            encryptor.decrypt(b"short")

    def test_empty_secret_rejected(self) -> None:
        """An empty secret should be refused."""
        with pytest.raises(EncryptionError):
            Encryptor("")


class TestPassthroughCipher:
    """Tests for PassthroughCipher."""

    def test_bytes_unchanged(self) -> None:
        cipher = PassthroughCipher()
        assert cipher.encrypt(b"data") == b"data"
        assert cipher.decrypt(b"data") == b"data"

    def test_text_encoded(self) -> None:
        assert PassthroughCipher().encrypt("héllo") == "héllo".encode()

    def test_encrypted_size_is_plain_size(self) -> None:
        assert PassthroughCipher().encrypted_size(42) == 42
