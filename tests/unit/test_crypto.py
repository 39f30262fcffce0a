"""
Unit tests for key wrapping and value encryption.

Tests cover:
- Wrap/unwrap under password hashes
- Wrong or malformed credentials
- Entry value encryption
- Password verifiers and invitation UIDs
"""

import pytest

from vaultapi.vault_server.core.crypto import (
    KEY_SIZE,
    WRAP_VERSION,
    check_verifier,
    decrypt_value,
    encrypt_value,
    generate_secret,
    generate_store_key,
    invitation_uid,
    is_password_hash,
    make_verifier,
    password_hash,
    unwrap_key,
    wrap_key,
)
from vaultapi.vault_server.errors import CryptoError, ErrorCode, InvalidCredentialsError

ALICE = password_hash("alice-password")
BOB = password_hash("bob-password")


class TestKeyWrapping:
    """Tests for wrap_key() and unwrap_key()."""

    def test_unwrap_returns_wrapped_bytes(self):
        key = generate_store_key()
        assert unwrap_key(ALICE, wrap_key(ALICE, key)) == key

    def test_same_key_for_every_holder(self):
        """Two users holding the same store key recover identical bytes."""
        key = generate_store_key()
        alice_blob = wrap_key(ALICE, key)
        bob_blob = wrap_key(BOB, key)

        assert alice_blob != bob_blob
        assert unwrap_key(ALICE, alice_blob) == unwrap_key(BOB, bob_blob) == key

    def test_wraps_are_randomized(self):
        key = generate_store_key()
        assert wrap_key(ALICE, key) != wrap_key(ALICE, key)

    def test_blob_header(self):
        blob = wrap_key(ALICE, generate_store_key())
        assert blob[0] == WRAP_VERSION

    def test_wrong_hash_fails(self):
        """A wrong password hash raises 3001, never returns garbage."""
        blob = wrap_key(ALICE, generate_store_key())
        with pytest.raises(InvalidCredentialsError) as exc_info:
            unwrap_key(BOB, blob)
        assert exc_info.value.code == ErrorCode.INVALID_CREDENTIALS

    def test_tampered_blob_fails(self):
        blob = bytearray(wrap_key(ALICE, generate_store_key()))
        blob[-1] ^= 0x01
        with pytest.raises(InvalidCredentialsError):
            unwrap_key(ALICE, bytes(blob))

    @pytest.mark.parametrize("blob", [b"", b"\x01\x00", b"\x09" + b"\x00" * 40])
    def test_malformed_blob_fails(self, blob):
        with pytest.raises(InvalidCredentialsError):
            unwrap_key(ALICE, blob)

    @pytest.mark.parametrize("bad", ["", "abc", "Z" * 64, ALICE.upper()])
    def test_malformed_hash_rejected(self, bad):
        with pytest.raises(InvalidCredentialsError):
            wrap_key(bad, generate_store_key())

    def test_secret_unwraps_like_a_hash(self):
        """One-time invitation secrets are valid wrapping hashes."""
        secret = generate_secret()
        assert is_password_hash(secret)
        key = generate_store_key()
        assert unwrap_key(secret, wrap_key(secret, key)) == key


class TestValueEncryption:
    """Tests for encrypt_value() and decrypt_value()."""

    def test_round_trip(self):
        key = generate_store_key()
        assert decrypt_value(key, encrypt_value(key, b'{"user":"root"}')) == b'{"user":"root"}'

    def test_fresh_nonce_per_write(self):
        key = generate_store_key()
        assert encrypt_value(key, b"same") != encrypt_value(key, b"same")

    def test_wrong_key_fails(self):
        blob = encrypt_value(generate_store_key(), b"secret")
        with pytest.raises(CryptoError):
            decrypt_value(generate_store_key(), blob)

    def test_invalid_key_size(self):
        with pytest.raises(CryptoError):
            encrypt_value(b"short", b"secret")

    def test_store_key_size(self):
        assert len(generate_store_key()) == KEY_SIZE


class TestVerifiers:
    """Tests for password verifiers and identifiers."""

    def test_verifier_accepts_own_hash(self):
        assert check_verifier(ALICE, make_verifier(ALICE))

    def test_verifier_rejects_other_hash(self):
        assert not check_verifier(BOB, make_verifier(ALICE))

    def test_verifier_rejects_missing(self):
        assert not check_verifier(ALICE, None)
        assert not check_verifier("not-a-hash", make_verifier(ALICE))

    def test_password_hash_shape(self):
        assert is_password_hash(password_hash("x"))
        assert not is_password_hash(None)

    def test_invitation_uid(self):
        uid = invitation_uid(1, 2, "b@x", 1000)
        assert len(uid) == 40
        assert uid != invitation_uid(1, 2, "b@x", 1000)
