"""
Cryptographic primitives for store keys and entry values.

Store content keys are never persisted in clear. Each authorized user holds a
copy wrapped under a key derived from their password hash:

    blob = version(1) | pick(1) | nonce(12) | AES-256-GCM(kek, key, aad=header)
    kek  = HKDF-SHA256(ikm=bytes(password_hash), salt=pick, info=WRAP_LABEL)

The random pick byte makes two wraps of the same key under the same password
produce unrelated key-encryption keys.

Invariants:
    - unwrap_key() either returns the exact wrapped bytes or raises
      InvalidCredentialsError; it never returns garbage
    - Entry values are encrypted with a fresh nonce on every write
    - Password hashes are 64 lowercase hex characters (SHA-256 of the password)

How to change safely:
    - Bump WRAP_VERSION for any blob format change and keep reading old versions
    - Never log keys, hashes or plaintext values
"""

from __future__ import annotations

import hashlib
import re
import secrets
import time

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import CryptoError, InvalidCredentialsError

WRAP_VERSION = 1
WRAP_LABEL = b"vault:key-wrap:v1"
VALUE_LABEL = b"vault:entry-value:v1"
VERIFIER_PLAINTEXT = b"vault:password-verifier"

KEY_SIZE = 32
NONCE_SIZE = 12
HEADER_SIZE = 2

_PASSWORD_HASH = re.compile(r"^[0-9a-f]{64}$")


def is_password_hash(value: str | None) -> bool:
    """Check that value looks like a hex SHA-256 password hash."""
    return bool(value) and _PASSWORD_HASH.match(value) is not None


def password_hash(password: str) -> str:
    """Hash a clear password the way clients do before sending it."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _derive_kek(password_hash: str, pick: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=pick,
        info=WRAP_LABEL,
    )
    return hkdf.derive(bytes.fromhex(password_hash))


def wrap_key(password_hash: str, key: bytes) -> bytes:
    """Wrap key bytes under a password hash.

    Args:
        password_hash: Hex SHA-256 password hash
        key: Secret bytes to wrap

    Returns:
        Wrapped blob (header, nonce, ciphertext and tag)

    Raises:
        InvalidCredentialsError: If password_hash is not a valid hash
    """
    if not is_password_hash(password_hash):
        raise InvalidCredentialsError(details={"reason": "malformed password hash"})

    pick = secrets.token_bytes(1)
    header = bytes([WRAP_VERSION]) + pick
    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(_derive_kek(password_hash, pick)).encrypt(nonce, key, header)
    return header + nonce + ciphertext


def unwrap_key(password_hash: str, blob: bytes) -> bytes:
    """Recover key bytes from a wrapped blob.

    Raises:
        InvalidCredentialsError: If the hash is wrong, malformed, or the blob
            fails authentication
    """
    if not is_password_hash(password_hash):
        raise InvalidCredentialsError(details={"reason": "malformed password hash"})
    if not blob or len(blob) < HEADER_SIZE + NONCE_SIZE + 16:
        raise InvalidCredentialsError(details={"reason": "malformed key blob"})
    if blob[0] != WRAP_VERSION:
        raise InvalidCredentialsError(details={"reason": "unsupported key blob version"})

    header = blob[:HEADER_SIZE]
    nonce = blob[HEADER_SIZE:HEADER_SIZE + NONCE_SIZE]
    ciphertext = blob[HEADER_SIZE + NONCE_SIZE:]
    try:
        return AESGCM(_derive_kek(password_hash, header[1:])).decrypt(nonce, ciphertext, header)
    except InvalidTag:
        raise InvalidCredentialsError() from None


def encrypt_value(store_key: bytes, plaintext: bytes) -> bytes:
    """Encrypt an entry value with the store content key.

    Returns:
        nonce (12 bytes) || ciphertext+tag
    """
    if len(store_key) != KEY_SIZE:
        raise CryptoError(details={"reason": "invalid store key size"})
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce + AESGCM(store_key).encrypt(nonce, plaintext, VALUE_LABEL)


def decrypt_value(store_key: bytes, blob: bytes) -> bytes:
    """Decrypt an entry value produced by encrypt_value().

    Raises:
        CryptoError: If the key is wrong or the value was tampered with
    """
    if len(store_key) != KEY_SIZE or len(blob) < NONCE_SIZE + 16:
        raise CryptoError(details={"reason": "invalid key or value"})
    try:
        return AESGCM(store_key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], VALUE_LABEL)
    except InvalidTag:
        raise CryptoError(details={"reason": "value authentication failed"}) from None


def generate_store_key() -> bytes:
    """Generate a fresh store content key."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def generate_secret() -> str:
    """Generate a random secret shaped like a password hash.

    Used as the one-time password protecting an invitation's key row.
    """
    return secrets.token_hex(KEY_SIZE)


def make_verifier(password_hash: str) -> bytes:
    """Create the blob stored with a user to check later logins."""
    return wrap_key(password_hash, VERIFIER_PLAINTEXT)


def check_verifier(password_hash: str, verifier: bytes | None) -> bool:
    """Test a password hash against a stored verifier."""
    if not verifier or not is_password_hash(password_hash):
        return False
    try:
        return unwrap_key(password_hash, verifier) == VERIFIER_PLAINTEXT
    except InvalidCredentialsError:
        return False


def invitation_uid(creator: int, object_id: int, email: str, now: float | None = None) -> str:
    """Generate a 40-character invitation UID.

    SHA-1 over creator, object, invitee, time and random bytes.
    """
    seed = f"{creator:x}:{object_id:x}:{email}:{now or time.time()}:{secrets.token_hex(8)}"
    return hashlib.sha1(seed.encode("utf-8")).hexdigest()
