"""
Cryptographic utilities.

Secret generation : ``secrets`` CSPRNG, sized to the HMAC block output
Code fingerprint  : SHA-256 hex digest
Key derivation    : PBKDF2-HMAC-SHA256
Encryption        : AES-256-GCM (authenticated encryption)
"""

import hashlib
import hmac
import secrets
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.totp import Algorithm, resolve_algorithm

# ── Constants ────────────────────────────────────────────────────────────────

# Secret length per algorithm matches the digest size (RFC 6238 test keys)
SECRET_SIZES: dict[str, int] = {
    Algorithm.SHA1: 20,
    Algorithm.SHA256: 32,
    Algorithm.SHA512: 64,
}

SALT_SIZE = 32          # 256-bit salt
NONCE_SIZE = 12         # 96-bit nonce (GCM recommendation)
KEY_SIZE = 32           # 256-bit AES key
PBKDF2_ITERATIONS = 480_000  # OWASP 2023 recommendation for PBKDF2-SHA256
PBKDF2_HASH = "sha256"


# ── OTP material ─────────────────────────────────────────────────────────────

def generate_secret(algorithm: Algorithm = Algorithm.SHA1) -> bytes:
    """Return a fresh random shared secret sized for ``algorithm``."""
    return secrets.token_bytes(SECRET_SIZES[resolve_algorithm(algorithm)])


def fingerprint(code: str) -> str:
    """Return the hex SHA-256 digest of ``code``; used to remember spent codes."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def constant_time_compare(a: str, b: str) -> bool:
    """Return True if *a* == *b* in constant time (timing-safe)."""
    return hmac.compare_digest(a.encode(), b.encode())


# ── Key derivation ────────────────────────────────────────────────────────────

def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive a 256-bit key from ``password`` using PBKDF2-HMAC-SHA256.

    Args:
        password: Passphrase (unicode string).
        salt:     Random 32-byte salt.

    Returns:
        32-byte derived key.
    """
    return hashlib.pbkdf2_hmac(
        PBKDF2_HASH,
        password.encode("utf-8"),
        salt,
        PBKDF2_ITERATIONS,
        dklen=KEY_SIZE,
    )


def generate_salt() -> bytes:
    """Return a cryptographically random 32-byte salt."""
    return secrets.token_bytes(SALT_SIZE)


# ── AES-256-GCM encryption / decryption ──────────────────────────────────────

def encrypt(plaintext: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """
    Encrypt *plaintext* with AES-256-GCM.

    Layout of returned ciphertext blob::

        [ nonce (12 bytes) | ciphertext+tag ]

    Args:
        plaintext:       Data to encrypt.
        key:             32-byte AES key.
        associated_data: Authenticated but unencrypted context, if any.

    Returns:
        Blob containing nonce + ciphertext + tag.

    Raises:
        ValueError: If key length is not 32 bytes.
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, associated_data)


def decrypt(blob: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """
    Decrypt a blob produced by :func:`encrypt`.

    Raises:
        ValueError: If key length is not 32 bytes.
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key,
            wrong associated data or tampered data).
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    nonce = blob[:NONCE_SIZE]
    ciphertext = blob[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
