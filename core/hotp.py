"""
HOTP (HMAC-based One-Time Password) engine following RFC 4226.

``generate_totp`` feeds it the RFC 6238 time counter.
"""

import hmac
import time
from typing import Optional

from core.totp import (
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    Algorithm,
    counter_for,
    counter_to_bytes,
    hash_name,
)


def truncated_code(
    secret_key: bytes,
    counter_bytes: bytes,
    digits: int = 6,
    algorithm: Algorithm = Algorithm.SHA1,
) -> str:
    """
    Core HOTP computation (RFC 4226 §5.3).

    Args:
        secret_key:    Raw shared secret.
        counter_bytes: 8-byte big-endian moving factor.
        digits:        Number of OTP digits.
        algorithm:     HMAC algorithm.

    Returns:
        Zero-padded OTP string of exactly ``digits`` characters.
    """
    digest = hmac.new(secret_key, counter_bytes, hash_name(algorithm)).digest()

    # Dynamic truncation
    offset = digest[-1] & 0x0F
    code = (
        (digest[offset] & 0x7F) << 24
        | (digest[offset + 1] & 0xFF) << 16
        | (digest[offset + 2] & 0xFF) << 8
        | (digest[offset + 3] & 0xFF)
    )
    otp = code % (10**digits)
    return str(otp).zfill(digits)


def generate_hotp(
    secret_bytes: bytes,
    counter: int,
    digits: int = 6,
    algorithm: Algorithm = Algorithm.SHA1,
) -> str:
    """Generate an HOTP code for an integer ``counter``."""
    return truncated_code(secret_bytes, counter_to_bytes(counter), digits, algorithm)


def generate_totp(
    secret_bytes: bytes,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_PERIOD,
    algorithm: Algorithm = Algorithm.SHA1,
    timestamp: Optional[float] = None,
) -> str:
    """
    Generate a TOTP code.

    Args:
        secret_bytes: Raw secret bytes.
        digits:       Number of digits in the OTP (default 6).
        period:       Time step in seconds (default 30).
        algorithm:    HMAC algorithm (default SHA1).
        timestamp:    Override Unix timestamp (uses time.time() if None).

    Returns:
        OTP string, zero-padded to ``digits`` characters.
    """
    t = timestamp if timestamp is not None else time.time()
    return truncated_code(secret_bytes, counter_to_bytes(counter_for(t, period)), digits, algorithm)
