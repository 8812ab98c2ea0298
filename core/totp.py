"""
TOTP (Time-based One-Time Password) primitives following RFC 6238.

The counter codec lives here: a Unix timestamp divided by the step size
gives the moving factor that is fed to the HOTP engine as 8 big-endian bytes.
"""

import struct
import time
from enum import Enum
from typing import Optional

from core.errors import UnsupportedAlgorithm

DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30


class Algorithm(str, Enum):
    """Supported HMAC algorithms."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"


_ALG_MAP: dict[str, str] = {
    Algorithm.SHA1: "sha1",
    Algorithm.SHA256: "sha256",
    Algorithm.SHA512: "sha512",
}


def resolve_algorithm(value) -> Algorithm:
    """
    Coerce ``value`` to an :class:`Algorithm`.

    Accepts enum members or names in any case ("sha256", "SHA256").

    Raises:
        UnsupportedAlgorithm: For anything outside SHA1 / SHA256 / SHA512.
    """
    if isinstance(value, Algorithm):
        return value
    try:
        return Algorithm(str(value).upper())
    except ValueError:
        raise UnsupportedAlgorithm(
            f"Unsupported algorithm '{value}'. Supported: SHA1, SHA256, SHA512."
        ) from None


def hash_name(algorithm: Algorithm) -> str:
    """Return the :mod:`hashlib` name for ``algorithm``."""
    return _ALG_MAP[resolve_algorithm(algorithm)]


# ── Counter codec ─────────────────────────────────────────────────────────────

def counter_for(timestamp: float, step_size: int = DEFAULT_PERIOD) -> int:
    """Return the time-step counter ``floor(timestamp / step_size)``."""
    return int(timestamp) // step_size


def counter_to_bytes(counter: int) -> bytes:
    """Pack ``counter`` as the 8-byte big-endian HOTP moving factor."""
    return struct.pack(">Q", counter)


# ── Stateless helpers ─────────────────────────────────────────────────────────

def remaining_seconds(period: int = DEFAULT_PERIOD, timestamp: Optional[float] = None) -> int:
    """Return seconds until the current TOTP window expires."""
    t = timestamp if timestamp is not None else time.time()
    return period - (int(t) % period)
