"""
Utility helpers: Base32 secrets, code formatting and parameter checks.
"""

import base64
import re
import unicodedata

from core.errors import MalformedCode

MIN_DIGITS = 6
MAX_DIGITS = 8


# ── Base32 ────────────────────────────────────────────────────────────────────

def normalize_secret(secret: str) -> str:
    """
    Normalise a base32 secret: strip spaces, uppercase, add padding.

    Raises:
        ValueError: If the string contains invalid base32 characters.
    """
    secret = secret.strip().upper().replace(" ", "").replace("-", "")
    # Base32 alphabet: A-Z and 2-7
    if not re.fullmatch(r"[A-Z2-7=]+", secret):
        raise ValueError("Secret contains invalid base32 characters.")
    pad = (8 - len(secret) % 8) % 8
    return secret + "=" * pad


def decode_secret(secret: str) -> bytes:
    """
    Decode a base32-encoded secret string to raw bytes.

    Raises:
        ValueError: On invalid base32 input.
    """
    try:
        return base64.b32decode(normalize_secret(secret), casefold=True)
    except Exception as exc:
        raise ValueError(f"Invalid base32 secret: {exc}") from exc


def encode_secret(raw: bytes) -> str:
    """Encode raw bytes as a base32 string (no padding)."""
    return base64.b32encode(raw).decode("ascii").rstrip("=")


# ── Labels ────────────────────────────────────────────────────────────────────

def sanitise_label(text: str) -> str:
    """Remove control characters and limit label length."""
    text = unicodedata.normalize("NFC", text)
    text = "".join(ch for ch in text if unicodedata.category(ch)[0] != "C")
    return text[:128].strip()


# ── Codes ─────────────────────────────────────────────────────────────────────

def format_otp(code: str, group: int = 3) -> str:
    """
    Format an OTP code with spaces for readability.

    Example::

        >>> format_otp("123456")
        "123 456"
    """
    return " ".join(code[i : i + group] for i in range(0, len(code), group))


def normalize_code(code: str, digits: int) -> str:
    """
    Strip whitespace (including :func:`format_otp` grouping) from a submitted code.

    Raises:
        MalformedCode: If the result is not exactly ``digits`` decimal digits.
    """
    if not isinstance(code, str):
        raise MalformedCode("Code must be a string.")
    code = re.sub(r"\s+", "", code)
    if not code:
        raise MalformedCode("Code is empty.")
    if not code.isascii() or not code.isdigit():
        raise MalformedCode("Code must contain only the digits 0-9.")
    if len(code) != digits:
        raise MalformedCode(f"Code must have exactly {digits} digits.")
    return code


# ── Validation ────────────────────────────────────────────────────────────────

def validate_digits(digits: int) -> None:
    if not MIN_DIGITS <= digits <= MAX_DIGITS:
        raise ValueError(f"Digits must be between {MIN_DIGITS} and {MAX_DIGITS}.")


def validate_period(period: int) -> None:
    if period < 1 or period > 300:
        raise ValueError("Period must be between 1 and 300 seconds.")
