"""
Build and parse otpauth://totp/ URIs (Google Authenticator Key URI Format).

Reference: https://github.com/google/google-authenticator/wiki/Key-Uri-Format
"""

import urllib.parse
from dataclasses import dataclass
from typing import Dict, Tuple

from core.totp import Algorithm, DEFAULT_DIGITS, DEFAULT_PERIOD
from core.utils import (
    encode_secret,
    normalize_secret,
    sanitise_label,
    validate_digits,
    validate_period,
)

SCHEME = "otpauth"
OTP_TYPE = "totp"


@dataclass
class OTPAuthURI:
    """Parsed representation of an otpauth://totp/ URI."""

    label: str          # issuer:account, or just account
    secret: str         # normalised base32 secret
    issuer: str         # issuer (may be empty)
    account_name: str
    algorithm: Algorithm
    digits: int
    period: int


def build_label(issuer: str, account: str) -> str:
    """Return ``issuer:account`` with each part URL-escaped."""
    return f"{urllib.parse.quote(issuer, safe='')}:{urllib.parse.quote(account, safe='')}"


def build_provisioning_url(
    secret_key: bytes,
    account: str,
    issuer: str,
    algorithm: Algorithm = Algorithm.SHA1,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_PERIOD,
) -> str:
    """
    Build the ``otpauth://totp/`` URI for a credential.

    The secret is rendered as unpadded base32; query parameters appear in the
    order secret, issuer, algorithm, digits, period.
    """
    params = {
        "secret": encode_secret(secret_key),
        "issuer": issuer,
        "algorithm": Algorithm(algorithm).value,
        "digits": str(digits),
        "period": str(period),
    }
    query = urllib.parse.urlencode(params, quote_via=urllib.parse.quote)
    return f"{SCHEME}://{OTP_TYPE}/{build_label(issuer, account)}?{query}"


def _split_label(path: str) -> Tuple[str, str]:
    raw_label = urllib.parse.unquote(path.lstrip("/"))
    if not raw_label:
        raise ValueError("Missing label in otpauth URI.")
    if ":" in raw_label:
        issuer, account = raw_label.split(":", 1)
    else:
        issuer, account = "", raw_label
    return sanitise_label(issuer), sanitise_label(account)


def _int_param(params: Dict[str, str], name: str, default: int) -> int:
    try:
        return int(params.get(name, default))
    except ValueError:
        raise ValueError(f"'{name}' must be an integer.") from None


def parse_otpauth_uri(uri: str) -> OTPAuthURI:
    """
    Parse and validate an ``otpauth://totp/`` URI.

    Raises:
        ValueError: If the URI is malformed, is not a TOTP URI, or carries
            invalid parameters.
    """
    parsed = urllib.parse.urlparse(uri.strip())

    if parsed.scheme.lower() != SCHEME:
        raise ValueError(f"Expected 'otpauth' scheme, got '{parsed.scheme}'.")
    if parsed.netloc.lower() != OTP_TYPE:
        raise ValueError(f"Unsupported OTP type '{parsed.netloc}'. Expected totp.")

    label_issuer, account_name = _split_label(parsed.path)
    if not account_name:
        raise ValueError("Missing account name in otpauth URI.")

    params = dict(urllib.parse.parse_qsl(parsed.query))

    raw_secret = params.get("secret", "")
    if not raw_secret:
        raise ValueError("Missing 'secret' parameter in otpauth URI.")

    # The query parameter wins over the label prefix
    issuer = sanitise_label(params.get("issuer", label_issuer))

    alg_str = params.get("algorithm", Algorithm.SHA1.value).upper()
    try:
        algorithm = Algorithm(alg_str)
    except ValueError:
        raise ValueError(
            f"Unsupported algorithm '{alg_str}'. Supported: SHA1, SHA256, SHA512."
        ) from None

    digits = _int_param(params, "digits", DEFAULT_DIGITS)
    validate_digits(digits)
    period = _int_param(params, "period", DEFAULT_PERIOD)
    validate_period(period)

    return OTPAuthURI(
        label=f"{issuer}:{account_name}" if issuer else account_name,
        secret=normalize_secret(raw_secret),
        issuer=issuer,
        account_name=account_name,
        algorithm=algorithm,
        digits=digits,
        period=period,
    )
