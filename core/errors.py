"""
Exception hierarchy for credential operations.

Every failure surfaces as an :class:`OTPError` subclass. Validation failures
share the :class:`VerificationError` base so an authentication flow can catch
them in one place and still tell them apart.
"""


class OTPError(Exception):
    """Base class for all credential errors."""


class UnsupportedAlgorithm(OTPError, ValueError):
    """The requested HMAC algorithm is not SHA1, SHA256 or SHA512."""


class UninitializedCredential(OTPError):
    """Operation attempted on a zero-value credential."""


# ── Validation ────────────────────────────────────────────────────────────────

class VerificationError(OTPError):
    """Base class for failures raised by ``Credential.validate``."""


class MalformedCode(VerificationError, ValueError):
    """Submitted code is empty, non-numeric or of the wrong length."""


class LockedOut(VerificationError):
    """Too many consecutive failures; retry after the backoff window."""


class CodeMismatch(VerificationError):
    """No offset in the drift window produced the submitted code."""


class ReplayedCode(VerificationError):
    """Code is valid but was already accepted."""


# ── Serialization ─────────────────────────────────────────────────────────────

class MalformedBlob(OTPError, ValueError):
    """Serialized credential is truncated or structurally invalid."""


class UnsupportedBlobVersion(MalformedBlob):
    """Serialized credential carries an unknown format version."""
