"""
The TOTP credential: one shared secret plus the mutable security state
(drift offset, failure counter, last verification time, replay fingerprint)
needed to validate codes for a single account.

``validate`` runs the full pipeline::

    normalise code -> lockout gate -> drift search -> replay guard -> state update

A credential is not thread-safe; wrap it in :class:`core.guard.CredentialGuard`
when several requests may validate against the same account concurrently.
"""

import logging
import time
from typing import Optional

from core.crypto import fingerprint, generate_secret
from core.drift import validate_with_drift
from core.errors import (
    CodeMismatch,
    LockedOut,
    ReplayedCode,
    UninitializedCredential,
)
from core.hotp import generate_totp
from core.policy import DEFAULT_POLICY, LockoutPolicy, is_replay
from core.totp import (
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    Algorithm,
    resolve_algorithm,
)
from core.utils import decode_secret, normalize_code, validate_digits
from provisioning.uri import build_label, build_provisioning_url, parse_otpauth_uri
from storage import serializer

logger = logging.getLogger(__name__)


class Credential:
    """A TOTP credential and its validation state."""

    def __init__(
        self,
        secret_key: bytes = b"",
        account: str = "",
        issuer: str = "",
        algorithm: Algorithm = Algorithm.SHA1,
        digits: int = DEFAULT_DIGITS,
        step_size: int = DEFAULT_PERIOD,
        client_offset: int = 0,
        total_verification_failures: int = 0,
        last_verification_time: int = 0,
        last_used_otp: str = "",
        policy: LockoutPolicy = DEFAULT_POLICY,
    ) -> None:
        """
        Build a credential from explicit state.

        Use :meth:`create` for a new credential with a fresh secret and
        :meth:`from_bytes` to restore a serialized one. Calling with no
        arguments yields the zero-value credential, which refuses to generate
        codes or URLs.
        """
        self._secret_key = bytes(secret_key)
        self._algorithm = resolve_algorithm(algorithm)
        self._digits = digits
        self._step_size = step_size
        self.account = account
        self.issuer = issuer
        self.client_offset = client_offset
        self.total_verification_failures = total_verification_failures
        self.last_verification_time = last_verification_time
        self.last_used_otp = last_used_otp
        self.policy = policy

    @classmethod
    def create(
        cls,
        account: str,
        issuer: str,
        algorithm: Algorithm = Algorithm.SHA1,
        digits: int = DEFAULT_DIGITS,
        policy: LockoutPolicy = DEFAULT_POLICY,
    ) -> "Credential":
        """
        Create a credential with a fresh random secret.

        Raises:
            UnsupportedAlgorithm: If ``algorithm`` is not SHA1/SHA256/SHA512.
            ValueError:           On empty account/issuer or digits outside 6-8.
        """
        algorithm = resolve_algorithm(algorithm)
        if not account:
            raise ValueError("Account must not be empty.")
        if not issuer:
            raise ValueError("Issuer must not be empty.")
        validate_digits(digits)
        credential = cls(
            secret_key=generate_secret(algorithm),
            account=account,
            issuer=issuer,
            algorithm=algorithm,
            digits=digits,
            policy=policy,
        )
        logger.info("Created %s credential for %s", algorithm.value, credential._display_name)
        return credential

    # ── Immutable parameters ─────────────────────────────────────────────

    @property
    def secret_key(self) -> bytes:
        return self._secret_key

    @property
    def algorithm(self) -> Algorithm:
        return self._algorithm

    @property
    def digits(self) -> int:
        return self._digits

    @property
    def step_size(self) -> int:
        return self._step_size

    # ── Code generation / validation ─────────────────────────────────────

    def generate(self, now: Optional[float] = None) -> str:
        """Return the code for the time step containing ``now`` (default: current time)."""
        self._require_key()
        return generate_totp(self._secret_key, self._digits, self._step_size, self._algorithm, now)

    def validate(self, code: str, now: Optional[float] = None) -> None:
        """
        Validate a submitted code and update the credential state.

        Returns None on success; every failure is raised.

        Raises:
            UninitializedCredential: On a zero-value credential.
            MalformedCode:           Empty, non-numeric or wrong-length code.
            LockedOut:               Failure ceiling reached and backoff pending.
            CodeMismatch:            No offset in the drift window matched.
            ReplayedCode:            The code was already accepted.
        """
        self._require_key()
        code = normalize_code(code, self._digits)
        t = time.time() if now is None else now

        if self.policy.is_locked_out(
            self.total_verification_failures, self.last_verification_time, t
        ):
            logger.warning("Validation for %s rejected: locked out", self._display_name)
            raise LockedOut("Too many failed attempts. Try again later.")

        offset = validate_with_drift(
            self._secret_key,
            code,
            t,
            self._step_size,
            self._digits,
            self._algorithm,
            self.client_offset,
        )
        self.last_verification_time = int(t)

        if offset is None:
            self.total_verification_failures = self.policy.record_failure(
                self.total_verification_failures
            )
            logger.info(
                "Code mismatch for %s (%d consecutive failures)",
                self._display_name,
                self.total_verification_failures,
            )
            raise CodeMismatch("Code does not match.")

        if is_replay(self.last_used_otp, code):
            logger.warning("Replayed code rejected for %s", self._display_name)
            raise ReplayedCode("Code has already been used.")

        self.client_offset = offset
        self.last_used_otp = fingerprint(code)
        self.total_verification_failures = 0
        logger.debug("Code accepted for %s at offset %d", self._display_name, offset)

    # ── Provisioning ─────────────────────────────────────────────────────

    def provisioning_label(self) -> str:
        """Return the URL-escaped ``issuer:account`` label."""
        self._require_identity()
        return build_label(self.issuer, self.account)

    def provisioning_url(self) -> str:
        """Return the ``otpauth://totp/`` URI for authenticator apps."""
        self._require_identity()
        return build_provisioning_url(
            secret_key=self._secret_key,
            account=self.account,
            issuer=self.issuer,
            algorithm=self._algorithm,
            digits=self._digits,
            period=self._step_size,
        )

    @classmethod
    def from_provisioning_url(
        cls, uri: str, policy: LockoutPolicy = DEFAULT_POLICY
    ) -> "Credential":
        """
        Import a credential from an ``otpauth://totp/`` URI.

        Raises:
            ValueError: If the URI is malformed or not a TOTP URI.
        """
        parsed = parse_otpauth_uri(uri)
        return cls(
            secret_key=decode_secret(parsed.secret),
            account=parsed.account_name,
            issuer=parsed.issuer,
            algorithm=parsed.algorithm,
            digits=parsed.digits,
            step_size=parsed.period,
            policy=policy,
        )

    # ── Serialization ────────────────────────────────────────────────────

    def to_bytes(self, version: int = serializer.CURRENT_VERSION) -> bytes:
        """Serialize the credential state (issuer excluded)."""
        self._require_key()
        return serializer.encode(self, version=version)

    @classmethod
    def from_bytes(
        cls, data: bytes, issuer: str, policy: LockoutPolicy = DEFAULT_POLICY
    ) -> "Credential":
        """
        Restore a credential serialized with :meth:`to_bytes`.

        ``issuer`` comes from the caller's lookup context; it is not stored
        in the blob.

        Raises:
            MalformedBlob:          Truncated or invalid data.
            UnsupportedBlobVersion: Unknown format version.
        """
        return cls(issuer=issuer, policy=policy, **serializer.decode(data))

    # ── Internals ────────────────────────────────────────────────────────

    @property
    def _display_name(self) -> str:
        return f"{self.issuer}:{self.account}"

    def _require_key(self) -> None:
        if not self._secret_key or self._step_size <= 0:
            raise UninitializedCredential("Credential has no secret key.")

    def _require_identity(self) -> None:
        self._require_key()
        if not self.issuer or not self.account:
            raise UninitializedCredential("Credential has no issuer or account.")

    def __repr__(self) -> str:
        return (
            f"Credential(issuer={self.issuer!r}, account={self.account!r}, "
            f"algorithm={self._algorithm.value}, digits={self._digits}, "
            f"step_size={self._step_size})"
        )
