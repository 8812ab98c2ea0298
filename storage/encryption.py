"""
Storage-level encryption of serialized credentials.

Wraps core.crypto to seal credential blobs with AES-256-GCM. The issuer the
credential belongs to is bound as associated data, so a sealed blob only opens
under the issuer it was sealed for. The caller is responsible for key
management; keys are never written to disk through this module.
"""

import base64
import binascii
import logging

from cryptography.exceptions import InvalidTag

from core import crypto
from core.credential import Credential
from core.errors import MalformedBlob
from core.policy import DEFAULT_POLICY, LockoutPolicy

logger = logging.getLogger(__name__)


class CredentialSealer:
    """Encrypt / decrypt serialized credentials using AES-256-GCM."""

    def __init__(self, key: bytes) -> None:
        """
        Args:
            key: 32-byte AES key, e.g. derived with :func:`core.crypto.derive_key`.
        """
        if len(key) != crypto.KEY_SIZE:
            raise ValueError("Key must be 32 bytes.")
        self._key = key

    @classmethod
    def from_password(cls, password: str, salt: bytes) -> "CredentialSealer":
        """Derive the sealing key from ``password`` and a stored ``salt``."""
        return cls(crypto.derive_key(password, salt))

    # ── Public API ───────────────────────────────────────────────────────

    def seal(self, credential: Credential) -> str:
        """
        Serialize and encrypt ``credential``.

        Returns:
            URL-safe base64 string safe for text storage.
        """
        blob = crypto.encrypt(
            credential.to_bytes(), self._key, _associated_data(credential.issuer)
        )
        return base64.urlsafe_b64encode(blob).decode("ascii")

    def unseal(
        self, encoded: str, issuer: str, policy: LockoutPolicy = DEFAULT_POLICY
    ) -> Credential:
        """
        Decrypt a string produced by :meth:`seal` and restore the credential.

        Raises:
            MalformedBlob: On bad base64, integrity failure (wrong key, wrong
                issuer, tampering) or an invalid inner blob.
        """
        try:
            blob = base64.urlsafe_b64decode(encoded.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise MalformedBlob(f"Invalid base64 sealed credential: {exc}") from exc
        if len(blob) <= crypto.NONCE_SIZE:
            raise MalformedBlob("Sealed credential is truncated.")
        try:
            data = crypto.decrypt(blob, self._key, _associated_data(issuer))
        except InvalidTag as exc:
            logger.warning("Sealed credential for issuer %s failed authentication", issuer)
            raise MalformedBlob("Sealed credential failed authentication.") from exc
        return Credential.from_bytes(data, issuer, policy=policy)

    def wipe_key(self) -> None:
        """Overwrite the in-memory key with zeros (best-effort)."""
        self._key = b"\x00" * len(self._key)


def _associated_data(issuer: str) -> bytes:
    return issuer.encode("utf-8")
