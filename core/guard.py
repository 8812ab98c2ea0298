"""
Single-writer access to one credential.

``Credential.validate`` reads and then writes the failure counter, drift
offset and replay fingerprint. Two unsynchronised validations against the same
credential could both pass the lockout gate or both accept one code, so every
state-touching call goes through one lock here.
"""

import threading
from typing import Optional

from core.credential import Credential


class CredentialGuard:
    """Serialise access to a :class:`Credential` across threads."""

    def __init__(self, credential: Credential) -> None:
        self._credential = credential
        self._lock = threading.Lock()

    def validate(self, code: str, now: Optional[float] = None) -> None:
        with self._lock:
            self._credential.validate(code, now)

    def generate(self, now: Optional[float] = None) -> str:
        with self._lock:
            return self._credential.generate(now)

    def to_bytes(self) -> bytes:
        """Snapshot the credential state under the lock."""
        with self._lock:
            return self._credential.to_bytes()

    def provisioning_url(self) -> str:
        with self._lock:
            return self._credential.provisioning_url()
