"""
Lockout/backoff and replay rules applied around code matching.

Lockout: after ``max_failures`` consecutive mismatches further attempts are
rejected until ``backoff_seconds`` have passed since the last verification.

Replay: the SHA-256 fingerprint of the last accepted code is kept so the same
code cannot be accepted twice in a row.
"""

from dataclasses import dataclass

from core.crypto import constant_time_compare, fingerprint

MAX_VERIFICATION_FAILURES = 3
BACKOFF_SECONDS = 5 * 60


@dataclass(frozen=True)
class LockoutPolicy:
    """Failure ceiling and cooldown applied by ``Credential.validate``."""

    max_failures: int = MAX_VERIFICATION_FAILURES
    backoff_seconds: int = BACKOFF_SECONDS

    def backoff_elapsed(self, last_verification_time: int, now: float) -> bool:
        """Return True once the cooldown since ``last_verification_time`` is over."""
        return now - last_verification_time >= self.backoff_seconds

    def is_locked_out(self, failures: int, last_verification_time: int, now: float) -> bool:
        """Return True if attempts must be rejected without checking the code."""
        return failures >= self.max_failures and not self.backoff_elapsed(
            last_verification_time, now
        )

    def record_failure(self, failures: int) -> int:
        """Return the failure counter after one more mismatch, capped at the ceiling."""
        return min(failures + 1, self.max_failures)


DEFAULT_POLICY = LockoutPolicy()


def is_replay(last_used_otp: str, code: str) -> bool:
    """Return True if ``code`` is the last accepted code."""
    if not last_used_otp:
        return False
    return constant_time_compare(last_used_otp, fingerprint(code))
