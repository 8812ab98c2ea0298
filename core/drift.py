"""
Clock-drift synchronisation.

A client whose clock leads or lags the server produces codes for an adjacent
time step. The synchroniser tries the offset learned on the previous success
first, then the rest of a fixed ±1 step window. Ties go to the smallest offset.
"""

import hmac
from typing import Iterator, Optional

from core.hotp import truncated_code
from core.totp import Algorithm, counter_for, counter_to_bytes

DRIFT_WINDOW = (-1, 0, 1)


def candidate_offsets(client_offset: int = 0) -> Iterator[int]:
    """
    Yield the offsets to try, in order.

    The learned ``client_offset`` comes first when it lies inside the window;
    the remaining offsets follow by ascending distance from the current step.
    """
    if client_offset in DRIFT_WINDOW:
        yield client_offset
    for offset in sorted(DRIFT_WINDOW, key=abs):
        if offset != client_offset:
            yield offset


def validate_with_drift(
    secret_key: bytes,
    code: str,
    now: float,
    step_size: int,
    digits: int,
    algorithm: Algorithm,
    client_offset: int = 0,
) -> Optional[int]:
    """
    Search the drift window for ``code``.

    Args:
        secret_key:    Raw shared secret.
        code:          Normalised submitted code.
        now:           Server Unix timestamp.
        step_size:     Seconds per time step.
        digits:        Code length.
        algorithm:     HMAC algorithm.
        client_offset: Offset learned on the last success.

    Returns:
        The matching step offset, or None if no offset in the window matches.
        When several offsets match, the one closest to the current step wins.
    """
    current = counter_for(now, step_size)
    submitted = code.encode("ascii")

    def matches(offset: int) -> bool:
        counter = current + offset
        if counter < 0:
            return False
        expected = truncated_code(secret_key, counter_to_bytes(counter), digits, algorithm)
        return hmac.compare_digest(submitted, expected.encode("ascii"))

    for offset in candidate_offsets(client_offset):
        if matches(offset):
            # A collision with a closer step resolves to the closer step.
            for closer in sorted(DRIFT_WINDOW, key=abs):
                if abs(closer) < abs(offset) and matches(closer):
                    return closer
            return offset
    return None
