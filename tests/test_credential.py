"""Tests for core.credential, core.drift, core.policy and core.guard."""

import hashlib
import urllib.parse
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.credential import Credential
from core.drift import candidate_offsets, validate_with_drift
from core.errors import (
    CodeMismatch,
    LockedOut,
    MalformedCode,
    ReplayedCode,
    UninitializedCredential,
    UnsupportedAlgorithm,
    VerificationError,
)
from core.guard import CredentialGuard
from core.hotp import generate_totp
from core.policy import BACKOFF_SECONDS, MAX_VERIFICATION_FAILURES, LockoutPolicy, is_replay
from core.totp import Algorithm

SHA1_KEY = b"12345678901234567890"
NOW = 1_600_000_000.0
STEP = 30


# ── Fixtures / helpers ────────────────────────────────────────────────────────

@pytest.fixture()
def credential() -> Credential:
    """Credential with a fixed RFC 6238 key so codes are deterministic."""
    return Credential(
        secret_key=SHA1_KEY,
        account="info@sec51.com",
        issuer="Sec51",
        algorithm=Algorithm.SHA1,
        digits=8,
    )


def code_at(credential: Credential, offset: int, now: float = NOW) -> str:
    return credential.generate(now=now + offset * STEP)


def wrong_code(credential: Credential, now: float = NOW) -> str:
    """Return a code that matches no offset in the drift window."""
    valid = {code_at(credential, o, now) for o in (-1, 0, 1)}
    for digit in "0123456789":
        candidate = digit * credential.digits
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")


# ── Construction ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "algorithm,size",
    [(Algorithm.SHA1, 20), (Algorithm.SHA256, 32), (Algorithm.SHA512, 64)],
)
def test_create_defaults(algorithm: Algorithm, size: int) -> None:
    c = Credential.create("alice@example.com", "Example", algorithm, 6)
    assert len(c.secret_key) == size
    assert c.algorithm is algorithm
    assert c.step_size == 30
    assert c.client_offset == 0
    assert c.total_verification_failures == 0
    assert c.last_verification_time == 0
    assert c.last_used_otp == ""


def test_create_generates_distinct_secrets() -> None:
    a = Credential.create("a", "Example")
    b = Credential.create("a", "Example")
    assert a.secret_key != b.secret_key


def test_create_rejects_unsupported_algorithm() -> None:
    with pytest.raises(UnsupportedAlgorithm):
        Credential.create("alice", "Example", "MD5")


@pytest.mark.parametrize("digits", [4, 5, 9, 10])
def test_create_rejects_bad_digits(digits: int) -> None:
    with pytest.raises(ValueError):
        Credential.create("alice", "Example", Algorithm.SHA1, digits)


@pytest.mark.parametrize("account,issuer", [("", "Example"), ("alice", "")])
def test_create_requires_identity(account: str, issuer: str) -> None:
    with pytest.raises(ValueError):
        Credential.create(account, issuer)


def test_parameters_are_read_only(credential: Credential) -> None:
    for name in ("secret_key", "algorithm", "digits", "step_size"):
        with pytest.raises(AttributeError):
            setattr(credential, name, None)


def test_repr_hides_secret(credential: Credential) -> None:
    text = repr(credential)
    assert "Sec51" in text
    assert SHA1_KEY.decode() not in text
    assert SHA1_KEY.hex() not in text


# ── Generation ────────────────────────────────────────────────────────────────

def test_generate_matches_rfc_vector(credential: Credential) -> None:
    assert credential.generate(now=59) == "94287082"
    assert credential.generate(now=1111111109) == "07081804"


@pytest.mark.parametrize("now", [59, NOW, NOW + STEP])
def test_generate_agrees_with_generate_totp(credential: Credential, now: float) -> None:
    assert credential.generate(now=now) == generate_totp(
        SHA1_KEY, digits=8, period=STEP, algorithm=Algorithm.SHA1, timestamp=now
    )


def test_generate_uses_current_time(credential: Credential) -> None:
    assert len(credential.generate()) == 8


# ── Validation: success / replay ──────────────────────────────────────────────

def test_validate_accepts_current_code(credential: Credential) -> None:
    code = code_at(credential, 0)
    credential.validate(code, now=NOW)
    assert credential.total_verification_failures == 0
    assert credential.last_verification_time == int(NOW)
    assert credential.last_used_otp == hashlib.sha256(code.encode()).hexdigest()


def test_validate_accepts_grouped_code(credential: Credential) -> None:
    code = code_at(credential, 0)
    credential.validate(f"{code[:4]} {code[4:]}", now=NOW)


def test_replayed_code_rejected(credential: Credential) -> None:
    code = code_at(credential, 0)
    credential.validate(code, now=NOW)
    with pytest.raises(ReplayedCode):
        credential.validate(code, now=NOW + 1)


def test_replay_does_not_count_as_failure(credential: Credential) -> None:
    code = code_at(credential, 0)
    credential.validate(code, now=NOW)
    for _ in range(5):
        with pytest.raises(ReplayedCode):
            credential.validate(code, now=NOW)
    assert credential.total_verification_failures == 0
    # Still not locked out: the next fresh code is accepted
    credential.validate(code_at(credential, 1), now=NOW)


def test_is_replay() -> None:
    fp = hashlib.sha256(b"123456").hexdigest()
    assert is_replay(fp, "123456")
    assert not is_replay(fp, "654321")
    assert not is_replay("", "123456")


# ── Validation: drift ─────────────────────────────────────────────────────────

@pytest.mark.parametrize("offset", [-1, 0, 1])
def test_drift_window_accepted(credential: Credential, offset: int) -> None:
    credential.validate(code_at(credential, offset), now=NOW)
    assert credential.client_offset == offset


@pytest.mark.parametrize("offset", [-2, 2])
def test_outside_drift_window_rejected(credential: Credential, offset: int) -> None:
    code = code_at(credential, offset)
    assert code not in {code_at(credential, o) for o in (-1, 0, 1)}
    with pytest.raises(CodeMismatch):
        credential.validate(code, now=NOW)
    assert credential.total_verification_failures == 1


def test_client_offset_tracks_each_success(credential: Credential) -> None:
    for offset in (0, -1, 1):
        credential.validate(code_at(credential, offset), now=NOW)
        assert credential.client_offset == offset


@pytest.mark.parametrize(
    "client_offset,expected",
    [(0, [0, -1, 1]), (-1, [-1, 0, 1]), (1, [1, 0, -1]), (5, [0, -1, 1])],
)
def test_candidate_offsets_prefer_learned_offset(client_offset: int, expected: list) -> None:
    assert list(candidate_offsets(client_offset)) == expected


@pytest.mark.parametrize("client_offset", [-1, 0, 1])
def test_colliding_codes_resolve_to_current_step(
    monkeypatch: pytest.MonkeyPatch, client_offset: int
) -> None:
    monkeypatch.setattr("core.drift.truncated_code", lambda *args, **kwargs: "123456")
    cred = Credential(
        secret_key=SHA1_KEY, account="alice", issuer="Example", digits=6,
        client_offset=client_offset,
    )

    cred.validate("123456", now=NOW)

    assert cred.client_offset == 0


def test_collision_between_equal_distances_keeps_learned_offset(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    current = int(NOW) // STEP

    def fake_code(secret_key, counter_bytes, digits, algorithm):
        return "000000" if int.from_bytes(counter_bytes, "big") == current else "123456"

    monkeypatch.setattr("core.drift.truncated_code", fake_code)

    assert validate_with_drift(SHA1_KEY, "123456", NOW, STEP, 6, Algorithm.SHA1, 1) == 1
    assert validate_with_drift(SHA1_KEY, "123456", NOW, STEP, 6, Algorithm.SHA1, -1) == -1
    assert validate_with_drift(SHA1_KEY, "123456", NOW, STEP, 6, Algorithm.SHA1) == -1


def test_validate_with_drift_returns_none_on_mismatch(credential: Credential) -> None:
    result = validate_with_drift(
        SHA1_KEY, wrong_code(credential), NOW, STEP, 8, Algorithm.SHA1
    )
    assert result is None


def test_validate_with_drift_near_epoch() -> None:
    # Offset -1 at counter 0 would be negative; it is skipped, not an error
    assert validate_with_drift(SHA1_KEY, "94287082", 59, STEP, 8, Algorithm.SHA1) == 0
    assert validate_with_drift(SHA1_KEY, "94287082", 5, STEP, 8, Algorithm.SHA1) == 1


# ── Validation: lockout / backoff ─────────────────────────────────────────────

def test_failures_saturate_at_ceiling(credential: Credential) -> None:
    bad = wrong_code(credential)
    for _ in range(10):
        with pytest.raises(VerificationError):
            credential.validate(bad, now=NOW)
    assert credential.total_verification_failures == MAX_VERIFICATION_FAILURES


def test_locked_out_after_three_mismatches(credential: Credential) -> None:
    bad = wrong_code(credential)
    for _ in range(MAX_VERIFICATION_FAILURES):
        with pytest.raises(CodeMismatch):
            credential.validate(bad, now=NOW)

    good = code_at(credential, 0)
    with pytest.raises(LockedOut):
        credential.validate(good, now=NOW + 10)
    # The gate does not touch state
    assert credential.total_verification_failures == MAX_VERIFICATION_FAILURES
    assert credential.last_verification_time == int(NOW)
    assert credential.last_used_otp == ""


def test_lockout_clears_after_backoff(credential: Credential) -> None:
    bad = wrong_code(credential)
    for _ in range(MAX_VERIFICATION_FAILURES):
        with pytest.raises(CodeMismatch):
            credential.validate(bad, now=NOW)

    later = NOW + BACKOFF_SECONDS
    credential.validate(credential.generate(now=later), now=later)
    assert credential.total_verification_failures == 0


def test_same_code_accepted_once_lockout_rewound(credential: Credential) -> None:
    good = code_at(credential, 0)
    bad = wrong_code(credential)
    for _ in range(MAX_VERIFICATION_FAILURES):
        with pytest.raises(CodeMismatch):
            credential.validate(bad, now=NOW)
    with pytest.raises(LockedOut):
        credential.validate(good, now=NOW)

    credential.last_verification_time = int(NOW) - 10 * 60
    credential.validate(good, now=NOW)
    assert credential.total_verification_failures == 0


def test_mismatch_after_backoff_rearms_lockout(credential: Credential) -> None:
    bad = wrong_code(credential)
    for _ in range(MAX_VERIFICATION_FAILURES):
        with pytest.raises(CodeMismatch):
            credential.validate(bad, now=NOW)

    later = NOW + BACKOFF_SECONDS
    with pytest.raises(CodeMismatch):
        credential.validate(wrong_code(credential, later), now=later)
    assert credential.total_verification_failures == MAX_VERIFICATION_FAILURES
    with pytest.raises(LockedOut):
        credential.validate(credential.generate(now=later), now=later)


def test_success_resets_partial_failures(credential: Credential) -> None:
    bad = wrong_code(credential)
    for _ in range(2):
        with pytest.raises(CodeMismatch):
            credential.validate(bad, now=NOW)
    credential.validate(code_at(credential, 0), now=NOW)
    assert credential.total_verification_failures == 0


def test_custom_policy() -> None:
    policy = LockoutPolicy(max_failures=1, backoff_seconds=60)
    c = Credential(secret_key=SHA1_KEY, account="a", issuer="b", digits=8, policy=policy)
    with pytest.raises(CodeMismatch):
        c.validate(wrong_code(c), now=NOW)
    with pytest.raises(LockedOut):
        c.validate(c.generate(now=NOW), now=NOW + 59)
    c.validate(c.generate(now=NOW + 60), now=NOW + 60)


def test_policy_backoff_boundary() -> None:
    policy = LockoutPolicy()
    assert not policy.backoff_elapsed(1000, 1000)
    assert not policy.backoff_elapsed(1000, 1000 + BACKOFF_SECONDS - 1)
    assert policy.backoff_elapsed(1000, 1000 + BACKOFF_SECONDS)
    assert policy.record_failure(MAX_VERIFICATION_FAILURES) == MAX_VERIFICATION_FAILURES


# ── Validation: malformed input ──────────────────────────────────────────────

@pytest.mark.parametrize("code", ["", "abcdefgh", "1234567", "123456789"])
def test_malformed_code_rejected_without_state_change(
    credential: Credential, code: str
) -> None:
    with pytest.raises(MalformedCode):
        credential.validate(code, now=NOW)
    assert credential.total_verification_failures == 0
    assert credential.last_verification_time == 0


# ── Uninitialized credential ─────────────────────────────────────────────────

@pytest.mark.parametrize(
    "operation",
    [
        lambda c: c.generate(now=NOW),
        lambda c: c.validate("123456", now=NOW),
        lambda c: c.provisioning_label(),
        lambda c: c.provisioning_url(),
        lambda c: c.to_bytes(),
    ],
)
def test_zero_value_credential_raises(operation) -> None:
    with pytest.raises(UninitializedCredential):
        operation(Credential())


def test_url_requires_issuer_and_account() -> None:
    c = Credential(secret_key=SHA1_KEY, account="alice")
    with pytest.raises(UninitializedCredential):
        c.provisioning_url()
    # A key alone is enough to generate codes
    assert len(c.generate(now=NOW)) == 6


# ── Provisioning ─────────────────────────────────────────────────────────────

def test_provisioning_label(credential: Credential) -> None:
    label = credential.provisioning_label()
    assert label == "Sec51:info%40sec51.com"
    assert urllib.parse.unquote(label) == "Sec51:info@sec51.com"


def test_provisioning_url(credential: Credential) -> None:
    assert credential.provisioning_url() == (
        "otpauth://totp/Sec51:info%40sec51.com"
        "?secret=GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
        "&issuer=Sec51&algorithm=SHA1&digits=8&period=30"
    )


def test_provisioning_url_escapes_issuer() -> None:
    c = Credential(secret_key=SHA1_KEY, account="bob smith", issuer="My Org")
    url = c.provisioning_url()
    assert url.startswith("otpauth://totp/My%20Org:bob%20smith?")
    assert "&issuer=My%20Org&" in url


def test_from_provisioning_url_roundtrip() -> None:
    original = Credential.create("alice@example.com", "Example", Algorithm.SHA256, 8)
    imported = Credential.from_provisioning_url(original.provisioning_url())
    assert imported.secret_key == original.secret_key
    assert imported.account == "alice@example.com"
    assert imported.issuer == "Example"
    assert imported.algorithm is Algorithm.SHA256
    assert imported.digits == 8
    assert imported.generate(now=NOW) == original.generate(now=NOW)


# ── Guard ─────────────────────────────────────────────────────────────────────

def test_guard_accepts_a_code_once_across_threads(credential: Credential) -> None:
    guard = CredentialGuard(credential)
    code = code_at(credential, 0)

    def attempt(_: int) -> str:
        try:
            guard.validate(code, now=NOW)
            return "ok"
        except ReplayedCode:
            return "replay"

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count("ok") == 1
    assert results.count("replay") == 15


def test_guard_delegates(credential: Credential) -> None:
    guard = CredentialGuard(credential)
    assert guard.generate(now=59) == "94287082"
    assert guard.provisioning_url() == credential.provisioning_url()
    assert guard.to_bytes() == credential.to_bytes()
