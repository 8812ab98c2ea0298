"""
Command-line entry point.

Usage
-----
    python main.py new    --issuer Example --account alice@example.com --state alice.otp
    python main.py code   --issuer Example --state alice.otp
    python main.py verify --issuer Example --state alice.otp 123456
    python main.py url    --issuer Example --state alice.otp

The state file holds the base64-wrapped credential blob. ``verify`` writes the
updated state back so lockout and replay protection survive between runs.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.credential import Credential
from core.errors import OTPError
from core.totp import Algorithm, DEFAULT_DIGITS, remaining_seconds
from core.utils import format_otp
from storage import serializer

logger = logging.getLogger("totpguard")


# ── Logging setup ─────────────────────────────────────────────────────────────

def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Keep key handling quiet regardless of verbosity
    logging.getLogger("core.crypto").setLevel(logging.WARNING)
    logging.getLogger("storage.encryption").setLevel(logging.WARNING)


# ── State file ────────────────────────────────────────────────────────────────

def _load(path: Path, issuer: str) -> Credential:
    text = path.read_text(encoding="ascii")
    return Credential.from_bytes(serializer.from_base64(text), issuer)


def _save(path: Path, credential: Credential) -> None:
    path.write_text(serializer.to_base64(credential.to_bytes()) + "\n", encoding="ascii")


# ── Commands ──────────────────────────────────────────────────────────────────

def _cmd_new(args: argparse.Namespace) -> int:
    if args.state.exists() and not args.force:
        print(f"{args.state} already exists (use --force to overwrite).", file=sys.stderr)
        return 1
    credential = Credential.create(
        account=args.account,
        issuer=args.issuer,
        algorithm=args.algorithm,
        digits=args.digits,
    )
    _save(args.state, credential)
    print(credential.provisioning_url())
    return 0


def _cmd_code(args: argparse.Namespace) -> int:
    credential = _load(args.state, args.issuer)
    print(f"{format_otp(credential.generate())}  ({remaining_seconds(credential.step_size)}s)")
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    credential = _load(args.state, args.issuer)
    try:
        credential.validate(args.code)
    finally:
        # Failures mutate state too (counter, timestamp)
        _save(args.state, credential)
    print("OK")
    return 0


def _cmd_url(args: argparse.Namespace) -> int:
    print(_load(args.state, args.issuer).provisioning_url())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="totpguard", description="TOTP credential tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--issuer", required=True)
        p.add_argument("--state", required=True, type=Path, help="credential state file")

    p_new = sub.add_parser("new", help="create a credential and print its URL")
    add_common(p_new)
    p_new.add_argument("--account", required=True)
    p_new.add_argument(
        "--algorithm", default=Algorithm.SHA1.value, choices=[a.value for a in Algorithm]
    )
    p_new.add_argument("--digits", type=int, default=DEFAULT_DIGITS)
    p_new.add_argument("--force", action="store_true", help="overwrite an existing state file")
    p_new.set_defaults(func=_cmd_new)

    p_code = sub.add_parser("code", help="print the current code")
    add_common(p_code)
    p_code.set_defaults(func=_cmd_code)

    p_verify = sub.add_parser("verify", help="validate a code and update state")
    add_common(p_verify)
    p_verify.add_argument("code")
    p_verify.set_defaults(func=_cmd_verify)

    p_url = sub.add_parser("url", help="print the provisioning URL")
    add_common(p_url)
    p_url.set_defaults(func=_cmd_url)

    return parser


# ── Main ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except (OTPError, ValueError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
