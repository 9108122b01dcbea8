from __future__ import annotations

import argparse
import sys
from typing import NoReturn, Sequence

from pydantic import ValidationError

from lockpid.config import default_lock_dir, default_sleep_msecs
from lockpid.errors import KernelCallError, UsageError
from lockpid.lock import acquire
from lockpid.models import (
    HOLD_LOCK_EXIT_STATUS,
    LOCK_BUSY_EXIT_STATUS,
    USAGE_EXIT_STATUS,
    LockOutcome,
    LockRequest,
    LockResult,
    is_number,
)

PROG = "lockpid"

_TIME_UNITS = {"": 1, "s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}

_DESCRIPTION = """\
cd to DIR, put PID (default NPID, else the caller's PID) into FILE, then exit 0;
if FILE already holds the PID of another active process, exit {busy};
if there's any other kind of error, exit with errno (typically)."""

_EPILOG = """\
To change the PID in a lock you hold (borrow the lock), use -P.
To wait for the lock, use -w; this checks every {sleep} millisecs (-s changes it);
if it waits longer than -W seconds (optionally followed by s, m, h, d), exit {busy}.
If -H and we already hold the lock, exit {hold}.
-r releases a lock only if you own it.

NOTE: only suitable for local locks, not networked locks.
FILE is flock'ed before its PID is checked or written, to avoid races.
To avoid security risks, this command bombs if FILE is a symlink."""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description=_DESCRIPTION.format(busy=LOCK_BUSY_EXIT_STATUS),
        epilog=_EPILOG.format(
            busy=LOCK_BUSY_EXIT_STATUS,
            hold=HOLD_LOCK_EXIT_STATUS,
            sleep=default_sleep_msecs(),
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-d", "--directory", help=f"lock directory (default {default_lock_dir()})")
    parser.add_argument("-p", "--pid", help="PID to record (default: caller's PID)")
    parser.add_argument("-P", "--new-pid", help="replace our PID in the lock with this one")
    parser.add_argument("-s", "--sleep-msecs", help="poll interval while waiting; implies -w")
    parser.add_argument("-W", "--wait-expiration", help="give up waiting after this long; implies -w")
    parser.add_argument("-w", "--wait", action="store_true", help="wait for the lock to become available")
    parser.add_argument("-q", "--quiet", action="store_true", help="don't announce a busy lock")
    parser.add_argument("-v", "--verbose", action="store_true", help="announce when the lock is acquired")
    parser.add_argument("-H", "--not-hold", action="store_true", help=f"exit {HOLD_LOCK_EXIT_STATUS} if we already hold it")
    parser.add_argument("-r", "--release", action="store_true", help="release the lock if we own it")
    parser.add_argument("files", nargs="*", metavar="file")
    return parser


def parse_time_secs(text: str) -> float:
    """Parse ``30``, ``30s``, ``5m``, ``2h`` or ``1d`` into seconds."""
    raw = text.strip()
    unit = raw[-1:] if raw[-1:].isalpha() else ""
    if unit not in _TIME_UNITS:
        raise UsageError(f"invalid time modifier '{unit}'")
    try:
        number = float(raw[: len(raw) - len(unit)])
    except ValueError as exc:
        raise UsageError(f"'{text}' is an invalid time") from exc
    return number * _TIME_UNITS[unit]


def _parse_float(text: str) -> float:
    try:
        return float(text)
    except ValueError as exc:
        raise UsageError(f"'{text}' is an invalid floating point number") from exc


def _parse_pid(text: str | None, option: str) -> int | None:
    if text is None:
        return None
    try:
        return int(text)
    except ValueError as exc:
        raise UsageError(f"{option}: '{text}' is not a PID") from exc


def parse_request(argv: Sequence[str] | None = None) -> LockRequest:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.files:
        raise UsageError(parser.format_usage().strip())
    if is_number(args.files[0]):
        raise UsageError("lock filename can't be an integer")
    if len(args.files) > 1:
        # "file pid" was the old syntax
        if is_number(args.files[1]):
            raise UsageError(parser.format_usage().strip())
        raise UsageError("multiple locks aren't supported yet")

    fields: dict[str, object] = {
        "identifier": args.files[0],
        "directory": args.directory,
        "release": args.release,
        "wait": args.wait,
        "quiet": args.quiet,
        "verbose": args.verbose,
        "error_if_held": args.not_hold,
    }
    pid = _parse_pid(args.pid, "--pid")
    if pid is not None:
        fields["pid"] = pid
    fields["new_pid"] = _parse_pid(args.new_pid, "--new-pid") or None
    if args.sleep_msecs is not None:
        fields["sleep_msecs"] = _parse_float(args.sleep_msecs)
        fields["wait"] = True
    if args.wait_expiration is not None:
        fields["wait_seconds"] = parse_time_secs(args.wait_expiration)

    try:
        return LockRequest(**fields)
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}" for err in exc.errors())
        raise UsageError(problems) from exc


def report(request: LockRequest, result: LockResult) -> None:
    """Write the human-readable status lines for ``result``."""
    lock_file = request.identifier
    outcome = result.outcome

    if outcome is LockOutcome.BUSY:
        if request.quiet:
            return
        if result.flock_busy and not request.wait:
            print(f"lock '{lock_file}' is busy")
        if result.holder_pid is not None:
            print(f"process {result.holder_pid} holds lock '{lock_file}'")
    elif outcome is LockOutcome.ALREADY_HELD:
        # stdout, so callers can easily ignore it
        print(f"{PROG} {lock_file}: already hold lock")
    elif outcome is LockOutcome.NOT_OURS:
        recorded = f"pid {result.holder_pid}" if result.holder_pid is not None else "no pid"
        print(f"{PROG} -r {lock_file}: file contains {recorded}, not ours", file=sys.stderr)
    elif outcome is LockOutcome.ACQUIRED and request.verbose:
        print(f"caller successfully acquired lock '{lock_file}'")


def _report_error(request: LockRequest, exc: KernelCallError) -> None:
    flag = " -r" if request.release else ""
    print(f"\n{PROG}{flag} {request.identifier}: {exc.call}: {exc.detail}\n", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        request = parse_request(argv)
    except UsageError as exc:
        print(f"{PROG}: {exc}", file=sys.stderr)
        return exc.exit_status
    except ValueError as exc:
        # malformed LOCKPID_* setting
        print(f"{PROG}: {exc}", file=sys.stderr)
        return USAGE_EXIT_STATUS

    try:
        result = acquire(request)
    except KernelCallError as exc:
        _report_error(request, exc)
        return exc.exit_status

    report(request, result)
    return result.exit_status(request.error_if_held)


if __name__ == "__main__":
    raise SystemExit(main())
