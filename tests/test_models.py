from __future__ import annotations

import errno
import os

import pytest
from pydantic import ValidationError

from lockpid.errors import KernelCallError, UsageError
from lockpid.models import (
    HOLD_LOCK_EXIT_STATUS,
    LOCK_BUSY_EXIT_STATUS,
    UNKNOWN_EXIT_STATUS,
    USAGE_EXIT_STATUS,
    LockOutcome,
    LockRequest,
    LockResult,
    is_number,
)


class TestLockRequest:
    def test_defaults(self, lock_dir) -> None:
        request = LockRequest(identifier="job")
        assert request.pid == os.getppid()
        assert request.new_pid is None
        assert request.wait is False
        assert request.sleep_msecs == 20.0
        assert request.lock_path == os.path.join(str(lock_dir), "job")
        assert request.written_pid == request.pid

    def test_sleep_default_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOCKPID_SLEEP_MSECS", "5")
        assert LockRequest(identifier="job").sleep_seconds == pytest.approx(0.005)

    @pytest.mark.parametrize("identifier", ["", "123", "1.5", "1e3"])
    def test_rejects_bad_identifier(self, identifier: str) -> None:
        with pytest.raises(ValidationError):
            LockRequest(identifier=identifier)

    @pytest.mark.parametrize("field", ["pid", "new_pid"])
    @pytest.mark.parametrize("value", [0, -3, 2**31])
    def test_rejects_out_of_range_pid(self, field: str, value: int) -> None:
        with pytest.raises(ValidationError):
            LockRequest(identifier="job", **{field: value})

    def test_expiration_implies_wait(self) -> None:
        request = LockRequest(identifier="job", wait_seconds=3)
        assert request.wait is True

    def test_is_frozen(self) -> None:
        request = LockRequest(identifier="job", pid=5)
        with pytest.raises(ValidationError):
            request.pid = 6  # type: ignore[misc]

    def test_written_pid_prefers_replacement(self) -> None:
        assert LockRequest(identifier="job", pid=5, new_pid=9).written_pid == 9

    def test_path_with_slash_skips_default_dir(self) -> None:
        request = LockRequest(identifier="run/job")
        assert not request.uses_directory
        assert request.lock_path == "run/job"

    def test_explicit_directory_always_used(self, tmp_path) -> None:
        request = LockRequest(identifier="run/job", directory=str(tmp_path))
        assert request.uses_directory
        assert request.lock_path == os.path.join(str(tmp_path), "run/job")

    def test_absolute_identifier_stays_absolute(self, tmp_path) -> None:
        target = str(tmp_path / "abs.lock")
        assert LockRequest(identifier=target, directory="/elsewhere").lock_path == target


class TestLockResult:
    @pytest.mark.parametrize(
        ("outcome", "strict", "expected"),
        [
            (LockOutcome.ACQUIRED, False, 0),
            (LockOutcome.RELEASED, True, 0),
            (LockOutcome.ALREADY_HELD, False, 0),
            (LockOutcome.ALREADY_HELD, True, HOLD_LOCK_EXIT_STATUS),
            (LockOutcome.BUSY, False, LOCK_BUSY_EXIT_STATUS),
            (LockOutcome.NOT_OURS, False, LOCK_BUSY_EXIT_STATUS),
        ],
    )
    def test_exit_status(self, outcome: LockOutcome, strict: bool, expected: int) -> None:
        assert LockResult(outcome, "job").exit_status(strict) == expected


class TestErrors:
    def test_exit_status_mirrors_errno(self) -> None:
        assert KernelCallError("open", "job", errno.EACCES).exit_status == errno.EACCES

    @pytest.mark.parametrize("code", [None, 0, -1])
    def test_missing_errno_is_unknown(self, code: int | None) -> None:
        err = KernelCallError("close", "job", code)
        assert err.exit_status == UNKNOWN_EXIT_STATUS
        assert err.detail == "unknown error"

    def test_symlink_message_only_for_open(self) -> None:
        assert KernelCallError("open", "job", errno.ELOOP).detail == "unsafe for lockfile to be a symlink"
        assert KernelCallError("stat", "job", errno.ELOOP).detail == os.strerror(errno.ELOOP)

    def test_from_os_error(self) -> None:
        err = KernelCallError.from_os_error("read", "job", OSError(errno.EIO, "I/O error"))
        assert err.call == "read"
        assert str(err) == f"job: read: {os.strerror(errno.EIO)}"

    def test_usage_status(self) -> None:
        assert UsageError("bad").exit_status == USAGE_EXIT_STATUS


class TestIsNumber:
    @pytest.mark.parametrize("text", ["123", "-4", "+4", "1.5", ".5", "5.", "1e3", "1E-3", " 5", "0x1f", "INF", "nan"])
    def test_numbers(self, text: str) -> None:
        assert is_number(text)

    @pytest.mark.parametrize("text", ["job", "1_0", " 5 ", "5 ", "12abc", "e3", "٣", "0x", None])
    def test_names(self, text: str | None) -> None:
        assert not is_number(text)

    @pytest.mark.parametrize("identifier", ["1_0", " 5 ", "12abc"])
    def test_number_like_names_allowed(self, identifier: str) -> None:
        assert LockRequest(identifier=identifier).identifier == identifier
