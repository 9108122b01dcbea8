"""Error types raised by the lock engine and its driver."""

from __future__ import annotations

import errno as errno_codes
import os

from lockpid.models import UNKNOWN_EXIT_STATUS, USAGE_EXIT_STATUS


class LockpidError(RuntimeError):
    """Base class for every lockpid failure."""


class UsageError(LockpidError):
    """Invalid invocation; raised before any kernel state is touched."""

    exit_status = USAGE_EXIT_STATUS


class LockAcquireError(LockpidError):
    pass


class KernelCallError(LockpidError):
    """A kernel call on the lock file failed with something other than contention."""

    def __init__(self, call: str, lock_file: str, errno: int | None, detail: str = ""):
        self.call = call
        self.lock_file = lock_file
        self.errno = errno
        self.detail = detail or _describe(call, errno)
        super().__init__(f"{lock_file}: {call}: {self.detail}")

    @classmethod
    def from_os_error(cls, call: str, lock_file: str, exc: OSError) -> KernelCallError:
        return cls(call, lock_file, exc.errno)

    @property
    def exit_status(self) -> int:
        if self.errno is None or self.errno <= 0:
            return UNKNOWN_EXIT_STATUS
        return self.errno


def _describe(call: str, errno: int | None) -> str:
    if errno == errno_codes.ELOOP and call == "open":
        return "unsafe for lockfile to be a symlink"
    if errno is None or errno <= 0:
        return "unknown error"
    return os.strerror(errno)
