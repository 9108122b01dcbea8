"""
lockpid.lock
──────────────────
Race-free acquire / borrow / release of a PID lock file.

Every read-probe-write of the file content happens while holding an
exclusive flock on our own open file description, so two contenders can
never both decide a stale record is free and both write their PID.
"""
from __future__ import annotations

import contextlib
import errno
import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from lockpid.audit import lock_event
from lockpid.errors import KernelCallError, LockAcquireError
from lockpid.liveness import Probe, inspect_holder, probe_pid
from lockpid.models import (
    PID_FIELD_WIDTH,
    PID_READ_SIZE,
    Holder,
    Liveness,
    LockOutcome,
    LockRequest,
    LockResult,
)


class LockEngine:
    def __init__(
        self,
        request: LockRequest,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        probe: Probe | None = None,
    ):
        self.request = request
        self.lock_file = request.lock_path
        self._sleep = sleep
        self._clock = clock
        self._probe = probe or (lambda pid: probe_pid(pid, self.lock_file))
        self._holder_pid: int | None = None

    # ── driver ────────────────────────────────────────────────────

    def run(self) -> LockResult:
        try:
            result = self._run()
        except KernelCallError as exc:
            self._log("error", error=str(exc), level=logging.ERROR)
            raise
        level = logging.WARNING if result.outcome is LockOutcome.NOT_OURS else logging.INFO
        self._log(result.outcome.value, level=level)
        return result

    def _run(self) -> LockResult:
        request = self.request
        deadline = None
        if request.wait and request.wait_seconds is not None:
            deadline = self._clock() + request.wait_seconds

        while True:
            result = self._attempt()
            if result.outcome is not LockOutcome.BUSY or not request.wait:
                return result
            # the handle is already closed, so other contenders get a turn
            self._sleep(request.sleep_seconds)
            if deadline is not None and self._clock() > deadline:
                return result
            self._log("retry", level=logging.DEBUG)

    def _attempt(self) -> LockResult:
        while True:
            fd = self.open_lock_file()
            try:
                result = self._decide(fd)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.close(fd)
                raise

            if result is None:
                # released and unlinked while we waited for flock; start over on the new file
                self.close(fd)
                continue
            if result.outcome is LockOutcome.ACQUIRED:
                self.close_committed(fd)
            else:
                self.close(fd)
            return result

    def _decide(self, fd: int) -> LockResult | None:
        if not self.try_lock(fd):
            return self._busy(flock_busy=True)
        if not self.is_current(fd):
            return None

        holder = self.read_holder(fd)
        if self.request.release:
            return self._release(holder)
        if holder.is_foreign:
            return self._busy()
        if holder.is_ours and self.request.new_pid is None:
            return LockResult(LockOutcome.ALREADY_HELD, self.lock_file, holder_pid=holder.pid)

        self.write_pid(fd)
        return LockResult(
            LockOutcome.ACQUIRED,
            self.lock_file,
            holder_pid=holder.pid,
            written_pid=self.request.written_pid,
        )

    def _release(self, holder: Holder) -> LockResult:
        if holder.is_ours:
            self.remove_lock_file()
            return LockResult(LockOutcome.RELEASED, self.lock_file, holder_pid=holder.pid)
        if holder.is_foreign:
            return self._busy()
        return LockResult(LockOutcome.NOT_OURS, self.lock_file, holder_pid=holder.pid)

    def _busy(self, flock_busy: bool = False) -> LockResult:
        return LockResult(LockOutcome.BUSY, self.lock_file, holder_pid=self._holder_pid, flock_busy=flock_busy)

    # ── kernel steps ──────────────────────────────────────────────

    def open_lock_file(self) -> int:
        flags = os.O_RDWR | os.O_NOFOLLOW
        if not self.request.release:
            flags |= os.O_CREAT

        did_retry = False
        while True:
            try:
                # let umask control who can reclaim a stale lock
                return os.open(self.lock_file, flags, 0o666)
            except OSError as exc:
                if did_retry or exc.errno != errno.EACCES or os.getuid() != 0:
                    raise KernelCallError.from_os_error("open", self.lock_file, exc) from exc
            # FUSE or NFS may map ownership oddly; the retried open reports any failure
            with contextlib.suppress(OSError):
                os.chown(self.lock_file, 0, 0)
            did_retry = True

    def try_lock(self, fd: int) -> bool:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return True
            except BlockingIOError:
                if not self.request.release:
                    return False
            except OSError as exc:
                raise KernelCallError.from_os_error("flock", self.lock_file, exc) from exc
            # a release has to happen eventually, whatever the wait policy says
            self._sleep(self.request.sleep_seconds)

    def is_current(self, fd: int) -> bool:
        """True if ``fd`` still refers to the file at the lock path."""
        try:
            opened = os.fstat(fd)
        except OSError as exc:
            raise KernelCallError.from_os_error("fstat", self.lock_file, exc) from exc
        try:
            on_disk = os.stat(self.lock_file, follow_symlinks=False)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise KernelCallError.from_os_error("stat", self.lock_file, exc) from exc
        return (opened.st_dev, opened.st_ino) == (on_disk.st_dev, on_disk.st_ino)

    def read_holder(self, fd: int) -> Holder:
        try:
            content = os.read(fd, PID_READ_SIZE)
        except OSError as exc:
            raise KernelCallError.from_os_error("read", self.lock_file, exc) from exc

        holder = inspect_holder(content, self.request.pid, self._probe)
        if holder.pid is not None:
            self._holder_pid = holder.pid
            if holder.liveness is Liveness.DEAD and not self.request.release:
                self._log("stale_reclaimed")
        return holder

    def write_pid(self, fd: int) -> None:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
        except OSError as exc:
            raise KernelCallError.from_os_error("lseek", self.lock_file, exc) from exc
        try:
            os.ftruncate(fd, 0)
        except OSError as exc:
            raise KernelCallError.from_os_error("ftruncate", self.lock_file, exc) from exc

        # format per FHS: PID right-aligned in a fixed-width field, then newline
        line = f"{self.request.written_pid:{PID_FIELD_WIDTH}d}\n".encode("ascii")
        try:
            written = self._write(fd, line)
        except OSError as exc:
            self._drop_partial(fd)
            raise KernelCallError.from_os_error("write", self.lock_file, exc) from exc
        if written != len(line):
            self._drop_partial(fd)
            raise KernelCallError("write", self.lock_file, errno.EIO, f"short write ({written} of {len(line)} bytes)")

    def _write(self, fd: int, data: bytes) -> int:
        return os.write(fd, data)

    def _drop_partial(self, fd: int) -> None:
        # a half-written PID must never pass for a holder; the write error is what gets reported
        with contextlib.suppress(OSError):
            os.ftruncate(fd, 0)

    def close(self, fd: int) -> None:
        try:
            os.close(fd)
        except OSError as exc:
            raise KernelCallError.from_os_error("close", self.lock_file, exc) from exc

    def close_committed(self, fd: int) -> None:
        try:
            os.close(fd)
        except OSError as exc:
            # content might be mangled
            with contextlib.suppress(OSError):
                os.unlink(self.lock_file)
            raise KernelCallError.from_os_error("close", self.lock_file, exc) from exc

    def remove_lock_file(self) -> None:
        if not os.access(self.lock_file, os.W_OK):
            raise KernelCallError("unlink", self.lock_file, errno.EACCES)
        try:
            os.unlink(self.lock_file)
        except OSError as exc:
            raise KernelCallError.from_os_error("unlink", self.lock_file, exc) from exc

    def _log(self, action: str, *, error: str | None = None, level: int = logging.INFO) -> None:
        lock_event(
            action,
            lock_file=self.lock_file,
            pid=self.request.written_pid,
            holder_pid=self._holder_pid,
            error=error,
            level=level,
        )


def acquire(request: LockRequest, **hooks) -> LockResult:
    return LockEngine(request, **hooks).run()


@contextmanager
def pid_lock(path: Path, *, pid: int | None = None, timeout_sec: float = 0.0) -> Iterator[LockResult]:
    """Hold the PID lock at ``path`` for the duration of the block.

    Waits up to ``timeout_sec`` for a busy lock, then raises LockAcquireError.
    A lock this PID already held on entry is left in place on exit.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    request = LockRequest(
        identifier=path.name,
        directory=str(path.parent),
        pid=pid or os.getpid(),
        quiet=True,
        wait_seconds=timeout_sec if timeout_sec > 0 else None,
    )

    result = acquire(request)
    if result.outcome is LockOutcome.BUSY:
        raise LockAcquireError(f"lock busy: {path} (pid {result.holder_pid})")

    try:
        yield result
    finally:
        if result.outcome is LockOutcome.ACQUIRED:
            acquire(request.model_copy(update={"release": True}))
