from __future__ import annotations

import os
import re
from typing import Callable

from lockpid.errors import KernelCallError
from lockpid.models import PID_MAX, Holder, Liveness

_PID_RE = re.compile(rb"\s*([+-]?\d+)")
Probe = Callable[[int], Liveness]


def parse_pid(content: bytes) -> int | None:
    """Return the PID recorded in ``content``, or None if there is no usable one."""
    match = _PID_RE.match(content)
    if match is None:
        return None
    pid = int(match.group(1))
    # 0 and negative values address process groups, never a single holder
    if pid <= 0 or pid > PID_MAX:
        return None
    return pid


def probe_pid(pid: int, lock_file: str = "") -> Liveness:
    try:
        os.kill(pid, 0)  # existence check only, nothing is delivered
    except ProcessLookupError:
        return Liveness.DEAD
    except PermissionError:
        # exists but belongs to someone else; we can't confirm it died
        return Liveness.ALIVE
    except OSError as exc:
        raise KernelCallError.from_os_error("kill", lock_file, exc) from exc
    return Liveness.ALIVE


def inspect_holder(content: bytes, owner_pid: int, probe: Probe = probe_pid) -> Holder:
    pid = parse_pid(content)
    if pid is None:
        return Holder(pid=None, liveness=Liveness.DEAD)
    liveness = probe(pid)
    return Holder(pid=pid, liveness=liveness, is_ours=liveness is Liveness.ALIVE and pid == owner_pid)
