"""Request, result and status types shared by the engine and the CLI."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lockpid.config import default_lock_dir, default_sleep_msecs

# exit status is one byte wide; a shell reports >= 128 when the process died from a signal
UNKNOWN_EXIT_STATUS = 127
USAGE_EXIT_STATUS = 126
LOCK_BUSY_EXIT_STATUS = 125
HOLD_LOCK_EXIT_STATUS = 124

PID_FIELD_WIDTH = 10
PID_READ_SIZE = 16
# largest value a pid_t can hold
PID_MAX = 2**31 - 1


# what strtod(3) consumes in full: leading blanks, sign, decimal or hex float, inf, nan
_NUMBER_RE = re.compile(
    r"[ \t\n\r\f\v]*[+-]?(?:"
    r"(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?"
    r"|0x(?:[0-9a-f]+\.?[0-9a-f]*|\.[0-9a-f]+)(?:p[+-]?\d+)?"
    r"|inf(?:inity)?"
    r"|nan(?:\([0-9a-z_]*\))?"
    r")",
    re.IGNORECASE | re.ASCII,
)


def is_number(text: str | None) -> bool:
    if text is None:
        return False
    return _NUMBER_RE.fullmatch(text) is not None


class LockRequest(BaseModel):
    """Fully validated description of one lockpid invocation."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1)
    directory: str | None = None
    pid: int = Field(default_factory=os.getppid, ge=1, le=PID_MAX)
    new_pid: int | None = Field(default=None, ge=1, le=PID_MAX)
    release: bool = False
    wait: bool = False
    sleep_msecs: float = Field(default_factory=default_sleep_msecs, ge=0)
    wait_seconds: float | None = Field(default=None, ge=0)
    quiet: bool = False
    verbose: bool = False
    error_if_held: bool = False

    @model_validator(mode="before")
    @classmethod
    def _expiration_implies_wait(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("wait_seconds") is not None:
            data = {**data, "wait": True}
        return data

    @field_validator("identifier")
    @classmethod
    def _validate_identifier(cls, value: str) -> str:
        if is_number(value):
            raise ValueError("lock filename can't be an integer")
        return value

    @property
    def uses_directory(self) -> bool:
        # an explicit path is taken as-is unless a directory was asked for
        return "/" not in self.identifier or self.directory is not None

    @property
    def lock_dir(self) -> str:
        return self.directory if self.directory is not None else default_lock_dir()

    @property
    def lock_path(self) -> str:
        if self.uses_directory:
            return os.path.join(self.lock_dir, self.identifier)
        return self.identifier

    @property
    def written_pid(self) -> int:
        return self.new_pid or self.pid

    @property
    def sleep_seconds(self) -> float:
        return self.sleep_msecs / 1000.0


class LockOutcome(str, Enum):
    ACQUIRED = "acquired"
    ALREADY_HELD = "already_held"
    RELEASED = "released"
    BUSY = "busy"
    NOT_OURS = "not_ours"


@dataclass(frozen=True)
class LockResult:
    outcome: LockOutcome
    lock_file: str
    holder_pid: int | None = None
    written_pid: int | None = None
    flock_busy: bool = False

    def exit_status(self, error_if_held: bool = False) -> int:
        if self.outcome in (LockOutcome.BUSY, LockOutcome.NOT_OURS):
            return LOCK_BUSY_EXIT_STATUS
        if self.outcome is LockOutcome.ALREADY_HELD and error_if_held:
            return HOLD_LOCK_EXIT_STATUS
        return 0


class Liveness(str, Enum):
    ALIVE = "alive"
    DEAD = "dead"


@dataclass(frozen=True)
class Holder:
    pid: int | None
    liveness: Liveness
    is_ours: bool = False

    @property
    def is_free(self) -> bool:
        return self.pid is None or self.liveness is Liveness.DEAD

    @property
    def is_foreign(self) -> bool:
        return not self.is_free and not self.is_ours
