from .errors import KernelCallError, LockAcquireError, LockpidError, UsageError
from .lock import LockEngine, acquire, pid_lock
from .models import LockOutcome, LockRequest, LockResult

__all__ = [
    "KernelCallError",
    "LockAcquireError",
    "LockEngine",
    "LockOutcome",
    "LockRequest",
    "LockResult",
    "LockpidError",
    "UsageError",
    "acquire",
    "pid_lock",
]
