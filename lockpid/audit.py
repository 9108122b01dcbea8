"""Event logging for lock transitions."""

from __future__ import annotations

import json
import logging
import sys

from lockpid.config import lock_log_file, lock_log_level

_LOGGER_NAME = "lockpid.audit"


def _build_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    log_path = lock_log_file()
    if log_path is None:
        logger.addHandler(logging.NullHandler())
    else:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            # the lock outcome stands either way; only the event log is lost
            print(f"lockpid: event log disabled, cannot open {log_path}: {exc}", file=sys.stderr)
            handler = logging.NullHandler()
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, lock_log_level()))
    logger.propagate = False
    return logger


def reset_logger() -> None:
    """Drop configured handlers so the next event re-reads the config."""
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def lock_event(
    action: str,
    *,
    lock_file: str,
    pid: int,
    holder_pid: int | None = None,
    error: str | None = None,
    level: int = logging.INFO,
) -> None:
    payload = {
        "action": action,
        "lock_file": lock_file,
        "pid": pid,
        "holder_pid": holder_pid,
    }
    if error is not None:
        payload["error"] = error
    logger = _build_logger()
    logger.log(level, json.dumps(payload, ensure_ascii=False))
