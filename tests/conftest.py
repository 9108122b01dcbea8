"""Shared fixtures."""

import subprocess
import sys

import pytest

from lockpid import audit


@pytest.fixture
def lock_dir(tmp_path):
    """Private lock directory for one test."""
    d = tmp_path / "lock"
    d.mkdir()
    return d


@pytest.fixture(autouse=True)
def env_override(lock_dir, monkeypatch):
    """Point the default lock directory at a temp dir and keep event logging off."""
    monkeypatch.setenv("LOCKPID_LOCK_DIR", str(lock_dir))
    monkeypatch.delenv("LOCKPID_LOG_FILE", raising=False)
    monkeypatch.delenv("LOCKPID_SLEEP_MSECS", raising=False)
    audit.reset_logger()
    yield
    audit.reset_logger()


@pytest.fixture
def live_pid():
    """PID of a running process that is not us."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    yield proc.pid
    proc.kill()
    proc.wait()


@pytest.fixture
def dead_pid():
    """PID of a process that has exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid
