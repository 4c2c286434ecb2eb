"""Pid file helpers used for daemon singleton detection and stop-server."""

import os
from contextlib import suppress
from pathlib import Path

from idasen_control.config import Config


def read_pid(path: str | Path) -> int | None:
    """Return the pid recorded in the file, or None if missing or garbage."""
    try:
        pid = int(Path(path).read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None


def write_pid(path: str | Path, pid: int | None = None) -> None:
    Path(path).write_text(f"{pid or os.getpid()}\n", encoding="utf-8")


def remove_file(path: str | Path) -> None:
    with suppress(FileNotFoundError):
        Path(path).unlink()


def is_process_alive(pid: int) -> bool:
    """
    Probe a pid with signal 0.

    A process we may not signal (EPERM) exists, so it counts as alive.
    """
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def daemon_running(config: Config) -> bool:
    """True if the pid file names a live process."""
    pid = read_pid(config.pid_file_path)
    return pid is not None and is_process_alive(pid)
