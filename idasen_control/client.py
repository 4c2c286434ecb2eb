"""
Client side of the daemon protocol.

Client commands start the daemon on demand: if no live daemon is recorded in
the pid file, one is spawned detached and we wait for it to come up.
"""

import asyncio
import json
import logging
import os
import signal
import subprocess
import sys
from contextlib import suppress
from pathlib import Path

from idasen_control.config import Config
from idasen_control.errors import DaemonUnavailable
from idasen_control.pidfile import daemon_running, is_process_alive, read_pid

_LOGGER = logging.getLogger(__name__)

STARTUP_TIMEOUT = 5.0
STARTUP_POLL = 0.1


def spawn_daemon(verbose: bool = False) -> subprocess.Popen:
    """Start ``python -m idasen_control --server`` detached from this terminal."""
    argv = [sys.executable, "-m", "idasen_control", "--server"]
    if verbose:
        argv.append("--verbose")
    _LOGGER.debug("Spawning daemon: %s", " ".join(argv))
    return subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


async def ensure_daemon(config: Config, spawn=spawn_daemon, timeout: float = STARTUP_TIMEOUT) -> bool:
    """
    Make sure a daemon is running.

    Returns:
        True if a daemon had to be started

    Raises:
        DaemonUnavailable: If the spawned daemon did not come up in time
    """
    if daemon_running(config):
        return False

    spawn()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        # The daemon binds the socket before it writes its pid
        if daemon_running(config) and Path(config.socket_path).exists():
            return True
        await asyncio.sleep(STARTUP_POLL)
    raise DaemonUnavailable(f"Daemon did not start within {timeout:.0f}s")


async def send_command(config: Config, request: dict):
    """
    Send one request and return the decoded response.

    Raises:
        DaemonUnavailable: If the socket is unreachable or closes without a reply
    """
    try:
        reader, writer = await asyncio.open_unix_connection(config.socket_path)
    except (FileNotFoundError, ConnectionRefusedError) as e:
        raise DaemonUnavailable(f"Cannot reach daemon at {config.socket_path}: {e}") from e

    try:
        writer.write((json.dumps(request) + "\n").encode("utf-8"))
        await writer.drain()
        line = await reader.readline()
    finally:
        writer.close()
        with suppress(ConnectionError):
            await writer.wait_closed()

    if not line:
        raise DaemonUnavailable("Daemon closed the connection without replying")
    return json.loads(line)


async def request(config: Config, payload: dict, autostart: bool = True, verbose: bool = False):
    """Send a request, starting the daemon first when needed."""
    if autostart:
        await ensure_daemon(config, spawn=lambda: spawn_daemon(verbose))
    return await send_command(config, payload)


def stop_daemon(config: Config) -> bool:
    """
    Ask the running daemon to exit.

    Returns:
        False if no live daemon was recorded in the pid file
    """
    pid = read_pid(config.pid_file_path)
    if pid is None or not is_process_alive(pid):
        return False
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    return True
