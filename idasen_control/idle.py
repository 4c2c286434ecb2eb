"""
Operator idle time.

macOS reports HID idle time through ``ioreg``; on X11 the ``xprintidle``
tool is used when installed. Anything else reports zero idle seconds, which
means the sitting counter never resets because of inactivity.
"""

import asyncio
import logging
import re
import shutil
import sys

_LOGGER = logging.getLogger(__name__)

_HID_IDLE = re.compile(rb'"HIDIdleTime"\s*=\s*(\d+)')


async def _run(*argv: str) -> bytes | None:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except OSError as e:
        _LOGGER.debug("Could not run %s: %s", argv[0], e)
        return None
    if proc.returncode != 0:
        _LOGGER.debug("%s exited with %s", argv[0], proc.returncode)
        return None
    return stdout


def parse_ioreg(output: bytes) -> float | None:
    """Extract HIDIdleTime (nanoseconds) from ``ioreg -c IOHIDSystem`` output."""
    match = _HID_IDLE.search(output)
    if match is None:
        return None
    return int(match.group(1)) / 1e9


def parse_xprintidle(output: bytes) -> float | None:
    """``xprintidle`` prints idle milliseconds."""
    try:
        return int(output.strip()) / 1000
    except ValueError:
        return None


async def get_idle_seconds() -> float:
    """Seconds since the last keyboard or mouse input, 0.0 if unknown."""
    idle = None
    if sys.platform == "darwin":
        output = await _run("ioreg", "-c", "IOHIDSystem", "-d", "4")
        if output is not None:
            idle = parse_ioreg(output)
    elif shutil.which("xprintidle"):
        output = await _run("xprintidle")
        if output is not None:
            idle = parse_xprintidle(output)
    return idle if idle is not None else 0.0
