"""Human readable renderings of a getStatus response."""

import logging

from idasen_control.config import Config

_LOGGER = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format seconds as ``1h 05m``, ``12m`` or ``40s``."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h {minutes % 60:02d}m"


def format_status(status: dict) -> str:
    if not status.get("ready"):
        return "⏳ Desk not ready"
    height = status["height"]
    line = f"📏 Height: {height:.1f}cm ({status['pos']})"
    if status["pos"] == "sitting":
        line += f", sitting for {format_duration(status.get('sittingTime', 0))}"
    return line


def render_prompt(status: dict, config: Config) -> str:
    """
    Render the shell prompt fragment for a status.

    The standing or sitting template from the config is filled with
    ``{height}``, ``{sitting_time}`` and ``{sitting_minutes}``. A desk that
    is not ready renders as an empty string.
    """
    if not status.get("ready"):
        return ""

    sitting_time = status.get("sittingTime", 0)
    template = config.standing_prompt if status["pos"] == "standing" else config.sitting_prompt
    try:
        return template.format(
            height=status["height"],
            sitting_time=format_duration(sitting_time),
            sitting_minutes=int(sitting_time // 60),
        )
    except (KeyError, IndexError, ValueError) as e:
        _LOGGER.warning("Bad prompt template %r: %s", template, e)
        return template
