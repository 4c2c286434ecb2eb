"""Tests for status and prompt rendering."""

from __future__ import annotations

import pytest

from idasen_control.config import Config
from idasen_control.idle import parse_ioreg, parse_xprintidle
from idasen_control.status import format_duration, format_status, render_prompt

SITTING = {"ready": True, "height": 12.34, "pos": "sitting", "sittingTime": 1530}
STANDING = {"ready": True, "height": 45.0, "pos": "standing", "sittingTime": 0}


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (59.9, "59s"), (60, "1m"), (3599, "59m"), (3600, "1h 00m"), (3900, "1h 05m")],
)
def test_format_duration(seconds, expected) -> None:
    assert format_duration(seconds) == expected


def test_format_status() -> None:
    assert format_status({"ready": False}) == "⏳ Desk not ready"
    assert format_status(SITTING) == "📏 Height: 12.3cm (sitting), sitting for 25m"
    assert format_status(STANDING) == "📏 Height: 45.0cm (standing)"


def test_render_prompt_defaults() -> None:
    config = Config()
    assert render_prompt({"ready": False}, config) == ""
    assert render_prompt(SITTING, config) == "🪑 25m"
    assert render_prompt(STANDING, config) == "🧍"


def test_render_prompt_custom_template() -> None:
    config = Config(sitting_prompt="sit {height:.0f}cm {sitting_time}")
    assert render_prompt(SITTING, config) == "sit 12cm 25m"


def test_render_prompt_bad_template_is_returned_raw() -> None:
    config = Config(sitting_prompt="{nope}")
    assert render_prompt(SITTING, config) == "{nope}"


def test_parse_idle_outputs() -> None:
    ioreg = b'  |   "HIDIdleTime" = 2500000000\n  |   "HIDKeyboardModifierMappingPairs" = ()\n'
    assert parse_ioreg(ioreg) == 2.5
    assert parse_ioreg(b"nothing here") is None
    assert parse_xprintidle(b"1500\n") == 1.5
    assert parse_xprintidle(b"error") is None
