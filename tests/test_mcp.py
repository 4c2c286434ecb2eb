"""Tests for the MCP tool helpers."""

from __future__ import annotations

from desk_mcp.server import describe_status, mcp


def test_describe_status_not_ready() -> None:
    assert "not connected" in describe_status({"ready": False})


def test_describe_status_sitting() -> None:
    text = describe_status({"ready": True, "height": 10.0, "pos": "sitting", "sittingTime": 3900})
    assert text == "Current height: 10.0cm, sitting. Sitting for 1h 05m without a break."


def test_describe_status_standing() -> None:
    text = describe_status({"ready": True, "height": 45.5, "pos": "standing", "sittingTime": 0})
    assert text == "Current height: 45.5cm, standing."


def test_server_name() -> None:
    assert mcp.name == "Standing Desk Controller"
