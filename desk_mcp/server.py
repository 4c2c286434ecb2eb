"""
MCP Server for IKEA Standing Desk Control.

Exposes desk control as tools that LLMs can call via the Model Context Protocol.
All tools go through the idasen-control daemon, which owns the BLE link.
"""

from fastmcp import Context, FastMCP

from idasen_control import DaemonError, load_config
from idasen_control.client import request
from idasen_control.status import format_duration

# Create MCP server
mcp = FastMCP(
    "Standing Desk Controller",
    instructions="Control your IKEA Idåsen / Linak standing desk via BLE. "
    "Tools: get_status (height, sitting/standing, time sitting), "
    "move_to_height (absolute positioning in cm), wait_for_desk (block until connected), "
    "stop_desk (emergency stop).",
)


def describe_status(status: dict) -> str:
    """Turn a getStatus response into a sentence for the model."""
    if not status.get("ready"):
        return "Desk is not connected yet. Is it powered on and in range?"
    text = f"Current height: {status['height']:.1f}cm, {status['pos']}."
    if status["pos"] == "sitting":
        text += f" Sitting for {format_duration(status.get('sittingTime', 0))} without a break."
    return text


@mcp.tool()
async def get_status(ctx: Context) -> str:
    """
    Get the current desk height and posture.

    Returns the height in centimeters above the lowest position, whether
    that counts as sitting or standing, and how long the user has been sitting.
    """
    try:
        status = await request(load_config(), {"op": "getStatus"})
    except DaemonError as e:
        return f"Error: Could not reach desk daemon - {e}"
    return describe_status(status)


@mcp.tool()
async def move_to_height(ctx: Context, height_cm: float) -> str:
    """
    Move the desk to a position in centimeters above its lowest setting.

    Args:
        height_cm: Target position; values above the configured maximum are clamped

    Returns:
        Result of the movement including final height.
    """
    if height_cm < 0:
        return "Error: height must not be negative"

    config = load_config()
    try:
        moved = await request(config, {"op": "moveTo", "pos": height_cm})
        status = await request(config, {"op": "getStatus"})
    except DaemonError as e:
        return f"Error: Could not reach desk daemon - {e}"

    if moved is not True:
        return f"Error: Move failed. {describe_status(status)}"
    return f"Moved towards {min(height_cm, config.desk_max_position):g}cm. {describe_status(status)}"


@mcp.tool()
async def wait_for_desk(ctx: Context) -> str:
    """
    Block until the daemon has found and connected to the desk.
    """
    try:
        await request(load_config(), {"op": "wait"})
    except DaemonError as e:
        return f"Error: Could not reach desk daemon - {e}"
    return "Desk is connected."


@mcp.tool()
async def stop_desk(ctx: Context) -> str:
    """
    Emergency stop - immediately halt desk movement.

    Use this if the desk is moving and you need to stop it immediately.
    """
    try:
        stopped = await request(load_config(), {"op": "stop"})
    except DaemonError as e:
        return f"Error: Could not reach desk daemon - {e}"
    return "Desk stopped." if stopped is True else "Desk is not connected, nothing to stop."


def run_server():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    run_server()
