"""
MCP Server for Standing Desk Control.

Exposes the idasen-control daemon's status, move, wait and stop operations
as Model Context Protocol tools.
"""

from desk_mcp.server import mcp, run_server

__all__ = ["mcp", "run_server"]
