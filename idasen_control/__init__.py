"""
idasen-control - keep an IKEA Idåsen / Linak standing desk connected over BLE.

A background daemon owns the Bluetooth link and serves move, wait and status
requests from command-line clients over a Unix socket.
"""

from idasen_control.config import Config, load_config, save_config
from idasen_control.desk import ConnectionState, DeskSession, SessionEvent
from idasen_control.errors import (
    DaemonAlreadyRunning,
    DaemonError,
    DaemonUnavailable,
    DeskCommunicationError,
    DeskConnectionError,
    DeskError,
    FrameError,
)
from idasen_control.manager import DeskManager, ManagerState
from idasen_control.server import DeskServer

__all__ = [
    # Config
    "Config",
    "load_config",
    "save_config",
    # Desk
    "ConnectionState",
    "DeskManager",
    "DeskServer",
    "DeskSession",
    "ManagerState",
    "SessionEvent",
    # Errors
    "DaemonAlreadyRunning",
    "DaemonError",
    "DaemonUnavailable",
    "DeskCommunicationError",
    "DeskConnectionError",
    "DeskError",
    "FrameError",
]
