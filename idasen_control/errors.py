"""Exceptions raised by the desk session, discovery manager and daemon."""


class DeskError(Exception):
    """Base exception for desk controller errors."""

    pass


class DeskConnectionError(DeskError):
    """Raised when connection to desk fails."""

    pass


class DeskCommunicationError(DeskError):
    """Raised when BLE communication fails during operation."""

    pass


class FrameError(DeskError):
    """Raised when a characteristic payload cannot be decoded."""

    pass


class DaemonError(Exception):
    """Base exception for daemon and IPC errors."""

    pass


class DaemonAlreadyRunning(DaemonError):
    """Raised when the pid file names a live daemon process."""

    pass


class DaemonUnavailable(DaemonError):
    """Raised when a client cannot reach the daemon socket."""

    pass
