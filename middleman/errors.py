"""Error taxonomy shared by the gateway components.

None of these are meant to escape the component that detected them; the
router and the supervisors catch them, log them and keep running.
"""
from typing import Optional


class MiddlemanError(Exception):
    """Base class for all gateway errors."""


class MalformedFrame(MiddlemanError):
    """Wire text could not be parsed into a command."""

    def __init__(self, message: str, frame: Optional[str] = None):
        super().__init__(message)
        self.frame = frame


class FilterRejected(MiddlemanError):
    """A command was dropped by the object filter."""

    def __init__(self, object_id: int):
        super().__init__(f"object id {object_id} is filtered")
        self.object_id = object_id


class TransportFailure(MiddlemanError):
    """Socket I/O towards the station or a controller failed."""


class DeviceFailure(MiddlemanError):
    """The feedback hardware could not be opened or read."""


class ConfigurationError(MiddlemanError, ValueError):
    """Invalid configuration value (file contents or filter expression)."""
