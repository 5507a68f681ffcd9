"""Error taxonomy for the capture pipeline.

Construction-time failures (DeviceNotFoundError, StreamConnectionError) are
fatal to ``PulseDriver.start()``. ReadError is per-frame and recoverable.
InvalidStateError and ResourceError flag lifecycle misuse.
"""
from __future__ import annotations

from typing import Optional


class PulseBeatsError(Exception):
    """Base class for every pipeline error."""


class DeviceNotFoundError(PulseBeatsError):
    """No running output sink was reported by the audio server."""

    def __init__(self, message: str, command: Optional[list[str]] = None):
        super().__init__(message)
        self.command = list(command) if command else []


class StreamConnectionError(PulseBeatsError, ConnectionError):
    """The audio server refused or failed to open the record stream."""

    def __init__(self, device: str, diagnostic: str):
        super().__init__(f"could not connect to sink {device}: {diagnostic}")
        self.device = device
        self.diagnostic = diagnostic


class ReadError(PulseBeatsError):
    """A single blocking read from an established stream failed."""

    def __init__(self, diagnostic: str):
        super().__init__(f"error reading from audio server: {diagnostic}")
        self.diagnostic = diagnostic


class InvalidStateError(PulseBeatsError):
    """An operation was invoked outside its valid lifecycle state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"{operation}() is not valid in state {state}")
        self.operation = operation
        self.state = state


class ResourceError(PulseBeatsError):
    """A resource was released twice."""
