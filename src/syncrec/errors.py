"""Exception hierarchy shared by the recorder components."""

from __future__ import annotations


class RecorderError(RuntimeError):
    """Base class for recorder failures."""


class ConfigurationError(RecorderError):
    """Raised when a session is misused or cannot be set up."""


class DecodeError(RecorderError):
    """Raised when an audio clip cannot be decoded into samples."""


class SinkError(RecorderError):
    """Raised when the container writer persistently rejects data or faults."""


class FinalizeError(SinkError):
    """Raised when the container writer fails to finalise the output file."""


class PersistenceError(RecorderError):
    """Raised when a finalised recording could not be stored durably.

    The media file itself was produced; ``path`` points at its temporary
    location so callers can attempt a recovery.
    """

    def __init__(self, message: str, *, path: object | None = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "ConfigurationError",
    "DecodeError",
    "FinalizeError",
    "PersistenceError",
    "RecorderError",
    "SinkError",
]
