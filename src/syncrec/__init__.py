"""syncrec: record live video frames with asynchronously arriving audio clips."""

from .config import AudioSettings, RecorderConfig, SinkSettings, VideoSettings, load_config
from .errors import (
    ConfigurationError,
    DecodeError,
    FinalizeError,
    PersistenceError,
    RecorderError,
    SinkError,
)
from .media import SampleBlock, SampleFormat, VideoFrame
from .persistence import DirectoryPersistence, SavedRecording
from .session import RecordingSession, SessionState
from .synchronizer import ClipPlacement
from .version import APP_VERSION


__all__ = [
    "APP_VERSION",
    "AudioSettings",
    "ClipPlacement",
    "ConfigurationError",
    "DecodeError",
    "DirectoryPersistence",
    "FinalizeError",
    "PersistenceError",
    "RecorderConfig",
    "RecorderError",
    "RecordingSession",
    "SampleBlock",
    "SampleFormat",
    "SavedRecording",
    "SessionState",
    "SinkError",
    "SinkSettings",
    "VideoFrame",
    "VideoSettings",
    "load_config",
]
