"""Configuration structures for recording sessions."""
from __future__ import annotations

import json
import math
import os
import tempfile
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .errors import ConfigurationError
from .media import PIXEL_FORMAT_CHANNELS, SampleFormat

STRATEGIES: dict[str, str] = {
    "online": "Commit audio immediately with synthesised silence for gaps",
    "composed": "Compose an audio timeline and write it once at finish",
}

DEFAULT_STRATEGY = "online"

STRATEGY_ENV_VAR = "SYNCREC_STRATEGY"

_STRATEGY_ALIASES = {
    "immediate": "online",
    "realtime": "online",
    "deferred": "composed",
    "offline": "composed",
    "compose": "composed",
}


def normalise_strategy(value: str | None) -> str:
    if value is None:
        value = os.getenv(STRATEGY_ENV_VAR, DEFAULT_STRATEGY)
    normalised = str(value).strip().lower() or DEFAULT_STRATEGY
    normalised = _STRATEGY_ALIASES.get(normalised, normalised)
    if normalised not in STRATEGIES:
        raise ValueError(f"Unknown audio placement strategy: {value}")
    return normalised


@dataclass(frozen=True, slots=True)
class VideoSettings:
    """Output geometry and encoding hints for the video track."""

    width: int = 640
    height: int = 480
    fps: int = 20
    encoder: str = "auto"
    pixel_format: str = "rgb24"
    rotation: int = 0
    copy_frames: bool = True

    def __post_init__(self) -> None:
        try:
            width = int(self.width)
            height = int(self.height)
            fps = int(self.fps)
            rotation = int(self.rotation)
        except (TypeError, ValueError) as exc:
            raise ValueError("Video settings must be numeric") from exc
        if width <= 0 or height <= 0:
            raise ValueError("Video dimensions must be positive integers")
        if fps < 1 or fps > 240:
            raise ValueError("Video fps must be between 1 and 240")
        if rotation % 90 != 0:
            raise ValueError("Rotation must be a multiple of 90 degrees")
        pixel_format = str(self.pixel_format).strip().lower()
        if pixel_format not in PIXEL_FORMAT_CHANNELS:
            raise ValueError(f"Unsupported pixel format: {self.pixel_format}")
        object.__setattr__(self, "width", width)
        object.__setattr__(self, "height", height)
        object.__setattr__(self, "fps", fps)
        object.__setattr__(self, "rotation", rotation % 360)
        object.__setattr__(self, "pixel_format", pixel_format)
        object.__setattr__(self, "encoder", str(self.encoder or "auto").strip().lower())
        object.__setattr__(self, "copy_frames", bool(self.copy_frames))

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def frame_rate(self) -> Fraction:
        return Fraction(self.fps, 1)

    def to_dict(self) -> dict[str, object]:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "encoder": self.encoder,
            "pixel_format": self.pixel_format,
            "rotation": self.rotation,
            "copy_frames": self.copy_frames,
        }


@dataclass(frozen=True, slots=True)
class AudioSettings:
    """Sample format and codec of the audio track."""

    sample_rate: int = 44100
    channels: int = 2
    bit_depth: int = 16
    codec: str = "pcm_s16le"

    def __post_init__(self) -> None:
        try:
            sample_format = SampleFormat(
                sample_rate=int(self.sample_rate),
                channels=int(self.channels),
                bit_depth=int(self.bit_depth),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid audio format: {exc}") from exc
        object.__setattr__(self, "sample_rate", sample_format.sample_rate)
        object.__setattr__(self, "channels", sample_format.channels)
        object.__setattr__(self, "bit_depth", sample_format.bit_depth)
        codec = str(self.codec or "").strip().lower()
        if not codec:
            raise ValueError("Audio codec must not be empty")
        object.__setattr__(self, "codec", codec)

    @property
    def sample_format(self) -> SampleFormat:
        return SampleFormat(self.sample_rate, self.channels, self.bit_depth)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = dict(self.sample_format.to_dict())
        payload["codec"] = self.codec
        return payload


@dataclass(frozen=True, slots=True)
class SinkSettings:
    """Container, backpressure and polling parameters for the writer."""

    container_format: str = "mov"
    extension: str = ".mov"
    video_queue_depth: int = 8
    audio_queue_depth: int = 64
    silence_poll_interval: float = 0.1
    sample_poll_interval: float = 0.02
    sink_ready_timeout: float = 5.0
    silence_chunk_seconds: float = 1.0

    def __post_init__(self) -> None:
        for name in ("video_queue_depth", "audio_queue_depth"):
            try:
                value = int(getattr(self, name))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name} must be an integer") from exc
            if value < 1:
                raise ValueError(f"{name} must be at least 1")
            object.__setattr__(self, name, value)
        for name in (
            "silence_poll_interval",
            "sample_poll_interval",
            "sink_ready_timeout",
            "silence_chunk_seconds",
        ):
            try:
                value_f = float(getattr(self, name))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name} must be numeric") from exc
            if not math.isfinite(value_f) or value_f <= 0:
                raise ValueError(f"{name} must be a positive finite value")
            object.__setattr__(self, name, value_f)
        container_format = str(self.container_format or "").strip().lower()
        if not container_format:
            raise ValueError("Container format must not be empty")
        extension = str(self.extension or "").strip()
        if not extension:
            extension = f".{container_format}"
        elif not extension.startswith("."):
            extension = f".{extension}"
        object.__setattr__(self, "container_format", container_format)
        object.__setattr__(self, "extension", extension)

    def to_dict(self) -> dict[str, object]:
        return {
            "container_format": self.container_format,
            "extension": self.extension,
            "video_queue_depth": self.video_queue_depth,
            "audio_queue_depth": self.audio_queue_depth,
            "silence_poll_interval": self.silence_poll_interval,
            "sample_poll_interval": self.sample_poll_interval,
            "sink_ready_timeout": self.sink_ready_timeout,
            "silence_chunk_seconds": self.silence_chunk_seconds,
        }


@dataclass(frozen=True, slots=True)
class RecorderConfig:
    """Complete configuration for one :class:`~syncrec.session.RecordingSession`."""

    video: VideoSettings = field(default_factory=VideoSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    sink: SinkSettings = field(default_factory=SinkSettings)
    strategy: str | None = None
    temp_directory: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", normalise_strategy(self.strategy))
        temp_directory = self.temp_directory
        if temp_directory is None:
            temp_directory = Path(tempfile.gettempdir())
        object.__setattr__(self, "temp_directory", Path(temp_directory))

    def to_dict(self) -> dict[str, object]:
        return {
            "video": self.video.to_dict(),
            "audio": self.audio.to_dict(),
            "sink": self.sink.to_dict(),
            "strategy": self.strategy,
            "temp_directory": str(self.temp_directory),
        }


DEFAULT_VIDEO_SETTINGS = VideoSettings()
DEFAULT_AUDIO_SETTINGS = AudioSettings()
DEFAULT_SINK_SETTINGS = SinkSettings()


def _parse_size(value: Any) -> tuple[int, int] | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().lower().replace("×", "x")
        if not text:
            return None
        parts = text.split("x", 1)
        if len(parts) != 2:
            raise ValueError(f"Unknown video size: {value}")
        try:
            return int(parts[0].strip()), int(parts[1].strip())
        except ValueError as exc:
            raise ValueError("Video size values must be integers") from exc
    if isinstance(value, Mapping):
        width_raw = value.get("width")
        height_raw = value.get("height")
        if width_raw is None or height_raw is None:
            raise ValueError("Video size mapping must include 'width' and 'height'")
        try:
            return int(width_raw), int(height_raw)
        except (TypeError, ValueError) as exc:
            raise ValueError("Video width and height must be integers") from exc
    if isinstance(value, (Sequence, Iterable)):
        items = list(value)
        if len(items) != 2:
            raise ValueError("Video size sequence must contain width and height")
        try:
            return int(items[0]), int(items[1])
        except (TypeError, ValueError) as exc:
            raise ValueError("Video width and height must be integers") from exc
    raise ValueError("Unsupported video size value")


def _parse_video(value: Any, *, default: VideoSettings) -> VideoSettings:
    if value is None:
        return default
    if isinstance(value, VideoSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Video settings must be provided as a mapping")
    width, height = default.width, default.height
    size = _parse_size(value.get("size"))
    if size is not None:
        width, height = size
    return VideoSettings(
        width=value.get("width", width),
        height=value.get("height", height),
        fps=value.get("fps", default.fps),
        encoder=value.get("encoder", default.encoder),
        pixel_format=value.get("pixel_format", default.pixel_format),
        rotation=value.get("rotation", default.rotation),
        copy_frames=value.get("copy_frames", default.copy_frames),
    )


def _parse_audio(value: Any, *, default: AudioSettings) -> AudioSettings:
    if value is None:
        return default
    if isinstance(value, AudioSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Audio settings must be provided as a mapping")
    return AudioSettings(
        sample_rate=value.get("sample_rate", default.sample_rate),
        channels=value.get("channels", default.channels),
        bit_depth=value.get("bit_depth", default.bit_depth),
        codec=value.get("codec", default.codec),
    )


def _parse_sink(value: Any, *, default: SinkSettings) -> SinkSettings:
    if value is None:
        return default
    if isinstance(value, SinkSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Sink settings must be provided as a mapping")
    values = default.to_dict()
    for key in values:
        if key in value:
            values[key] = value[key]
    return SinkSettings(**values)  # type: ignore[arg-type]


def parse_config(payload: Mapping[str, Any]) -> RecorderConfig:
    """Build a :class:`RecorderConfig` from a decoded JSON object."""

    try:
        temp_raw = payload.get("temp_directory")
        return RecorderConfig(
            video=_parse_video(payload.get("video"), default=DEFAULT_VIDEO_SETTINGS),
            audio=_parse_audio(payload.get("audio"), default=DEFAULT_AUDIO_SETTINGS),
            sink=_parse_sink(payload.get("sink"), default=DEFAULT_SINK_SETTINGS),
            strategy=payload.get("strategy"),
            temp_directory=Path(temp_raw) if temp_raw else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid recorder configuration: {exc}") from exc


def load_config(path: Path | str | None) -> RecorderConfig:
    """Load configuration from ``path``; defaults when the file is absent."""

    if path is None:
        return RecorderConfig()
    config_path = Path(path)
    if not config_path.exists():
        return RecorderConfig()
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Failed to load configuration: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Configuration file must contain a JSON object")
    return parse_config(payload)


def save_config(config: RecorderConfig, path: Path | str) -> Path:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    return config_path


__all__ = [
    "AudioSettings",
    "DEFAULT_STRATEGY",
    "RecorderConfig",
    "STRATEGIES",
    "STRATEGY_ENV_VAR",
    "SinkSettings",
    "VideoSettings",
    "load_config",
    "normalise_strategy",
    "parse_config",
    "save_config",
]
