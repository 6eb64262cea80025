"""Media data model: sample formats, sample blocks, video frames and tracks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Iterator

import numpy as np

from .timebase import ZERO, rescale, round_fraction_to_int

_SAMPLE_DTYPES: dict[int, type[np.signedinteger]] = {
    16: np.int16,
    32: np.int32,
}

_SAMPLE_FORMAT_NAMES: dict[int, str] = {
    16: "s16",
    32: "s32",
}

_CHANNEL_LAYOUTS: dict[int, str] = {
    1: "mono",
    2: "stereo",
}

PIXEL_FORMAT_CHANNELS: dict[str, int] = {
    "rgb24": 3,
    "bgr24": 3,
    "rgba": 4,
    "bgra": 4,
    "argb": 4,
    "gray": 1,
}


class TrackOrderError(ValueError):
    """Raised when an entry would overlap or precede committed track content."""


@dataclass(frozen=True, slots=True)
class SampleFormat:
    """Interleaved signed-integer PCM layout shared by every block on a track."""

    sample_rate: int = 44100
    channels: int = 2
    bit_depth: int = 16

    def __post_init__(self) -> None:
        if int(self.sample_rate) <= 0:
            raise ValueError("Sample rate must be positive")
        if self.channels not in _CHANNEL_LAYOUTS:
            raise ValueError("Only mono and stereo audio are supported")
        if self.bit_depth not in _SAMPLE_DTYPES:
            raise ValueError("Bit depth must be 16 or 32")
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def bytes_per_frame(self) -> int:
        return self.channels * self.bit_depth // 8

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_SAMPLE_DTYPES[self.bit_depth])

    @property
    def av_format(self) -> str:
        """PyAV packed sample format name."""

        return _SAMPLE_FORMAT_NAMES[self.bit_depth]

    @property
    def layout(self) -> str:
        return _CHANNEL_LAYOUTS[self.channels]

    @property
    def timescale(self) -> Fraction:
        return Fraction(1, self.sample_rate)

    def duration_of(self, frame_count: int) -> Fraction:
        return Fraction(int(frame_count), self.sample_rate)

    def to_dict(self) -> dict[str, int]:
        return {
            "sample_rate": int(self.sample_rate),
            "channels": int(self.channels),
            "bit_depth": int(self.bit_depth),
        }


@dataclass(frozen=True, slots=True)
class SampleBlock:
    """A contiguous run of PCM frames positioned on the timeline.

    ``samples`` is shaped ``(frame_count, channels)``. ``pts`` and ``dts`` are
    exact seconds.
    """

    format: SampleFormat
    samples: np.ndarray
    pts: Fraction = ZERO
    dts: Fraction | None = None
    silent: bool = False

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples)
        if samples.ndim == 1:
            samples = samples.reshape(-1, self.format.channels)
        if samples.ndim != 2 or samples.shape[1] != self.format.channels:
            raise ValueError("Sample payload does not match the channel count")
        if samples.dtype != self.format.dtype:
            samples = samples.astype(self.format.dtype)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "pts", Fraction(self.pts))

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> Fraction:
        return self.format.duration_of(self.frame_count)

    @property
    def end(self) -> Fraction:
        return self.pts + self.duration

    @property
    def nbytes(self) -> int:
        return self.frame_count * self.format.bytes_per_frame

    def to_bytes(self) -> bytes:
        return np.ascontiguousarray(self.samples).tobytes()

    def retimed(self, offset: Fraction) -> "SampleBlock":
        """Return a copy shifted by ``offset``.

        A block without a decode timestamp takes its shifted presentation
        timestamp as the decode timestamp.
        """

        pts = self.pts + offset
        dts = self.dts + offset if self.dts is not None else pts
        return replace(self, pts=pts, dts=dts)


def make_silence(start: Fraction, end: Fraction, fmt: SampleFormat) -> SampleBlock:
    """Synthesise a zero-amplitude block covering ``[start, end)``."""

    start = rescale(Fraction(start), fmt.sample_rate)
    span = Fraction(end) - start
    frame_count = max(0, round_fraction_to_int(span * fmt.sample_rate))
    samples = np.zeros((frame_count, fmt.channels), dtype=fmt.dtype)
    return SampleBlock(format=fmt, samples=samples, pts=start, dts=start, silent=True)


def iter_silence(
    start: Fraction, end: Fraction, fmt: SampleFormat, max_frames: int
) -> Iterator[SampleBlock]:
    """Yield contiguous silent blocks of at most ``max_frames`` frames."""

    if max_frames <= 0:
        raise ValueError("max_frames must be positive")
    cursor = rescale(Fraction(start), fmt.sample_rate)
    remaining = max(0, round_fraction_to_int((Fraction(end) - cursor) * fmt.sample_rate))
    while remaining > 0:
        count = min(remaining, max_frames)
        samples = np.zeros((count, fmt.channels), dtype=fmt.dtype)
        yield SampleBlock(format=fmt, samples=samples, pts=cursor, dts=cursor, silent=True)
        cursor += fmt.duration_of(count)
        remaining -= count


@dataclass(frozen=True, slots=True)
class VideoFrame:
    """Read-only snapshot of a frame's pixels."""

    data: np.ndarray
    pixel_format: str = "rgb24"

    def __post_init__(self) -> None:
        pixel_format = str(self.pixel_format).strip().lower()
        expected_channels = PIXEL_FORMAT_CHANNELS.get(pixel_format)
        if expected_channels is None:
            raise ValueError(f"Unsupported pixel format: {self.pixel_format}")
        array = np.asarray(self.data)
        if array.ndim == 3 and array.shape[2] == 1 and expected_channels == 1:
            array = array[:, :, 0]
        channels = 1 if array.ndim == 2 else (array.shape[2] if array.ndim == 3 else 0)
        if channels != expected_channels:
            raise ValueError(
                f"Frame shape {array.shape} does not match pixel format {pixel_format}"
            )
        if array.dtype != np.uint8:
            array = np.clip(array, 0, 255).astype(np.uint8)
        array = array.view()
        array.flags.writeable = False
        object.__setattr__(self, "data", array)
        object.__setattr__(self, "pixel_format", pixel_format)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def copy(self) -> "VideoFrame":
        return VideoFrame(np.array(self.data, copy=True), self.pixel_format)


@dataclass(frozen=True, slots=True)
class TrackEntry:
    start: Fraction
    duration: Fraction
    silent: bool = False

    @property
    def end(self) -> Fraction:
        return self.start + self.duration


@dataclass
class Track:
    """Append-only record of what has been committed to one writer track."""

    kind: str
    _entries: list[TrackEntry] = field(init=False, default_factory=list, repr=False)

    @property
    def entries(self) -> tuple[TrackEntry, ...]:
        return tuple(self._entries)

    @property
    def end(self) -> Fraction:
        if not self._entries:
            return ZERO
        return self._entries[-1].end

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, start: Fraction, duration: Fraction, *, silent: bool = False) -> TrackEntry:
        if duration < 0:
            raise TrackOrderError("Track entries cannot have a negative duration")
        if self._entries and start < self._entries[-1].end:
            raise TrackOrderError(
                f"{self.kind} entry at {float(start):.6f}s overlaps content ending at "
                f"{float(self._entries[-1].end):.6f}s"
            )
        entry = TrackEntry(Fraction(start), Fraction(duration), silent)
        self._entries.append(entry)
        return entry

    def silent_duration(self) -> Fraction:
        return sum((entry.duration for entry in self._entries if entry.silent), ZERO)


__all__ = [
    "PIXEL_FORMAT_CHANNELS",
    "SampleBlock",
    "SampleFormat",
    "Track",
    "TrackEntry",
    "TrackOrderError",
    "VideoFrame",
    "iter_silence",
    "make_silence",
]
