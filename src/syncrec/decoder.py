"""Decoding of compressed audio clips into sample blocks."""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

import av

from .errors import DecodeError
from .media import SampleBlock, SampleFormat
from .timebase import ZERO, coerce_fraction


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DecodedClip:
    """Ordered sample blocks of one clip, positioned relative to its start."""

    format: SampleFormat
    blocks: tuple[SampleBlock, ...]
    duration: Fraction

    @property
    def sample_duration(self) -> Fraction:
        """Sum of the decoded block durations."""

        return sum((block.duration for block in self.blocks), ZERO)

    @property
    def frame_count(self) -> int:
        return sum(block.frame_count for block in self.blocks)


class AudioDecoder(ABC):
    """Turns an opaque clip payload into PCM blocks of a fixed format."""

    @abstractmethod
    def decode(self, data: bytes) -> DecodedClip:  # pragma: no cover - interface only
        raise NotImplementedError


class PyAVAudioDecoder(AudioDecoder):
    """Decode any FFmpeg-readable clip and resample it to ``format``.

    The payload is spooled to a temporary file so demuxers that need to seek
    (MP3 with Xing headers, MP4/M4A) behave exactly as they do on disk. The
    file is removed on every exit path.
    """

    def __init__(
        self,
        format: SampleFormat,
        *,
        temp_directory: Path | str | None = None,
        suffix: str = ".clip",
    ) -> None:
        self.format = format
        self._temp_directory = Path(temp_directory) if temp_directory is not None else None
        self._suffix = suffix

    def decode(self, data: bytes) -> DecodedClip:
        if not data:
            raise DecodeError("Audio clip is empty")
        handle, name = tempfile.mkstemp(
            suffix=self._suffix,
            dir=str(self._temp_directory) if self._temp_directory is not None else None,
        )
        path = Path(name)
        try:
            with os.fdopen(handle, "wb") as stream:
                stream.write(data)
            return self._decode_file(path)
        finally:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:  # pragma: no cover - best-effort cleanup
                logger.warning("Unable to remove temporary clip %s: %s", path, exc)

    def _decode_file(self, path: Path) -> DecodedClip:
        fmt = self.format
        try:
            with av.open(str(path), mode="r") as container:
                stream = next(
                    (item for item in container.streams if getattr(item, "type", "") == "audio"),
                    None,
                )
                if stream is None:
                    raise DecodeError("Audio clip does not contain an audio stream")
                nominal = self._nominal_duration(container, stream)
                resampler = av.AudioResampler(
                    format=fmt.av_format, layout=fmt.layout, rate=fmt.sample_rate
                )
                blocks: list[SampleBlock] = []
                cursor = 0
                for frame in container.decode(stream):
                    for converted in resampler.resample(frame):
                        cursor = self._append_block(blocks, converted, cursor)
                for converted in resampler.resample(None):
                    cursor = self._append_block(blocks, converted, cursor)
        except av.FFmpegError as exc:
            raise DecodeError(f"Unable to decode audio clip: {exc}") from exc

        if not blocks:
            raise DecodeError("Audio clip did not contain any samples")
        decoded_duration = fmt.duration_of(cursor)
        duration = nominal if nominal is not None and nominal > 0 else decoded_duration
        logger.debug(
            "Decoded clip: %d block(s), %d frames, nominal %.3fs, decoded %.3fs",
            len(blocks),
            cursor,
            float(duration),
            float(decoded_duration),
        )
        return DecodedClip(format=fmt, blocks=tuple(blocks), duration=duration)

    def _append_block(self, blocks: list[SampleBlock], frame: object, cursor: int) -> int:
        count = int(getattr(frame, "samples", 0) or 0)
        if count <= 0:
            return cursor
        packed = frame.to_ndarray()  # type: ignore[attr-defined]
        samples = packed.reshape(-1, self.format.channels)[:count]
        blocks.append(
            SampleBlock(
                format=self.format,
                samples=samples,
                pts=self.format.duration_of(cursor),
            )
        )
        return cursor + count

    @staticmethod
    def _nominal_duration(container: object, stream: object) -> Fraction | None:
        duration = getattr(stream, "duration", None)
        time_base = coerce_fraction(getattr(stream, "time_base", None))
        if duration is not None and time_base is not None:
            return Fraction(int(duration)) * time_base
        container_duration = getattr(container, "duration", None)
        if container_duration is not None:
            return Fraction(int(container_duration), av.time_base)
        return None


__all__ = ["AudioDecoder", "DecodedClip", "PyAVAudioDecoder"]
