"""Placement of asynchronously arriving audio clips on the video timeline.

Two interchangeable strategies share one placement rule: a clip starts at the
video watermark snapped onto the sample grid, but never before the end of the
previously committed audio. Any gap between the two is filled with silence so
the finished audio track plays silence through every video-only interval.

``OnlineAudioSynchronizer`` commits silence and samples to the writer as each
clip arrives. ``ComposedAudioSynchronizer`` only records the placements and
writes the whole timeline in one pass when the session finishes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from fractions import Fraction
from typing import Union

from .decoder import DecodedClip
from .errors import SinkError
from .media import SampleBlock, Track, iter_silence, make_silence
from .timebase import ZERO, rescale, seconds
from .writer import ContainerWriter, TrackKind


logger = logging.getLogger(__name__)


@dataclass
class Watermarks:
    """Latest committed positions on the two tracks."""

    current_time: Fraction = ZERO
    last_audio_end: Fraction = ZERO

    def reset(self) -> None:
        self.current_time = ZERO
        self.last_audio_end = ZERO


@dataclass(frozen=True, slots=True)
class SilentInterval:
    start: Fraction
    end: Fraction

    @property
    def duration(self) -> Fraction:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class ClipPlacement:
    """Where a clip landed on the timeline."""

    start: Fraction
    clip: DecodedClip
    requested: Fraction
    silence: SilentInterval | None = None

    @property
    def clamped(self) -> bool:
        return self.start > self.requested

    @property
    def end(self) -> Fraction:
        return self.start + self.clip.sample_duration


TimelineEntry = Union[SilentInterval, ClipPlacement]


def resolve_placement(
    current_time: Fraction, last_audio_end: Fraction, sample_rate: int
) -> tuple[Fraction, Fraction, SilentInterval | None]:
    """Return ``(requested, start, silence)`` for a clip arriving now.

    The clamp is applied before the gap is measured, so the silent interval is
    either ``None`` or strictly positive.
    """

    requested = rescale(current_time, sample_rate)
    start = requested if requested > last_audio_end else last_audio_end
    silence = SilentInterval(last_audio_end, start) if start > last_audio_end else None
    return requested, start, silence


class AudioSynchronizer(ABC):
    """Base class owning the sink wait/commit primitive."""

    def __init__(
        self,
        writer: ContainerWriter,
        watermarks: Watermarks,
        track: Track,
        *,
        silence_poll_interval: float = 0.1,
        sample_poll_interval: float = 0.02,
        sink_ready_timeout: float = 5.0,
    ) -> None:
        self.writer = writer
        self.watermarks = watermarks
        self.track = track
        self.silence_poll_interval = float(silence_poll_interval)
        self.sample_poll_interval = float(sample_poll_interval)
        self.sink_ready_timeout = float(sink_ready_timeout)

    @abstractmethod
    async def add_clip(self, clip: DecodedClip) -> ClipPlacement:
        """Place ``clip`` relative to the current watermarks."""

    @abstractmethod
    async def flush(self) -> None:
        """Write anything still pending before the tracks are closed."""

    def _place(self, clip: DecodedClip) -> ClipPlacement:
        requested, start, silence = resolve_placement(
            self.watermarks.current_time,
            self.watermarks.last_audio_end,
            clip.format.sample_rate,
        )
        placement = ClipPlacement(start=start, clip=clip, requested=requested, silence=silence)
        if placement.clamped:
            logger.debug(
                "Clip requested at %.3fs clamped to audio end %.3fs",
                seconds(requested),
                seconds(start),
            )
        return placement

    async def _commit(self, block: SampleBlock, poll_interval: float) -> None:
        """Wait for the audio track and append ``block`` at its own pts.

        Raises :class:`SinkError` when the track stays saturated or keeps
        rejecting the block for longer than ``sink_ready_timeout``.
        """

        deadline = time.monotonic() + self.sink_ready_timeout
        while True:
            if self.writer.is_ready(TrackKind.AUDIO):
                if self.writer.append(TrackKind.AUDIO, block, block.pts):
                    break
                logger.debug("Audio track rejected block at %.3fs; retrying", seconds(block.pts))
            if time.monotonic() >= deadline:
                raise SinkError(
                    f"Audio track did not accept data within {self.sink_ready_timeout:.2f}s"
                )
            await asyncio.sleep(poll_interval)
        self.track.append(block.pts, block.duration, silent=block.silent)


class OnlineAudioSynchronizer(AudioSynchronizer):
    """Commit each clip, preceded by explicit silence, as soon as it arrives."""

    async def add_clip(self, clip: DecodedClip) -> ClipPlacement:
        placement = self._place(clip)
        committed_end = self.watermarks.last_audio_end
        try:
            if placement.silence is not None:
                silence = make_silence(
                    placement.silence.start, placement.silence.end, clip.format
                )
                if silence.frame_count:
                    await self._commit(silence, self.silence_poll_interval)
                    committed_end = silence.end
            cursor = placement.start
            for block in clip.blocks:
                await self._commit(block.retimed(placement.start), self.sample_poll_interval)
                cursor += block.duration
                committed_end = cursor
        finally:
            # Committed audio is never rolled back, even for a partial clip.
            self.watermarks.last_audio_end = committed_end
        logger.info(
            "Committed clip at %.3fs (requested %.3fs), audio ends at %.3fs",
            seconds(placement.start),
            seconds(placement.requested),
            seconds(committed_end),
        )
        return placement

    async def flush(self) -> None:
        return None


class ComposedAudioSynchronizer(AudioSynchronizer):
    """Record clip placements and write the composed timeline at flush."""

    def __init__(
        self,
        writer: ContainerWriter,
        watermarks: Watermarks,
        track: Track,
        *,
        silence_chunk_seconds: float = 1.0,
        **kwargs: float,
    ) -> None:
        super().__init__(writer, watermarks, track, **kwargs)
        self.silence_chunk_seconds = float(silence_chunk_seconds)
        self._timeline: list[TimelineEntry] = []

    @property
    def timeline(self) -> tuple[TimelineEntry, ...]:
        return tuple(self._timeline)

    async def add_clip(self, clip: DecodedClip) -> ClipPlacement:
        placement = self._place(clip)
        if placement.silence is not None:
            self._timeline.append(placement.silence)
        self._timeline.append(placement)
        self.watermarks.last_audio_end = placement.end
        logger.debug(
            "Composed clip at %.3fs, timeline now ends at %.3fs",
            seconds(placement.start),
            seconds(placement.end),
        )
        return placement

    async def flush(self) -> None:
        entries, self._timeline = self._timeline, []
        if not entries:
            return
        fmt = next(entry.clip.format for entry in entries if isinstance(entry, ClipPlacement))
        max_frames = max(1, int(self.silence_chunk_seconds * fmt.sample_rate))
        written = 0
        for entry in entries:
            if isinstance(entry, SilentInterval):
                for block in iter_silence(entry.start, entry.end, fmt, max_frames):
                    await self._commit(block, self.silence_poll_interval)
                    written += 1
            else:
                for block in entry.clip.blocks:
                    await self._commit(block.retimed(entry.start), self.sample_poll_interval)
                    written += 1
        logger.info(
            "Wrote composed audio timeline: %d entries, %d blocks, ends at %.3fs",
            len(entries),
            written,
            seconds(self.track.end),
        )


__all__ = [
    "AudioSynchronizer",
    "ClipPlacement",
    "ComposedAudioSynchronizer",
    "OnlineAudioSynchronizer",
    "SilentInterval",
    "TimelineEntry",
    "Watermarks",
    "resolve_placement",
]
