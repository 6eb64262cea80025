"""Video timeline derived from the count of accepted frames."""

from __future__ import annotations

import logging
import threading
from fractions import Fraction
from typing import Callable

from .media import Track, VideoFrame
from .synchronizer import Watermarks
from .timebase import frame_duration, seconds
from .writer import ContainerWriter, TrackKind


logger = logging.getLogger(__name__)


class TimelineClock:
    """Assign presentation times to frames and publish ``current_time``.

    A frame's time is ``frame_index / fps``. Frames offered while the video
    track is saturated are dropped without advancing the index, so wall-clock
    jitter never leaks into the timeline.
    """

    def __init__(
        self,
        size: tuple[int, int],
        fps: int | Fraction,
        writer: ContainerWriter,
        watermarks: Watermarks,
        *,
        track: Track | None = None,
        copy_frames: bool = True,
        lock: threading.Lock | None = None,
    ) -> None:
        self.size = (int(size[0]), int(size[1]))
        self.frame_duration = frame_duration(fps)
        self.writer = writer
        self.watermarks = watermarks
        self.track = track if track is not None else Track(TrackKind.VIDEO.value)
        self.copy_frames = bool(copy_frames)
        self._lock = lock if lock is not None else threading.Lock()
        self._frame_index = 0
        self._dropped = 0
        self._rejected = 0
        self._ignored = 0

    @property
    def frame_index(self) -> int:
        return self._frame_index

    @property
    def dropped_frames(self) -> int:
        return self._dropped

    @property
    def rejected_frames(self) -> int:
        return self._rejected

    @property
    def ignored_frames(self) -> int:
        return self._ignored

    def add_frame(
        self, frame: VideoFrame, *, admit: Callable[[], None] | None = None
    ) -> Fraction | None:
        """Offer ``frame`` to the video track.

        Returns the frame's presentation time, or ``None`` when the frame was
        ignored (wrong size) or dropped (track not ready or append rejected).
        ``admit`` runs under the clock lock and refuses the frame by raising.
        """

        if frame.size != self.size:
            self._ignored += 1
            logger.debug(
                "Ignoring %dx%d frame; output is %dx%d", *frame.size, *self.size
            )
            return None
        with self._lock:
            if admit is not None:
                admit()
            if not self.writer.is_ready(TrackKind.VIDEO):
                self._dropped += 1
                logger.debug("Video track saturated; dropped frame %d", self._dropped)
                return None
            frame_time = self._frame_index * self.frame_duration
            payload = frame.copy() if self.copy_frames else frame
            if not self.writer.append(TrackKind.VIDEO, payload, frame_time):
                self._rejected += 1
                logger.debug("Video track rejected frame at %.3fs", seconds(frame_time))
                return None
            self._frame_index += 1
            self.track.append(frame_time, self.frame_duration)
            self.watermarks.current_time = frame_time
        return frame_time

    def stats(self) -> dict[str, object]:
        return {
            "frames": self._frame_index,
            "dropped_frames": self._dropped,
            "rejected_frames": self._rejected,
            "ignored_frames": self._ignored,
            "current_time": seconds(self.watermarks.current_time),
        }


__all__ = ["TimelineClock"]
