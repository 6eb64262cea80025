"""Frame sources and the capture loop that feeds a recording session."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

import numpy as np

from .errors import ConfigurationError
from .media import VideoFrame
from .session import RecordingSession, SessionState

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Abstract producer of video frames."""

    @abstractmethod
    async def get_frame(self) -> VideoFrame:  # pragma: no cover - interface only
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - optional override
        return None


class SyntheticFrameSource(FrameSource):
    """Moving RGB gradient for development and testing."""

    def __init__(self, width: int = 640, height: int = 480) -> None:
        self._width = int(width)
        self._height = int(height)
        self._start = time.perf_counter()

    @property
    def size(self) -> tuple[int, int]:
        return (self._width, self._height)

    async def get_frame(self) -> VideoFrame:
        elapsed = time.perf_counter() - self._start
        horizontal = np.linspace(0, 255, self._width, dtype=np.uint8)
        vertical = np.linspace(0, 255, self._height, dtype=np.uint8).reshape(-1, 1)
        red = np.tile(horizontal, (self._height, 1))
        green = np.roll(red, int(elapsed * 10), axis=1)
        blue = np.tile(vertical, (1, self._width))
        return VideoFrame(np.stack([red, green, blue], axis=2), "rgb24")


class FrameCapture:
    """Pull frames from ``source`` at ``fps`` and hand them to ``session``.

    The loop ends by itself once the session stops accepting frames.
    """

    def __init__(self, source: FrameSource, session: RecordingSession, fps: int | float) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.source = source
        self.session = session
        self._frame_interval = 1.0 / float(fps)
        self._task: asyncio.Task[None] | None = None
        self.frames_offered = 0
        self.frames_accepted = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Frame capture is already running")
        self._task = asyncio.create_task(self._run(), name="syncrec-capture")
        return self._task

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while self.session.state is SessionState.WRITING:
            iteration_start = time.perf_counter()
            try:
                frame = await self.source.get_frame()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Frame source failed: %s", exc)
                await asyncio.sleep(self._frame_interval)
                continue

            self.frames_offered += 1
            try:
                accepted = self.session.add_frame(frame.copy())
            except ConfigurationError:
                break
            if accepted is not None:
                self.frames_accepted += 1

            delay = self._frame_interval - (time.perf_counter() - iteration_start)
            if delay > 0:
                await asyncio.sleep(delay)
        logger.debug(
            "Frame capture stopped after %d frames (%d accepted)",
            self.frames_offered,
            self.frames_accepted,
        )


__all__ = ["FrameCapture", "FrameSource", "SyntheticFrameSource"]
