"""Container writer interface and the PyAV-backed implementation."""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Callable, Sequence, Union

import av
import numpy as np

from .encoders import (
    EncoderProbe,
    even_dimensions,
    probe_video_encoders,
)
from .errors import ConfigurationError, FinalizeError, SinkError
from .media import SampleBlock, SampleFormat, VideoFrame
from .timebase import round_fraction_to_int, select_time_base, to_ticks


logger = logging.getLogger(__name__)


class TrackKind(str, Enum):
    """Tracks a session declares on its writer."""

    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class VideoTrackDeclaration:
    width: int
    height: int
    fps: int
    encoder: str = "auto"
    rotation: int = 0
    real_time: bool = True

    @property
    def kind(self) -> TrackKind:
        return TrackKind.VIDEO


@dataclass(frozen=True, slots=True)
class AudioTrackDeclaration:
    format: SampleFormat
    codec: str = "pcm_s16le"
    real_time: bool = False

    @property
    def kind(self) -> TrackKind:
        return TrackKind.AUDIO


TrackDeclaration = Union[VideoTrackDeclaration, AudioTrackDeclaration]
FinalizeCallback = Callable[[Union[BaseException, None]], None]


class ContainerWriter(ABC):
    """Sink that muxes independently timed tracks into one file.

    Readiness is level-triggered: callers poll :meth:`is_ready` and retry
    :meth:`append` when it returns ``False``.
    """

    @abstractmethod
    def open(self, location: Path, tracks: Sequence[TrackDeclaration]) -> Path:
        """Create the output at ``location`` and declare ``tracks``."""

    @abstractmethod
    def is_ready(self, track: TrackKind) -> bool:
        ...

    @abstractmethod
    def append(
        self, track: TrackKind, payload: VideoFrame | SampleBlock, timestamp: Fraction
    ) -> bool:
        """Queue ``payload`` at ``timestamp``; ``False`` means retry later."""

    @abstractmethod
    def mark_track_finished(self, track: TrackKind) -> None:
        ...

    @abstractmethod
    def finalize(self, callback: FinalizeCallback) -> None:
        """Finish the file asynchronously and report through ``callback``."""

    def abort(self) -> None:  # pragma: no cover - optional override
        return None


def _normalise_pixel_format(value: object) -> str | None:
    if isinstance(value, str):
        return value.strip().lower() or None
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name.strip().lower() or None
    return None


def _select_stream_pixel_format(stream: object, requested: str | None) -> str:
    """Choose a pixel format supported by the stream's encoder."""

    requested_format = _normalise_pixel_format(requested) or "yuv420p"
    codec_context = getattr(stream, "codec_context", None)
    codec = getattr(codec_context, "codec", None)
    available: tuple[str, ...] = ()
    formats = getattr(codec, "video_formats", None)
    if formats:
        available = tuple(
            name for name in (_normalise_pixel_format(item) for item in formats) if name
        )
    if not available:
        return requested_format
    for candidate in (requested_format, "yuv420p", "nv12"):
        if candidate in available:
            return candidate
    return available[0]


def _apply_video_stream_timing(stream: object, frame_rate: Fraction, time_base: Fraction) -> None:
    """Synchronise stream and codec timing so playback honours real duration."""

    try:
        stream.time_base = time_base  # type: ignore[attr-defined]
    except (AttributeError, TypeError, ValueError):  # pragma: no cover - read-only property
        pass
    codec_context = getattr(stream, "codec_context", None)
    if codec_context is None:
        return
    try:
        codec_context.time_base = time_base
    except (AttributeError, TypeError, ValueError):  # pragma: no cover - codec contexts vary
        pass
    try:
        codec_context.framerate = frame_rate
    except (AttributeError, TypeError, ValueError):  # pragma: no cover - optional property
        pass


@dataclass
class _VideoState:
    stream: object
    width: int
    height: int
    pixel_format: str
    time_base: Fraction
    codec: str
    last_pts: int = -1
    frames_written: int = 0


@dataclass
class _AudioState:
    stream: object
    format: SampleFormat
    codec: str
    last_pts: int = -1
    frames_written: int = 0


@dataclass(frozen=True)
class _WriteRequest:
    track: TrackKind
    payload: VideoFrame | SampleBlock
    timestamp: Fraction


@dataclass(frozen=True)
class _CloseRequest:
    callback: FinalizeCallback | None
    discard: bool = False


@dataclass
class PyAVContainerWriter(ContainerWriter):
    """FFmpeg-backed writer whose container is owned by one worker thread.

    Each track accepts up to its queue depth of pending payloads; beyond that
    it reports not-ready until the worker catches up.
    """

    container_format: str = "mov"
    video_queue_depth: int = 8
    audio_queue_depth: int = 64
    encoder_selector: Callable[[str | None], EncoderProbe] = probe_video_encoders
    path: Path | None = field(init=False, default=None)
    _container: object | None = field(init=False, default=None, repr=False)
    _video: _VideoState | None = field(init=False, default=None, repr=False)
    _audio: _AudioState | None = field(init=False, default=None, repr=False)
    _queue: "queue.Queue[_WriteRequest | _CloseRequest]" = field(
        init=False, default_factory=queue.Queue, repr=False
    )
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)
    _pending: dict[TrackKind, int] = field(init=False, default_factory=dict, repr=False)
    _finished: set[TrackKind] = field(init=False, default_factory=set, repr=False)
    _fault: BaseException | None = field(init=False, default=None, repr=False)
    _closing: bool = field(init=False, default=False, repr=False)
    _thread: threading.Thread | None = field(init=False, default=None, repr=False)

    # ------------------------------ lifecycle ------------------------------
    def open(self, location: Path, tracks: Sequence[TrackDeclaration]) -> Path:
        if self._container is not None or self._closing:
            raise ConfigurationError("Writer has already been opened")
        location = Path(location)
        try:
            location.parent.mkdir(parents=True, exist_ok=True)
            container = av.open(str(location), mode="w", format=self.container_format)
        except (OSError, av.FFmpegError) as exc:
            raise ConfigurationError(f"Unable to open {location} for writing: {exc}") from exc

        try:
            for declaration in tracks:
                if isinstance(declaration, VideoTrackDeclaration):
                    self._video = self._add_video_stream(container, declaration)
                elif isinstance(declaration, AudioTrackDeclaration):
                    self._audio = self._add_audio_stream(container, declaration)
                else:
                    raise ConfigurationError(f"Unsupported track declaration: {declaration!r}")
        except ConfigurationError:
            self._discard_container(container, location)
            raise
        except (av.FFmpegError, ValueError) as exc:
            self._discard_container(container, location)
            raise ConfigurationError(f"Unable to declare tracks: {exc}") from exc

        self._container = container
        self.path = location
        self._pending = {declaration.kind: 0 for declaration in tracks}
        self._thread = threading.Thread(
            target=self._run, name="syncrec-writer", daemon=True
        )
        self._thread.start()
        logger.info(
            "Opened %s container at %s with tracks: %s",
            self.container_format,
            location,
            ", ".join(declaration.kind.value for declaration in tracks),
        )
        return location

    def _add_video_stream(
        self, container: object, declaration: VideoTrackDeclaration
    ) -> _VideoState:
        probe = self.encoder_selector(declaration.encoder)
        backend = probe.backend
        if backend is None:
            raise ConfigurationError(probe.describe_failure())
        frame_rate = Fraction(declaration.fps, 1)
        stream = container.add_stream(backend.codec, rate=declaration.fps)  # type: ignore[attr-defined]
        width, height = declaration.width, declaration.height
        if backend.requires_even_dimensions:
            width, height = even_dimensions(width, height)
        stream.width = width
        stream.height = height
        pixel_format = _select_stream_pixel_format(stream, "yuv420p")
        stream.pix_fmt = pixel_format
        time_base = select_time_base(frame_rate)
        _apply_video_stream_timing(stream, frame_rate, time_base)
        if declaration.rotation:
            try:
                stream.metadata["rotate"] = str(declaration.rotation)
            except (AttributeError, TypeError):  # pragma: no cover - metadata is best-effort
                logger.debug("Stream does not accept rotation metadata")
        logger.debug(
            "Video track: %s %dx%d @ %d fps (time base %s)",
            backend.codec,
            width,
            height,
            declaration.fps,
            time_base,
        )
        return _VideoState(
            stream=stream,
            width=width,
            height=height,
            pixel_format=pixel_format,
            time_base=time_base,
            codec=backend.codec,
        )

    def _add_audio_stream(
        self, container: object, declaration: AudioTrackDeclaration
    ) -> _AudioState:
        fmt = declaration.format
        stream = container.add_stream(declaration.codec, rate=fmt.sample_rate)  # type: ignore[attr-defined]
        codec_context = getattr(stream, "codec_context", None)
        if codec_context is not None:
            try:
                codec_context.layout = fmt.layout
            except (AttributeError, TypeError, ValueError):  # pragma: no cover - codec contexts vary
                pass
        try:
            stream.time_base = Fraction(1, fmt.sample_rate)
        except (AttributeError, TypeError, ValueError):  # pragma: no cover - read-only property
            pass
        logger.debug(
            "Audio track: %s %d Hz, %d channel(s), %d-bit",
            declaration.codec,
            fmt.sample_rate,
            fmt.channels,
            fmt.bit_depth,
        )
        return _AudioState(stream=stream, format=fmt, codec=declaration.codec)

    @staticmethod
    def _discard_container(container: object, location: Path) -> None:
        try:
            container.close()  # type: ignore[attr-defined]
        except (av.FFmpegError, OSError):  # pragma: no cover - best-effort cleanup
            pass
        try:
            location.unlink(missing_ok=True)
        except OSError:  # pragma: no cover - best-effort cleanup
            pass

    # ------------------------------ protocol -------------------------------
    def _raise_on_fault(self) -> None:
        fault = self._fault
        if fault is not None:
            raise SinkError(f"Container writer failed: {fault}") from fault

    def is_ready(self, track: TrackKind) -> bool:
        self._raise_on_fault()
        with self._lock:
            if self._container is None or self._closing or track in self._finished:
                return False
            pending = self._pending.get(track)
            if pending is None:
                return False
            return pending < self._queue_depth(track)

    def append(
        self, track: TrackKind, payload: VideoFrame | SampleBlock, timestamp: Fraction
    ) -> bool:
        self._raise_on_fault()
        with self._lock:
            if track in self._finished:
                raise SinkError(f"The {track.value} track has already been finished")
            if self._container is None or self._closing:
                raise SinkError("Container writer is not open")
            pending = self._pending.get(track)
            if pending is None:
                raise SinkError(f"No {track.value} track was declared")
            if pending >= self._queue_depth(track):
                return False
            self._pending[track] = pending + 1
        self._queue.put(_WriteRequest(track, payload, Fraction(timestamp)))
        return True

    def mark_track_finished(self, track: TrackKind) -> None:
        with self._lock:
            self._finished.add(track)

    def finalize(self, callback: FinalizeCallback) -> None:
        with self._lock:
            if self._container is None or self._closing:
                error: BaseException | None = FinalizeError("Container writer is not open")
            else:
                error = None
                self._closing = True
        if error is not None:
            callback(error)
            return
        self._queue.put(_CloseRequest(callback))

    def abort(self) -> None:
        """Stop writing and remove the partially written file."""

        with self._lock:
            already_closing = self._closing
            self._closing = True
        thread = self._thread
        if thread is not None and thread.is_alive() and not already_closing:
            self._queue.put(_CloseRequest(None, discard=True))
            thread.join(timeout=5.0)
        path = self.path
        if path is not None:
            try:
                path.unlink(missing_ok=True)
            except OSError:  # pragma: no cover - best-effort cleanup
                pass

    def stats(self) -> dict[str, object]:
        payload: dict[str, object] = {"container_format": self.container_format}
        if self._video is not None:
            payload["video_codec"] = self._video.codec
            payload["video_frames_written"] = self._video.frames_written
        if self._audio is not None:
            payload["audio_codec"] = self._audio.codec
            payload["audio_frames_written"] = self._audio.frames_written
        return payload

    def _queue_depth(self, track: TrackKind) -> int:
        if track is TrackKind.VIDEO:
            return max(1, int(self.video_queue_depth))
        return max(1, int(self.audio_queue_depth))

    # ------------------------------ worker ---------------------------------
    def _run(self) -> None:
        while True:
            request = self._queue.get()
            if isinstance(request, _CloseRequest):
                try:
                    error = self._close(discard=request.discard)
                except Exception as exc:  # the callback must always fire
                    logger.exception("Unexpected failure while closing the container")
                    error = FinalizeError(f"Failed to close container: {exc}")
                    error.__cause__ = exc
                if request.callback is not None:
                    request.callback(error)
                return
            try:
                if self._fault is None:
                    self._write(request)
            except Exception as exc:  # recorded as a fault and raised to callers as SinkError
                logger.error("Failed to write %s payload: %s", request.track.value, exc)
                self._fault = exc
            finally:
                with self._lock:
                    self._pending[request.track] = max(0, self._pending[request.track] - 1)

    def _write(self, request: _WriteRequest) -> None:
        if request.track is TrackKind.VIDEO:
            self._encode_video(request.payload, request.timestamp)  # type: ignore[arg-type]
        else:
            self._encode_audio(request.payload, request.timestamp)  # type: ignore[arg-type]

    def _mux(self, packets: Sequence[object]) -> None:
        for packet in packets:
            self._container.mux(packet)  # type: ignore[union-attr]

    def _encode_video(self, frame: VideoFrame, timestamp: Fraction) -> None:
        state = self._video
        if state is None:
            raise ValueError("No video track declared")
        array = np.ascontiguousarray(frame.data)
        av_frame = av.VideoFrame.from_ndarray(array, format=frame.pixel_format)
        av_frame = av_frame.reformat(
            width=state.width, height=state.height, format=state.pixel_format
        )
        pts = round_fraction_to_int(timestamp / state.time_base)
        if pts <= state.last_pts:
            pts = state.last_pts + 1
        av_frame.pts = pts
        av_frame.time_base = state.time_base
        state.last_pts = pts
        self._mux(state.stream.encode(av_frame))  # type: ignore[attr-defined]
        state.frames_written += 1

    def _encode_audio(self, block: SampleBlock, timestamp: Fraction) -> None:
        state = self._audio
        if state is None:
            raise ValueError("No audio track declared")
        if block.frame_count == 0:
            return
        fmt = block.format
        packed = np.ascontiguousarray(block.samples).reshape(1, -1)
        av_frame = av.AudioFrame.from_ndarray(packed, format=fmt.av_format, layout=fmt.layout)
        av_frame.sample_rate = fmt.sample_rate
        pts = to_ticks(timestamp, fmt.sample_rate)
        if pts <= state.last_pts:
            raise ValueError(
                f"Audio block at {float(timestamp):.6f}s does not advance the track"
            )
        av_frame.pts = pts
        av_frame.time_base = Fraction(1, fmt.sample_rate)
        state.last_pts = pts
        self._mux(state.stream.encode(av_frame))  # type: ignore[attr-defined]
        state.frames_written += block.frame_count

    def _close(self, *, discard: bool) -> BaseException | None:
        container = self._container
        if container is None:
            return FinalizeError("Container writer is not open")
        error: BaseException | None = None
        if self._fault is not None:
            error = FinalizeError(f"Container writer failed: {self._fault}")
            error.__cause__ = self._fault
        if not discard and error is None:
            try:
                for state in (self._video, self._audio):
                    if state is not None:
                        self._mux(state.stream.encode(None))  # type: ignore[attr-defined]
            except (av.FFmpegError, ValueError) as exc:
                logger.error("Failed to flush encoders: %s", exc)
                error = FinalizeError(f"Failed to flush encoders: {exc}")
                error.__cause__ = exc
        try:
            container.close()  # type: ignore[attr-defined]
        except (av.FFmpegError, OSError) as exc:
            if error is None:
                error = FinalizeError(f"Failed to close container: {exc}")
                error.__cause__ = exc
        self._container = None
        if error is None and not discard:
            logger.info("Finalised container %s", self.path)
        return error


__all__ = [
    "AudioTrackDeclaration",
    "ContainerWriter",
    "FinalizeCallback",
    "PyAVContainerWriter",
    "TrackDeclaration",
    "TrackKind",
    "VideoTrackDeclaration",
]
