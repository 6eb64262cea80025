"""Recording session: the single point of mutation for one output file."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from enum import Enum
from fractions import Fraction
from pathlib import Path

import numpy as np

from .clock import TimelineClock
from .config import RecorderConfig
from .decoder import AudioDecoder, PyAVAudioDecoder
from .errors import ConfigurationError, DecodeError, FinalizeError, PersistenceError, SinkError
from .event_log import SessionEventKind, SessionEventLog
from .media import Track, VideoFrame
from .persistence import DirectoryPersistence, Persistence, SavedRecording
from .synchronizer import (
    AudioSynchronizer,
    ClipPlacement,
    ComposedAudioSynchronizer,
    OnlineAudioSynchronizer,
    Watermarks,
)
from .timebase import seconds
from .version import APP_VERSION
from .writer import (
    AudioTrackDeclaration,
    ContainerWriter,
    PyAVContainerWriter,
    TrackKind,
    VideoTrackDeclaration,
)


logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    WRITING = "writing"
    FINALIZING = "finalizing"
    FINISHED = "finished"
    FAILED = "failed"


class RecordingSession:
    """Record frames and asynchronously arriving audio clips into one file.

    ``add_frame`` is synchronous and may be called from any thread. Audio
    clips and :meth:`finish` are coroutines serialised by an asyncio lock,
    so frames keep flowing while a clip is decoded or waits on the writer.
    """

    def __init__(
        self,
        config: RecorderConfig | None = None,
        *,
        writer: ContainerWriter | None = None,
        decoder: AudioDecoder | None = None,
        persistence: Persistence | None = None,
        event_log: SessionEventLog | None = None,
    ) -> None:
        self.config = config or RecorderConfig()
        sink = self.config.sink
        self._writer = writer or PyAVContainerWriter(
            container_format=sink.container_format,
            video_queue_depth=sink.video_queue_depth,
            audio_queue_depth=sink.audio_queue_depth,
        )
        self._decoder = decoder or PyAVAudioDecoder(
            self.config.audio.sample_format,
            temp_directory=self.config.temp_directory,
        )
        self._persistence = persistence or DirectoryPersistence(Path("recordings"))
        self._event_log = event_log

        self._lock = threading.Lock()
        self._audio_lock = asyncio.Lock()
        self._state = SessionState.NOT_STARTED
        self._failure: BaseException | None = None
        self._output_path: Path | None = None
        self._clips_added = 0

        self._watermarks = Watermarks()
        self._video_track = Track(TrackKind.VIDEO.value)
        self._audio_track = Track(TrackKind.AUDIO.value)
        video = self.config.video
        self._clock = TimelineClock(
            video.size,
            video.frame_rate,
            self._writer,
            self._watermarks,
            track=self._video_track,
            copy_frames=video.copy_frames,
            lock=self._lock,
        )
        self._synchronizer = self._create_synchronizer()

    def _create_synchronizer(self) -> AudioSynchronizer:
        sink = self.config.sink
        options = {
            "silence_poll_interval": sink.silence_poll_interval,
            "sample_poll_interval": sink.sample_poll_interval,
            "sink_ready_timeout": sink.sink_ready_timeout,
        }
        if self.config.strategy == "composed":
            return ComposedAudioSynchronizer(
                self._writer,
                self._watermarks,
                self._audio_track,
                silence_chunk_seconds=sink.silence_chunk_seconds,
                **options,
            )
        return OnlineAudioSynchronizer(
            self._writer, self._watermarks, self._audio_track, **options
        )

    # ------------------------------ properties -----------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def output_path(self) -> Path | None:
        """Temporary media file; kept after a persistence failure."""

        return self._output_path

    @property
    def current_time(self) -> Fraction:
        return self._watermarks.current_time

    @property
    def last_audio_end(self) -> Fraction:
        return self._watermarks.last_audio_end

    @property
    def frame_index(self) -> int:
        return self._clock.frame_index

    @property
    def video_track(self) -> Track:
        return self._video_track

    @property
    def audio_track(self) -> Track:
        return self._audio_track

    @property
    def clips_added(self) -> int:
        return self._clips_added

    @property
    def synchronizer(self) -> AudioSynchronizer:
        return self._synchronizer

    def stats(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "state": self._state.value,
            "strategy": self.config.strategy,
            "clips_added": self._clips_added,
            "last_audio_end": seconds(self._watermarks.last_audio_end),
            "video_duration": seconds(self._video_track.end),
            "audio_duration": seconds(self._audio_track.end),
            "silence_duration": seconds(self._audio_track.silent_duration()),
        }
        payload.update(self._clock.stats())
        writer_stats = getattr(self._writer, "stats", None)
        if callable(writer_stats):
            payload["writer"] = writer_stats()
        return payload

    # ------------------------------ lifecycle ------------------------------
    def start(self) -> Path:
        """Open the writer on a fresh temporary file and begin accepting media."""

        video = self.config.video
        audio = self.config.audio
        with self._lock:
            if self._state is not SessionState.NOT_STARTED:
                raise ConfigurationError(
                    f"Cannot start a session that is {self._state.value}"
                )
            location = Path(self.config.temp_directory) / (
                f"{uuid.uuid4().hex}{self.config.sink.extension}"
            )
            tracks = (
                VideoTrackDeclaration(
                    width=video.width,
                    height=video.height,
                    fps=video.fps,
                    encoder=video.encoder,
                    rotation=video.rotation,
                    real_time=True,
                ),
                AudioTrackDeclaration(
                    format=audio.sample_format,
                    codec=audio.codec,
                    real_time=False,
                ),
            )
            try:
                path = self._writer.open(location, tracks)
            except (ConfigurationError, OSError) as exc:
                self._state = SessionState.FAILED
                error = (
                    exc
                    if isinstance(exc, ConfigurationError)
                    else ConfigurationError(f"Unable to open output: {exc}")
                )
                self._failure = error
                _remove_file(location)
                logger.error("Failed to start recording session: %s", exc)
                self._record_event(SessionEventKind.FAILED, f"Failed to start: {exc}")
                if error is exc:
                    raise
                raise error from exc
            self._output_path = Path(path)
            self._watermarks.reset()
            self._state = SessionState.WRITING
        logger.info(
            "Recording session started: %dx%d @ %d fps, %s audio strategy, output %s",
            video.width,
            video.height,
            video.fps,
            self.config.strategy,
            self._output_path,
        )
        self._record_event(
            SessionEventKind.STARTED,
            "Recording session started",
            details={"output": str(self._output_path), "strategy": self.config.strategy},
        )
        return self._output_path

    def add_frame(self, frame: VideoFrame | np.ndarray) -> Fraction | None:
        """Offer a video frame; returns its timestamp or ``None`` when dropped."""

        self._ensure_writing("add frames")
        if not isinstance(frame, VideoFrame):
            frame = VideoFrame(frame, self.config.video.pixel_format)
        # finish() may have begun since the check above; re-check under the lock.
        return self._clock.add_frame(frame, admit=lambda: self._ensure_writing("add frames"))

    async def add_audio_clip(self, data: bytes) -> ClipPlacement:
        """Decode ``data`` and place it on the audio track at the current video time."""

        async with self._audio_lock:
            self._ensure_writing("add audio clips")
            try:
                clip = await asyncio.to_thread(self._decoder.decode, bytes(data))
            except DecodeError as exc:
                logger.warning("Dropping audio clip: %s", exc)
                self._record_event(SessionEventKind.CLIP_REJECTED, str(exc))
                raise
            try:
                placement = await self._synchronizer.add_clip(clip)
            except SinkError as exc:
                logger.error("Audio clip could not be committed: %s", exc)
                self._record_event(SessionEventKind.CLIP_REJECTED, str(exc))
                raise
            self._clips_added += 1
        self._record_event(
            SessionEventKind.CLIP_ADDED,
            "Audio clip placed",
            details={
                "start": placement.start,
                "requested": placement.requested,
                "duration": placement.clip.sample_duration,
                "silence": placement.silence.duration if placement.silence else None,
            },
        )
        return placement

    async def finish(self) -> SavedRecording:
        """Finalise the file and hand it to persistence.

        Any failure leaves the session ``FAILED``: problems writing or closing
        the file raise :class:`FinalizeError` and remove it, problems storing
        it raise :class:`PersistenceError` and keep it at :attr:`output_path`.
        """

        async with self._audio_lock:
            with self._lock:
                if self._state is not SessionState.WRITING:
                    raise ConfigurationError(
                        f"Cannot finish a session that is {self._state.value}"
                    )
                self._state = SessionState.FINALIZING
            logger.info("Finalising recording session (%s)", self._output_path)

            try:
                await self._synchronizer.flush()
            except Exception as exc:
                await self._abort_writer()
                error = FinalizeError(f"Failed to write audio timeline: {exc}")
                self._fail(error, remove_output=True)
                raise error from exc

            try:
                self._writer.mark_track_finished(TrackKind.VIDEO)
                self._writer.mark_track_finished(TrackKind.AUDIO)
                cause = await self._finalize_writer()
            except Exception as exc:
                await self._abort_writer()
                cause = exc
            if cause is not None:
                error = (
                    cause
                    if isinstance(cause, FinalizeError)
                    else FinalizeError(f"Failed to finalise recording: {cause}")
                )
                self._fail(error, remove_output=True)
                if error is cause:
                    raise error
                raise error from cause

            output = self._output_path
            assert output is not None
            try:
                metadata = self._build_metadata()
                saved = await asyncio.to_thread(self._persistence.save, output, metadata)
            except Exception as exc:
                error = (
                    exc
                    if isinstance(exc, PersistenceError)
                    else PersistenceError(f"Failed to store recording: {exc}", path=output)
                )
                self._fail(error, remove_output=False)
                if error is exc:
                    raise
                raise error from exc

            _remove_file(output)
            with self._lock:
                self._state = SessionState.FINISHED
        logger.info("Recording session finished: %s", saved.path)
        self._record_event(
            SessionEventKind.FINISHED,
            "Recording saved",
            details={"file": str(saved.path), "video_duration": self._video_track.end},
        )
        return saved

    # ----------------------------- implementation --------------------------
    def _ensure_writing(self, action: str) -> None:
        if self._state is not SessionState.WRITING:
            raise ConfigurationError(f"Cannot {action} while {self._state.value}")

    async def _abort_writer(self) -> None:
        try:
            await asyncio.to_thread(self._writer.abort)
        except Exception as exc:
            logger.warning("Writer abort failed: %s", exc)

    async def _finalize_writer(self) -> BaseException | None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[BaseException | None] = loop.create_future()

        def _resolve(error: BaseException | None) -> None:
            if not future.done():
                future.set_result(error)

        def _on_finalized(error: BaseException | None) -> None:
            loop.call_soon_threadsafe(_resolve, error)

        self._writer.finalize(_on_finalized)
        return await future

    def _build_metadata(self) -> dict[str, object]:
        payload = self.stats()
        payload["state"] = SessionState.FINISHED.value
        payload["app_version"] = APP_VERSION
        payload["config"] = self.config.to_dict()
        return payload

    def _fail(self, error: BaseException, *, remove_output: bool) -> None:
        with self._lock:
            self._state = SessionState.FAILED
            self._failure = error
        if remove_output and self._output_path is not None:
            _remove_file(self._output_path)
        logger.error("Recording session failed: %s", error)
        self._record_event(
            SessionEventKind.FAILED,
            str(error),
            details={"output": str(self._output_path) if not remove_output else None},
        )

    def _record_event(
        self,
        kind: SessionEventKind,
        message: str,
        *,
        details: dict[str, object | None] | None = None,
    ) -> None:
        if self._event_log is None:
            return
        self._event_log.record(
            kind,
            message,
            current_time=self._watermarks.current_time,
            last_audio_end=self._watermarks.last_audio_end,
            details=details,
        )


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:  # pragma: no cover - best-effort cleanup
        logger.warning("Unable to remove temporary file %s: %s", path, exc)


__all__ = ["RecordingSession", "SessionState"]
