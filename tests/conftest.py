from __future__ import annotations

import threading
from fractions import Fraction
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np
import pytest

from syncrec.config import AudioSettings, RecorderConfig, SinkSettings, VideoSettings
from syncrec.decoder import AudioDecoder, DecodedClip
from syncrec.errors import DecodeError
from syncrec.media import SampleBlock, SampleFormat
from syncrec.persistence import Persistence, SavedRecording
from syncrec.writer import ContainerWriter, TrackKind


TEST_FORMAT = SampleFormat(sample_rate=8000, channels=1, bit_depth=16)


class FakeWriter(ContainerWriter):
    """In-memory writer with controllable readiness and rejections."""

    def __init__(self) -> None:
        self.path: Path | None = None
        self.tracks: tuple[object, ...] = ()
        self.open_error: BaseException | None = None
        self.finalize_error: BaseException | None = None
        self.ready = {TrackKind.VIDEO: True, TrackKind.AUDIO: True}
        self.rejections = {TrackKind.VIDEO: 0, TrackKind.AUDIO: 0}
        self.capacity: dict[TrackKind, int | None] = {TrackKind.VIDEO: None, TrackKind.AUDIO: None}
        self.appends: dict[TrackKind, list[tuple[object, Fraction]]] = {
            TrackKind.VIDEO: [],
            TrackKind.AUDIO: [],
        }
        self.finished: set[TrackKind] = set()
        self.finalized = False
        self.aborted = False
        self.abort_thread: threading.Thread | None = None

    def open(self, location: Path, tracks: Sequence[object]) -> Path:
        if self.open_error is not None:
            raise self.open_error
        location.parent.mkdir(parents=True, exist_ok=True)
        location.write_bytes(b"media")
        self.path = location
        self.tracks = tuple(tracks)
        return location

    def is_ready(self, track: TrackKind) -> bool:
        capacity = self.capacity[track]
        if capacity is not None and len(self.appends[track]) >= capacity:
            return False
        return self.ready[track]

    def append(self, track: TrackKind, payload, timestamp: Fraction) -> bool:
        if self.rejections[track] > 0:
            self.rejections[track] -= 1
            return False
        self.appends[track].append((payload, Fraction(timestamp)))
        return True

    def mark_track_finished(self, track: TrackKind) -> None:
        self.finished.add(track)

    def finalize(self, callback) -> None:
        self.finalized = True
        # Fire from another thread like a real muxer would.
        threading.Thread(target=callback, args=(self.finalize_error,)).start()

    def abort(self) -> None:
        self.aborted = True
        self.abort_thread = threading.current_thread()
        if self.path is not None:
            self.path.unlink(missing_ok=True)

    def audio_blocks(self) -> list[SampleBlock]:
        return [payload for payload, _ in self.appends[TrackKind.AUDIO]]


class FakeDecoder(AudioDecoder):
    """Decodes ``b"<seconds>"`` into a constant tone; ``b"bad..."`` fails."""

    def __init__(self, fmt: SampleFormat = TEST_FORMAT, *, block_seconds: Fraction = Fraction(1, 2)) -> None:
        self.format = fmt
        self.block_frames = int(block_seconds * fmt.sample_rate)
        self.calls = 0

    def decode(self, data: bytes) -> DecodedClip:
        self.calls += 1
        text = data.decode("ascii", errors="replace").strip()
        if not text or text.startswith("bad"):
            raise DecodeError("Unreadable clip")
        duration = Fraction(text)
        remaining = int(duration * self.format.sample_rate)
        blocks: list[SampleBlock] = []
        cursor = 0
        while remaining > 0:
            count = min(remaining, self.block_frames)
            samples = np.full((count, self.format.channels), 1000, dtype=self.format.dtype)
            blocks.append(
                SampleBlock(format=self.format, samples=samples, pts=self.format.duration_of(cursor))
            )
            cursor += count
            remaining -= count
        return DecodedClip(format=self.format, blocks=tuple(blocks), duration=duration)


class FakePersistence(Persistence):
    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.error: BaseException | None = None
        self.saved: list[tuple[Path, bytes, dict[str, object]]] = []

    def save(self, location: Path, metadata: Mapping[str, object]) -> SavedRecording:
        if self.error is not None:
            raise self.error
        payload = location.read_bytes()
        self.saved.append((location, payload, dict(metadata)))
        destination = self.directory / f"saved{location.suffix}"
        destination.write_bytes(payload)
        return SavedRecording(path=destination, metadata=dict(metadata))


@pytest.fixture
def fake_writer() -> FakeWriter:
    return FakeWriter()


@pytest.fixture
def fake_decoder() -> FakeDecoder:
    return FakeDecoder()


@pytest.fixture
def fake_persistence(tmp_path: Path) -> FakePersistence:
    directory = tmp_path / "saved"
    directory.mkdir()
    return FakePersistence(directory)


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(strategy: str = "online", **sink_overrides: object) -> RecorderConfig:
        sink_values = {
            "silence_poll_interval": 0.005,
            "sample_poll_interval": 0.005,
            "sink_ready_timeout": 0.05,
        }
        sink_values.update(sink_overrides)
        return RecorderConfig(
            video=VideoSettings(width=480, height=640, fps=20),
            audio=AudioSettings(sample_rate=TEST_FORMAT.sample_rate, channels=1),
            sink=SinkSettings(**sink_values),  # type: ignore[arg-type]
            strategy=strategy,
            temp_directory=tmp_path / "tmp",
        )

    return _make


@pytest.fixture
def frame() -> np.ndarray:
    return np.zeros((640, 480, 3), dtype=np.uint8)
