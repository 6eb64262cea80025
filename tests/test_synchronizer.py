import asyncio
from fractions import Fraction

import pytest

from syncrec.errors import SinkError
from syncrec.media import Track
from syncrec.synchronizer import (
    ClipPlacement,
    ComposedAudioSynchronizer,
    OnlineAudioSynchronizer,
    SilentInterval,
    Watermarks,
    resolve_placement,
)
from syncrec.writer import TrackKind


def _online(writer, watermarks, **kwargs) -> OnlineAudioSynchronizer:
    kwargs.setdefault("silence_poll_interval", 0.001)
    kwargs.setdefault("sample_poll_interval", 0.001)
    kwargs.setdefault("sink_ready_timeout", 0.05)
    return OnlineAudioSynchronizer(writer, watermarks, Track("audio"), **kwargs)


def _composed(writer, watermarks, **kwargs) -> ComposedAudioSynchronizer:
    kwargs.setdefault("silence_poll_interval", 0.001)
    kwargs.setdefault("sample_poll_interval", 0.001)
    kwargs.setdefault("sink_ready_timeout", 0.05)
    return ComposedAudioSynchronizer(writer, watermarks, Track("audio"), **kwargs)


@pytest.mark.parametrize(
    "current, last, expected_start, expected_gap",
    [
        (Fraction(1), Fraction(0), Fraction(1), Fraction(1)),
        (Fraction(2), Fraction(3), Fraction(3), None),
        (Fraction(3), Fraction(3), Fraction(3), None),
        (Fraction(0), Fraction(0), Fraction(0), None),
    ],
)
def test_resolve_placement_clamps_before_measuring_gap(
    current, last, expected_start, expected_gap
) -> None:
    requested, start, silence = resolve_placement(current, last, 8000)

    assert requested == current
    assert start == expected_start
    if expected_gap is None:
        assert silence is None
    else:
        assert silence == SilentInterval(last, start)
        assert silence.duration == expected_gap


def test_requested_time_is_snapped_to_sample_grid() -> None:
    # 1/3 s is 2666.67 samples at 8 kHz.
    requested, start, _ = resolve_placement(Fraction(1, 3), Fraction(0), 8000)

    assert requested == Fraction(2667, 8000)
    assert start == requested


def test_online_commits_silence_before_clip(fake_writer, fake_decoder) -> None:
    watermarks = Watermarks(current_time=Fraction(1))
    synchronizer = _online(fake_writer, watermarks)
    clip = fake_decoder.decode(b"1")

    placement = asyncio.run(synchronizer.add_clip(clip))

    blocks = fake_writer.audio_blocks()
    assert blocks[0].silent
    assert (blocks[0].pts, blocks[0].end) == (0, 1)
    assert [block.pts for block in blocks[1:]] == [Fraction(1), Fraction(3, 2)]
    assert placement.end == 2
    assert watermarks.last_audio_end == 2
    assert [ts for _, ts in fake_writer.appends[TrackKind.AUDIO]] == [
        block.pts for block in blocks
    ]


def test_online_timeout_when_audio_track_never_ready(fake_writer, fake_decoder) -> None:
    fake_writer.ready[TrackKind.AUDIO] = False
    watermarks = Watermarks()
    synchronizer = _online(fake_writer, watermarks)

    with pytest.raises(SinkError):
        asyncio.run(synchronizer.add_clip(fake_decoder.decode(b"1")))

    assert watermarks.last_audio_end == 0
    assert len(synchronizer.track) == 0


def test_composed_records_timeline_without_touching_sink(fake_writer, fake_decoder) -> None:
    watermarks = Watermarks(current_time=Fraction(2))
    synchronizer = _composed(fake_writer, watermarks)

    async def scenario():
        await synchronizer.add_clip(fake_decoder.decode(b"1"))
        watermarks.current_time = Fraction(5, 2)
        await synchronizer.add_clip(fake_decoder.decode(b"1"))

    asyncio.run(scenario())

    timeline = synchronizer.timeline
    assert isinstance(timeline[0], SilentInterval)
    assert (timeline[0].start, timeline[0].end) == (0, 2)
    assert isinstance(timeline[1], ClipPlacement)
    assert timeline[1].start == 2
    assert isinstance(timeline[2], ClipPlacement)
    assert timeline[2].start == 3
    assert watermarks.last_audio_end == 4
    assert fake_writer.appends[TrackKind.AUDIO] == []


def test_composed_flush_chunks_silence(fake_writer, fake_decoder) -> None:
    watermarks = Watermarks(current_time=Fraction(5, 2))
    synchronizer = _composed(fake_writer, watermarks, silence_chunk_seconds=1.0)

    async def scenario():
        await synchronizer.add_clip(fake_decoder.decode(b"1/2"))
        await synchronizer.flush()

    asyncio.run(scenario())

    silent = [block for block in fake_writer.audio_blocks() if block.silent]
    assert [block.frame_count for block in silent] == [8000, 8000, 4000]
    assert [block.pts for block in silent] == [0, 1, 2]
    assert synchronizer.track.end == 3
    assert synchronizer.timeline == ()


def test_composed_flush_without_clips_writes_nothing(fake_writer) -> None:
    synchronizer = _composed(fake_writer, Watermarks(current_time=Fraction(4)))

    asyncio.run(synchronizer.flush())

    assert fake_writer.appends[TrackKind.AUDIO] == []
