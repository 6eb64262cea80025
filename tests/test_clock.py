from fractions import Fraction

import numpy as np

from syncrec.clock import TimelineClock
from syncrec.media import VideoFrame
from syncrec.synchronizer import Watermarks
from syncrec.writer import TrackKind


def _frame(width: int = 4, height: int = 2) -> VideoFrame:
    return VideoFrame(np.zeros((height, width, 3), dtype=np.uint8))


def test_frame_times_derive_from_accepted_count(fake_writer) -> None:
    watermarks = Watermarks()
    clock = TimelineClock((4, 2), 25, fake_writer, watermarks)

    times = [clock.add_frame(_frame()) for _ in range(5)]

    assert times == [Fraction(index, 25) for index in range(5)]
    assert watermarks.current_time == Fraction(4, 25)
    assert clock.track.end == Fraction(5, 25)


def test_saturated_track_drops_without_advancing(fake_writer) -> None:
    watermarks = Watermarks()
    clock = TimelineClock((4, 2), 10, fake_writer, watermarks)
    clock.add_frame(_frame())
    clock.add_frame(_frame())

    fake_writer.ready[TrackKind.VIDEO] = False
    for _ in range(3):
        assert clock.add_frame(_frame()) is None
    fake_writer.ready[TrackKind.VIDEO] = True

    assert clock.dropped_frames == 3
    assert clock.frame_index == 2
    assert watermarks.current_time == Fraction(1, 10)
    assert clock.add_frame(_frame()) == Fraction(2, 10)


def test_mismatched_frames_are_ignored(fake_writer) -> None:
    clock = TimelineClock((4, 2), 10, fake_writer, Watermarks())

    assert clock.add_frame(_frame(2, 4)) is None
    assert clock.ignored_frames == 1
    assert clock.frame_index == 0
    assert fake_writer.appends[TrackKind.VIDEO] == []


def test_copy_frames_can_be_disabled(fake_writer) -> None:
    clock = TimelineClock((4, 2), 10, fake_writer, Watermarks(), copy_frames=False)
    frame = _frame()

    clock.add_frame(frame)

    assert fake_writer.appends[TrackKind.VIDEO][0][0] is frame
