from fractions import Fraction
from pathlib import Path

import pytest

from syncrec.event_log import SessionEvent, SessionEventKind, SessionEventLog, load_events


def test_keeps_most_recent_events_and_filters_by_kind() -> None:
    log = SessionEventLog(None, max_entries=3)
    log.record(SessionEventKind.STARTED, "Recording session started")

    for index in range(4):
        log.record("clip_added", f"clip {index}", details={"index": index, "silence": None})

    assert len(log) == 3
    assert [event.message for event in log.events()] == ["clip 1", "clip 2", "clip 3"]
    assert log.events(SessionEventKind.STARTED) == ()
    last = log.last("clip_added")
    assert last is not None
    assert last.details == {"index": 3}


def test_unknown_event_kind_is_rejected() -> None:
    log = SessionEventLog(None)

    with pytest.raises(ValueError):
        log.record("paused", "not a session event")

    assert len(log) == 0


def test_placements_reload_exactly(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "sessions.jsonl"
    log = SessionEventLog(path)
    log.record(
        SessionEventKind.CLIP_ADDED,
        "Audio clip placed",
        current_time=Fraction(99, 20),
        last_audio_end=Fraction(9, 2),
        details={"start": Fraction(3), "requested": Fraction(2), "label": "tone"},
    )

    line = path.read_text(encoding="utf-8").strip()
    assert '"current_time":"99/20"' in line

    event = SessionEventLog(path).last()
    assert event is not None
    assert event.kind is SessionEventKind.CLIP_ADDED
    assert event.current_time == Fraction(99, 20)
    assert event.last_audio_end == Fraction(9, 2)
    assert event.details == {"start": Fraction(3), "requested": Fraction(2), "label": "tone"}


def test_unreadable_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "sessions.jsonl"
    good = SessionEvent(SessionEventKind.FAILED, "disk full", last_audio_end=Fraction(1, 3))
    path.write_text(
        "\n".join(
            [
                "not json",
                '{"kind": "paused", "at": 1, "message": "", "current_time": "0/1", "last_audio_end": "0/1"}',
                '{"kind": "started", "at": 1, "message": "", "current_time": 0.5, "last_audio_end": "0/1"}',
                good.to_json(),
                "",
            ]
        ),
        encoding="utf-8",
    )

    events = load_events(path)

    assert [event.message for event in events] == ["disk full"]
    assert events[0].last_audio_end == Fraction(1, 3)


def test_max_entries_must_be_positive() -> None:
    with pytest.raises(ValueError):
        SessionEventLog(None, max_entries=0)
