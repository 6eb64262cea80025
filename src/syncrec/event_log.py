"""Lifecycle events of recording sessions.

Each event carries the two timeline watermarks at the moment it happened.
Timeline positions stay exact: fractions are written to the JSONL mirror as
``"num/den"`` strings and read back as :class:`~fractions.Fraction`.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Mapping

from .timebase import ZERO


logger = logging.getLogger(__name__)

_FRACTION_TEXT = re.compile(r"^-?\d+/\d+$")


class SessionEventKind(str, Enum):
    STARTED = "started"
    CLIP_ADDED = "clip_added"
    CLIP_REJECTED = "clip_rejected"
    FINISHED = "finished"
    FAILED = "failed"


def _encode_value(value: object) -> object:
    if isinstance(value, Fraction):
        return f"{value.numerator}/{value.denominator}"
    if isinstance(value, Path):
        return str(value)
    return value


def _decode_value(value: object) -> object:
    if isinstance(value, str) and _FRACTION_TEXT.match(value):
        return Fraction(value)
    return value


def _exact_time(value: object) -> Fraction:
    if isinstance(value, bool) or not isinstance(value, (int, str, Fraction)):
        raise ValueError(f"Not an exact timeline position: {value!r}")
    return Fraction(value)


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """One lifecycle transition or clip outcome, stamped with the watermarks."""

    kind: SessionEventKind
    message: str
    current_time: Fraction = ZERO
    last_audio_end: Fraction = ZERO
    details: Mapping[str, object] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", SessionEventKind(self.kind))
        object.__setattr__(self, "current_time", _exact_time(self.current_time))
        object.__setattr__(self, "last_audio_end", _exact_time(self.last_audio_end))
        cleaned = {key: value for key, value in dict(self.details).items() if value is not None}
        object.__setattr__(self, "details", cleaned)

    def to_json(self) -> str:
        payload: dict[str, object] = {
            "kind": self.kind.value,
            "at": self.timestamp,
            "message": self.message,
            "current_time": _encode_value(self.current_time),
            "last_audio_end": _encode_value(self.last_audio_end),
        }
        if self.details:
            payload["details"] = {key: _encode_value(value) for key, value in self.details.items()}
        return json.dumps(payload, separators=(",", ":"), default=str)

    @classmethod
    def from_json(cls, line: str) -> "SessionEvent":
        payload = json.loads(line)
        if not isinstance(payload, dict):
            raise ValueError("Session event must be a JSON object")
        details = payload.get("details") or {}
        if not isinstance(details, dict):
            raise ValueError("Session event details must be an object")
        return cls(
            kind=payload["kind"],
            message=str(payload.get("message", "")),
            current_time=_exact_time(payload["current_time"]),
            last_audio_end=_exact_time(payload["last_audio_end"]),
            details={key: _decode_value(value) for key, value in details.items()},
            timestamp=float(payload["at"]),
        )


def load_events(path: Path | str) -> list[SessionEvent]:
    """Read every well-formed event from a JSONL file, oldest first."""

    events: list[SessionEvent] = []
    skipped = 0
    with Path(path).open("r", encoding="utf-8") as handle:
        for line in handle:
            if not line.strip():
                continue
            try:
                events.append(SessionEvent.from_json(line))
            except (KeyError, TypeError, ValueError):
                skipped += 1
    if skipped:
        logger.warning("Skipped %d unreadable session events in %s", skipped, path)
    return events


class SessionEventLog:
    """Most recent session events, optionally appended to a JSONL file.

    Safe to share between the frame thread and the event loop.
    """

    def __init__(self, path: Path | str | None = None, *, max_entries: int = 500) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.path = Path(path) if path is not None else None
        self.max_entries = max_entries
        self._events: list[SessionEvent] = []
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            self._events = load_events(self.path)[-max_entries:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def record(
        self,
        kind: SessionEventKind | str,
        message: str,
        *,
        current_time: Fraction = ZERO,
        last_audio_end: Fraction = ZERO,
        details: Mapping[str, object] | None = None,
    ) -> SessionEvent:
        """Store an event; unknown ``kind`` values raise :class:`ValueError`."""

        event = SessionEvent(
            kind=kind,
            message=message,
            current_time=current_time,
            last_audio_end=last_audio_end,
            details=details or {},
        )
        with self._lock:
            self._events.append(event)
            del self._events[: -self.max_entries]
            if self.path is not None:
                self._append_line(event.to_json())
        return event

    def events(self, kind: SessionEventKind | str | None = None) -> tuple[SessionEvent, ...]:
        with self._lock:
            snapshot = tuple(self._events)
        if kind is None:
            return snapshot
        wanted = SessionEventKind(kind)
        return tuple(event for event in snapshot if event.kind is wanted)

    def last(self, kind: SessionEventKind | str | None = None) -> SessionEvent | None:
        matching = self.events(kind)
        return matching[-1] if matching else None

    def _append_line(self, line: str) -> None:
        assert self.path is not None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            logger.warning("Unable to append session event to %s: %s", self.path, exc)


__all__ = ["SessionEvent", "SessionEventKind", "SessionEventLog", "load_events"]
