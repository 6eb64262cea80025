"""Durable storage for finished recordings."""

from __future__ import annotations

import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from .errors import PersistenceError


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SavedRecording:
    """Location of a stored recording and the metadata written with it."""

    path: Path
    metadata_path: Path | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.path.stem

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"name": self.name, "file": str(self.path)}
        if self.metadata_path is not None:
            payload["metadata_file"] = str(self.metadata_path)
        payload["metadata"] = dict(self.metadata)
        return payload


class Persistence(ABC):
    """Destination for a finalised media file."""

    @abstractmethod
    def save(self, location: Path, metadata: Mapping[str, object]) -> SavedRecording:
        """Store the file at ``location``; raise :class:`PersistenceError` on failure.

        ``location`` must be left untouched so the caller can remove it once
        the copy is durable.
        """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _write_metadata(path: Path, payload: Mapping[str, object]) -> None:
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    path.write_text(data, encoding="utf-8")


def _fsync_file(path: Path) -> None:
    with path.open("rb") as handle:
        os.fsync(handle.fileno())


class DirectoryPersistence(Persistence):
    """Copy recordings into ``directory`` under UTC timestamped names."""

    def __init__(self, directory: Path | str, *, prefix: str = "recording") -> None:
        self.directory = Path(directory)
        self.prefix = prefix.strip() or "recording"

    def _allocate_name(self, suffix: str) -> str:
        stamp = _utcnow().strftime("%Y%m%d-%H%M%S")
        base = f"{self.prefix}-{stamp}"
        candidate = base
        counter = 1
        while (self.directory / f"{candidate}{suffix}").exists():
            counter += 1
            candidate = f"{base}-{counter}"
        return candidate

    def save(self, location: Path, metadata: Mapping[str, object]) -> SavedRecording:
        source = Path(location)
        if not source.is_file():
            raise PersistenceError(f"Recording file {source} does not exist", path=source)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            name = self._allocate_name(source.suffix)
            destination = self.directory / f"{name}{source.suffix}"
            shutil.copy2(source, destination)
            _fsync_file(destination)
            payload: dict[str, object] = dict(metadata)
            payload["name"] = name
            payload["file"] = destination.name
            payload["size_bytes"] = destination.stat().st_size
            payload["saved_at"] = _utcnow().isoformat()
            meta_path = self.directory / f"{name}.meta.json"
            _write_metadata(meta_path, payload)
        except OSError as exc:
            logger.error("Failed to store recording %s in %s: %s", source, self.directory, exc)
            raise PersistenceError(f"Failed to store recording: {exc}", path=source) from exc
        logger.info("Stored recording %s (%d bytes)", destination, payload["size_bytes"])
        return SavedRecording(path=destination, metadata_path=meta_path, metadata=payload)


__all__ = ["DirectoryPersistence", "Persistence", "SavedRecording"]
