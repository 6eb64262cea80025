import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from syncrec import persistence
from syncrec.errors import PersistenceError
from syncrec.persistence import DirectoryPersistence


def _fixed_now(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        persistence,
        "_utcnow",
        lambda: datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc),
    )


def test_save_copies_file_and_writes_metadata(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _fixed_now(monkeypatch)
    source = tmp_path / "tmp" / "abc.mov"
    source.parent.mkdir()
    source.write_bytes(b"movie")
    store = DirectoryPersistence(tmp_path / "library")

    saved = store.save(source, {"frames": 12, "strategy": "online"})

    assert saved.path == tmp_path / "library" / "recording-20240501-123045.mov"
    assert saved.path.read_bytes() == b"movie"
    assert source.exists()
    assert saved.metadata_path is not None
    payload = json.loads(saved.metadata_path.read_text(encoding="utf-8"))
    assert payload["frames"] == 12
    assert payload["file"] == saved.path.name
    assert payload["size_bytes"] == 5
    assert saved.name == "recording-20240501-123045"


def test_save_avoids_overwriting_existing_names(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _fixed_now(monkeypatch)
    source = tmp_path / "clip.mov"
    source.write_bytes(b"x")
    store = DirectoryPersistence(tmp_path / "library")

    first = store.save(source, {})
    second = store.save(source, {})

    assert first.path != second.path
    assert second.path.name == "recording-20240501-123045-2.mov"


def test_missing_source_raises_persistence_error(tmp_path: Path) -> None:
    store = DirectoryPersistence(tmp_path / "library")

    with pytest.raises(PersistenceError) as excinfo:
        store.save(tmp_path / "missing.mov", {})

    assert excinfo.value.path == tmp_path / "missing.mov"


def test_unwritable_destination_raises_persistence_error(tmp_path: Path) -> None:
    source = tmp_path / "clip.mov"
    source.write_bytes(b"x")
    blocker = tmp_path / "library"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(PersistenceError):
        DirectoryPersistence(blocker).save(source, {})
