import json
from pathlib import Path

import pytest

from syncrec.config import (
    STRATEGY_ENV_VAR,
    AudioSettings,
    RecorderConfig,
    SinkSettings,
    VideoSettings,
    load_config,
    normalise_strategy,
    parse_config,
    save_config,
)
from syncrec.errors import ConfigurationError


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(STRATEGY_ENV_VAR, raising=False)
    config = RecorderConfig()

    assert config.strategy == "online"
    assert config.video.size == (640, 480)
    assert config.audio.sample_format.sample_rate == 44100
    assert config.sink.container_format == "mov"
    assert config.sink.video_queue_depth == 8
    assert config.sink.audio_queue_depth == 64
    assert config.sink.silence_poll_interval == pytest.approx(0.1)
    assert config.sink.sample_poll_interval == pytest.approx(0.02)
    assert config.temp_directory is not None


def test_strategy_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(STRATEGY_ENV_VAR, "deferred")

    assert RecorderConfig().strategy == "composed"
    assert RecorderConfig(strategy="realtime").strategy == "online"
    with pytest.raises(ValueError):
        normalise_strategy("sometimes")


@pytest.mark.parametrize(
    "factory",
    [
        lambda: VideoSettings(fps=0),
        lambda: VideoSettings(width=-1),
        lambda: VideoSettings(rotation=45),
        lambda: VideoSettings(pixel_format="yuv410p"),
        lambda: AudioSettings(channels=3),
        lambda: AudioSettings(codec=" "),
        lambda: SinkSettings(audio_queue_depth=0),
        lambda: SinkSettings(sink_ready_timeout=float("nan")),
    ],
)
def test_invalid_settings_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory()


def test_parse_config_accepts_size_strings() -> None:
    config = parse_config(
        {
            "video": {"size": "480x640", "fps": "20", "rotation": 450},
            "audio": {"sample_rate": 22050, "channels": 1},
            "sink": {"extension": "mp4", "container_format": "MP4"},
            "strategy": "composed",
        }
    )

    assert config.video.size == (480, 640)
    assert config.video.fps == 20
    assert config.video.rotation == 90
    assert config.audio.sample_format.layout == "mono"
    assert config.sink.extension == ".mp4"
    assert config.sink.container_format == "mp4"
    assert config.strategy == "composed"


def test_parse_config_wraps_validation_errors() -> None:
    with pytest.raises(ConfigurationError):
        parse_config({"video": {"size": "wide"}})
    with pytest.raises(ConfigurationError):
        parse_config({"audio": "loud"})


def test_load_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.json")

    assert config.video == VideoSettings()


def test_load_config_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_config(path)

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_save_config_writes_loadable_json(tmp_path: Path) -> None:
    config = RecorderConfig(
        video=VideoSettings(width=320, height=240, encoder="mpeg4"),
        strategy="composed",
        temp_directory=tmp_path,
    )

    path = save_config(config, tmp_path / "nested" / "config.json")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["video"]["encoder"] == "mpeg4"
    assert load_config(path) == config
