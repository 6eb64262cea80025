"""Record a synthetic test pattern with periodic tone clips.

Frames are produced at the configured rate while a short tone is added every
few seconds, so the resulting file shows silence between clips and clips
clamped behind one another when they overlap.
"""

from __future__ import annotations

import argparse
import asyncio
import io
import json
import logging
import pathlib
import sys
import wave
from typing import Sequence

import numpy as np

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from syncrec.capture import FrameCapture, SyntheticFrameSource
from syncrec.config import RecorderConfig, VideoSettings, load_config
from syncrec.errors import RecorderError
from syncrec.event_log import SessionEventLog
from syncrec.persistence import DirectoryPersistence
from syncrec.session import RecordingSession


def _tone_clip(seconds: float, frequency: float, rate: int = 44100) -> bytes:
    frames = int(seconds * rate)
    timeline = np.arange(frames) / rate
    samples = (np.sin(2 * np.pi * frequency * timeline) * 12000).astype(np.int16)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(rate)
        handle.writeframes(samples.tobytes())
    return buffer.getvalue()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record a synthetic test pattern")
    parser.add_argument("--config", type=pathlib.Path, help="JSON recorder configuration")
    parser.add_argument("--output", type=pathlib.Path, default=pathlib.Path("recordings"))
    parser.add_argument("--clips", type=int, default=5, help="Number of tone clips to add")
    parser.add_argument("--interval", type=float, default=4.0, help="Seconds between clips")
    parser.add_argument("--clip-length", type=float, default=2.0)
    parser.add_argument("--encoder", help="Video encoder preference (auto, x264, mpeg4, ...)")
    parser.add_argument("--strategy", choices=("online", "composed"))
    parser.add_argument("--verbose", action="store_true")
    return parser


async def record(args: argparse.Namespace) -> dict[str, object]:
    config = load_config(args.config)
    if args.encoder or args.strategy:
        video = config.video
        if args.encoder:
            video = VideoSettings(**{**video.to_dict(), "encoder": args.encoder})
        config = RecorderConfig(
            video=video,
            audio=config.audio,
            sink=config.sink,
            strategy=args.strategy or config.strategy,
            temp_directory=config.temp_directory,
        )

    session = RecordingSession(
        config,
        persistence=DirectoryPersistence(args.output),
        event_log=SessionEventLog(args.output / "sessions.jsonl"),
    )
    session.start()
    capture = FrameCapture(
        SyntheticFrameSource(config.video.width, config.video.height),
        session,
        config.video.fps,
    )
    capture.start()
    try:
        for index in range(args.clips):
            await asyncio.sleep(args.interval)
            clip = _tone_clip(args.clip_length, 440.0 + 110.0 * index)
            placement = await session.add_audio_clip(clip)
            logging.info(
                "Clip %d placed at %.3fs (requested %.3fs)",
                index + 1,
                float(placement.start),
                float(placement.requested),
            )
        await asyncio.sleep(args.interval)
        saved = await session.finish()
    finally:
        await capture.stop()
    return saved.to_dict()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        result = asyncio.run(record(args))
    except RecorderError as exc:
        logging.error("Recording failed: %s", exc)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":  # pragma: no cover - script behaviour
    sys.exit(main())
