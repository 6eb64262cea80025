"""Video encoder discovery helpers."""
from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
import logging

import av


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoEncoderBackend:
    """Represents a concrete video encoder implementation."""

    key: str
    codec: str
    label: str
    hardware: bool = False
    requires_even_dimensions: bool = True


_VIDEO_ENCODER_BACKENDS: tuple[VideoEncoderBackend, ...] = (
    VideoEncoderBackend(
        key="v4l2m2m",
        codec="h264_v4l2m2m",
        label="V4L2 M2M H.264 (hardware)",
        hardware=True,
    ),
    VideoEncoderBackend(
        key="libx264",
        codec="libx264",
        label="libx264 H.264 (software)",
    ),
    VideoEncoderBackend(
        key="mpeg4",
        codec="mpeg4",
        label="MPEG-4 Part 2 (software fallback)",
    ),
)

_VIDEO_ENCODER_BY_KEY = {backend.key: backend for backend in _VIDEO_ENCODER_BACKENDS}
_VIDEO_ENCODER_ALIASES = {
    "auto": "auto",
    "default": "auto",
    "hardware": "v4l2m2m",
    "h264_v4l2m2m": "v4l2m2m",
    "software": "libx264",
    "h264": "libx264",
    "x264": "libx264",
    "libx264": "libx264",
    "mpeg4": "mpeg4",
    "fallback": "mpeg4",
}


def normalise_encoder_choice(choice: str | None) -> str:
    """Map aliases such as ``"x264"`` or ``"hardware"`` onto backend keys."""

    key = (choice or "").strip().lower()
    return _VIDEO_ENCODER_ALIASES.get(key, key) if key else "auto"


def candidate_backends(preference: str) -> tuple[VideoEncoderBackend, ...]:
    """Return backends in probe order, the preferred one first."""

    preferred = _VIDEO_ENCODER_BY_KEY.get(preference)
    if preferred is None:
        if preference != "auto":
            logger.debug("Unknown video encoder preference %r; probing all", preference)
        return _VIDEO_ENCODER_BACKENDS
    rest = tuple(item for item in _VIDEO_ENCODER_BACKENDS if item is not preferred)
    return (preferred, *rest)


def _probe_backend(backend: VideoEncoderBackend) -> str | None:
    """Return why ``backend`` cannot encode, or ``None`` once it has opened."""

    try:
        context = av.CodecContext.create(backend.codec, "w")
    except (av.FFmpegError, ValueError) as exc:
        # PyAV raises ValueError for codec names FFmpeg does not know.
        return f"unavailable ({exc})"
    if not getattr(context, "is_encoder", True):
        return "not an encoder"
    # Hardware encoders register even without their device node.
    try:
        context.width = 64
        context.height = 64
        context.pix_fmt = "yuv420p"
        context.time_base = Fraction(1, 25)
        context.open()
    except (av.FFmpegError, ValueError) as exc:
        return f"failed to open ({exc})"
    return None


@dataclass(frozen=True)
class EncoderProbe:
    """Outcome of opening candidate encoders in turn."""

    backend: VideoEncoderBackend | None
    failures: tuple[tuple[str, str], ...] = ()

    @property
    def attempted(self) -> tuple[str, ...]:
        codecs = tuple(codec for codec, _ in self.failures)
        if self.backend is not None:
            codecs += (self.backend.codec,)
        return codecs

    def describe_failure(self) -> str:
        if not self.failures:
            return "No video encoder candidates to try."
        tried = "; ".join(f"{codec}: {reason}" for codec, reason in self.failures)
        return (
            f"No usable video encoder (attempted codecs: {tried}). Install FFmpeg "
            "with an H.264 or MPEG-4 encoder so PyAV can expose it."
        )


def probe_video_encoders(preference: str | None, *, strict: bool = False) -> EncoderProbe:
    """Open candidate encoders until one works.

    A known preference is tried first. With ``strict`` it is the only
    candidate; unknown preferences always fall back to probing everything.
    """

    key = normalise_encoder_choice(preference)
    candidates = candidate_backends(key)
    if strict and key in _VIDEO_ENCODER_BY_KEY:
        candidates = candidates[:1]
    failures: list[tuple[str, str]] = []
    for backend in candidates:
        reason = _probe_backend(backend)
        if reason is None:
            if failures:
                skipped = ", ".join(codec for codec, _ in failures)
                logger.info("Using %s; skipped %s", backend.label, skipped)
            return EncoderProbe(backend, tuple(failures))
        logger.debug("Video encoder %s %s", backend.codec, reason)
        failures.append((backend.codec, reason))
    return EncoderProbe(None, tuple(failures))


def even_dimensions(width: int, height: int) -> tuple[int, int]:
    """Round ``width`` and ``height`` down to even values (minimum 2)."""

    return max(2, width - width % 2), max(2, height - height % 2)


__all__ = [
    "EncoderProbe",
    "VideoEncoderBackend",
    "candidate_backends",
    "even_dimensions",
    "normalise_encoder_choice",
    "probe_video_encoders",
]
