"""Exact rational time helpers.

Every timeline position in the recorder is a :class:`fractions.Fraction` of
seconds. Floats are only produced for logging and metadata so that long
sessions never accumulate rounding drift.
"""

from __future__ import annotations

from fractions import Fraction

ZERO = Fraction(0, 1)


def coerce_fraction(value: object | None) -> Fraction | None:
    """Return ``value`` as a :class:`Fraction` or ``None`` when unusable."""

    if value is None:
        return None
    try:
        if isinstance(value, Fraction):
            return value
        if isinstance(value, int):
            return Fraction(value, 1)
        if isinstance(value, float):
            return Fraction(str(value)).limit_denominator(1_000_000)
        if isinstance(value, str):
            return Fraction(value.strip())
        numerator = getattr(value, "numerator", None)
        denominator = getattr(value, "denominator", None)
        if numerator is None or denominator is None:
            return None
        return Fraction(int(numerator), int(denominator))
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def round_fraction_to_int(value: Fraction) -> int:
    """Round ``value`` to the nearest integer, ties to even."""

    numerator, denominator = value.numerator, value.denominator
    quotient, remainder = divmod(numerator, denominator)
    if remainder == 0:
        return quotient
    doubled = remainder * 2
    if doubled < denominator:
        return quotient
    if doubled > denominator:
        return quotient + 1
    # Tie: prefer even to minimise drift.
    if quotient % 2 == 0:
        return quotient
    return quotient + 1


def to_ticks(value: Fraction, timescale: int) -> int:
    """Express ``value`` seconds as an integer count of ``1/timescale`` ticks."""

    if timescale <= 0:
        raise ValueError("timescale must be positive")
    return round_fraction_to_int(value * timescale)


def rescale(value: Fraction, timescale: int) -> Fraction:
    """Snap ``value`` onto the ``1/timescale`` grid."""

    return Fraction(to_ticks(value, timescale), timescale)


def frame_duration(frame_rate: int | Fraction) -> Fraction:
    """Return the exact duration of one frame at ``frame_rate``."""

    rate = Fraction(frame_rate)
    if rate <= 0:
        raise ValueError("frame rate must be positive")
    return 1 / rate


def select_time_base(frame_rate: Fraction) -> Fraction:
    """Choose a container time base that mirrors the frame duration."""

    if frame_rate <= 0:
        return Fraction(1, 30)
    # Very low frame rates get millisecond-scale ticks so packets still
    # advance with useful precision.
    if frame_rate <= 5:
        ticks_per_second = frame_rate * 1000
        time_base = Fraction(ticks_per_second.denominator, ticks_per_second.numerator)
    else:
        time_base = Fraction(frame_rate.denominator, frame_rate.numerator)
    return time_base.limit_denominator(1_000_000)


def seconds(value: Fraction | None) -> float:
    """Return ``value`` as float seconds for logs and metadata."""

    if value is None:
        return 0.0
    return round(float(value), 6)


__all__ = [
    "ZERO",
    "coerce_fraction",
    "frame_duration",
    "rescale",
    "round_fraction_to_int",
    "seconds",
    "select_time_base",
    "to_ticks",
]
