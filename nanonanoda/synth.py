"""Direct sine resynthesis of allocator output, for A/B comparison with the chips.

Oscillators run at the analysed (pre-quantization) frequency and magnitude.
Phase is taken from absolute output time, so a partial held across windows
stays continuous. Each window is rendered ``fade`` samples past its end and
crossfaded with linear ramps that sum to one.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from .allocator import Assignment
from .errors import InvalidConfigError

_LOGGER = logging.getLogger("nanonanoda.synth")

FloatArray: TypeAlias = NDArray[np.float64]

CLIP_LEVEL = 1.0
NORMALIZED_PEAK = 0.95


def generate_sine(
    freq: float, start: int, count: int, sample_rate: int, amp: float
) -> FloatArray:
    """Sine samples ``start .. start + count`` of a wave that began at sample 0."""
    t = (start + np.arange(count, dtype=np.float64)) / float(sample_rate)
    return amp * np.sin(2.0 * np.pi * freq * t)


def fade_ramps(fade: int) -> tuple[FloatArray, FloatArray]:
    """Complementary (fade-in, fade-out) ramps of ``fade`` samples."""
    ramp_in = np.arange(fade, dtype=np.float64) / float(fade) if fade else np.zeros(0)
    return ramp_in, 1.0 - ramp_in


def render_window(
    assignments: Sequence[Assignment],
    start: int,
    length: int,
    fade: int,
    sample_rate: int,
    *,
    fade_in: bool = True,
) -> FloatArray:
    """Render ``length + fade`` samples for one window's sounding voices."""
    if length < 0 or fade < 0:
        raise InvalidConfigError("Window length and fade must be non-negative")
    total = length + fade
    out = np.zeros(total, dtype=np.float64)
    if total == 0 or not assignments:
        return out
    for assignment in assignments:
        peak = assignment.peak
        out += generate_sine(peak.frequency_hz, start, total, sample_rate, peak.magnitude)

    if fade:
        ramp_in, ramp_out = fade_ramps(fade)
        if fade_in:
            head = min(fade, total)
            out[:head] *= ramp_in[:head]
        out[length:] *= ramp_out
    return out


class Resynthesizer:
    """Accumulates rendered windows into one output buffer."""

    def __init__(self, total_samples: int, sample_rate: int, crossfade: int) -> None:
        if total_samples < 0:
            raise InvalidConfigError(f"total_samples must be >= 0, got {total_samples}")
        if sample_rate <= 0:
            raise InvalidConfigError(f"sample_rate must be positive, got {sample_rate}")
        if crossfade < 0:
            raise InvalidConfigError(f"crossfade must be >= 0, got {crossfade}")
        self._total = int(total_samples)
        self._sample_rate = int(sample_rate)
        self._fade = int(crossfade)
        self._buffer = np.zeros(self._total + self._fade, dtype=np.float64)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def add(self, assignments: Sequence[Assignment], start: int, length: int) -> None:
        rendered = render_window(
            assignments,
            start,
            length,
            self._fade,
            self._sample_rate,
            fade_in=start > 0,
        )
        end = min(start + rendered.size, self._buffer.size)
        if end > start:
            self._buffer[start:end] += rendered[: end - start]

    def finish(self) -> FloatArray:
        out = self._buffer[: self._total].copy()
        if out.size == 0:
            return out
        peak = float(np.max(np.abs(out)))
        if peak > CLIP_LEVEL:
            _LOGGER.info("Resynthesis peak %.3f would clip; scaling to %.2f", peak, NORMALIZED_PEAK)
            out *= NORMALIZED_PEAK / peak
        return out
