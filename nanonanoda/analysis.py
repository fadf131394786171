from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, TypeAlias, cast

import numpy as np
from numpy.typing import NDArray
from scipy.signal import get_window  # type: ignore[import]

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("nanonanoda.analysis")

FloatArray: TypeAlias = NDArray[np.float64]

DEFAULT_WINDOW_SIZE = 512
DEFAULT_NOISE_FLOOR = 1e-4
_LOG_EPSILON = 1e-300


@dataclass(frozen=True, slots=True)
class Spectrum:
    """Magnitude spectrum of one analysis window."""

    index: int
    start: int
    length: int
    sample_rate: int
    window_size: int
    magnitudes: FloatArray

    @property
    def bin_hz(self) -> float:
        return self.sample_rate / self.window_size


@dataclass(frozen=True, slots=True)
class Peak:
    frequency_hz: float
    magnitude: float
    bin: int


def window_bounds(total: int, window_size: int, hop_size: int) -> Iterator[tuple[int, int]]:
    """Yield ``(start, valid_length)`` for each window covering ``total`` samples."""
    start = 0
    while start < total:
        yield start, min(window_size, total - start)
        start += hop_size


class SpectralAnalyzer:
    """Lazy, restartable sequence of per-window magnitude spectra.

    Magnitudes are scaled so that a full-scale sine centred on a bin reads 1.0.
    """

    def __init__(
        self,
        samples: NDArray[np.floating[Any]] | list[float],
        sample_rate: int,
        window_size: int = DEFAULT_WINDOW_SIZE,
        hop_size: int | None = None,
    ) -> None:
        buffer: FloatArray = np.asarray(samples, dtype=np.float64).reshape(-1)
        if buffer.size == 0:
            raise InvalidConfigError("Cannot analyze an empty sample buffer")
        if window_size <= 1:
            raise InvalidConfigError(f"window_size must be > 1, got {window_size}")
        hop = window_size if hop_size is None else hop_size
        if hop < 1:
            raise InvalidConfigError(f"hop_size must be >= 1, got {hop_size}")
        if sample_rate <= 0:
            raise InvalidConfigError(f"sample_rate must be positive, got {sample_rate}")

        self._samples = buffer
        self._sample_rate = int(sample_rate)
        self._window_size = int(window_size)
        self._hop_size = int(hop)
        self._window: FloatArray = cast(
            FloatArray, np.asarray(get_window("hann", self._window_size), dtype=np.float64)
        )
        self._scale = 2.0 / float(np.sum(self._window))
        _LOGGER.debug(
            "Analyzer: %d samples at %d Hz, window %d, hop %d, %d windows",
            buffer.size,
            self._sample_rate,
            self._window_size,
            self._hop_size,
            len(self),
        )

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def num_samples(self) -> int:
        return int(self._samples.size)

    @property
    def window_size(self) -> int:
        return self._window_size

    @property
    def hop_size(self) -> int:
        return self._hop_size

    @property
    def bin_hz(self) -> float:
        return self._sample_rate / self._window_size

    def __len__(self) -> int:
        return -(-self._samples.size // self._hop_size)

    def __iter__(self) -> Iterator[Spectrum]:
        for index, (start, length) in enumerate(
            window_bounds(self._samples.size, self._window_size, self._hop_size)
        ):
            yield self.spectrum_at(index, start, length)

    def spectrum_at(self, index: int, start: int, length: int) -> Spectrum:
        frame = np.zeros(self._window_size, dtype=np.float64)
        frame[:length] = self._samples[start : start + length]
        spectrum = np.fft.rfft(frame * self._window)
        half = self._window_size // 2
        magnitudes: FloatArray = np.abs(spectrum[:half]) * self._scale
        return Spectrum(
            index=index,
            start=start,
            length=length,
            sample_rate=self._sample_rate,
            window_size=self._window_size,
            magnitudes=magnitudes,
        )


def _interpolate(magnitudes: FloatArray, bin_index: int) -> tuple[float, float]:
    """Parabolic fit over log magnitudes; returns (bin offset, apex magnitude)."""
    left, centre, right = np.log(
        np.maximum(magnitudes[bin_index - 1 : bin_index + 2], _LOG_EPSILON)
    )
    denom = left - 2.0 * centre + right
    if denom >= 0.0:
        return 0.0, float(magnitudes[bin_index])
    offset = float(np.clip(0.5 * (left - right) / denom, -0.5, 0.5))
    apex = centre - 0.25 * (left - right) * offset
    return offset, float(np.exp(apex))


def extract_peaks(
    spectrum: Spectrum,
    max_peaks: int,
    noise_floor: float = DEFAULT_NOISE_FLOOR,
) -> list[Peak]:
    """Strongest strict local maxima of ``spectrum``, loudest first."""
    if max_peaks <= 0:
        return []
    mags = spectrum.magnitudes
    if mags.size < 3:
        return []

    centre = mags[1:-1]
    is_peak = (centre > mags[:-2]) & (centre > mags[2:]) & (centre >= noise_floor)
    candidates = np.flatnonzero(is_peak) + 1
    if candidates.size == 0:
        return []

    bin_hz = spectrum.bin_hz
    peaks: list[Peak] = []
    for bin_index in candidates.tolist():
        offset, magnitude = _interpolate(mags, bin_index)
        peaks.append(
            Peak(
                frequency_hz=(bin_index + offset) * bin_hz,
                magnitude=magnitude,
                bin=bin_index,
            )
        )
    # Descending magnitude, then ascending bin for equal magnitudes.
    peaks.sort(key=lambda peak: (-peak.magnitude, peak.bin))
    return peaks[:max_peaks]
