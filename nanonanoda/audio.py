from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import SerializationError, UnsupportedInputError

_LOGGER = logging.getLogger("nanonanoda.audio")

FloatArray = NDArray[np.float64]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100
_WAV_SUBTYPE = "PCM_16"


def to_mono(audio: AudioNumbers) -> FloatArray:
    """Average frames of a ``(frames, channels)`` buffer down to one channel."""
    array: FloatArray = np.asarray(audio, dtype=np.float64)
    match array.ndim:
        case 0:
            return array.reshape(1)
        case 1:
            return array
        case 2:
            return np.mean(array, axis=1)
        case _:
            raise UnsupportedInputError(f"Expected 1-D or 2-D audio, got shape {array.shape}")


def ensure_audio_contract(audio: AudioNumbers) -> FloatArray:
    """Mono float64 with samples clipped into [-1, 1]."""
    mono = to_mono(audio).reshape(-1)
    if mono.size == 0:
        return mono
    return np.clip(mono, -1.0, 1.0)


def read_wav(path: str | Path) -> tuple[FloatArray, int]:
    """Decode a WAV file into mono float64 samples and its sample rate."""
    source = Path(path)
    try:
        data, sample_rate = sf.read(str(source), dtype="float64", always_2d=True)
    except (RuntimeError, sf.SoundFileError) as exc:
        raise UnsupportedInputError(f"Cannot read audio from {source}: {exc}") from exc
    samples = to_mono(data)
    if samples.size == 0:
        raise UnsupportedInputError(f"{source} contains no samples")
    _LOGGER.info(
        "Read %s: %d frames, %d channel(s) at %d Hz",
        source,
        samples.size,
        data.shape[1],
        sample_rate,
    )
    return samples, int(sample_rate)


def write_wav(path: str | Path, audio: AudioNumbers, *, sample_rate: int = SAMPLE_RATE) -> Path:
    """Write mono 16-bit PCM, clipping out-of-range samples."""
    target = Path(path)
    normalized = ensure_audio_contract(audio)
    try:
        sf.write(str(target), normalized, sample_rate, subtype=_WAV_SUBTYPE)
    except (RuntimeError, ValueError, OSError, sf.SoundFileError) as exc:
        raise SerializationError(f"Cannot write audio to {target}: {exc}") from exc
    _LOGGER.info("Wrote %s (%d samples at %d Hz)", target, normalized.size, sample_rate)
    return target
