from __future__ import annotations

from .allocator import Assignment, ChipInstance, Voice, VoiceAllocator, WindowResult
from .analysis import Peak, SpectralAnalyzer, Spectrum, extract_peaks
from .audio import SAMPLE_RATE, read_wav, to_mono, write_wav
from .chips import (
    ChipKind,
    FrequencyCode,
    code_to_freq,
    freq_to_code,
    mag_to_tl,
    max_frequency,
    quantization_step,
)
from .config import ChipSpec, ConverterConfig
from .errors import (
    InvalidConfigError,
    MappingOverflowError,
    NanonanodaError,
    SerializationError,
    UnsupportedInputError,
)
from .logging_utils import configure_logging as _configure_logging
from .pipeline import convert_to_vgm, resynthesize
from .synth import Resynthesizer, render_window
from .vgm import CommandStream, End, Gd3Tag, RegisterWrite, VgmFile, Wait, parse_vgm

__all__ = [
    "SAMPLE_RATE",
    "Assignment",
    "ChipInstance",
    "ChipKind",
    "ChipSpec",
    "CommandStream",
    "ConverterConfig",
    "End",
    "FrequencyCode",
    "Gd3Tag",
    "InvalidConfigError",
    "MappingOverflowError",
    "NanonanodaError",
    "Peak",
    "RegisterWrite",
    "Resynthesizer",
    "SerializationError",
    "SpectralAnalyzer",
    "Spectrum",
    "UnsupportedInputError",
    "VgmFile",
    "Voice",
    "VoiceAllocator",
    "Wait",
    "WindowResult",
    "code_to_freq",
    "convert_to_vgm",
    "extract_peaks",
    "freq_to_code",
    "mag_to_tl",
    "max_frequency",
    "parse_vgm",
    "quantization_step",
    "read_wav",
    "render_window",
    "resynthesize",
    "to_mono",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
