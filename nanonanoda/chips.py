"""Chip constants and the frequency/attenuation register mapping.

Both supported chips derive a voice's pitch from an F-number and a block
(octave) exponent:

    frequency = fnum * 2**block * (clock_hz / prescaler) / 2**D

and attenuate it with a Total Level register counted in 0.75 dB steps. The
mapping functions here clamp every input into the register range, so callers
never see an unrepresentable value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .errors import InvalidConfigError


class ChipKind(str, Enum):
    OPL3 = "ymf262"
    OPN = "ym2203"

    def __str__(self) -> str:
        return self.value

    @property
    def traits(self) -> "ChipTraits":
        return CHIP_TRAITS[self]


@dataclass(frozen=True, slots=True)
class ChipTraits:
    """Fixed per-kind register geometry."""

    label: str
    voices: int
    fnum_bits: int
    block_bits: int
    tl_bits: int
    divisor_exponent: int
    prescaler: float
    default_clock_hz: int
    min_db: float
    register_space: int
    vgm_clock_offset: int

    @property
    def fnum_max(self) -> int:
        return (1 << self.fnum_bits) - 1

    @property
    def block_max(self) -> int:
        return (1 << self.block_bits) - 1

    @property
    def max_tl(self) -> int:
        return (1 << self.tl_bits) - 1

    @property
    def db_per_step(self) -> float:
        return -self.min_db / self.max_tl


CHIP_TRAITS: Mapping[ChipKind, ChipTraits] = MappingProxyType(
    {
        ChipKind.OPL3: ChipTraits(
            label="YMF262 (OPL3)",
            voices=18,
            fnum_bits=10,
            block_bits=3,
            tl_bits=6,
            divisor_exponent=20,
            prescaler=288.0,
            default_clock_hz=14_318_180,
            min_db=-47.25,
            register_space=0x200,
            vgm_clock_offset=0x5C,
        ),
        ChipKind.OPN: ChipTraits(
            label="YM2203 (OPN)",
            voices=3,
            fnum_bits=11,
            block_bits=3,
            tl_bits=7,
            divisor_exponent=20,
            prescaler=144.0,
            default_clock_hz=4_000_000,
            min_db=-95.25,
            register_space=0x100,
            vgm_clock_offset=0x44,
        ),
    }
)


@dataclass(frozen=True, slots=True)
class FrequencyCode:
    fnum: int
    block: int


def chip_kind_from_name(name: str) -> ChipKind:
    try:
        return ChipKind(name.strip().lower())
    except ValueError as exc:
        valid = ", ".join(kind.value for kind in ChipKind)
        raise InvalidConfigError(f"Unknown chip {name!r}. Valid: {valid}") from exc


def _clock(kind: ChipKind, clock_hz: float | None) -> float:
    clock = float(kind.traits.default_clock_hz if clock_hz is None else clock_hz)
    if not math.isfinite(clock) or clock <= 0.0:
        raise InvalidConfigError(f"Clock must be a positive frequency, got {clock_hz!r}")
    return clock


def _base_hz(kind: ChipKind, clock_hz: float | None) -> float:
    """Frequency produced by fnum=1 at block 0."""
    traits = kind.traits
    return _clock(kind, clock_hz) / traits.prescaler / float(1 << traits.divisor_exponent)


def quantization_step(block: int, kind: ChipKind, clock_hz: float | None = None) -> float:
    """Width in Hz of one fnum step at ``block``."""
    return _base_hz(kind, clock_hz) * float(1 << block)


def code_to_freq(fnum: int, block: int, kind: ChipKind, clock_hz: float | None = None) -> float:
    return float(fnum) * quantization_step(block, kind, clock_hz)


def max_frequency(kind: ChipKind, clock_hz: float | None = None) -> float:
    traits = kind.traits
    return code_to_freq(traits.fnum_max, traits.block_max, kind, clock_hz)


def freq_to_code(
    frequency_hz: float, kind: ChipKind, clock_hz: float | None = None
) -> FrequencyCode:
    """Pick the smallest block whose rounded F-number still fits the register."""
    traits = kind.traits
    if math.isnan(frequency_hz) or frequency_hz <= 0.0:
        return FrequencyCode(fnum=0, block=0)
    base = _base_hz(kind, clock_hz)
    for block in range(traits.block_max + 1):
        fnum = round(frequency_hz / (base * float(1 << block)))
        if fnum <= traits.fnum_max:
            return FrequencyCode(fnum=int(fnum), block=block)
    return FrequencyCode(fnum=traits.fnum_max, block=traits.block_max)


def mag_to_tl(
    magnitude: float,
    kind: ChipKind,
    reference_magnitude: float = 1.0,
    min_db: float | None = None,
    max_tl: int | None = None,
) -> int:
    """Map a linear magnitude onto the chip's Total Level scale (0 is loudest)."""
    traits = kind.traits
    floor_db = traits.min_db if min_db is None else float(min_db)
    top_tl = traits.max_tl if max_tl is None else int(max_tl)
    if not math.isfinite(reference_magnitude) or reference_magnitude <= 0.0:
        raise InvalidConfigError(
            f"reference_magnitude must be positive, got {reference_magnitude!r}"
        )
    if floor_db >= 0.0 or top_tl <= 0:
        raise InvalidConfigError(f"min_db must be negative and max_tl positive for {kind}")

    if math.isnan(magnitude) or magnitude <= 0.0:
        return top_tl
    if math.isinf(magnitude):
        return 0
    level_db = 20.0 * math.log10(magnitude / reference_magnitude)
    level_db = min(max(level_db, floor_db), 0.0)
    tl = round(level_db / floor_db * top_tl)
    return int(min(max(tl, 0), top_tl))
