from __future__ import annotations

import math

import pytest

from nanonanoda.chips import (
    ChipKind,
    FrequencyCode,
    chip_kind_from_name,
    code_to_freq,
    freq_to_code,
    mag_to_tl,
    max_frequency,
    quantization_step,
)
from nanonanoda.errors import InvalidConfigError


@pytest.mark.parametrize("kind", list(ChipKind))
@pytest.mark.parametrize("freq", [27.5, 110.0, 440.0, 1000.0, 2500.0, 3300.0])
def test_freq_to_code_round_trips_within_one_step(kind: ChipKind, freq: float) -> None:
    code = freq_to_code(freq, kind)
    assert 0 <= code.fnum <= kind.traits.fnum_max
    assert 0 <= code.block <= kind.traits.block_max
    decoded = code_to_freq(code.fnum, code.block, kind)
    assert abs(decoded - freq) <= quantization_step(code.block, kind)


@pytest.mark.parametrize("kind", list(ChipKind))
def test_freq_to_code_prefers_smallest_block(kind: ChipKind) -> None:
    code = freq_to_code(440.0, kind)
    if code.block > 0:
        coarser = round(440.0 / quantization_step(code.block - 1, kind))
        assert coarser > kind.traits.fnum_max


@pytest.mark.parametrize("kind", list(ChipKind))
def test_freq_to_code_clamps_out_of_range(kind: ChipKind) -> None:
    traits = kind.traits
    assert freq_to_code(0.0, kind) == FrequencyCode(0, 0)
    assert freq_to_code(-50.0, kind) == FrequencyCode(0, 0)
    assert freq_to_code(math.nan, kind) == FrequencyCode(0, 0)
    assert freq_to_code(1e9, kind) == FrequencyCode(traits.fnum_max, traits.block_max)
    assert freq_to_code(math.inf, kind) == FrequencyCode(traits.fnum_max, traits.block_max)


def test_max_frequency_matches_register_geometry() -> None:
    assert max_frequency(ChipKind.OPL3) == pytest.approx(6208.4, abs=0.5)
    assert max_frequency(ChipKind.OPN) == pytest.approx(6941.0, abs=0.5)


def test_opn_code_matches_chip_pitch() -> None:
    code = freq_to_code(440.0, ChipKind.OPN)
    assert code == FrequencyCode(fnum=1038, block=4)
    # With the 1/6 prescaler the chip samples at clock / 72.
    played = code.fnum * 2 ** (code.block - 1) * (4_000_000 / 72) / 2**20
    assert played == pytest.approx(440.0, abs=0.5)


def test_custom_clock_scales_frequency() -> None:
    default = code_to_freq(500, 3, ChipKind.OPN)
    doubled = code_to_freq(500, 3, ChipKind.OPN, clock_hz=8_000_000)
    assert doubled == pytest.approx(default * 2)


def test_invalid_clock_is_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        quantization_step(0, ChipKind.OPL3, clock_hz=0)


@pytest.mark.parametrize("kind", list(ChipKind))
def test_mag_to_tl_extremes(kind: ChipKind) -> None:
    max_tl = kind.traits.max_tl
    assert mag_to_tl(1.0, kind) == 0
    assert mag_to_tl(4.0, kind) == 0
    assert mag_to_tl(math.inf, kind) == 0
    assert mag_to_tl(0.0, kind) == max_tl
    assert mag_to_tl(-1.0, kind) == max_tl
    assert mag_to_tl(math.nan, kind) == max_tl
    assert mag_to_tl(1e-9, kind) == max_tl


@pytest.mark.parametrize("kind", list(ChipKind))
def test_mag_to_tl_is_monotonic(kind: ChipKind) -> None:
    magnitudes = [1.0, 0.8, 0.5, 0.25, 0.1, 0.03, 0.01, 0.001, 0.0]
    levels = [mag_to_tl(value, kind) for value in magnitudes]
    assert levels == sorted(levels)


def test_mag_to_tl_half_scale_is_six_db() -> None:
    # -6.02 dB is eight 0.75 dB steps on both chips.
    assert mag_to_tl(0.5, ChipKind.OPL3) == 8
    assert mag_to_tl(0.5, ChipKind.OPN) == 8


def test_mag_to_tl_uses_reference_magnitude() -> None:
    assert mag_to_tl(2.0, ChipKind.OPL3, reference_magnitude=2.0) == 0
    assert mag_to_tl(1.0, ChipKind.OPL3, reference_magnitude=2.0) == 8


def test_mag_to_tl_rejects_bad_reference() -> None:
    with pytest.raises(InvalidConfigError):
        mag_to_tl(0.5, ChipKind.OPL3, reference_magnitude=0.0)


def test_tl_widths_follow_hardware() -> None:
    assert ChipKind.OPL3.traits.max_tl == 63
    assert ChipKind.OPN.traits.max_tl == 127
    assert ChipKind.OPL3.traits.db_per_step == pytest.approx(0.75)
    assert ChipKind.OPN.traits.db_per_step == pytest.approx(0.75)


def test_chip_kind_from_name() -> None:
    assert chip_kind_from_name("YM2203") is ChipKind.OPN
    assert chip_kind_from_name(" ymf262 ") is ChipKind.OPL3
    with pytest.raises(InvalidConfigError):
        chip_kind_from_name("sn76489")
