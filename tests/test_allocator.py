from __future__ import annotations

import pytest

from nanonanoda.allocator import ChipInstance, VoiceAllocator
from nanonanoda.analysis import Peak
from nanonanoda.chips import ChipKind, freq_to_code, mag_to_tl
from nanonanoda.errors import InvalidConfigError
from nanonanoda.registers import frequency_writes, is_key_on, key_off_writes, key_on_writes

BIN_HZ = 44_100 / 512


def _peak(freq: float, mag: float = 1.0) -> Peak:
    return Peak(frequency_hz=freq, magnitude=mag, bin=int(freq / BIN_HZ))


def _allocator(*specs: tuple[ChipKind, int]) -> VoiceAllocator:
    instances = [ChipInstance.create(i, kind, voices) for i, (kind, voices) in enumerate(specs)]
    return VoiceAllocator(instances, BIN_HZ)


def test_first_peak_keys_on_first_voice() -> None:
    allocator = _allocator((ChipKind.OPL3, 2), (ChipKind.OPN, 1))
    result = allocator.step(0, [_peak(440.0, 0.5)])
    code = freq_to_code(440.0, ChipKind.OPL3)
    tl = mag_to_tl(0.5, ChipKind.OPL3)
    assert [(a.instance, a.voice) for a in result.assignments] == [(0, 0)]
    assert result.writes == tuple(key_on_writes(0, ChipKind.OPL3, 0, code, tl))
    voice = allocator.instances[0].voices[0]
    assert voice.active
    assert (voice.fnum, voice.block) == (code.fnum, code.block)


def test_unchanged_peak_writes_nothing() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(440.0)])
    result = allocator.step(1, [_peak(440.0)])
    assert result.writes == ()
    assert len(result.assignments) == 1
    assert not result.assignments[0].retriggered
    assert allocator.instances[0].voices[0].last_assigned_window == 1


def test_small_drift_only_updates_frequency() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(440.0)])
    result = allocator.step(1, [_peak(445.0)])
    code = freq_to_code(445.0, ChipKind.OPL3)
    assert result.writes == tuple(frequency_writes(0, ChipKind.OPL3, 0, code))
    assert allocator.stats.key_ons == 1


def test_vanished_peak_keys_off() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(440.0)])
    result = allocator.step(1, [])
    code = freq_to_code(440.0, ChipKind.OPL3)
    assert result.writes == tuple(key_off_writes(0, ChipKind.OPL3, 0, code))
    assert result.assignments == ()
    assert not allocator.instances[0].voices[0].active


def test_continuity_keeps_partials_on_their_voices() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(440.0, 1.0), _peak(880.0, 0.5)])
    result = allocator.step(1, [_peak(880.0, 1.0), _peak(440.0, 0.5)])
    placed = {round(a.peak.frequency_hz): a.voice for a in result.assignments}
    assert placed == {440: 0, 880: 1}
    assert not any(is_key_on(ChipKind.OPL3, write) for write in result.writes)


def test_idle_voice_preferred_over_recycling() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(440.0)])
    result = allocator.step(1, [_peak(1000.0)])
    assert [(a.voice, a.retriggered) for a in result.assignments] == [(1, False)]
    assert not allocator.instances[0].voices[0].active


def test_full_pool_recycles_with_retrigger() -> None:
    allocator = _allocator((ChipKind.OPL3, 1))
    allocator.step(0, [_peak(440.0)])
    result = allocator.step(1, [_peak(1000.0, 0.5)])
    old = freq_to_code(440.0, ChipKind.OPL3)
    new = freq_to_code(1000.0, ChipKind.OPL3)
    expected = key_off_writes(0, ChipKind.OPL3, 0, old)
    expected += key_on_writes(0, ChipKind.OPL3, 0, new, mag_to_tl(0.5, ChipKind.OPL3))
    assert result.writes == tuple(expected)
    assert result.assignments[0].retriggered
    assert allocator.stats.retriggers == 1


def test_excess_peaks_drop_quietest() -> None:
    allocator = _allocator((ChipKind.OPL3, 2), (ChipKind.OPN, 1))
    peaks = [_peak(300.0, 0.9), _peak(600.0, 0.7), _peak(900.0, 0.5), _peak(1200.0, 0.1)]
    result = allocator.step(0, peaks)
    assert result.dropped == 1
    assert sorted(round(a.peak.frequency_hz) for a in result.assignments) == [300, 600, 900]


def test_routing_fills_instances_in_order() -> None:
    allocator = _allocator((ChipKind.OPN, 1), (ChipKind.OPL3, 2))
    result = allocator.step(0, [_peak(300.0), _peak(500.0, 0.5)])
    assert [(a.instance, a.voice) for a in result.assignments] == [(0, 0), (1, 0)]


def test_idle_voices_follow_configuration_order() -> None:
    allocator = _allocator((ChipKind.OPL3, 1), (ChipKind.OPL3, 1), (ChipKind.OPN, 1))
    result = allocator.step(0, [_peak(440.0)])
    assert [(a.instance, a.voice) for a in result.assignments] == [(0, 0)]
    result = allocator.step(1, [_peak(440.0), _peak(2000.0, 0.5)])
    assert [(a.instance, a.voice) for a in result.assignments] == [(0, 0), (1, 0)]


def test_equidistant_voices_tie_break_on_lower_voice() -> None:
    allocator = _allocator((ChipKind.OPL3, 2))
    allocator.step(0, [_peak(430.0), _peak(450.0, 0.9)])
    result = allocator.step(1, [_peak(440.0)])
    assert [(a.instance, a.voice, a.retriggered) for a in result.assignments] == [(0, 0, False)]
    assert not allocator.instances[0].voices[1].active


def test_equidistant_voices_tie_break_on_lower_instance() -> None:
    allocator = _allocator((ChipKind.OPL3, 1), (ChipKind.OPL3, 1))
    allocator.step(0, [_peak(450.0), _peak(430.0, 0.9)])
    assert allocator.instances[0].voices[0].current_frequency_hz == 450.0
    result = allocator.step(1, [_peak(440.0)])
    assert [(a.instance, a.voice) for a in result.assignments] == [(0, 0)]
    assert not allocator.instances[1].voices[0].active


def test_out_of_range_peak_routes_to_capable_kind() -> None:
    allocator = _allocator((ChipKind.OPL3, 2), (ChipKind.OPN, 3))
    result = allocator.step(0, [_peak(6500.0)])
    assert [(a.instance, a.voice) for a in result.assignments] == [(1, 0)]


def test_release_all_keys_off_everything() -> None:
    allocator = _allocator((ChipKind.OPL3, 2), (ChipKind.OPN, 1))
    allocator.step(0, [_peak(300.0), _peak(600.0, 0.5), _peak(900.0, 0.2)])
    writes = allocator.release_all()
    assert writes
    assert not any(v.active for inst in allocator.instances for v in inst.voices)
    assert allocator.release_all() == []


def test_allocation_is_deterministic() -> None:
    frames = [
        [_peak(300.0), _peak(600.0, 0.5)],
        [_peak(310.0), _peak(1200.0, 0.4), _peak(2400.0, 0.3)],
        [],
        [_peak(800.0, 0.8)],
    ]

    def run() -> list[tuple[object, ...]]:
        allocator = _allocator((ChipKind.OPL3, 2), (ChipKind.OPN, 1))
        return [allocator.step(i, frame).writes for i, frame in enumerate(frames)]

    assert run() == run()


def test_voice_count_is_validated() -> None:
    with pytest.raises(InvalidConfigError):
        ChipInstance.create(0, ChipKind.OPN, 4)
    with pytest.raises(InvalidConfigError):
        ChipInstance.create(0, ChipKind.OPL3, 0)
    with pytest.raises(InvalidConfigError):
        VoiceAllocator([], BIN_HZ)
