"""Voice allocation across chip instances.

Each call to :meth:`VoiceAllocator.step` consumes the peaks of one analysis
window (loudest first) and decides which voice plays which peak:

1. peaks beyond the total voice count are dropped, quietest first;
2. each remaining peak, loudest first, keeps the nearest active voice whose
   frequency is within ``max(bin_hz, fnum step)`` of it, ties broken by
   ``(distance, instance index, voice index)``;
3. leftover peaks take free voices ordered by ``(instance cannot reach the
   frequency, voice was sounding, instance index, voice index)``, so routing
   fills instances in configuration order and prefers idle voices over
   recycling a voice that just lost its peak;
4. active voices left without a peak are keyed off.

Only state that actually changed produces register writes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .analysis import Peak
from .chips import (
    ChipKind,
    FrequencyCode,
    freq_to_code,
    mag_to_tl,
    max_frequency,
    quantization_step,
)
from .errors import InvalidConfigError
from .registers import frequency_writes, key_off_writes, key_on_writes, level_writes
from .vgm import RegisterWrite

_LOGGER = logging.getLogger("nanonanoda.allocator")


@dataclass(slots=True)
class Voice:
    index: int
    active: bool = False
    current_frequency_hz: float | None = None
    current_tl: int = 0
    last_assigned_window: int = -1
    code: FrequencyCode | None = None

    @property
    def fnum(self) -> int:
        return 0 if self.code is None else self.code.fnum

    @property
    def block(self) -> int:
        return 0 if self.code is None else self.code.block


@dataclass(slots=True)
class ChipInstance:
    """One configured chip with its own voice pool."""

    index: int
    kind: ChipKind
    port: int = 0
    clock_hz: int | None = None
    voices: list[Voice] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        index: int,
        kind: ChipKind,
        voice_count: int | None = None,
        *,
        port: int = 0,
        clock_hz: int | None = None,
    ) -> "ChipInstance":
        limit = kind.traits.voices
        count = limit if voice_count is None else voice_count
        if not 1 <= count <= limit:
            raise InvalidConfigError(f"{kind} supports 1..{limit} voices, got {count}")
        voices = [Voice(index=i, current_tl=kind.traits.max_tl) for i in range(count)]
        return cls(index=index, kind=kind, port=port, clock_hz=clock_hz, voices=voices)

    @property
    def max_frequency_hz(self) -> float:
        return max_frequency(self.kind, self.clock_hz)

    def can_represent(self, frequency_hz: float) -> bool:
        return frequency_hz <= self.max_frequency_hz

    def code_for(self, frequency_hz: float) -> FrequencyCode:
        return freq_to_code(frequency_hz, self.kind, self.clock_hz)

    def step_hz(self, code: FrequencyCode | None) -> float:
        return quantization_step(0 if code is None else code.block, self.kind, self.clock_hz)


@dataclass(frozen=True, slots=True)
class Assignment:
    instance: int
    voice: int
    peak: Peak
    code: FrequencyCode
    tl: int
    retriggered: bool = False


@dataclass(frozen=True, slots=True)
class WindowResult:
    index: int
    assignments: tuple[Assignment, ...]
    writes: tuple[RegisterWrite, ...]
    dropped: int = 0


@dataclass(slots=True)
class AllocatorStats:
    windows: int = 0
    key_ons: int = 0
    key_offs: int = 0
    retriggers: int = 0
    held: int = 0
    dropped_peaks: int = 0


class VoiceAllocator:
    def __init__(
        self,
        instances: Sequence[ChipInstance],
        bin_hz: float,
        reference_magnitude: float = 1.0,
    ) -> None:
        if not instances:
            raise InvalidConfigError("At least one chip instance is required")
        self._instances = list(instances)
        self._bin_hz = float(bin_hz)
        self._reference = float(reference_magnitude)
        self.stats = AllocatorStats()

    @property
    def instances(self) -> list[ChipInstance]:
        return self._instances

    @property
    def total_voices(self) -> int:
        return sum(len(instance.voices) for instance in self._instances)

    def _nearest_active(
        self,
        peak: Peak,
        claimed: set[tuple[int, int]],
        any_fit: bool,
    ) -> tuple[ChipInstance, Voice] | None:
        best: tuple[float, int, int] | None = None
        found: tuple[ChipInstance, Voice] | None = None
        for instance in self._instances:
            if any_fit and not instance.can_represent(peak.frequency_hz):
                continue
            for voice in instance.voices:
                if not voice.active or (instance.index, voice.index) in claimed:
                    continue
                assert voice.current_frequency_hz is not None
                distance = abs(peak.frequency_hz - voice.current_frequency_hz)
                if distance > max(self._bin_hz, instance.step_hz(voice.code)):
                    continue
                key = (distance, instance.index, voice.index)
                if best is None or key < best:
                    best = key
                    found = (instance, voice)
        return found

    def _first_free(
        self, peak: Peak, claimed: set[tuple[int, int]]
    ) -> tuple[ChipInstance, Voice] | None:
        best: tuple[bool, bool, int, int] | None = None
        found: tuple[ChipInstance, Voice] | None = None
        for instance in self._instances:
            out_of_range = not instance.can_represent(peak.frequency_hz)
            for voice in instance.voices:
                if (instance.index, voice.index) in claimed:
                    continue
                key = (out_of_range, voice.active, instance.index, voice.index)
                if best is None or key < best:
                    best = key
                    found = (instance, voice)
        return found

    def step(self, window: int, peaks: Sequence[Peak]) -> WindowResult:
        """Assign one window's peaks to voices and return the register changes."""
        kept = list(peaks[: self.total_voices])
        dropped = len(peaks) - len(kept)

        claimed: set[tuple[int, int]] = set()
        plan: dict[tuple[int, int], tuple[Peak, bool]] = {}
        pending: list[Peak] = []
        for peak in kept:
            any_fit = any(inst.can_represent(peak.frequency_hz) for inst in self._instances)
            match = self._nearest_active(peak, claimed, any_fit)
            if match is None:
                pending.append(peak)
                continue
            instance, voice = match
            claimed.add((instance.index, voice.index))
            plan[(instance.index, voice.index)] = (peak, True)
        for peak in pending:
            free = self._first_free(peak, claimed)
            if free is None:
                dropped += 1
                continue
            instance, voice = free
            claimed.add((instance.index, voice.index))
            plan[(instance.index, voice.index)] = (peak, False)

        writes: list[RegisterWrite] = []
        assignments: list[Assignment] = []
        for instance in self._instances:
            kind = instance.kind
            for voice in instance.voices:
                planned = plan.get((instance.index, voice.index))
                if planned is None:
                    if voice.active:
                        writes += self._release(instance, voice)
                    continue

                peak, held = planned
                code = instance.code_for(peak.frequency_hz)
                tl = mag_to_tl(peak.magnitude, kind, self._reference)
                retriggered = voice.active and not held
                if held:
                    if tl != voice.current_tl:
                        writes += level_writes(instance.index, kind, voice.index, tl)
                    if code != voice.code:
                        writes += frequency_writes(instance.index, kind, voice.index, code)
                    self.stats.held += 1
                else:
                    if retriggered:
                        writes += self._release(instance, voice)
                        self.stats.retriggers += 1
                    writes += key_on_writes(instance.index, kind, voice.index, code, tl)
                    self.stats.key_ons += 1

                voice.active = True
                voice.current_frequency_hz = peak.frequency_hz
                voice.current_tl = tl
                voice.code = code
                voice.last_assigned_window = window
                assignments.append(
                    Assignment(
                        instance=instance.index,
                        voice=voice.index,
                        peak=peak,
                        code=code,
                        tl=tl,
                        retriggered=retriggered,
                    )
                )

        self.stats.windows += 1
        self.stats.dropped_peaks += dropped
        if dropped:
            _LOGGER.debug("Window %d: dropped %d peaks beyond voice capacity", window, dropped)
        return WindowResult(
            index=window,
            assignments=tuple(assignments),
            writes=tuple(writes),
            dropped=dropped,
        )

    def _release(self, instance: ChipInstance, voice: Voice) -> list[RegisterWrite]:
        code = voice.code or FrequencyCode(fnum=0, block=0)
        writes = key_off_writes(instance.index, instance.kind, voice.index, code)
        voice.active = False
        voice.current_frequency_hz = None
        voice.current_tl = instance.kind.traits.max_tl
        voice.code = None
        self.stats.key_offs += 1
        return writes

    def release_all(self) -> list[RegisterWrite]:
        """Key off every sounding voice, e.g. before the end of a stream."""
        writes: list[RegisterWrite] = []
        for instance in self._instances:
            for voice in instance.voices:
                if voice.active:
                    writes += self._release(instance, voice)
        return writes
