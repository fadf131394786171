"""End-to-end conversion: samples -> spectra -> peaks -> voices -> output.

Both paths share the analysis and voice allocation stages, so the resynthesized
WAV plays exactly the partials the chips are asked to play.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .allocator import ChipInstance, VoiceAllocator, WindowResult
from .analysis import SpectralAnalyzer, extract_peaks
from .config import ConverterConfig
from .registers import init_writes
from .synth import Resynthesizer
from .vgm import VGM_SAMPLE_RATE, CommandStream, Gd3Tag, chip_slots

_LOGGER = logging.getLogger("nanonanoda.pipeline")

CREATOR = "nanonanoda"


def rescale_position(position: int, source_rate: int, target_rate: int) -> int:
    """Sample index ``position`` at ``source_rate`` expressed at ``target_rate``."""
    return int(round(position * target_rate / source_rate))


def _analyze(
    samples: NDArray[np.floating[Any]] | list[float],
    sample_rate: int,
    config: ConverterConfig,
    instances: list[ChipInstance],
) -> tuple[SpectralAnalyzer, VoiceAllocator, Iterator[tuple[int, int, WindowResult]]]:
    analyzer = SpectralAnalyzer(samples, sample_rate, config.window_size, config.hop_size)
    allocator = VoiceAllocator(instances, analyzer.bin_hz, config.reference_magnitude)
    max_peaks = config.effective_max_peaks

    def windows() -> Iterator[tuple[int, int, WindowResult]]:
        hop = analyzer.hop_size
        total = analyzer.num_samples
        for spectrum in analyzer:
            peaks = extract_peaks(spectrum, max_peaks, config.noise_floor)
            result = allocator.step(spectrum.index, peaks)
            yield spectrum.start, min(spectrum.start + hop, total), result

    return analyzer, allocator, windows()


def _log_summary(label: str, allocator: VoiceAllocator) -> None:
    stats = allocator.stats
    _LOGGER.info(
        "%s: %d windows, %d key-ons, %d key-offs, %d retriggers, %d dropped peaks",
        label,
        stats.windows,
        stats.key_ons,
        stats.key_offs,
        stats.retriggers,
        stats.dropped_peaks,
    )


def convert_to_vgm(
    samples: NDArray[np.floating[Any]] | list[float],
    sample_rate: int,
    config: ConverterConfig | None = None,
    title: str | None = None,
) -> bytes:
    """Render ``samples`` into a finished VGM file (44 100 Hz wait timebase)."""
    config = config or ConverterConfig()
    instances = config.instances()
    slots = chip_slots([(instance.kind, instance.clock_hz) for instance in instances])
    analyzer, allocator, windows = _analyze(samples, sample_rate, config, instances)
    _LOGGER.info(
        "Converting %d samples to VGM with %s",
        analyzer.num_samples,
        ", ".join(str(spec) for spec in config.chips),
    )

    stream = CommandStream(slots)
    for instance in instances:
        stream.extend(init_writes(instance.index, instance.kind))
    if config.loop:
        stream.mark_loop()

    for start, end, result in windows:
        stream.extend(result.writes)
        # Rounding absolute positions keeps the waits summing to the exact total.
        stream.wait(
            rescale_position(end, sample_rate, VGM_SAMPLE_RATE)
            - rescale_position(start, sample_rate, VGM_SAMPLE_RATE)
        )
    stream.extend(allocator.release_all())
    _log_summary("VGM", allocator)

    labels = " + ".join(slot.kind.traits.label for slot in slots)
    gd3 = Gd3Tag(track_name_en=title, system_name_en=labels, creator=CREATOR)
    data = stream.finalize(gd3)
    _LOGGER.info("VGM stream: %d samples, %d bytes", stream.total_samples, len(data))
    return data


def resynthesize(
    samples: NDArray[np.floating[Any]] | list[float],
    sample_rate: int,
    config: ConverterConfig | None = None,
) -> NDArray[np.float64]:
    """Sum sines for every allocated voice, at ``config.output_sample_rate``."""
    config = config or ConverterConfig()
    out_rate = config.output_sample_rate
    analyzer, allocator, windows = _analyze(samples, sample_rate, config, config.instances())
    if config.crossfade is None:
        fade = rescale_position(config.effective_hop, sample_rate, out_rate) // 4
    else:
        fade = config.crossfade
    total = rescale_position(analyzer.num_samples, sample_rate, out_rate)
    _LOGGER.info(
        "Resynthesizing %d samples at %d Hz (crossfade %d)", analyzer.num_samples, out_rate, fade
    )

    nyquist = out_rate / 2.0
    synth = Resynthesizer(total, out_rate, fade)
    for start, end, result in windows:
        out_start = rescale_position(start, sample_rate, out_rate)
        out_end = rescale_position(end, sample_rate, out_rate)
        audible = [item for item in result.assignments if item.peak.frequency_hz < nyquist]
        synth.add(audible, out_start, out_end - out_start)
    _log_summary("Resynthesis", allocator)
    return synth.finish()
