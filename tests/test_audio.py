from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from nanonanoda.audio import ensure_audio_contract, read_wav, to_mono, write_wav
from nanonanoda.errors import SerializationError, UnsupportedInputError


def test_write_then_read_pcm16(tmp_path: Path) -> None:
    target = tmp_path / "tone.wav"
    samples = 0.5 * np.sin(2 * np.pi * 440.0 * np.arange(2205) / 22_050)

    write_wav(target, samples, sample_rate=22_050)
    info = sf.info(str(target))
    assert info.subtype == "PCM_16"
    assert info.samplerate == 22_050

    loaded, rate = read_wav(target)
    assert rate == 22_050
    assert loaded.dtype == np.float64
    np.testing.assert_allclose(loaded, samples, atol=1e-4)


def test_read_wav_averages_channels(tmp_path: Path) -> None:
    target = tmp_path / "stereo.wav"
    stereo = np.stack([np.full(100, 0.5), np.full(100, -0.25)], axis=1)
    sf.write(str(target), stereo, 8000, subtype="FLOAT")
    loaded, rate = read_wav(target)
    assert rate == 8000
    np.testing.assert_allclose(loaded, 0.125)


def test_to_mono_shapes() -> None:
    assert to_mono([0.1, 0.2]).shape == (2,)
    np.testing.assert_allclose(to_mono(np.array([[1.0, 0.0], [0.0, 1.0]])), [0.5, 0.5])
    with pytest.raises(UnsupportedInputError):
        to_mono(np.zeros((2, 2, 2)))


def test_write_wav_clips(tmp_path: Path) -> None:
    target = tmp_path / "loud.wav"
    write_wav(target, [2.0, -2.0, 0.0])
    loaded, _ = read_wav(target)
    np.testing.assert_allclose(loaded, [1.0, -1.0, 0.0], atol=1e-4)
    np.testing.assert_array_equal(ensure_audio_contract([3.0, -0.5]), [1.0, -0.5])


def test_read_wav_rejects_non_audio(tmp_path: Path) -> None:
    bogus = tmp_path / "notes.wav"
    bogus.write_text("not a wave file")
    with pytest.raises(UnsupportedInputError):
        read_wav(bogus)
    with pytest.raises(UnsupportedInputError):
        read_wav(tmp_path / "missing.wav")


def test_write_wav_reports_unwritable_target(tmp_path: Path) -> None:
    with pytest.raises(SerializationError):
        write_wav(tmp_path / "no-such-dir" / "out.wav", [0.0, 0.1])
