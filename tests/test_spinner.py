from __future__ import annotations

import io
from pathlib import Path

import pytest

from nanonanoda.logging_utils import DEBUG_ENV, LOG_DIR_ENV
from nanonanoda.spinner import Spinner, render_error, spinner


def test_spinner_disabled_is_noop() -> None:
    handle = Spinner("Converting", enabled=False)
    handle.start()
    handle.update("Still converting")
    handle.stop()
    assert handle.message == "Still converting"


def test_spinner_context_on_non_tty_stream() -> None:
    stream = io.StringIO()
    with spinner("Converting", stream=stream) as handle:
        handle.update("Writing")
    assert stream.getvalue() == ""


def test_render_error_plain_stream(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    monkeypatch.delenv(DEBUG_ENV, raising=False)
    stream = io.StringIO()
    render_error("convert", ValueError("boom"), stream=stream)
    text = stream.getvalue()
    assert text.startswith("convert failed: ValueError: boom")
    assert str(tmp_path / "nanonanoda.log") in text


def test_render_error_with_debug_trace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(DEBUG_ENV, "1")
    stream = io.StringIO()
    try:
        raise RuntimeError("deep")
    except RuntimeError as exc:
        render_error("convert", exc, stream=stream)
    assert "Traceback" in stream.getvalue()
