from __future__ import annotations

from audial.runtime import RuntimePatternError, format_runtime_error, is_persistent_error


def test_mini_notation_errors_are_shortened() -> None:
    message = "[mini] parse error at line 3: Expected ']' but end of input found."

    assert format_runtime_error(message) == (
        "parse error at line 3: Expected ']' but end of input found."
    )


def test_strudel_prefix_is_stripped() -> None:
    assert format_runtime_error(RuntimeError("Strudel error: sound sawtoth not found")) == (
        "sound sawtoth not found"
    )


def test_structured_errors() -> None:
    assert format_runtime_error(RuntimePatternError(message="", line=2)) == "strudel error"
    assert format_runtime_error(RuntimePatternError(message="bad gain", line=4)) == "bad gain"
    assert format_runtime_error(None) == "unknown error"


def test_persistent_errors() -> None:
    assert is_persistent_error("parse error at line 3: x")
    assert is_persistent_error("Strudel runtime crashed")
    assert not is_persistent_error("Saved to songs/night-bus.md")
