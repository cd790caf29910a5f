"""Helpers for errors raised by the external pattern runtime."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

_MINI_PARSE_ERROR = re.compile(r"\[mini\] parse error at line (\d+): (.+)")
_STRUDEL_PREFIX = re.compile(r"^strudel error: ", re.IGNORECASE)
_PERSISTENT_MARKERS = ("strudel", "parse error")


class RuntimePatternError(BaseModel):
    """Structured error reported by the runtime for a running pattern."""

    message: str
    line: int | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")


def format_runtime_error(err: object) -> str:
    if err is None:
        return "unknown error"
    if isinstance(err, RuntimePatternError):
        message = err.message or "strudel error"
    else:
        message = str(err)

    if "[mini] parse error" in message:
        match = _MINI_PARSE_ERROR.search(message)
        if match:
            return f"parse error at line {match.group(1)}: {match.group(2)}"

    return _STRUDEL_PREFIX.sub("", message)


def is_persistent_error(message: str) -> bool:
    """Runtime and parse errors stay visible until the user acts on them."""
    lowered = message.lower()
    return any(marker in lowered for marker in _PERSISTENT_MARKERS)
