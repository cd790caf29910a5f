from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .lexer import iter_string_literals, strip_comments
from .policy import (
    MAX_FAST_FACTOR,
    MAX_GAIN,
    MIN_LINES,
    ValidationPolicy,
    ValidationResult,
    resolve_policy,
)

_LOGGER = logging.getLogger("audial.validator")

VOICE_MARKER = "$:"

_SETCPM_PATTERN = re.compile(r"setcpm\s*\(", re.IGNORECASE)
_REMOTE_SAMPLE_PATTERNS = (
    re.compile(r"samples?\s*\(\s*['\"`]https?://localhost", re.IGNORECASE),
    re.compile(r"samples?\s*\(\s*['\"`]https?://", re.IGNORECASE),
    re.compile(r"await\s+samples?\s*\(", re.IGNORECASE),
)
_RANDOM_CALL_PATTERN = re.compile(r"\b(?:rand|irand)\s*\(")
_PERLIN_PATTERN = re.compile(r"\bperlin\b")
PROBABILITY_TRANSFORMS = (
    "sometimesBy",
    "sometimes",
    "rarely",
    "almostNever",
    "almostAlways",
    "choose",
    "chooseCycles",
)
_PROBABILITY_PATTERN = re.compile(r"\.(?:%s)\s*\(" % "|".join(PROBABILITY_TRANSFORMS))
_NUMBER = r"(\d+(?:\.\d*)?|\.\d+)"
_FEEDBACK_PATTERN = re.compile(r"\.delayfeedback\s*\(\s*" + _NUMBER)
_ROOM_PATTERN = re.compile(r"\.room\s*\(\s*" + _NUMBER)
_GAIN_PATTERN = re.compile(r"\.gain\s*\(\s*" + _NUMBER)
_FAST_PATTERN = re.compile(r"\.fast\s*\(\s*(\d+)")
_NOTE_LITERAL_PATTERN = re.compile(r"note\s*\(\s*\"[^\"]*\"")
_NINTH_OCTAVE_PATTERN = re.compile(r"[a-g][#b]?9")
_METHOD_CALL_PATTERN = re.compile(r"\s*\.\s*[A-Za-z_]\w*\s*\(")

# Methods that do not exist (or no longer exist) in the target runtime.
UNSUPPORTED_METHODS: Mapping[str, str] = MappingProxyType(
    {
        "note": "invalid method .note(...) - use note(...) or .detune(...) instead",
        "resonance": "invalid method .resonance(...) - use .lpq(...) instead",
        "euclidean": "invalid method .euclidean(...) - not available in this build",
    }
)
_UNSUPPORTED_PATTERNS = tuple(
    (re.compile(r"\.\s*%s\s*\(" % name), message) for name, message in UNSUPPORTED_METHODS.items()
)

EFFECT_METHODS = (
    "lpf",
    "hpf",
    "bpf",
    "delay",
    "delaytime",
    "delayfeedback",
    "room",
    "size",
    "dry",
    "crush",
    "coarse",
    "shape",
    "distort",
    "vowel",
    "hcutoff",
    "hresonance",
    "cutoff",
    "resonance",
    "pan",
    "speed",
)
_EFFECT_PATTERN = re.compile(r"\.\s*(?:%s)\s*\(" % "|".join(EFFECT_METHODS))

_BRACKET_PAIRS = (
    ("(", ")", "parentheses"),
    ("[", "]", "brackets"),
    ("{", "}", "braces"),
)


def _code_lines(code: str) -> list[str]:
    lines: list[str] = []
    for line in code.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("//"):
            lines.append(stripped)
    return lines


def count_voices(code: str) -> int:
    return code.count(VOICE_MARKER)


def count_lines(code: str) -> int:
    return len(_code_lines(code))


def has_setcpm(code: str) -> bool:
    return _SETCPM_PATTERN.search(code) is not None


def has_forbidden_samples(code: str) -> bool:
    return any(pattern.search(code) for pattern in _REMOTE_SAMPLE_PATTERNS)


def count_random_usage(code: str) -> int:
    return (
        len(_RANDOM_CALL_PATTERN.findall(code))
        + len(_PERLIN_PATTERN.findall(code))
        + len(_PROBABILITY_PATTERN.findall(code))
    )


def _values(pattern: re.Pattern[str], code: str) -> list[float]:
    return [float(match) for match in pattern.findall(code)]


def has_extreme_effects(code: str, policy: ValidationPolicy) -> bool:
    if any(value > policy.max_delay_feedback for value in _values(_FEEDBACK_PATTERN, code)):
        return True
    if any(value > policy.max_room_size for value in _values(_ROOM_PATTERN, code)):
        return True
    return any(value > MAX_GAIN for value in _values(_GAIN_PATTERN, code))


def find_syntax_issues(code: str) -> list[str]:
    issues: list[str] = []
    for opening, closing, label in _BRACKET_PAIRS:
        opened = code.count(opening)
        closed = code.count(closing)
        if opened != closed:
            issues.append(
                f"unbalanced {label}: {opened} opening '{opening}' vs {closed} closing '{closing}'"
            )
    # Angle brackets are mini-notation choice groups scoped to one literal.
    for literal in iter_string_literals(code):
        opened = literal.text.count("<")
        closed = literal.text.count(">")
        if opened != closed:
            issues.append(
                f"unbalanced mini-notation: {opened} opening '<' vs {closed} closing '>' "
                f"in pattern {literal.source}"
            )
    return issues


def find_invalid_method_usage(code: str) -> list[str]:
    issues: list[str] = []
    without_comments = strip_comments(code)
    for pattern, message in _UNSUPPORTED_PATTERNS:
        if pattern.search(without_comments):
            issues.append(message)

    for literal in iter_string_literals(without_comments):
        if literal.quote == "`" or not literal.terminated:
            continue
        if _METHOD_CALL_PATTERN.match(without_comments, literal.end):
            issues.append(
                "string literal method call detected - apply transforms to patterns, not strings"
            )
            break
    return issues


def max_effects_on_voice_line(code: str) -> int:
    counts = [
        len(_EFFECT_PATTERN.findall(line)) for line in code.split("\n") if VOICE_MARKER in line
    ]
    return max(counts, default=0)


def find_dangerous_patterns(code: str) -> list[str]:
    issues: list[str] = []
    if any(int(value) > MAX_FAST_FACTOR for value in _FAST_PATTERN.findall(code)):
        issues.append(
            f"extremely fast pattern detected (>{MAX_FAST_FACTOR}x) - may cause audio glitches"
        )
    for match in _NOTE_LITERAL_PATTERN.findall(code):
        if _NINTH_OCTAVE_PATTERN.search(match.lower()):
            issues.append("extremely high note values detected - may cause issues")
            break
    return issues


def validate_pattern_code(
    code: str,
    policy: ValidationPolicy | Mapping[str, Any] | None = None,
) -> ValidationResult:
    """Run every content rule against ``code`` and collect all failures.

    Rules never short-circuit: the returned issues list carries one entry per
    failing rule (syntax and method checks may contribute several) in a fixed
    order, so a single retry prompt can address everything at once.
    """
    cfg = resolve_policy(policy)
    issues: list[str] = []

    voice_count = count_voices(code)
    if voice_count > cfg.max_voices:
        issues.append(
            f"too many voices ({voice_count}/{cfg.max_voices} max) - simplify to fewer tracks"
        )

    line_count = count_lines(code)
    if line_count > cfg.max_lines:
        issues.append(f"code too long ({line_count}/{cfg.max_lines} lines max) - simplify")
    if line_count < MIN_LINES:
        issues.append("code too short - add more content")

    if cfg.require_setcpm and not has_setcpm(code):
        issues.append("missing setcpm() - set tempo at the start")

    if cfg.reject_localhost and has_forbidden_samples(code):
        issues.append("uses external/localhost samples - only use built-in samples")

    random_usage = count_random_usage(code)
    if random_usage > cfg.max_random_usage:
        issues.append(
            f"excessive randomness ({random_usage}/{cfg.max_random_usage} max) "
            "- reduce variation techniques"
        )

    if has_extreme_effects(code, cfg):
        issues.append(
            "extreme effect values detected - reduce delay feedback "
            f"(max {cfg.max_delay_feedback}), reverb (max {cfg.max_room_size}), "
            f"or gain (max {MAX_GAIN})"
        )

    issues.extend(find_syntax_issues(code))
    issues.extend(find_invalid_method_usage(code))

    if max_effects_on_voice_line(code) > cfg.max_effects_per_voice:
        issues.append(
            f"too many effects on a single voice (max {cfg.max_effects_per_voice}) "
            "- simplify effect chains"
        )

    issues.extend(find_dangerous_patterns(code))

    result = ValidationResult.from_issues(issues)
    if not result.valid:
        _LOGGER.debug("Validation found %d issue(s): %s", len(issues), "; ".join(issues))
    return result


def _first_code_line(code: str) -> str:
    lines = _code_lines(code)
    return lines[0] if lines else ""


def check_structure(code: str) -> str | None:
    """Lightweight structural check used while extracting an artifact.

    Returns the first failure message, or ``None`` when the code is well formed.
    """
    first_line = _first_code_line(code)
    if not first_line:
        return "code contains no executable statements"
    if not (first_line.startswith("setcpm(") or first_line.startswith("setcpm (")):
        return f"code must start with setcpm(...), found: {first_line[:30]}..."
    if VOICE_MARKER not in code:
        return "code must contain at least one voice assignment ($:)"
    for opening, closing, label in _BRACKET_PAIRS:
        opened = code.count(opening)
        closed = code.count(closing)
        if opened != closed:
            return f"unbalanced {label}: {opened} open, {closed} close"
    return None
