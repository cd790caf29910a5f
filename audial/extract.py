from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict, model_validator

from .validator import check_structure

_LOGGER = logging.getLogger("audial.extract")

_CODE_BLOCK_PATTERN = re.compile(r"```(?:javascript|js|strudel)?\n?([\s\S]*?)```")
_ESCAPED_QUOTE_PATTERN = re.compile(r"\\([\"'])")
_ESCAPE_SEQUENCE_PATTERN = re.compile(r"\\([nrt])")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}
_HEURISTIC_PATTERNS = (
    re.compile(r"setcpm\s*\(", re.IGNORECASE),
    re.compile(r"\$:"),
    re.compile(r"note\s*\("),
    re.compile(r"s\s*\("),
    re.compile(r"\.gain\s*\("),
)
_HEURISTIC_THRESHOLD = 2

NO_CODE_BLOCK = "no code block found in response"
EMPTY_CODE_BLOCK = "code block is empty"
EMPTY_RESPONSE = "empty response"


class ParseResult(BaseModel):
    success: bool
    code: str | None = None
    error: str | None = None
    raw_response: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "ParseResult":
        if self.success and (self.code is None or self.error is not None):
            raise ValueError("successful parse results carry code and no error")
        if not self.success and (self.error is None or self.code is not None):
            raise ValueError("failed parse results carry an error and no code")
        return self

    @classmethod
    def ok(cls, code: str) -> "ParseResult":
        return cls(success=True, code=code)

    @classmethod
    def fail(cls, error: str, raw_response: str | None = None) -> "ParseResult":
        return cls(success=False, error=error, raw_response=raw_response)


def find_code_blocks(text: str) -> list[str]:
    return [match.group(1) for match in _CODE_BLOCK_PATTERN.finditer(text)]


def looks_like_pattern_code(text: str) -> bool:
    matches = sum(1 for pattern in _HEURISTIC_PATTERNS if pattern.search(text))
    return matches >= _HEURISTIC_THRESHOLD


def extract_artifact(response: str) -> ParseResult:
    """Pull exactly one code artifact out of raw model text.

    Prose around the fenced block is ignored. Unfenced text is accepted only
    when it looks like pattern code. The returned code is trimmed but not yet
    checked or normalized.
    """
    if not response or not response.strip():
        return ParseResult.fail(EMPTY_RESPONSE, response)

    trimmed = response.strip()
    blocks = find_code_blocks(trimmed)

    if not blocks:
        if looks_like_pattern_code(trimmed):
            _LOGGER.debug("No fenced block; treating unfenced response as code.")
            return ParseResult.ok(trimmed)
        return ParseResult.fail(NO_CODE_BLOCK, response)

    if len(blocks) > 1:
        return ParseResult.fail(
            f"found {len(blocks)} code blocks, expected exactly 1",
            response,
        )

    code = blocks[0].strip()
    if not code:
        return ParseResult.fail(EMPTY_CODE_BLOCK, response)
    return ParseResult.ok(code)


def parse_output(response: str) -> ParseResult:
    """Extract, structurally check and normalize one artifact from ``response``."""
    extracted = extract_artifact(response)
    if not extracted.success or extracted.code is None:
        return extracted

    problem = check_structure(extracted.code)
    if problem is not None:
        return ParseResult.fail(problem, response)
    return ParseResult.ok(normalize_code(extracted.code))


def _normalize_once(code: str) -> str:
    cleaned = _ESCAPED_QUOTE_PATTERN.sub(r"\1", code)
    return _ESCAPE_SEQUENCE_PATTERN.sub(lambda match: _ESCAPES[match.group(1)], cleaned)


def normalize_code(code: str) -> str:
    # Each pass only shortens the text, so this reaches a fixpoint.
    cleaned = code
    while True:
        normalized = _normalize_once(cleaned)
        if normalized == cleaned:
            return cleaned
        cleaned = normalized


def _significant_lines(code: str) -> str:
    return "\n".join(line.strip() for line in code.split("\n") if line.strip())


def is_code_unchanged(old_code: str, new_code: str) -> bool:
    return _significant_lines(old_code) == _significant_lines(new_code)
