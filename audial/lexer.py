"""Minimal scanner for Strudel source text.

Only the parts of the language the validator cares about are recognised:
quoted string literals (double, single and backtick quotes, with backslash
escapes), ``//`` line comments and ``/* ... */`` block comments. Everything
else is passed through.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

QUOTES = frozenset({'"', "'", "`"})


@dataclass(frozen=True, slots=True)
class StringLiteral:
    quote: str
    start: int
    # index one past the closing quote (or the end of the scanned region)
    end: int
    text: str
    terminated: bool = True

    @property
    def source(self) -> str:
        closing = self.quote if self.terminated else ""
        return f"{self.quote}{self.text}{closing}"


def _scan_literal(code: str, start: int) -> StringLiteral:
    quote = code[start]
    index = start + 1
    length = len(code)
    while index < length:
        char = code[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return StringLiteral(quote, start, index + 1, code[start + 1 : index])
        if char == "\n" and quote != "`":
            break
        index += 1
    index = min(index, length)
    return StringLiteral(quote, start, index, code[start + 1 : index], terminated=False)


def _comment_end(code: str, start: int) -> int:
    if code.startswith("/*", start):
        # An unterminated block comment runs to the end of the text.
        close = code.find("*/", start + 2)
        return len(code) if close == -1 else close + 2
    newline = code.find("\n", start)
    return len(code) if newline == -1 else newline


def _tokens(code: str) -> Iterator[tuple[str, int, int, StringLiteral | None]]:
    """Yield ``(kind, start, end, literal)`` for code, comment and string regions."""
    index = 0
    length = len(code)
    chunk_start = 0
    while index < length:
        char = code[index]
        if char in QUOTES:
            if chunk_start < index:
                yield "code", chunk_start, index, None
            literal = _scan_literal(code, index)
            yield "string", literal.start, literal.end, literal
            index = chunk_start = literal.end
            continue
        if char == "/" and code.startswith(("//", "/*"), index):
            if chunk_start < index:
                yield "code", chunk_start, index, None
            end = _comment_end(code, index)
            yield "comment", index, end, None
            index = chunk_start = end
            continue
        index += 1
    if chunk_start < length:
        yield "code", chunk_start, length, None


def iter_string_literals(code: str) -> Iterator[StringLiteral]:
    for kind, _, _, literal in _tokens(code):
        if kind == "string" and literal is not None:
            yield literal


def strip_comments(code: str) -> str:
    return "".join(code[start:end] for kind, start, end, _ in _tokens(code) if kind != "comment")
