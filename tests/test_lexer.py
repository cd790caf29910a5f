from __future__ import annotations

from audial.lexer import iter_string_literals, strip_comments


def test_literals_skip_line_comments() -> None:
    literals = list(iter_string_literals('s("bd sd").gain(0.5) // "not a pattern"'))

    assert [literal.text for literal in literals] == ["bd sd"]
    assert literals[0].quote == '"'
    assert literals[0].start == 2
    assert literals[0].end == 9


def test_escaped_quotes_stay_inside_literal() -> None:
    literals = list(iter_string_literals(r'note("c3 \" e3").s(' + "'saw')"))

    assert [literal.text for literal in literals] == [r"c3 \" e3", "saw"]


def test_unterminated_literal_stops_at_newline() -> None:
    literals = list(iter_string_literals('s("bd sd\n$: s("hh")'))

    assert literals[0].terminated is False
    assert literals[0].text == "bd sd"
    assert literals[0].source == '"bd sd'
    assert [literal.text for literal in literals[1:]] == ["hh"]


def test_backtick_literal_spans_lines() -> None:
    literals = list(iter_string_literals("note(`<c3 e3>\n<g3 b3>`)"))

    assert len(literals) == 1
    assert literals[0].quote == "`"
    assert literals[0].text == "<c3 e3>\n<g3 b3>"


def test_strip_comments_keeps_slashes_inside_strings() -> None:
    code = 'samples("https://example.com") // remote\n// whole line\n$: s("bd")'

    assert strip_comments(code) == 'samples("https://example.com") \n\n$: s("bd")'


def test_apostrophe_in_comment_does_not_open_literal() -> None:
    code = "// don't panic\n$: s('bd')"

    assert [literal.text for literal in iter_string_literals(code)] == ["bd"]


def test_block_comments_hide_quotes() -> None:
    code = "/* don't use <this */ s('bd')\n/* multi\n 'line' */ note(\"c3\")"

    assert [literal.text for literal in iter_string_literals(code)] == ["bd", "c3"]
    assert strip_comments(code) == " s('bd')\n note(\"c3\")"


def test_unterminated_block_comment_runs_to_end() -> None:
    code = "s('bd') /* it's open\n$: s('hh')"

    assert [literal.text for literal in iter_string_literals(code)] == ["bd"]
    assert strip_comments(code) == "s('bd') "
