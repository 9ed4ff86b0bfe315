"""Tests for line extraction, snippets and search stats."""

import pytest

from codecontext.errors import LineRangeError
from codecontext.snippets import (
    calculate_stats,
    extract_lines,
    format_context_block,
    format_snippets,
    parse_line_range,
)

FIVE_LINES = "a\nb\nc\nd\ne"


class TestParseLineRange:
    @pytest.mark.parametrize("spec,expected", [
        ("45", (45, 45)),
        ("40-50", (40, 50)),
        ("10:20", (10, 20)),
        (" 3 - 7 ", (3, 7)),
    ])
    def test_valid(self, spec, expected):
        assert parse_line_range(spec) == expected

    @pytest.mark.parametrize("spec", ["", "abc", "1-2-3", "4-"])
    def test_invalid(self, spec):
        with pytest.raises(LineRangeError, match="Invalid line specification"):
            parse_line_range(spec)


class TestExtractLines:
    def test_inclusive_range(self):
        result = extract_lines(FIVE_LINES, 2, 3, file_path="src/a.ts")

        assert result.lines == ["b", "c"]
        assert (result.start_line, result.end_line, result.total_lines) == (2, 3, 5)
        assert result.file_path == "src/a.ts"

    @pytest.mark.parametrize("start,end,expected", [
        (4, 99, ["d", "e"]),
        (0, 2, ["a", "b"]),
        (-10, 1, ["a"]),
        (3, 1, ["c"]),
    ])
    def test_clamping(self, start, end, expected):
        assert extract_lines(FIVE_LINES, start, end).lines == expected

    def test_context_lines(self):
        result = extract_lines(FIVE_LINES, 3, 3, context=1)
        assert result.lines == ["b", "c", "d"]
        assert (result.start_line, result.end_line) == (2, 4)

        assert extract_lines(FIVE_LINES, 1, 5, context=10).lines == FIVE_LINES.split("\n")

    def test_start_past_end_of_file(self):
        with pytest.raises(LineRangeError, match="Line 6 doesn't exist. File only has 5 lines."):
            extract_lines(FIVE_LINES, 6, 7)

    def test_range_before_file(self):
        with pytest.raises(LineRangeError):
            extract_lines(FIVE_LINES, -3, 0)

    def test_numbered_content(self):
        source = "\n".join(chr(ord("a") + i) for i in range(10))
        result = extract_lines(source, 9, 10, file_path="src/x.ts")

        assert result.content == "   9 | i\n  10 | j"
        rendered = result.render()
        assert "FILE: src/x.ts" in rendered
        assert "LINES: 9-10 (of 10 total)" in rendered
        assert rendered.endswith("  10 | j\n")


def test_context_block(make_entity, ranked_factory):
    snippets = format_snippets([ranked_factory(make_entity("a", line=3), score=0.5)])

    assert snippets[0].path == "src/app.ts"
    assert (snippets[0].start_line, snippets[0].end_line) == (3, 5)
    assert snippets[0].score == 0.5
    assert format_context_block(snippets) == (
        "// File: src/app.ts (lines 3-5)\n// Reason: test\nfunction a() {\n\n}\n"
    )


class TestCalculateStats:
    def test_reduction(self, make_entity, ranked_factory):
        small = make_entity("small", tokens=100)
        large = make_entity("large", line=10, tokens=300)
        stats = calculate_stats([small, large], [ranked_factory(small)])

        assert stats.baseline_tokens == 400
        assert stats.returned_tokens == 100
        assert stats.reduction_percent == 75
        assert (stats.entities_searched, stats.entities_returned) == (2, 1)

    def test_empty_baseline(self):
        stats = calculate_stats([], [])
        assert stats.reduction_percent == 0
        assert stats.baseline_tokens == 0
