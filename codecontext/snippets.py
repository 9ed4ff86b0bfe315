"""Line-range extraction and result snippets.

Line numbers are 1-based and inclusive throughout.  Requests are clamped
to the file where possible; only a range that lies entirely outside the
file raises :class:`~codecontext.errors.LineRangeError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .errors import LineRangeError
from .models import CodeEntity, RankedResult

_RANGE_RE = re.compile(r"^\s*(-?\d+)\s*(?:[-:]\s*(-?\d+)\s*)?$")


@dataclass(frozen=True)
class LineExtraction:
    file_path: str
    start_line: int
    end_line: int
    lines: List[str]
    total_lines: int

    @property
    def content(self) -> str:
        """The extracted lines, numbered as ``"  42 | code"``."""
        return "\n".join(
            f"{self.start_line + offset:>4} | {line}"
            for offset, line in enumerate(self.lines)
        )

    def render(self) -> str:
        rule = "=" * 63
        return (
            f"{rule}\nFILE: {self.file_path}\n"
            f"LINES: {self.start_line}-{self.end_line} (of {self.total_lines} total)\n"
            f"{rule}\n\n{self.content}\n"
        )


@dataclass(frozen=True)
class Snippet:
    path: str
    start_line: int
    end_line: int
    code: str
    reason: str
    score: float
    match_type: str


@dataclass(frozen=True)
class SearchStats:
    baseline_tokens: int
    returned_tokens: int
    reduction_percent: int
    entities_searched: int
    entities_returned: int


def parse_line_range(spec: str) -> Tuple[int, int]:
    """Parse ``"45"``, ``"40-50"`` or ``"10:20"`` into ``(start, end)``.

    Raises:
        LineRangeError: If *spec* is not one of those forms.
    """
    match = _RANGE_RE.match(spec)
    if not match:
        raise LineRangeError(f"Invalid line specification: '{spec}'")
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) is not None else start
    return start, end


def extract_lines(
    source: str,
    start_line: int,
    end_line: int,
    file_path: str = "",
    context: int = 0,
) -> LineExtraction:
    """Cut ``start_line..end_line`` (plus *context* lines each side) out of *source*.

    A start below 1 is raised to 1, an end past the file is lowered to
    the last line and an end before the start collapses to the start.

    Raises:
        LineRangeError: If the range lies entirely outside the file.
    """
    all_lines = source.split("\n")
    total = len(all_lines)

    if start_line > total:
        raise LineRangeError(
            f"Line {start_line} doesn't exist. File only has {total} lines."
        )
    if end_line < 1:
        raise LineRangeError(f"Invalid line range: {start_line}-{end_line}")

    start = max(1, start_line - max(context, 0))
    end = max(end_line, start_line)
    end = min(total, end + max(context, 0))

    return LineExtraction(
        file_path=file_path,
        start_line=start,
        end_line=end,
        lines=all_lines[start - 1:end],
        total_lines=total,
    )


def format_snippet(result: RankedResult) -> Snippet:
    return Snippet(
        path=result.entity.file,
        start_line=result.entity.start_line,
        end_line=result.entity.end_line,
        code=result.code,
        reason=result.reason,
        score=result.score,
        match_type=result.match_type,
    )


def format_snippets(results: Iterable[RankedResult]) -> List[Snippet]:
    return [format_snippet(result) for result in results]


def format_context_block(snippets: Iterable[Snippet]) -> str:
    parts: List[str] = []
    for snippet in snippets:
        parts.append(f"// File: {snippet.path} (lines {snippet.start_line}-{snippet.end_line})")
        parts.append(f"// Reason: {snippet.reason}")
        parts.append(snippet.code)
        parts.append("")
    return "\n".join(parts)


def calculate_stats(
    all_entities: Iterable[CodeEntity],
    selected: Iterable[RankedResult],
) -> SearchStats:
    """Compare returned tokens with the cost of sending every entity."""
    all_entities = list(all_entities)
    selected = list(selected)
    baseline = sum(entity.token_estimate for entity in all_entities)
    returned = sum(result.tokens for result in selected)
    return SearchStats(
        baseline_tokens=baseline,
        returned_tokens=returned,
        reduction_percent=round((1 - returned / baseline) * 100) if baseline > 0 else 0,
        entities_searched=len(all_entities),
        entities_returned=len(selected),
    )
