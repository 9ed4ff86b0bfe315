"""Query-driven program slicing.

Reduces an entity to the lines that matter for a query so more entities
fit in the same token budget.  Slicing is line-based and conservative:
the first two lines (signature and opening) and the last line (closing
brace) always survive, each matching line keeps three lines of context
either side, and definitions of variables used by kept lines are pulled
back in.  Skipped runs are replaced by a ``// ...`` marker line, so the
output never has more lines than the input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Sequence, Set

from .budget import select_within_budget
from .models import RankedResult, SliceResult, estimate_tokens

logger = logging.getLogger(__name__)

ELISION_MARKER = "  // ..."

CONTEXT_LINES = 3

STOP_WORDS = {
    "how", "does", "what", "where", "when", "why", "which",
    "the", "this", "that", "work", "works", "working",
    "can", "could", "would", "should", "is", "are", "was",
    "have", "has", "had", "do", "did", "and", "or", "but",
}

JS_KEYWORDS = {
    "const", "let", "var", "function", "return", "if", "else",
    "for", "while", "do", "switch", "case", "break", "continue",
    "try", "catch", "finally", "throw", "new", "this", "class",
    "extends", "import", "export", "default", "from", "async",
    "await", "true", "false", "null", "undefined", "typeof",
    "instanceof", "void", "delete", "in", "of",
}

_IDENTIFIER_RE = re.compile(r"\b([a-zA-Z_][a-zA-Z0-9_]*)\b")


def extract_query_terms(query: str) -> List[str]:
    """Crudely stemmed search terms: "how does tagging work" -> tagging, tag, tags."""
    words = [
        w for w in re.sub(r"[^\w\s]", "", query.lower()).split()
        if len(w) > 2 and w not in STOP_WORDS
    ]
    terms: dict = {}
    for word in words:
        terms[word] = None
        if word.endswith("ing") and len(word) > 4:
            root = word[:-3]
            if len(root) > 2 and root[-1] == root[-2]:
                root = root[:-1]
            terms[root] = None
            terms[root + "s"] = None
        elif word.endswith("s") and len(word) > 3:
            terms[word[:-1]] = None
        else:
            terms[word + "s"] = None
            terms[word + "ing"] = None
    return list(terms)


def slice_code(source: str, terms: Sequence[str]) -> str:
    """Return *source* reduced to lines relevant to *terms*."""
    lines = source.split("\n")
    last = len(lines) - 1
    keep: Set[int] = {0, last}
    if len(lines) > 1:
        keep.add(1)

    lowered_terms = [t.lower() for t in terms if t]
    for index, line in enumerate(lines):
        lower = line.lower()
        if any(term in lower for term in lowered_terms):
            keep.update(range(max(0, index - CONTEXT_LINES), min(last, index + CONTEXT_LINES) + 1))

    if len(keep) > 2:
        names = _identifiers(lines[i] for i in keep)
        patterns = [
            re.compile(rf"(?:const|let|var)\s+{re.escape(n)}\b|^\s*{re.escape(n)}\s*=(?!=)")
            for n in names
        ]
        for index, line in enumerate(lines):
            if index not in keep and any(p.search(line) for p in patterns):
                keep.add(index)

    if len(keep) < 5 and len(lines) > 5:
        keep.update(range(3))
        keep.update(i for i, line in enumerate(lines) if line.strip().startswith("return "))

    output: List[str] = []
    previous = -1
    for index in sorted(keep):
        if previous != -1 and index > previous + 1:
            output.append(ELISION_MARKER)
        output.append(lines[index])
        previous = index
    return "\n".join(output)


def slice_source(source: str, terms: Sequence[str]) -> SliceResult:
    """Slice *source* and report the token reduction."""
    sliced = slice_code(source, terms)
    original_tokens = estimate_tokens(source)
    sliced_tokens = estimate_tokens(sliced)
    lower = source.lower()
    return SliceResult(
        sliced_text=sliced,
        original_tokens=original_tokens,
        sliced_tokens=sliced_tokens,
        reduction_percent=(
            round((1 - sliced_tokens / original_tokens) * 100) if original_tokens else 0
        ),
        terms_found=[t for t in terms if t and t.lower() in lower],
    )


def _identifiers(lines: Iterable[str]) -> List[str]:
    names: dict = {}
    for line in lines:
        for name in _IDENTIFIER_RE.findall(line):
            if len(name) > 2 and name not in JS_KEYWORDS:
                names[name] = None
    return list(names)


# ===================================================================
# Compression pipeline
# ===================================================================

@dataclass
class CompressionResult:
    selected: List[RankedResult]
    context: str
    total_original_tokens: int
    total_sliced_tokens: int
    dropped_count: int
    terms: List[str] = field(default_factory=list)

    @property
    def reduction_percent(self) -> int:
        if not self.total_original_tokens:
            return 0
        return round((1 - self.total_sliced_tokens / self.total_original_tokens) * 100)


def compress(ranked: Sequence[RankedResult], query: str, max_tokens: int) -> CompressionResult:
    """Slice every candidate, then re-run budget selection on sliced sizes.

    Rank order is preserved; only the token cost of each result changes.
    """
    terms = extract_query_terms(query)
    sliced = [
        replace(result, sliced_source=slice_code(result.entity.source, terms))
        for result in ranked
    ]
    budget = select_within_budget(sliced, max_tokens)
    original = sum(result.entity.token_estimate for result in budget.selected)
    logger.debug(
        "Compressed %d candidates to %d within %d tokens (terms: %s)",
        len(ranked), len(budget.selected), max_tokens, ", ".join(terms),
    )
    return CompressionResult(
        selected=budget.selected,
        context="\n\n".join(
            f"// File: {r.entity.file}\n// Function: {r.entity.name}\n{r.code}"
            for r in budget.selected
        ),
        total_original_tokens=original,
        total_sliced_tokens=budget.total_tokens,
        dropped_count=budget.dropped_count,
        terms=terms,
    )
