"""Query-intent classification and search-strategy selection.

:func:`classify` is a single-pass, short-circuiting rule cascade: six
phrase sets are checked in a fixed priority order and the first one that
fires decides the category.  Each category carries its own graph depth
and candidate pool size, and :func:`strategy_for` maps it to retrieval
thresholds (lower for broad architectural / multi-hop questions, higher
for focused simple / usage ones).
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Sequence, Tuple

from .models import QueryAnalysis, SearchStrategy

# ---------------------------------------------------------------------------
# Phrase sets
# ---------------------------------------------------------------------------

COMPARATIVE_PATTERNS = [
    "difference between", "difference", "compare", "comparison", "versus",
    " vs ", "similar", "similarity", "different from", "unlike", "same as",
]

MULTI_HOP_PATTERNS = [
    "connect", "connection", "flow", "flows", "lead to", "leads to",
    "through", "chain", "path", "eventually", "trigger", "triggers",
    "after", "before", "then", "reach", "reaches", "resulting in",
    "data get from", "calls", "trace",
]

DEBUGGING_PATTERNS = [
    "fail", "failure", "error", "exception", "bug", "issue", "break",
    "broken", "wrong", "incorrect", "null", "undefined", "crash", "debug",
    "not working", "unexpected", "edge case", "throws",
]

ARCHITECTURAL_PATTERNS = [
    "overall", "architecture", "structure", "organize", "organized",
    "organization", "design", "pattern", "main component", "primary",
    "core", "overview", "summary", "high level", "big picture",
    "entry point", "starting point", "module", "layer", "layout",
]

USAGE_PATTERNS = [
    "how do i use", "how to use", "how to call", "how do i call",
    "example of", "example for", "how to implement", "usage of",
    "usage for", "how to invoke", "parameter", "parameters for",
    "argument", "arguments for", "what arguments", "what parameters",
]

SIMPLE_PATTERNS = [
    "what does", "how does", "explain", "what is", "show me", "find",
    "where is", "defined",
]

# Short words that would hit inside unrelated words ("authenticate" ~ "then")
WORD_BOUNDARY_PATTERNS = {
    "then", "after", "before", "calls", "through", "reach", "reaches",
    "flow", "flows", "chain", "path", "trace",
}

STOP_WORDS = {
    "how", "does", "the", "to", "a", "an", "is", "are", "what", "where", "when",
    "why", "which", "who", "will", "would", "could", "should", "can", "do",
    "this", "that", "these", "those", "it", "its", "i",
    "in", "on", "at", "for", "of", "with", "from", "by", "about",
    "and", "or", "but", "if", "then", "else",
    "work", "works", "working", "connect", "connects", "connection",
    "call", "calls", "calling", "use", "uses", "using",
    "get", "set", "find", "show", "explain", "describe",
    "between", "through", "into", "onto", "after", "before",
    "function", "method", "class", "file", "code", "codebase",
    "overall", "main", "primary", "difference", "compare", "different",
    "might", "cause", "give", "me", "level", "high", "example",
    "take", "takes", "have", "has", "had", "be", "been", "being",
}

MAX_TARGETS = 5

# category -> (graph depth, candidate pool size)
CATEGORY_PARAMS: Dict[str, Tuple[int, int]] = {
    "comparative": (2, 20),
    "multi-hop": (3, 20),
    "debugging": (3, 15),
    "architectural": (2, 25),
    "usage": (1, 10),
    "simple": (1, 10),
}

_QUOTED_RE = re.compile(r"[\"']([^\"']+)[\"']")
_PASCAL_MULTI_RE = re.compile(r"\b[A-Z][a-z]+(?:[A-Z][a-z]+)+\b")
_CAMEL_RE = re.compile(r"\b[a-z]+(?:[A-Z][a-z]+)+\b")
_PASCAL_SINGLE_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")
_LOWER_WORD_RE = re.compile(r"^[a-z]+$")


# ===================================================================
# Target extraction
# ===================================================================

def extract_targets(query: str) -> List[str]:
    """Pull likely entity names out of *query*.

    Five passes, in order: quoted strings, multi-word PascalCase,
    camelCase, single capitalised words, then the remaining lowercase
    non-stopwords.  Deduplicated case-insensitively, at most five.
    """
    candidates: List[str] = []
    candidates.extend(_QUOTED_RE.findall(query))
    candidates.extend(_PASCAL_MULTI_RE.findall(query))
    candidates.extend(_CAMEL_RE.findall(query))
    candidates.extend(_PASCAL_SINGLE_RE.findall(query))

    cleaned = re.sub(r"[\"']", "", query.lower())
    candidates.extend(
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS and _LOWER_WORD_RE.match(word)
    )

    seen = set()
    unique: List[str] = []
    for target in candidates:
        key = target.lower()
        if key not in seen:
            seen.add(key)
            unique.append(target)
    return unique[:MAX_TARGETS]


def find_pattern_matches(query: str, patterns: Sequence[str]) -> List[str]:
    q = query.lower()
    matches = []
    for pattern in patterns:
        if pattern in WORD_BOUNDARY_PATTERNS:
            if re.search(rf"\b{re.escape(pattern)}\b", q):
                matches.append(pattern)
        elif pattern in q:
            matches.append(pattern)
    return matches


# ===================================================================
# Confidence
# ===================================================================

def _confidence(query: str, category: str, matched: List[str], targets: List[str]) -> float:
    confidence = 0.5 + min(len(matched) * 0.1, 0.3)
    word_count = len(re.split(r"\s+", query))

    if category == "simple":
        if word_count < 6:
            confidence += 0.1
        if len(targets) == 1:
            confidence += 0.1
    elif category == "multi-hop":
        if word_count > 6:
            confidence += 0.1
        if len(targets) >= 2:
            confidence += 0.15
    elif category == "architectural":
        if word_count > 4:
            confidence += 0.1
        if not targets:
            confidence += 0.05
    elif category == "comparative":
        confidence += 0.2 if len(targets) >= 2 else -0.2
    elif category == "debugging":
        if targets:
            confidence += 0.1
        if any(p in ("error", "fail", "bug", "crash") for p in matched):
            confidence += 0.1
    elif category == "usage":
        if targets:
            confidence += 0.15
        if "how" in query.lower():
            confidence += 0.05

    return min(max(confidence, 0.1), 1.0)


# ===================================================================
# Rule cascade
# ===================================================================

_Rule = Tuple[str, Sequence[str], Callable[[List[str], List[str]], bool]]

# Evaluated top to bottom; the first rule whose predicate holds wins.
RULES: List[_Rule] = [
    ("comparative", COMPARATIVE_PATTERNS, lambda m, t: bool(m) and len(t) >= 2),
    ("multi-hop", MULTI_HOP_PATTERNS, lambda m, t: bool(m)),
    ("debugging", DEBUGGING_PATTERNS, lambda m, t: bool(m)),
    ("architectural", ARCHITECTURAL_PATTERNS, lambda m, t: bool(m)),
    ("usage", USAGE_PATTERNS, lambda m, t: bool(m)),
]


def _reason(category: str, matched: List[str], targets: List[str]) -> str:
    if category == "comparative":
        return (
            f'Comparative pattern "{matched[0]}" with {len(targets)} targets: '
            f"[{', '.join(targets)}]"
        )
    label = {
        "multi-hop": "Multi-hop",
        "debugging": "Debugging",
        "architectural": "Architectural",
        "usage": "Usage",
        "simple": "Simple",
    }[category]
    return f'{label} pattern "{matched[0]}" detected'


def classify(query: str) -> QueryAnalysis:
    """Classify *query* into one of six intent categories."""
    targets = extract_targets(query)

    for category, patterns, predicate in RULES:
        matched = find_pattern_matches(query, patterns)
        if predicate(matched, targets):
            depth, top_k = CATEGORY_PARAMS[category]
            return QueryAnalysis(
                query_type=category,
                depth=depth,
                top_k=top_k,
                keywords=matched,
                targets=targets,
                confidence=_confidence(query, category, matched, targets),
                reason=_reason(category, matched, targets),
            )

    matched = find_pattern_matches(query, SIMPLE_PATTERNS)
    depth, top_k = CATEGORY_PARAMS["simple"]
    if matched:
        confidence = _confidence(query, "simple", matched, targets)
        reason = _reason("simple", matched, targets)
    else:
        confidence = 0.6
        reason = "No specific patterns detected, defaulting to simple query"
    return QueryAnalysis(
        query_type="simple",
        depth=depth,
        top_k=top_k,
        keywords=matched,
        targets=targets,
        confidence=confidence,
        reason=reason,
    )


# ===================================================================
# Strategy lookup
# ===================================================================

_STRATEGY_OVERRIDES: Dict[str, Dict[str, object]] = {
    "simple": {"min_score": 0.40},
    "multi-hop": {"include_callers": True, "min_score": 0.30},
    "architectural": {
        "boost_entry_points": True,
        "boost_types": True,
        "include_callers": True,
        "keyword_boost": 0.1,
        "min_score": 0.25,
    },
    "comparative": {"include_callers": True, "min_score": 0.35},
    "debugging": {"keyword_boost": 0.3, "min_score": 0.35},
    "usage": {"min_score": 0.40},
}


def strategy_for(analysis: QueryAnalysis) -> SearchStrategy:
    """Map a classification to retrieval parameters (pure lookup)."""
    overrides = _STRATEGY_OVERRIDES.get(analysis.query_type, {})
    return SearchStrategy(
        graph_depth=analysis.depth,
        top_k=analysis.top_k,
        **overrides,  # type: ignore[arg-type]
    )
