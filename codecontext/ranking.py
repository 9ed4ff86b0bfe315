"""Retrieval fusion: merge lexical, semantic and graph evidence into one list.

Two paths produce the same :class:`~codecontext.models.RankedResult`
shape:

- **Keyword fusion** (no vectors available): every entity is tested
  against a strict priority of match categories (exact name, name
  substring, signature, doc, code body) and scored from a fixed table.
  The top hits then pull in their direct callees and callers.
- **Semantic fusion**: similarity scores are filtered and pooled,
  boosted when a (synonym-expanded) query keyword appears in the
  entity, and the best few seed a graph expansion; an inclusion rule
  keeps high-rank, graph-connected or high-confidence candidates while
  dropping generic names such as ``get`` unless they score very high.

Both finish with deduplication by entity id and a total order of
(score desc, name asc, id asc), so the output is independent of the
order entities were supplied in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .graph import DependencyGraph
from .models import CodeEntity, RankedResult, SearchStrategy

# ---------------------------------------------------------------------------
# Keyword fusion tables
# ---------------------------------------------------------------------------

SCORE_WEIGHTS: Dict[str, float] = {
    "exact_name": 100,
    "substring_name": 80,
    "signature_match": 60,
    "docstring_match": 50,
    "code_match": 30,
    "dependency": 25,
    "dependent": 20,
}

REASONS: Dict[str, str] = {
    "exact_name": "Exact match on function name",
    "substring_name": "Function name contains query term",
    "signature_match": "Query matches function signature",
    "docstring_match": "Query found in documentation",
    "code_match": "Query found in code body",
    "dependency": "Called by {parent}",
    "dependent": "Calls {parent}",
}

# Primary matches whose neighbours are pulled into keyword results
DEPENDENCY_CONTEXT_LIMIT = 5

# ---------------------------------------------------------------------------
# Semantic fusion tables
# ---------------------------------------------------------------------------

SYNONYMS: Dict[str, List[str]] = {
    "auth": ["auth", "login", "signin", "signout", "logout", "session", "token",
             "password", "credential", "user"],
    "database": ["database", "db", "query", "sql", "mongo", "postgres", "mysql", "storage"],
    "api": ["api", "endpoint", "route", "request", "response", "fetch", "http", "rest"],
    "error": ["error", "exception", "catch", "throw", "handle", "fail"],
    "test": ["test", "spec", "mock", "assert", "expect", "jest", "mocha"],
}

GENERIC_NAMES = {"get", "set", "run", "init", "handle", "on", "do", "make", "create"}


@dataclass(frozen=True)
class FusionOptions:
    """Tunable constants of semantic fusion.

    The inclusion thresholds are empirical; they are kept here, and in the
    ``[retrieval]`` config section, rather than hard-coded.

    :meth:`from_strategy` takes ``top_k``, ``keyword_boost``,
    ``graph_depth``, ``min_score`` and ``include_types`` from the query's
    strategy unless the field is named in ``pinned``, which the config
    loader fills with every key set in ``[retrieval]``.
    """

    top_k: int = 10
    candidate_pool: int = 30
    keyword_boost: float = 0.2
    graph_depth: int = 1
    min_score: float = 0.15
    seed_count: int = 3
    inclusion_rank: int = 5
    high_confidence: float = 0.75
    generic_name_override: float = 0.7
    include_types: bool = False
    pinned: FrozenSet[str] = frozenset()

    @classmethod
    def from_strategy(
        cls, strategy: SearchStrategy, base: Optional["FusionOptions"] = None,
    ) -> "FusionOptions":
        base = base or cls()
        values = {
            "top_k": strategy.top_k,
            "keyword_boost": strategy.keyword_boost,
            "graph_depth": strategy.graph_depth,
            "min_score": strategy.min_score,
            "include_types": strategy.boost_types,
        }
        for name in base.pinned:
            if name in values:
                values[name] = getattr(base, name)
        candidate_pool = base.candidate_pool
        if "candidate_pool" not in base.pinned:
            candidate_pool = max(candidate_pool, values["top_k"])
        return replace(base, candidate_pool=candidate_pool, **values)


def sort_results(results: Iterable[RankedResult]) -> List[RankedResult]:
    return sorted(results, key=lambda r: (-r.score, r.entity.name, r.entity.id))


def deduplicate_results(results: Iterable[RankedResult]) -> List[RankedResult]:
    """Keep one result per entity id (the highest-scoring one), sorted."""
    best: Dict[str, RankedResult] = {}
    for result in results:
        existing = best.get(result.entity.id)
        if existing is None or result.score > existing.score:
            best[result.entity.id] = result
    return sort_results(best.values())


# ===================================================================
# Keyword fusion
# ===================================================================

def rank_entities(
    query: str,
    entities: Iterable[CodeEntity],
    targets: Optional[Sequence[str]] = None,
) -> List[RankedResult]:
    """Score entities by the first lexical match category that hits."""
    query_lower = query.lower().strip()
    if not query_lower:
        return []
    target_terms = [t.lower() for t in targets or []]
    terms = [t for t in query_lower.split() if len(t) > 2]
    for target in target_terms:
        if target not in terms:
            terms.append(target)

    def _hits(text: str) -> bool:
        text = text.lower()
        return query_lower in text or any(term in text for term in terms)

    results: List[RankedResult] = []
    for entity in entities:
        name = entity.name.lower()
        base = entity.base_name.lower()

        if base == query_lower or name == query_lower or any(
            base == t or name == t for t in target_terms
        ):
            category = "exact_name"
        elif _hits(name):
            category = "substring_name"
        elif _hits(entity.signature):
            category = "signature_match"
        elif entity.doc and _hits(entity.doc):
            category = "docstring_match"
        elif _hits(entity.source):
            category = "code_match"
        else:
            continue

        results.append(RankedResult(
            entity=entity,
            score=SCORE_WEIGHTS[category],
            reason=REASONS[category],
            match_type=category,
        ))

    return sort_results(results)


def add_dependency_context(
    ranked: List[RankedResult],
    graph: DependencyGraph,
    include_callees: bool = True,
    include_callers: bool = True,
    limit: int = DEPENDENCY_CONTEXT_LIMIT,
) -> List[RankedResult]:
    """Append direct callees / callers of the top *limit* results."""
    results = list(ranked)
    included = {r.entity.id for r in ranked}

    for match in ranked[:limit]:
        related = []
        if include_callees:
            related.extend((dep, "dependency") for dep in graph.dependencies(match.entity.id))
        if include_callers:
            related.extend((caller, "dependent") for caller in graph.dependents(match.entity.id))
        for entity, category in related:
            if entity.id in included:
                continue
            included.add(entity.id)
            results.append(RankedResult(
                entity=entity,
                score=SCORE_WEIGHTS[category],
                reason=REASONS[category].format(parent=match.entity.name),
                match_type=category,
            ))

    return sort_results(results)


def keyword_fusion(
    query: str,
    entities: Iterable[CodeEntity],
    graph: DependencyGraph,
    targets: Optional[Sequence[str]] = None,
    strategy: Optional[SearchStrategy] = None,
) -> List[RankedResult]:
    ranked = rank_entities(query, entities, targets)
    if not ranked:
        return []
    ranked = add_dependency_context(
        ranked,
        graph,
        include_callees=strategy.include_callees if strategy else True,
        include_callers=strategy.include_callers if strategy else True,
    )
    return deduplicate_results(ranked)


# ===================================================================
# Semantic fusion
# ===================================================================

def extract_keywords(query: str) -> List[str]:
    """Lowercased query words (len > 2) plus their synonym groups."""
    keywords: Dict[str, None] = {}
    for word in re.split(r"\W+", query.lower()):
        if len(word) <= 2:
            continue
        keywords[word] = None
        for key, synonyms in SYNONYMS.items():
            if word == key or word in synonyms:
                for synonym in synonyms:
                    keywords[synonym] = None
    return list(keywords)


def has_keyword_match(entity: CodeEntity, keywords: Sequence[str]) -> bool:
    haystacks = (entity.name.lower(), (entity.doc or "").lower(), entity.source.lower())
    return any(kw in text for kw in keywords for text in haystacks)


def is_generic_name(name: str) -> bool:
    return name.rsplit(".", 1)[-1].lower() in GENERIC_NAMES


def semantic_fusion(
    query: str,
    entities: Iterable[CodeEntity],
    graph: DependencyGraph,
    scores: Mapping[str, float],
    options: Optional[FusionOptions] = None,
) -> List[RankedResult]:
    """Combine similarity scores with keyword boosts and graph connectivity."""
    options = options or FusionOptions()
    if not query.strip():
        return []

    candidates = [
        (entity, scores.get(entity.id, 0.0))
        for entity in entities
        if scores.get(entity.id, 0.0) >= options.min_score
    ]
    candidates.sort(key=lambda c: (-c[1], c[0].name, c[0].id))
    candidates = candidates[:options.candidate_pool]
    if not candidates:
        return []

    keywords = extract_keywords(query)
    boosted = []
    for entity, score in candidates:
        matched = has_keyword_match(entity, keywords)
        boosted.append((entity, score + options.keyword_boost if matched else score, score, matched))
    boosted.sort(key=lambda c: (-c[1], c[0].name, c[0].id))

    seed_ids = [entity.id for entity, *_ in boosted[:options.seed_count]]
    expanded = graph.expand(seed_ids, options.graph_depth)
    connected = expanded.connected_ids(include_types=options.include_types)

    results: List[RankedResult] = []
    for rank, (entity, score, raw_score, keyword_hit) in enumerate(boosted):
        if is_generic_name(entity.name) and score <= options.generic_name_override:
            continue
        in_top = rank < options.inclusion_rank
        is_connected = entity.id in connected
        if not (in_top or is_connected or score > options.high_confidence):
            continue

        reason = f"Semantic similarity: {raw_score * 100:.1f}%"
        if keyword_hit:
            match_type = "keyword"
            reason += f" (+{options.keyword_boost:.2f} keyword boost)"
        elif is_connected and not in_top:
            match_type = "graph"
            reason += "; connected to a top result in the call graph"
        else:
            match_type = "semantic"
        results.append(RankedResult(
            entity=entity, score=score, reason=reason, match_type=match_type,
        ))

    return deduplicate_results(results)[:options.top_k]


# ===================================================================
# Entry point
# ===================================================================

def fuse(
    query: str,
    entities: Iterable[CodeEntity],
    graph: DependencyGraph,
    scores: Optional[Mapping[str, float]],
    strategy: SearchStrategy,
    targets: Optional[Sequence[str]] = None,
    options: Optional[FusionOptions] = None,
) -> List[RankedResult]:
    """Rank *entities* for *query*.

    Uses semantic fusion when *scores* (entity id -> similarity) are
    given, keyword fusion otherwise.

    Args:
        query: Raw query text.
        entities: Candidate entities, in any order.
        graph: Call graph over the same entities.
        scores: Similarity per entity id, or ``None`` without vectors.
        strategy: Parameters chosen for the query's intent.
        targets: Entity names extracted from the query (keyword path).
        options: Base fusion constants; strategy values override them.

    Returns:
        Deduplicated results ordered by (score desc, name asc).
    """
    if scores is None:
        return keyword_fusion(query, entities, graph, targets, strategy)
    return semantic_fusion(
        query, entities, graph, scores, FusionOptions.from_strategy(strategy, options),
    )
