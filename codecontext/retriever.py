"""Indexing and budget-aware search over a set of TypeScript sources.

:func:`build_index` is the indexing boundary: it parses every file,
builds the call graph and, when a provider is given, embeds every entity.
Nothing raised below it escapes; unparseable files are counted in the
:class:`IndexReport` and an embedding failure turns the index into
``"keyword"`` mode.

:class:`CodeRetriever` answers queries against a finished
:class:`CodeIndex`:

1. classify the query and pick a strategy
2. score candidates (vector similarity, or keyword matching without vectors)
3. stop with ``status="no_results"`` when nothing clears the threshold
4. fuse scores with keyword and call-graph evidence
5. optionally slice each candidate down to query-relevant lines
6. select greedily within the token budget and cap at ``k``
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .budget import select_within_budget
from .classifier import classify, strategy_for
from .config import RetrievalConfig
from .embeddings import (
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingRun,
    embed_entities,
    embed_query,
)
from .errors import EmbeddingProviderError, FileNotIndexedError
from .graph import DependencyGraph, build_graph
from .models import CodeEntity, QueryAnalysis, RankedResult, SearchStrategy
from .parser import TreeSitterParser
from .ranking import deduplicate_results, fuse, rank_entities
from .slicer import CompressionResult
from .slicer import compress as compress_ranked
from .snippets import (
    LineExtraction,
    SearchStats,
    Snippet,
    calculate_stats,
    extract_lines,
    format_context_block,
    format_snippets,
)
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

_CACHE_SIZE = 128


# ===================================================================
# Index
# ===================================================================

@dataclass(frozen=True)
class SourceFile:
    path: str
    source: str


@dataclass
class IndexReport:
    files_parsed: int = 0
    files_failed: int = 0
    failed_files: List[str] = field(default_factory=list)
    entities: int = 0
    edges: int = 0
    embedded: int = 0
    embedding_errors: List[str] = field(default_factory=list)
    duration: float = 0.0


@dataclass(frozen=True)
class CodeIndex:
    """Everything a search needs, built once and never mutated.

    ``mode`` is ``"semantic"`` when vectors are available and
    ``"keyword"`` otherwise.  ``provider`` is kept so queries are embedded
    with the same model as the entities.
    """

    name: str
    entities: List[CodeEntity]
    graph: DependencyGraph
    sources: Dict[str, str]
    report: IndexReport
    vector_store: Optional[VectorStore] = None
    provider: Optional[Any] = None
    created_at: float = field(default_factory=time.time)

    @property
    def mode(self) -> str:
        return "semantic" if self.vector_store is not None else "keyword"


def build_index(
    sources: Iterable[SourceFile],
    parser: Optional[TreeSitterParser] = None,
    provider: Optional[EmbeddingProvider] = None,
    config: Optional[EmbeddingConfig] = None,
    name: str = "",
) -> CodeIndex:
    """Parse, link and (optionally) embed *sources* into a :class:`CodeIndex`.

    Args:
        sources: Files to index; unsupported extensions are skipped.
        parser: Parser to use; a fresh :class:`TreeSitterParser` by default.
        provider: Embedding provider, or ``None`` for a keyword-only index.
        config: Batch and text-preparation settings for embedding.
        name: Label for the index (e.g. repository URL or path).

    Returns:
        The finished index.  Never raises for per-file or provider failures.
    """
    started = time.time()
    parser = parser or TreeSitterParser()
    report = IndexReport()
    entities: List[CodeEntity] = []
    texts: Dict[str, str] = {}

    for source_file in sources:
        if not parser.supports(source_file.path):
            continue
        try:
            file_entities = parser.parse_entities(source_file.source, source_file.path)
        except Exception as exc:
            logger.warning("Failed to parse %s: %s", source_file.path, exc)
            report.files_failed += 1
            report.failed_files.append(source_file.path)
            continue
        logger.debug("Parsed %s: %d entities", source_file.path, len(file_entities))
        report.files_parsed += 1
        texts[source_file.path] = source_file.source
        entities.extend(file_entities)

    if report.files_failed:
        logger.warning("Skipped %d unparseable files", report.files_failed)

    graph = build_graph(entities)
    report.entities = len(graph)
    report.edges = graph.edge_count()
    entities = list(graph.entities.values())

    store: Optional[VectorStore] = None
    if provider is not None and entities:
        candidate = VectorStore()
        try:
            run = embed_entities(entities, graph, provider, candidate, config)
        except Exception as exc:
            logger.warning("Embedding run failed: %r", exc)
            run = EmbeddingRun(total_entities=len(entities), errors=[repr(exc)], aborted=True)
        report.embedded = run.embedded
        report.embedding_errors = list(run.errors)
        if run.embedded:
            store = candidate
            if run.partial:
                logger.warning(
                    "Embedded %d/%d entities; batches %s failed",
                    run.embedded, run.total_entities, run.failed_batches,
                )
        else:
            logger.warning("Embeddings unavailable, index falls back to keyword search")

    report.duration = time.time() - started
    index = CodeIndex(
        name=name,
        entities=entities,
        graph=graph,
        sources=texts,
        report=report,
        vector_store=store,
        provider=provider if store is not None else None,
    )
    logger.info(
        "Indexed %s: %d files, %d entities, %d edges (%s mode, %.2fs)",
        name or "<sources>", report.files_parsed, report.entities,
        report.edges, index.mode, report.duration,
    )
    return index


def index_directory(
    project_root: Path,
    parser: Optional[TreeSitterParser] = None,
    provider: Optional[EmbeddingProvider] = None,
    config: Optional[EmbeddingConfig] = None,
) -> CodeIndex:
    """Index every supported file under *project_root*.

    Entity file paths are relative to *project_root*.
    """
    project_root = Path(project_root)
    parser = parser or TreeSitterParser()
    sources: List[SourceFile] = []
    for file_path in parser.iter_source_files(project_root):
        try:
            text = file_path.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Could not read %s: %s", file_path, exc)
            continue
        sources.append(SourceFile(file_path.relative_to(project_root).as_posix(), text))
    return build_index(sources, parser, provider, config, name=str(project_root))


# ===================================================================
# Search
# ===================================================================

@dataclass
class SearchResponse:
    status: str
    query: str
    mode: str
    analysis: QueryAnalysis
    strategy: SearchStrategy
    results: List[RankedResult] = field(default_factory=list)
    snippets: List[Snippet] = field(default_factory=list)
    stats: Optional[SearchStats] = None
    total_tokens: int = 0
    dropped_count: int = 0
    top_score: Optional[float] = None
    compression: Optional[CompressionResult] = None
    message: str = ""

    @property
    def context(self) -> str:
        return format_context_block(self.snippets)


class CodeRetriever:
    """Query a :class:`CodeIndex`.

    Query embeddings are cached (LRU) so repeated questions against the
    same index do not hit the provider again.
    """

    def __init__(
        self,
        index: CodeIndex,
        config: Optional[RetrievalConfig] = None,
        cache_size: int = _CACHE_SIZE,
    ) -> None:
        self.index = index
        self.config = config or RetrievalConfig()
        self._cache_size = max(cache_size, 0)
        self._cache: OrderedDict[str, List[float]] = OrderedDict()
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _embed_query(self, query: str) -> List[float]:
        with self._cache_lock:
            cached = self._cache.get(query)
            if cached is not None:
                self._cache.move_to_end(query)
                return cached

        # Provider call happens outside the lock.
        vector = embed_query(query, self.index.provider)

        with self._cache_lock:
            self._cache[query] = vector
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return vector

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Primary search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        token_budget: Optional[int] = None,
        k: Optional[int] = None,
        expand_deps: Optional[bool] = None,
        compress: bool = False,
    ) -> SearchResponse:
        """Return the best results for *query* that fit in *token_budget*.

        Args:
            query: Natural-language or symbol query.
            token_budget: Token ceiling; the configured default when ``None``.
            k: Maximum results; by default the strategy's pool, capped at 10.
            expand_deps: Pull in callees / callers of the top matches;
                follows the strategy when ``None``.
            compress: Slice candidates to query-relevant lines first.

        Returns:
            A :class:`SearchResponse` with ``status`` ``"success"`` or
            ``"no_results"``.
        """
        analysis = classify(query)
        strategy = strategy_for(analysis)
        budget = self.config.default_token_budget if token_budget is None else token_budget
        if k is None:
            fusion = self.config.fusion
            k = fusion.top_k if "top_k" in fusion.pinned else min(strategy.top_k, fusion.top_k)
        if expand_deps is None:
            expand_deps = strategy.include_callers or strategy.include_callees

        response = SearchResponse(
            status="no_results", query=query, mode=self.index.mode,
            analysis=analysis, strategy=strategy,
        )
        if not query.strip() or not self.index.entities or k <= 0:
            response.message = "Nothing to search."
            return response

        scores: Optional[Dict[str, float]] = None
        if self.index.mode == "semantic":
            try:
                query_vector = self._embed_query(query)
            except EmbeddingProviderError as exc:
                logger.warning("Query embedding failed, using keyword search: %s", exc)
                response.mode = "keyword"
            except Exception as exc:
                logger.warning("Query embedding failed unexpectedly, using keyword search: %r", exc)
                response.mode = "keyword"
            else:
                scores = self.index.vector_store.scores(query_vector)
                response.top_score = max(scores.values(), default=0.0)
                if response.top_score < self.config.min_similarity:
                    logger.info(
                        "No relevant code for %r (top score %.2f)", query, response.top_score,
                    )
                    response.message = (
                        f'No relevant code found for "{query}" '
                        f"(top similarity {response.top_score:.2f} < "
                        f"{self.config.min_similarity:.2f})."
                    )
                    return response

        ranked = self._rank(query, analysis, strategy, scores, expand_deps)
        if not ranked:
            response.message = f'No matching code found for "{query}".'
            return response

        if compress:
            result = compress_ranked(ranked[:k * 2], query, budget)
            response.compression = result
            selected = result.selected
            response.dropped_count = result.dropped_count
        else:
            chosen = select_within_budget(ranked, budget)
            selected = chosen.selected
            response.dropped_count = chosen.dropped_count

        response.results = selected[:k]
        response.total_tokens = sum(r.tokens for r in response.results)
        response.snippets = format_snippets(response.results)
        response.stats = calculate_stats(self.index.entities, response.results)
        response.status = "success" if response.results else "no_results"
        if not response.results:
            response.message = f"No result fits in a budget of {budget} tokens."
        logger.debug(
            "Search %r (%s, %s): %d results, %d tokens",
            query, analysis.query_type, response.mode,
            len(response.results), response.total_tokens,
        )
        return response

    def _rank(
        self,
        query: str,
        analysis: QueryAnalysis,
        strategy: SearchStrategy,
        scores: Optional[Dict[str, float]],
        expand_deps: bool,
    ) -> List[RankedResult]:
        entities = self.index.entities
        graph = self.index.graph
        if scores is None:
            if not expand_deps:
                return deduplicate_results(rank_entities(query, entities, analysis.targets))
            return fuse(query, entities, graph, None, strategy, analysis.targets)
        options = self.config.fusion
        if not expand_deps:
            strategy = replace(strategy, graph_depth=0)
            options = replace(options, pinned=options.pinned - {"graph_depth"})
        return fuse(
            query, entities, graph, scores, strategy,
            targets=analysis.targets, options=options,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def resolve_symbol(self, name: str, limit: int = 10) -> Tuple[List[CodeEntity], List[CodeEntity]]:
        """Exact definitions of *name*, and partial matches when there are none."""
        exact = self.index.graph.find_by_name(name)
        if exact:
            return exact, []
        needle = name.lower()
        partial = [
            entity for entity in self.index.entities
            if needle in entity.base_name.lower() or entity.base_name.lower() in needle
        ]
        partial.sort(key=lambda e: (e.name, e.id))
        return [], partial[:limit]

    def get_snippet(
        self, file_path: str, start_line: int, end_line: int, context: int = 0,
    ) -> LineExtraction:
        source = self.index.sources.get(file_path)
        if source is None:
            raise FileNotIndexedError(f"File not indexed: {file_path}")
        return extract_lines(source, start_line, end_line, file_path=file_path, context=context)

    def similar_to(self, entity_id: str, top_k: int = 5) -> List[Tuple[CodeEntity, float]]:
        """Entities whose embeddings are closest to *entity_id*'s."""
        store = self.index.vector_store
        if store is None:
            return []
        results = []
        for match in store.find_similar_to(entity_id, top_k):
            entity = self.index.graph.get(match.entity_id)
            if entity is not None:
                results.append((entity, match.score))
        return results

    def call_chain(self, from_name: str, to_name: str) -> Optional[List[CodeEntity]]:
        """Shortest call path between any definitions of the two names."""
        graph = self.index.graph
        best: Optional[List[str]] = None
        for source in graph.find_by_name(from_name):
            for target in graph.find_by_name(to_name):
                path = graph.shortest_call_chain(source.id, target.id)
                if path is not None and (best is None or len(path) < len(best)):
                    best = path
        if best is None:
            return None
        return [graph.entities[entity_id] for entity_id in best]

