"""Core data models shared by extraction, indexing, ranking and selection."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ENTITY_KINDS = ("function", "class", "method", "interface", "type", "variable")

QUERY_TYPES = (
    "simple",
    "multi-hop",
    "architectural",
    "comparative",
    "debugging",
    "usage",
)

# Rough approximation used everywhere a token count is needed.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate language-model tokens in *text* (about 4 chars per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class Parameter:
    name: str
    type: Optional[str] = None
    optional: bool = False
    default: Optional[str] = None


@dataclass(frozen=True)
class CodeEntity:
    """One retrievable, named unit of source code.

    ``name`` is qualified as ``Owner.member`` for methods; ``calls`` holds
    the bare callee names exactly as written, still unresolved.  For
    variables, ``return_type`` carries the declared type annotation.
    """

    id: str
    name: str
    kind: str
    file: str
    start_line: int
    end_line: int
    source: str
    signature: str
    doc: Optional[str] = None
    token_estimate: int = 0
    complexity: int = 1
    calls: List[str] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    return_type: Optional[str] = None
    members: List[str] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)

    @property
    def base_name(self) -> str:
        return self.name.rsplit(".", 1)[-1]

    @staticmethod
    def make_id(file_path: str, name: str, start_line: int) -> str:
        return f"{file_path}:{name}:{start_line}"


@dataclass(frozen=True)
class EmbeddingVector:
    entity_id: str
    kind: str
    file: str
    vector: List[float]
    text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "kind": self.kind,
            "file": self.file,
            "vector": list(self.vector),
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingVector":
        return cls(
            entity_id=data["entity_id"],
            kind=data.get("kind", ""),
            file=data.get("file", ""),
            vector=[float(v) for v in data["vector"]],
            text=data.get("text", ""),
        )


@dataclass(frozen=True)
class SimilarityResult:
    entity_id: str
    score: float
    kind: str
    file: str


@dataclass
class ExpandedContext:
    """Entities reached by a bounded graph expansion, bucketed by relation."""

    primary: List[CodeEntity] = field(default_factory=list)
    dependencies: List[CodeEntity] = field(default_factory=list)
    dependents: List[CodeEntity] = field(default_factory=list)
    types: List[CodeEntity] = field(default_factory=list)

    def connected_ids(self, include_types: bool = False) -> set:
        buckets = [self.primary, self.dependencies, self.dependents]
        if include_types:
            buckets.append(self.types)
        return {entity.id for bucket in buckets for entity in bucket}


@dataclass
class GraphStats:
    total_entities: int
    total_edges: int
    avg_dependencies: float
    avg_dependents: float
    most_called: List[Dict[str, Any]]
    most_dependencies: List[Dict[str, Any]]


@dataclass(frozen=True)
class QueryAnalysis:
    query_type: str
    depth: int
    top_k: int
    keywords: List[str]
    targets: List[str]
    confidence: float
    reason: str


@dataclass(frozen=True)
class SearchStrategy:
    graph_depth: int
    top_k: int
    min_score: float = 0.35
    keyword_boost: float = 0.2
    include_callers: bool = False
    include_callees: bool = True
    boost_entry_points: bool = False
    boost_types: bool = False


@dataclass(frozen=True)
class RankedResult:
    """An entity together with why and how strongly it was retrieved.

    ``sliced_source`` is set once the compression stage has reduced the
    entity to query-relevant lines; :attr:`tokens` then reflects the
    sliced text instead of the full entity.
    """

    entity: CodeEntity
    score: float
    reason: str
    match_type: str
    sliced_source: Optional[str] = None

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def code(self) -> str:
        if self.sliced_source is not None:
            return self.sliced_source
        return self.entity.source

    @property
    def tokens(self) -> int:
        if self.sliced_source is not None:
            return estimate_tokens(self.sliced_source)
        return self.entity.token_estimate


@dataclass
class BudgetResult:
    selected: List[RankedResult]
    total_tokens: int
    dropped_count: int


@dataclass(frozen=True)
class SliceResult:
    sliced_text: str
    original_tokens: int
    sliced_tokens: int
    reduction_percent: int
    terms_found: List[str] = field(default_factory=list)
