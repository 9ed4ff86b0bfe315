"""Embedding text preparation, providers and the batched embedding run.

Providers (select via ``[embeddings].provider`` in the config file):

========= ===================================== ====== ==========================
Key       Model / endpoint                      Dim    Notes
========= ===================================== ====== ==========================
openai    text-embedding-3-small                1536   ``OPENAI_API_KEY``
voyage    voyage-code-2                         1536   ``VOYAGE_API_KEY``
hash      (none)                                256    Offline, keyword-level only
========= ===================================== ====== ==========================

What gets embedded is a compact description of each entity (see
:func:`prepare_text_for_embedding`), not its raw source.  Remote
providers raise :class:`~codecontext.errors.EmbeddingProviderError` on
failure; :func:`embed_entities` turns those into a partial-success report
instead of letting them escape.
"""

from __future__ import annotations

import http.client
import json
import logging
import math
import os
import re
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from hashlib import blake2b
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Union

from .errors import (
    AuthenticationError,
    DimensionMismatchError,
    EmbeddingProviderError,
    RateLimitError,
)
from .models import CHARS_PER_TOKEN, CodeEntity, EmbeddingVector

if TYPE_CHECKING:
    from .graph import DependencyGraph
    from .vector_store import VectorStore

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


# ===================================================================
# Configuration
# ===================================================================

REMOTE_PROVIDERS: Dict[str, Dict[str, str]] = {
    "openai": {
        "endpoint": "https://api.openai.com/v1/embeddings",
        "model": "text-embedding-3-small",
        "api_key_env": "OPENAI_API_KEY",
    },
    "voyage": {
        "endpoint": "https://api.voyageai.com/v1/embeddings",
        "model": "voyage-code-2",
        "api_key_env": "VOYAGE_API_KEY",
    },
}

DEFAULT_PROVIDER = "hash"


@dataclass
class EmbeddingConfig:
    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None
    api_key: Optional[str] = None
    endpoint: Optional[str] = None
    batch_size: int = 32
    batch_delay: float = 0.1
    include_code: bool = False
    include_dependency_context: bool = True
    max_tokens: int = 512
    timeout: float = 30.0


# ===================================================================
# Text preparation
# ===================================================================

def prepare_text_for_embedding(
    entity: CodeEntity,
    graph: Optional["DependencyGraph"] = None,
    config: Optional[EmbeddingConfig] = None,
) -> str:
    """Describe *entity* for the embedding model.

    One line each for kind and name, signature, doc, parameters, return
    type, members, fields, direct callees / callers (when a graph is
    given) and file; raw source only when ``include_code`` is set.  The
    result is cut to ``max_tokens`` worth of characters.
    """
    config = config or EmbeddingConfig()
    parts: List[str] = [f"[{entity.kind}] {entity.name}"]

    if entity.signature:
        parts.append(f"Signature: {entity.signature}")
    if entity.doc:
        parts.append(f"Description: {entity.doc}")
    if entity.parameters:
        rendered = []
        for param in entity.parameters:
            text = param.name
            if param.type:
                text += f" ({param.type})"
            if param.optional:
                text += " [optional]"
            rendered.append(text)
        parts.append(f"Parameters: {', '.join(rendered)}")
    if entity.return_type:
        parts.append(f"Returns: {entity.return_type}")
    if entity.members:
        parts.append(f"Methods: {', '.join(entity.members)}")
    if entity.fields:
        parts.append(f"Properties: {', '.join(entity.fields)}")

    if config.include_dependency_context and graph is not None:
        callees = graph.dependencies(entity.id)
        if callees:
            parts.append(f"Calls: {', '.join(e.name for e in callees)}")
        callers = graph.dependents(entity.id)
        if callers:
            parts.append(f"Called by: {', '.join(e.name for e in callers)}")

    if config.include_code and entity.source:
        parts.append(f"Code:\n{entity.source}")

    parts.append(f"File: {entity.file}")

    text = "\n".join(parts)
    max_chars = config.max_tokens * CHARS_PER_TOKEN
    if len(text) > max_chars:
        return text[:max(max_chars - 3, 0)] + "..."
    return text


# ===================================================================
# RemoteEmbeddingProvider  (OpenAI-compatible HTTP API)
# ===================================================================

class RemoteEmbeddingProvider:
    """Batch embeddings from an OpenAI-compatible ``/v1/embeddings`` endpoint.

    Works for OpenAI and Voyage, which share the request shape
    ``{"model": ..., "input": [...]}`` and answer with ``data[].embedding``
    entries carrying an ``index``.  Vectors are returned in input order.
    """

    def __init__(
        self,
        provider: str = "openai",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        if provider not in REMOTE_PROVIDERS:
            raise ValueError(
                f"Unknown embedding provider: '{provider}'. "
                f"Available: {', '.join(REMOTE_PROVIDERS)}"
            )
        defaults = REMOTE_PROVIDERS[provider]
        self.provider = provider
        self.model_key = model or defaults["model"]
        self.endpoint = endpoint or defaults["endpoint"]
        self.api_key = api_key or os.environ.get(defaults["api_key_env"], "")
        self.timeout = timeout

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if not self.api_key:
            raise AuthenticationError(
                f"No API key configured for embedding provider '{self.provider}'"
            )

        payload = json.dumps({"model": self.model_key, "input": texts}).encode("utf-8")
        req = urllib.request.Request(
            self.endpoint,
            data=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as exc:
            message = f"{self.provider} embeddings request failed: HTTP {exc.code}"
            if exc.code in (401, 403):
                raise AuthenticationError(message, status=exc.code) from exc
            if exc.code == 429:
                raise RateLimitError(message, status=exc.code) from exc
            raise EmbeddingProviderError(message, status=exc.code) from exc
        except (OSError, http.client.HTTPException) as exc:
            # URLError and socket timeouts are OSErrors
            raise EmbeddingProviderError(
                f"{self.provider} embeddings request failed: {exc!r}"
            ) from exc

        return self._parse_vectors(body, len(texts))

    def _parse_vectors(self, body: bytes, expected: int) -> List[List[float]]:
        try:
            parsed = json.loads(body.decode("utf-8"))
            rows = parsed.get("data") if isinstance(parsed, dict) else None
            if not isinstance(rows, list) or len(rows) != expected:
                raise EmbeddingProviderError(
                    f"{self.provider} returned {len(rows or [])} vectors for {expected} inputs"
                )
            rows = sorted(rows, key=lambda row: row.get("index", 0))
            return [[float(v) for v in row["embedding"]] for row in rows]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise EmbeddingProviderError(
                f"{self.provider} returned a malformed embeddings response: {exc!r}"
            ) from exc

    def embed_text(self, text: str) -> List[float]:
        return self.embed_documents([text])[0]


# ===================================================================
# HashEmbeddingModel  (offline fallback)
# ===================================================================

class HashEmbeddingModel:
    """Deterministic token-hashing embedder with no network access.

    Provides keyword-level similarity only.  Used when no remote
    provider is configured, and in tests.
    """

    model_key = "hash"

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return vec
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        return _l2_normalize(vec)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embed_many(texts)


EmbeddingProvider = Union[RemoteEmbeddingProvider, HashEmbeddingModel, Any]


# ===================================================================
# Factory
# ===================================================================

def get_embedding_provider(config: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    """Return the configured embedding provider.

    Resolution order: explicit *config*, then ``[embeddings]`` from the
    config file, then the offline hash model.  Unknown provider names
    fall back to hash with a warning.
    """
    if config is None:
        from .config import load_embedding_config

        config = load_embedding_config()

    if config.provider == "hash":
        return HashEmbeddingModel()
    if config.provider not in REMOTE_PROVIDERS:
        logger.warning(
            "Unknown embedding provider '%s', falling back to hash.", config.provider,
        )
        return HashEmbeddingModel()
    return RemoteEmbeddingProvider(
        provider=config.provider,
        model=config.model,
        api_key=config.api_key,
        endpoint=config.endpoint,
        timeout=config.timeout,
    )


# ===================================================================
# Batched embedding run
# ===================================================================

@dataclass
class EmbeddingRun:
    """Outcome of :func:`embed_entities`.

    Vectors from successful batches stay in the store even when later
    batches fail; ``failed_batches`` lists the 1-based batch numbers
    that did not make it.
    """

    total_entities: int
    embedded: int = 0
    total_batches: int = 0
    failed_batches: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed_batches

    @property
    def partial(self) -> bool:
        return bool(self.failed_batches) and self.embedded > 0


def embed_entities(
    entities: List[CodeEntity],
    graph: Optional["DependencyGraph"],
    provider: EmbeddingProvider,
    store: "VectorStore",
    config: Optional[EmbeddingConfig] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> EmbeddingRun:
    """Embed *entities* batch by batch into *store*.

    Sleeps ``batch_delay`` seconds between batches (never after the last)
    to respect upstream rate limits.  A failing batch is recorded and
    skipped, whatever the provider raised; an authentication failure stops
    the run since every later batch would fail the same way.  ``embedded``
    counts only vectors that reached the store.
    """
    config = config or EmbeddingConfig()
    batch_size = max(config.batch_size, 1)
    total_batches = math.ceil(len(entities) / batch_size)
    run = EmbeddingRun(total_entities=len(entities), total_batches=total_batches)

    for batch_num, start in enumerate(range(0, len(entities), batch_size), start=1):
        batch = entities[start:start + batch_size]
        texts = [prepare_text_for_embedding(entity, graph, config) for entity in batch]
        try:
            vectors = provider.embed_documents(texts)
            if len(vectors) != len(batch):
                raise EmbeddingProviderError(
                    f"Provider returned {len(vectors)} vectors for {len(batch)} inputs"
                )
            items = [
                EmbeddingVector(
                    entity_id=entity.id,
                    kind=entity.kind,
                    file=entity.file,
                    vector=[float(v) for v in vector],
                    text=text,
                )
                for entity, vector, text in zip(batch, vectors, texts)
            ]
            for item in items:
                store.add(item)
                run.embedded += 1
        except (EmbeddingProviderError, DimensionMismatchError) as exc:
            logger.warning("Embedding batch %d/%d failed: %s", batch_num, total_batches, exc)
            run.failed_batches.append(batch_num)
            run.errors.append(str(exc))
            if isinstance(exc, AuthenticationError):
                run.aborted = True
                run.failed_batches.extend(range(batch_num + 1, total_batches + 1))
                break
        except Exception as exc:
            logger.warning(
                "Embedding batch %d/%d failed unexpectedly: %r", batch_num, total_batches, exc,
            )
            run.failed_batches.append(batch_num)
            run.errors.append(repr(exc))

        if on_progress is not None:
            on_progress(min(start + batch_size, len(entities)), len(entities))
        if batch_num < total_batches:
            sleep(config.batch_delay)

    return run


def embed_query(query: str, provider: EmbeddingProvider) -> List[float]:
    """Embed a search query with the same provider used for the index."""
    return provider.embed_documents([query])[0]


# ===================================================================
# Vector math
# ===================================================================

def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine similarity between two vectors.

    Returns a value in ``[-1, 1]``.  Empty, zero-magnitude or
    mismatched vectors return ``0.0``.
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a < 1e-12 or norm_b < 1e-12:
        return 0.0
    return dot / (norm_a * norm_b)


def _l2_normalize(vec: List[float]) -> List[float]:
    """L2-normalise *vec*.  Returns a zero vector unchanged."""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]
