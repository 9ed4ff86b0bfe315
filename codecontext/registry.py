"""Thread-safe registry of built indexes.

A :class:`IndexRegistry` is created by whoever serves queries and passed
to the code that needs it; there is no module-level instance.  Indexes
are immutable, so replacing one is a single dictionary assignment under
the lock and readers never observe a half-built index.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Dict, List, Optional

from .retriever import CodeIndex

logger = logging.getLogger(__name__)


def generate_index_id(source: str) -> str:
    """Build a readable, unique id such as ``owner-repo-1718000000000``."""
    cleaned = re.sub(r"\.git$", "", source.rstrip("/"))
    parts = [p for p in re.split(r"[/:\\]", cleaned) if p]
    owner = parts[-2] if len(parts) >= 2 else "unknown"
    repo = parts[-1] if parts else "repo"
    return f"{owner}-{repo}-{int(time.time() * 1000)}"


class IndexRegistry:
    """Map of index id to :class:`~codecontext.retriever.CodeIndex`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._indexes: Dict[str, CodeIndex] = {}

    def put(self, index_id: str, index: CodeIndex) -> Optional[CodeIndex]:
        """Store *index* under *index_id*, returning the index it replaced."""
        with self._lock:
            previous = self._indexes.get(index_id)
            self._indexes[index_id] = index
        if previous is not None:
            logger.info("Replaced index %s", index_id)
        return previous

    def get(self, index_id: str) -> Optional[CodeIndex]:
        with self._lock:
            return self._indexes.get(index_id)

    def remove(self, index_id: str) -> bool:
        with self._lock:
            return self._indexes.pop(index_id, None) is not None

    def list(self) -> List[str]:
        with self._lock:
            return sorted(self._indexes)

    def find_by_source(self, name: str) -> Optional[str]:
        """Id of the index built from *name*, if any (most recent wins)."""
        with self._lock:
            matches = [
                (index.created_at, index_id)
                for index_id, index in self._indexes.items()
                if index.name == name
            ]
        if not matches:
            return None
        return max(matches)[1]

    def total_entities(self) -> int:
        with self._lock:
            return sum(len(index.entities) for index in self._indexes.values())

    def clear(self) -> None:
        with self._lock:
            self._indexes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._indexes)

    def __contains__(self, index_id: object) -> bool:
        with self._lock:
            return index_id in self._indexes
