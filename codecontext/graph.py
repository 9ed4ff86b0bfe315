"""Call graph over a fixed entity set.

Entities and edges reference each other only through string ids held in
central maps, so the graph is a flat entity store plus keyed edge sets.
Edges come purely from name resolution: every ``calls`` entry of an
entity is matched against the bare names of all entities, and an edge
is added to *every* match except the caller itself.  Name collisions
across unrelated scopes therefore produce extra edges, never missing ones.

The graph is built once and never mutated; any change to the entity set
means building a new graph.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from .models import CodeEntity, ExpandedContext, GraphStats

logger = logging.getLogger(__name__)

TYPE_KINDS = {"interface", "type"}


class DependencyGraph:
    """Id-indexed adjacency maps over a list of :class:`CodeEntity`.

    Attributes:
        entities:  id -> entity.
        name_index: bare name -> ids sharing it (overloads, same-named methods).
        calls:     id -> ids it calls (forward edges).
        called_by: id -> ids calling it (backward edges).
    """

    def __init__(self) -> None:
        self.entities: Dict[str, CodeEntity] = {}
        self.name_index: Dict[str, List[str]] = {}
        self.calls: Dict[str, Set[str]] = {}
        self.called_by: Dict[str, Set[str]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, entities: Iterable[CodeEntity]) -> "DependencyGraph":
        graph = cls()
        for entity in entities:
            if entity.id in graph.entities:
                logger.warning("Duplicate entity id %s ignored", entity.id)
                continue
            graph.entities[entity.id] = entity
            graph.name_index.setdefault(entity.base_name, []).append(entity.id)
            graph.calls[entity.id] = set()
            graph.called_by[entity.id] = set()

        for entity in graph.entities.values():
            for call_name in entity.calls:
                for target_id in graph.name_index.get(call_name, ()):
                    if target_id == entity.id:
                        continue
                    graph.calls[entity.id].add(target_id)
                    graph.called_by[target_id].add(entity.id)

        logger.debug(
            "Built dependency graph: %d entities, %d edges",
            len(graph.entities), graph.edge_count(),
        )
        return graph

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self.entities

    def get(self, entity_id: str) -> Optional[CodeEntity]:
        return self.entities.get(entity_id)

    def edge_count(self) -> int:
        return sum(len(targets) for targets in self.calls.values())

    def dependencies(self, entity_id: str) -> List[CodeEntity]:
        """Entities directly called by *entity_id*."""
        return self._resolve(self.calls.get(entity_id, ()))

    def dependents(self, entity_id: str) -> List[CodeEntity]:
        """Entities that directly call *entity_id*."""
        return self._resolve(self.called_by.get(entity_id, ()))

    def find_by_name(self, name: str) -> List[CodeEntity]:
        """Entities whose bare name matches *name*.

        A qualified name (``Owner.member``) narrows the bare-name matches
        to that exact qualified name.
        """
        base = name.rsplit(".", 1)[-1]
        matches = self._resolve(self.name_index.get(base, ()))
        if "." in name:
            matches = [e for e in matches if e.name == name]
        return matches

    def _resolve(self, ids: Iterable[str]) -> List[CodeEntity]:
        return [self.entities[i] for i in sorted(ids) if i in self.entities]

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def expand(self, seed_ids: Iterable[str], max_depth: int = 2) -> ExpandedContext:
        """Breadth-first expansion from *seed_ids*.

        Callees are followed up to *max_depth* hops.  Callers are followed
        only from the depth-0 seeds: transitive caller expansion explodes
        on densely used utilities.  Each id is bucketed once, and
        interface / type entities always land in ``types``.
        """
        context = ExpandedContext()
        visited: Set[str] = set()
        queue: Deque[Tuple[str, int, str]] = deque(
            (seed_id, 0, "primary") for seed_id in seed_ids
        )

        while queue:
            entity_id, depth, relation = queue.popleft()
            if entity_id in visited:
                continue
            entity = self.entities.get(entity_id)
            if entity is None:
                continue
            visited.add(entity_id)

            if entity.kind in TYPE_KINDS:
                context.types.append(entity)
            elif relation == "primary":
                context.primary.append(entity)
            elif relation == "dependency":
                context.dependencies.append(entity)
            else:
                context.dependents.append(entity)

            if depth >= max_depth:
                continue

            for callee_id in sorted(self.calls.get(entity_id, ())):
                if callee_id not in visited:
                    queue.append((callee_id, depth + 1, "dependency"))

            if depth == 0:
                for caller_id in sorted(self.called_by.get(entity_id, ())):
                    if caller_id not in visited:
                        queue.append((caller_id, depth + 1, "dependent"))

        return context

    def shortest_call_chain(self, from_id: str, to_id: str) -> Optional[List[str]]:
        """Shortest path of ids along forward edges, or ``None`` if unreachable."""
        if from_id not in self.entities or to_id not in self.entities:
            return None
        if from_id == to_id:
            return [from_id]

        parents: Dict[str, str] = {}
        visited = {from_id}
        queue: Deque[str] = deque([from_id])
        while queue:
            current = queue.popleft()
            for callee_id in sorted(self.calls.get(current, ())):
                if callee_id in visited:
                    continue
                parents[callee_id] = current
                if callee_id == to_id:
                    path = [to_id]
                    while path[-1] != from_id:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                visited.add(callee_id)
                queue.append(callee_id)
        return None

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self, top_n: int = 5) -> GraphStats:
        total = len(self.entities)
        edges = self.edge_count()
        incoming = sum(len(callers) for callers in self.called_by.values())

        def _top(edge_map: Dict[str, Set[str]], key: str) -> List[Dict[str, object]]:
            ranked = sorted(
                (i for i in edge_map if edge_map[i]),
                key=lambda i: (-len(edge_map[i]), self.entities[i].name, i),
            )
            return [
                {"id": i, "name": self.entities[i].name, key: len(edge_map[i])}
                for i in ranked[:top_n]
            ]

        return GraphStats(
            total_entities=total,
            total_edges=edges,
            avg_dependencies=edges / total if total else 0.0,
            avg_dependents=incoming / total if total else 0.0,
            most_called=_top(self.called_by, "callers"),
            most_dependencies=_top(self.calls, "callees"),
        )


def build_graph(entities: Iterable[CodeEntity]) -> DependencyGraph:
    """Build a :class:`DependencyGraph` from a finalized entity list."""
    return DependencyGraph.build(entities)
