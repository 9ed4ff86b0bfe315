"""Tests for the call graph: construction, expansion and queries."""

import random

from codecontext.graph import DependencyGraph, build_graph


def _ids(entities):
    return [e.name for e in entities]


class TestBuild:
    def test_edges_resolve_by_bare_name(self, auth_entities):
        graph = build_graph(auth_entities)
        auth = graph.find_by_name("authenticate")[0]

        assert sorted(_ids(graph.dependencies(auth.id))) == ["findUser", "validateToken"]
        assert _ids(graph.dependents(auth.id)) == ["loginHandler"]

    def test_unresolved_calls_make_no_edges(self, make_entity):
        graph = build_graph([make_entity("main", calls=["console", "fetch"])])
        assert graph.edge_count() == 0

    def test_ambiguous_names_link_to_every_match(self, make_entity):
        caller = make_entity("run", calls=["save"])
        a = make_entity("UserRepo.save", kind="method", file="src/user.ts")
        b = make_entity("OrderRepo.save", kind="method", file="src/order.ts")
        graph = build_graph([caller, a, b])

        assert graph.calls[caller.id] == {a.id, b.id}

    def test_no_self_edges(self, make_entity):
        recursive = make_entity("walk", calls=["walk", "visit"])
        visit = make_entity("visit", calls=["walk"], line=20)
        graph = build_graph([recursive, visit])

        for entity_id, targets in graph.calls.items():
            assert entity_id not in targets
        assert graph.calls[recursive.id] == {visit.id}

    def test_duplicate_ids_keep_first(self, make_entity):
        first = make_entity("dup", doc="first")
        second = make_entity("dup", doc="second")
        graph = DependencyGraph.build([first, second])

        assert len(graph) == 1
        assert graph.get(first.id).doc == "first"

    def test_empty(self):
        graph = build_graph([])
        assert len(graph) == 0
        assert graph.expand([], 2).primary == []
        assert graph.stats().total_entities == 0


class TestExpand:
    def test_depth_one(self, auth_entities):
        graph = build_graph(auth_entities)
        auth = graph.find_by_name("authenticate")[0]
        context = graph.expand([auth.id], max_depth=1)

        assert _ids(context.primary) == ["authenticate"]
        assert sorted(_ids(context.dependencies)) == ["findUser", "validateToken"]
        assert _ids(context.dependents) == ["loginHandler"]

    def test_depth_bound(self, auth_entities):
        graph = build_graph(auth_entities)
        auth = graph.find_by_name("authenticate")[0]

        shallow = graph.expand([auth.id], max_depth=1)
        deep = graph.expand([auth.id], max_depth=2)

        assert "parseJWT" not in _ids(shallow.dependencies)
        assert "query" not in _ids(shallow.dependencies)
        assert {"parseJWT", "query"} <= set(_ids(deep.dependencies))

    def test_depth_zero_returns_seeds_only(self, auth_entities):
        graph = build_graph(auth_entities)
        auth = graph.find_by_name("authenticate")[0]
        context = graph.expand([auth.id], max_depth=0)

        assert _ids(context.primary) == ["authenticate"]
        assert context.dependencies == [] and context.dependents == []

    def test_callers_only_followed_from_seeds(self, make_entity):
        leaf = make_entity("leaf")
        mid = make_entity("mid", calls=["leaf"], line=10)
        top = make_entity("top", calls=["mid"], line=20)
        graph = build_graph([leaf, mid, top])

        context = graph.expand([leaf.id], max_depth=3)
        assert _ids(context.dependents) == ["mid"]

    def test_types_bucket(self, make_entity):
        handler = make_entity("handler", calls=["Config"])
        config = make_entity("Config", kind="interface", line=10)
        graph = build_graph([handler, config])

        context = graph.expand([handler.id], max_depth=1)
        assert _ids(context.types) == ["Config"]
        assert context.dependencies == []
        assert config.id not in context.connected_ids()
        assert config.id in context.connected_ids(include_types=True)

    def test_unknown_seeds_are_ignored(self, auth_entities):
        graph = build_graph(auth_entities)
        assert graph.expand(["missing:id:1"], 2).primary == []

    def test_independent_of_input_order(self, auth_entities):
        shuffled = list(auth_entities)
        random.Random(7).shuffle(shuffled)
        a = build_graph(auth_entities)
        b = build_graph(shuffled)
        seed = a.find_by_name("authenticate")[0].id

        assert a.expand([seed], 2) == b.expand([seed], 2)


class TestQueries:
    def test_find_by_qualified_name(self, make_entity):
        a = make_entity("UserRepo.save", kind="method")
        b = make_entity("OrderRepo.save", kind="method", line=10)
        graph = build_graph([a, b])

        assert len(graph.find_by_name("save")) == 2
        assert graph.find_by_name("OrderRepo.save") == [b]
        assert graph.find_by_name("missing") == []

    def test_shortest_call_chain(self, auth_entities):
        graph = build_graph(auth_entities)
        handler = graph.find_by_name("loginHandler")[0]
        query = graph.find_by_name("query")[0]

        chain = graph.shortest_call_chain(handler.id, query.id)
        assert [graph.get(i).name for i in chain] == [
            "loginHandler", "authenticate", "findUser", "query",
        ]
        assert graph.shortest_call_chain(query.id, handler.id) is None
        assert graph.shortest_call_chain(handler.id, handler.id) == [handler.id]

    def test_stats(self, auth_entities):
        stats = build_graph(auth_entities).stats()

        assert stats.total_entities == 9
        assert stats.total_edges == 6
        assert stats.most_called[0]["callers"] == 1
        assert stats.most_dependencies[0]["name"] == "authenticate"
        assert stats.most_dependencies[0]["callees"] == 2
