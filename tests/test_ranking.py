"""Tests for keyword and semantic fusion."""

import random

import pytest

from codecontext.graph import build_graph
from codecontext.models import RankedResult, SearchStrategy
from codecontext.ranking import (
    FusionOptions,
    add_dependency_context,
    deduplicate_results,
    extract_keywords,
    fuse,
    is_generic_name,
    keyword_fusion,
    rank_entities,
    semantic_fusion,
)

SEMANTIC_SCORES = {
    "authenticate": 0.85,
    "validateToken": 0.72,
    "loginHandler": 0.68,
    "parseJWT": 0.55,
    "get": 0.52,
    "fetchUsers": 0.45,
}


@pytest.fixture
def semantic_entities(make_entity):
    return [
        make_entity("authenticate", calls=["validateToken"], line=1),
        make_entity("validateToken", calls=["parseJWT"], line=10),
        make_entity("parseJWT", line=20),
        make_entity("loginHandler", calls=["authenticate"], line=30),
        make_entity("get", line=40),
        make_entity("fetchUsers", line=50),
    ]


def _scores(entities):
    return {e.id: SEMANTIC_SCORES[e.name] for e in entities}


def _names(results):
    return [r.entity.name for r in results]


# ===================================================================
# Keyword fusion
# ===================================================================

class TestRankEntities:
    def test_match_categories(self, make_entity):
        entities = [
            make_entity("login", line=1),
            make_entity("loginUser", line=10),
            make_entity("submit", line=20, signature="submit(login: Credentials)"),
            make_entity("session", line=30, doc="Creates a login session"),
            make_entity("render", line=40, source="function render() { login(); }"),
            make_entity("unrelated", line=50),
        ]
        results = rank_entities("login", entities)

        assert [(r.entity.name, r.match_type, r.score) for r in results] == [
            ("login", "exact_name", 100),
            ("loginUser", "substring_name", 80),
            ("submit", "signature_match", 60),
            ("session", "docstring_match", 50),
            ("render", "code_match", 30),
        ]

    def test_method_matches_on_bare_name(self, make_entity):
        results = rank_entities("save", [make_entity("UserRepo.save", kind="method")])
        assert results[0].match_type == "exact_name"

    def test_targets_count_as_exact(self, make_entity):
        entities = [make_entity("fetchUser"), make_entity("other", line=5)]
        results = rank_entities("how does fetchUser work", entities, targets=["fetchUser"])
        assert results[0].match_type == "exact_name"

    def test_empty_query(self, make_entity):
        assert rank_entities("   ", [make_entity("a")]) == []


class TestKeywordFusion:
    def test_dependency_context(self, auth_entities):
        graph = build_graph(auth_entities)
        results = keyword_fusion("authenticate", auth_entities, graph)
        by_name = {r.entity.name: r for r in results}

        assert results[0].entity.name == "authenticate"
        assert by_name["validateToken"].match_type == "dependency"
        assert by_name["validateToken"].reason == "Called by authenticate"
        assert by_name["loginHandler"].match_type == "code_match"

    def test_callers_are_added_with_dependent_score(self, make_entity):
        target = make_entity("computeTotal", line=1)
        caller = make_entity("checkout", calls=["computeTotal"], line=10, source="function checkout() {}")
        graph = build_graph([target, caller])
        results = add_dependency_context(rank_entities("computeTotal", [target]), graph)

        assert [(r.entity.name, r.score, r.reason) for r in results] == [
            ("computeTotal", 100, "Exact match on function name"),
            ("checkout", 20, "Calls computeTotal"),
        ]

    def test_strategy_can_disable_callers(self, make_entity):
        target = make_entity("computeTotal", line=1)
        caller = make_entity("checkout", calls=["computeTotal"], line=10, source="function checkout() {}")
        graph = build_graph([target, caller])
        strategy = SearchStrategy(graph_depth=1, top_k=10, include_callers=False)

        results = keyword_fusion("computeTotal", [target, caller], graph, strategy=strategy)
        assert _names(results) == ["computeTotal"]

    def test_no_matches(self, auth_entities):
        assert keyword_fusion("zzz", auth_entities, build_graph(auth_entities)) == []


def test_deduplicate_keeps_best_score(make_entity):
    entity = make_entity("a")
    other = make_entity("b", line=5)
    results = deduplicate_results([
        RankedResult(entity, 25, "dep", "dependency"),
        RankedResult(entity, 80, "sub", "substring_name"),
        RankedResult(other, 80, "sub", "substring_name"),
    ])
    assert [(r.entity.name, r.score) for r in results] == [("a", 80), ("b", 80)]


# ===================================================================
# Semantic fusion
# ===================================================================

class TestSemanticFusion:
    def test_generic_and_low_scores_are_excluded(self, semantic_entities):
        graph = build_graph(semantic_entities)
        options = FusionOptions(top_k=5, min_score=0.5)
        results = semantic_fusion(
            "how does authentication work", semantic_entities, graph,
            _scores(semantic_entities), options,
        )

        assert _names(results) == ["authenticate", "validateToken", "loginHandler", "parseJWT"]
        assert [r.score for r in results] == pytest.approx([0.85, 0.72, 0.68, 0.55])
        assert all(r.match_type == "semantic" for r in results)
        assert results[0].reason == "Semantic similarity: 85.0%"

    def test_generic_name_with_high_score_survives(self, make_entity):
        entity = make_entity("get")
        results = semantic_fusion("fetch a value", [entity], build_graph([entity]), {entity.id: 0.71})
        assert _names(results) == ["get"]

    def test_keyword_boost(self, make_entity):
        entities = [make_entity("loginForm", line=1), make_entity("chart", line=10)]
        scores = {entities[0].id: 0.40, entities[1].id: 0.55}
        results = semantic_fusion("login page", entities, build_graph(entities), scores)

        assert _names(results) == ["loginForm", "chart"]
        boosted = next(r for r in results if r.entity.name == "loginForm")
        assert boosted.score == pytest.approx(0.60)
        assert boosted.match_type == "keyword"
        assert boosted.reason == "Semantic similarity: 40.0% (+0.20 keyword boost)"

    def test_synonyms_expand_keywords(self):
        keywords = extract_keywords("auth flow")
        assert "login" in keywords and "token" in keywords
        assert "flow" in keywords

    def test_graph_connected_candidates_beyond_rank(self, make_entity):
        seed = make_entity("renderPage", calls=["helperZ"], line=1)
        fillers = [make_entity(f"filler{i}", line=10 + i) for i in range(6)]
        helper = make_entity("helperZ", line=40)
        entities = [seed, *fillers, helper]
        scores = {seed.id: 0.9, helper.id: 0.3}
        scores.update({f.id: 0.6 for f in fillers})

        results = semantic_fusion("xyz", entities, build_graph(entities), scores, FusionOptions(top_k=10))
        by_name = {r.entity.name: r for r in results}

        assert "helperZ" in by_name
        assert by_name["helperZ"].match_type == "graph"
        # rank >= 5, not connected, score below 0.75
        assert "filler5" not in by_name

    def test_empty_inputs(self, semantic_entities):
        graph = build_graph(semantic_entities)
        assert semantic_fusion("", semantic_entities, graph, _scores(semantic_entities)) == []
        assert semantic_fusion("auth", [], build_graph([]), {}) == []


@pytest.mark.parametrize("name,generic", [
    ("get", True), ("Cache.get", True), ("handle", True), ("getUser", False), ("init", True),
])
def test_is_generic_name(name, generic):
    assert is_generic_name(name) is generic


# ===================================================================
# Determinism
# ===================================================================

class TestDeterminism:
    def test_fuse_semantic_ignores_input_order(self, semantic_entities):
        strategy = SearchStrategy(graph_depth=1, top_k=10, min_score=0.3)
        scores = _scores(semantic_entities)
        expected = fuse("auth", semantic_entities, build_graph(semantic_entities), scores, strategy)

        rng = random.Random(42)
        for _ in range(10):
            shuffled = list(semantic_entities)
            rng.shuffle(shuffled)
            got = fuse("auth", shuffled, build_graph(shuffled), scores, strategy)
            assert got == expected

    def test_fuse_keyword_ignores_input_order(self, auth_entities):
        strategy = SearchStrategy(graph_depth=1, top_k=10, include_callers=True)
        expected = fuse("user", auth_entities, build_graph(auth_entities), None, strategy)
        assert expected

        rng = random.Random(3)
        for _ in range(10):
            shuffled = list(auth_entities)
            rng.shuffle(shuffled)
            assert fuse("user", shuffled, build_graph(shuffled), None, strategy) == expected

    def test_ties_sort_by_name(self, make_entity):
        entities = [make_entity("zeta", line=1), make_entity("alpha", line=2)]
        scores = {e.id: 0.8 for e in entities}
        results = semantic_fusion("q", entities, build_graph(entities), scores)
        assert _names(results) == ["alpha", "zeta"]


def test_fusion_options_from_strategy():
    strategy = SearchStrategy(graph_depth=3, top_k=40, min_score=0.3, keyword_boost=0.1, boost_types=True)
    options = FusionOptions.from_strategy(strategy, FusionOptions(high_confidence=0.9))

    assert options.top_k == 40
    assert options.candidate_pool == 40
    assert options.graph_depth == 3
    assert options.min_score == 0.3
    assert options.keyword_boost == 0.1
    assert options.high_confidence == 0.9
    assert options.include_types is True


def test_pinned_fields_win_over_strategy():
    strategy = SearchStrategy(graph_depth=3, top_k=40, min_score=0.3, keyword_boost=0.1, boost_types=True)
    base = FusionOptions(
        graph_depth=0, min_score=0.6, candidate_pool=12,
        pinned=frozenset({"graph_depth", "min_score", "candidate_pool"}),
    )
    options = FusionOptions.from_strategy(strategy, base)

    assert options.graph_depth == 0
    assert options.min_score == 0.6
    assert options.candidate_pool == 12
    assert options.top_k == 40
    assert options.keyword_boost == 0.1
    assert options.pinned == base.pinned
