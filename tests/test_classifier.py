"""Tests for query classification and strategy selection."""

import pytest

from codecontext.classifier import (
    CATEGORY_PARAMS,
    classify,
    extract_targets,
    find_pattern_matches,
    strategy_for,
)
from codecontext.models import QUERY_TYPES

CASES = [
    # simple
    ("what does login do", "simple"),
    ("how does authentication work", "simple"),
    ("explain the Router", "simple"),
    ("what is UserService", "simple"),
    ("show me the config", "simple"),
    ("find the main function", "simple"),
    ("where is handleSubmit defined", "simple"),
    # multi-hop
    ("how does login connect to the database", "multi-hop"),
    ("trace the flow from input to output", "multi-hop"),
    ("what happens after user clicks submit", "multi-hop"),
    ("how does data flow through the app", "multi-hop"),
    ("how does authentication eventually reach the database", "multi-hop"),
    ("what triggers the save function", "multi-hop"),
    ("trace from API call to database write", "multi-hop"),
    # architectural
    ("what's the overall architecture", "architectural"),
    ("explain the main components", "architectural"),
    ("how is the codebase organized", "architectural"),
    ("give me a high level overview", "architectural"),
    ("what are the entry points", "architectural"),
    ("describe the module structure", "architectural"),
    ("explain the design pattern used", "architectural"),
    # comparative
    ("difference between login and signup", "comparative"),
    ("compare UserService and AuthService", "comparative"),
    ("how is login different from register", "comparative"),
    ("LoginForm vs SignupForm", "comparative"),
    ("what are the similarities between read and write", "comparative"),
    # debugging
    ("why might authentication fail", "debugging"),
    ("what could cause a null error here", "debugging"),
    ("debug the token validation", "debugging"),
    ("why is login not working", "debugging"),
    ("what happens if the API throws an exception", "debugging"),
    ("edge cases in the validator", "debugging"),
    ("handleError function bug", "debugging"),
    # usage
    ("how do I use the login function", "usage"),
    ("what parameters does fetchUser take", "usage"),
    ("show me an example of calling the API", "usage"),
    ("how to call the authenticate method", "usage"),
    ("usage of the Router class", "usage"),
    ("what arguments does createUser take", "usage"),
]


class TestClassify:
    @pytest.mark.parametrize("query,expected", CASES)
    def test_category(self, query, expected):
        assert classify(query).query_type == expected

    @pytest.mark.parametrize("query,expected", CASES)
    def test_depth_and_pool_follow_category(self, query, expected):
        analysis = classify(query)
        assert (analysis.depth, analysis.top_k) == CATEGORY_PARAMS[expected]

    def test_authentication_question_is_never_comparative(self):
        analysis = classify("how does authentication work")
        assert analysis.query_type in ("simple", "architectural")
        assert analysis.query_type != "comparative"

    def test_comparative_needs_two_targets(self):
        # "compare" fires, but there is only one target
        assert classify("compare login").query_type != "comparative"

    def test_word_boundaries(self):
        # "authenticate" contains "then" but must not trigger multi-hop
        assert classify("what does authenticate do").query_type == "simple"

    def test_default_when_nothing_matches(self):
        analysis = classify("tokens")
        assert analysis.query_type == "simple"
        assert analysis.confidence == pytest.approx(0.6)
        assert analysis.keywords == []
        assert "defaulting to simple" in analysis.reason

    def test_reason_mentions_pattern(self):
        analysis = classify("compare UserService and AuthService")
        assert analysis.reason.startswith('Comparative pattern "compare" with')
        assert "UserService" in analysis.reason

    @pytest.mark.parametrize("query,_", CASES)
    def test_confidence_in_range(self, query, _):
        assert 0.1 <= classify(query).confidence <= 1.0

    def test_comparative_confidence(self):
        assert classify("compare UserService and AuthService").confidence == pytest.approx(0.8)

    def test_empty_query(self):
        analysis = classify("")
        assert analysis.query_type == "simple"
        assert analysis.targets == []


class TestTargets:
    def test_lowercase_words(self):
        assert extract_targets("how does login connect to database") == ["login", "database"]

    def test_pascal_case(self):
        targets = extract_targets("compare UserService and AuthService")
        assert "UserService" in targets and "AuthService" in targets

    def test_quoted(self):
        assert extract_targets('what does "fetchUser" do') == ["fetchUser"]

    def test_dedup_case_insensitive_and_capped(self):
        targets = extract_targets("Router router alpha beta gamma delta epsilon")
        assert [t.lower() for t in targets].count("router") == 1
        assert len(targets) == 5


def test_find_pattern_matches_respects_boundaries():
    assert find_pattern_matches("authenticate the user", ["then"]) == []
    assert find_pattern_matches("login then save", ["then"]) == ["then"]
    assert find_pattern_matches("show me the flowchart", ["flow"]) == []


class TestStrategy:
    def test_all_categories_have_a_strategy(self):
        for query, expected in CASES:
            strategy = strategy_for(classify(query))
            assert strategy.top_k == CATEGORY_PARAMS[expected][1]
        assert set(CATEGORY_PARAMS) == set(QUERY_TYPES)

    def test_simple(self):
        strategy = strategy_for(classify("what does login do"))
        assert strategy.graph_depth == 1
        assert strategy.min_score == pytest.approx(0.40)
        assert strategy.include_callees and not strategy.include_callers

    def test_architectural(self):
        strategy = strategy_for(classify("what's the overall architecture"))
        assert strategy.boost_types and strategy.boost_entry_points
        assert strategy.include_callers
        assert strategy.keyword_boost == pytest.approx(0.1)
        assert strategy.min_score == pytest.approx(0.25)

    def test_multi_hop(self):
        strategy = strategy_for(classify("trace the flow from input to output"))
        assert strategy.graph_depth == 3
        assert strategy.include_callers
        assert strategy.min_score == pytest.approx(0.30)

    def test_debugging(self):
        strategy = strategy_for(classify("why might authentication fail"))
        assert strategy.keyword_boost == pytest.approx(0.3)
        assert strategy.min_score == pytest.approx(0.35)
