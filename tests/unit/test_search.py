import math
from datetime import timedelta

import pytest

from selfrefer.core import search as search_module
from selfrefer.core.search import (
    FieldWeights,
    SearchEngine,
    SearchOptions,
    bigram_overlap,
    parse_query_id,
    similarity_search,
)


@pytest.fixture
def engine(clock) -> SearchEngine:
    return SearchEngine(clock=clock)


@pytest.fixture
def corpus(make_item):
    return [
        make_item(1, "React Hook Pattern", "useEffect and useState", "javascript"),
        make_item(2, "Redux Pattern", "Redux store setup", "javascript"),
        make_item(3, "Django Middleware", "Request hooks for django views", "python"),
        make_item(4, "Database Migration Plan", "Move tables to the new schema", "python"),
        make_item(5, "Hook Naming", "Prefix every hook with use", "javascript", ("hooks", "naming")),
    ]


# ============================================================================
# Scenarios
# ============================================================================

class TestScenarios:
    def test_keyword_in_title_beats_unrelated_record(self, engine, make_item):
        """A title hit is returned; a record sharing only the category is not."""
        items = [
            make_item(1, "React Hook Pattern", "useEffect and useState", "javascript"),
            make_item(2, "Redux Pattern", "Redux store setup", "javascript"),
        ]

        results = engine.search("hook", items)

        ids = [r.item.id for r in results]
        assert 1 in ids
        assert 2 not in ids

    def test_numeric_query_returns_single_id_match(self, engine, make_item):
        items = [make_item(42, "Anything"), make_item(7, "Contains 42 in the title", "42 42 42")]

        results = engine.search("42", items)

        assert len(results) == 1
        assert results[0].item.id == 42
        assert results[0].score.final == 1.0
        assert results[0].matched_fields == ["id"]
        assert results[0].match_highlights == ["ID: 42"]

    def test_empty_items_returns_empty(self, engine):
        assert engine.search("anything", []) == []
        assert engine.search("1", []) == []

    def test_unrelated_query_scores_below_threshold(self, engine, make_item):
        items = [
            make_item(1, "Apple", "fruit salad recipe"),
            make_item(2, "Banana", "yellow and sweet"),
            make_item(3, "Cherry", "small and red"),
        ]

        assert engine.search("xyz-nonexistent-term", items) == []

    def test_exact_title_ranks_first(self, engine, make_item):
        items = [
            make_item(1, "Other Notes", "we discussed the react hook pattern today"),
            make_item(2, "React Hook Pattern", "custom effects"),
            make_item(3, "Misc", "the React Hook Pattern is used everywhere"),
        ]

        results = engine.search("React Hook Pattern", items)

        assert results[0].item.id == 2
        assert results[0].score.exact_match == 0.95
        assert {r.item.id for r in results[1:]} <= {1, 3}


# ============================================================================
# Ranking properties
# ============================================================================

class TestRankingProperties:
    def test_results_are_deterministic(self, engine, corpus):
        first = engine.search("hook", corpus)
        second = engine.search("hook", corpus)

        assert [(r.item.id, r.score) for r in first] == [(r.item.id, r.score) for r in second]

    @pytest.mark.parametrize("query", ["hook", "pattern", "python", "django views", "migration"])
    def test_scores_are_capped_and_above_threshold(self, engine, corpus, query):
        results = engine.search(query, corpus)

        for result in results:
            assert 0.3 <= result.score.final <= 1.0

    def test_results_sorted_descending(self, engine, corpus):
        finals = [r.score.final for r in engine.search("pattern", corpus)]

        assert finals == sorted(finals, reverse=True)

    def test_max_results_truncates(self, corpus, clock):
        engine = SearchEngine(SearchOptions(max_results=1), clock=clock)

        assert len(engine.search("pattern", corpus)) <= 1

    def test_category_filter_keeps_only_matching_category(self, corpus, clock):
        engine = SearchEngine(SearchOptions(category_filter="python"), clock=clock)

        results = engine.search("hook", corpus)

        assert results
        assert all(r.item.category == "python" for r in results)

    def test_category_filter_skips_items_without_category(self, make_item, clock):
        engine = SearchEngine(SearchOptions(category_filter="python"), clock=clock)

        assert engine.search("hook", [make_item(1, "Hook")]) == []

    def test_equal_scores_prefer_higher_id(self, engine, make_item):
        items = [make_item(3, "Cache Layer", "redis"), make_item(9, "Cache Layer", "redis")]

        results = engine.search("cache layer", items)

        assert [r.item.id for r in results] == [9, 3]
        assert results[0].score.final == results[1].score.final

    def test_min_score_zero_keeps_everything(self, make_item, clock):
        engine = SearchEngine(SearchOptions(min_score=0.0), clock=clock)
        items = [make_item(1, "Alpha"), make_item(2, "Beta")]

        assert len(engine.search("zzz", items)) == 2


# ============================================================================
# ID shortcut
# ============================================================================

class TestIdShortcut:
    def test_leading_integer_is_parsed(self):
        assert parse_query_id("42") == 42
        assert parse_query_id("  7 ") == 7
        assert parse_query_id("12abc") == 12
        assert parse_query_id("abc12") is None
        assert parse_query_id("") is None

    def test_non_positive_ids_are_not_shortcuts(self, engine, make_item):
        assert parse_query_id("0") is None
        assert parse_query_id("-3") is None

        results = engine.search("0", [make_item(0, "Legacy Notes", "unnumbered file")])

        assert results == []

    def test_shortcut_score_breakdown(self, engine, make_item):
        result = engine.try_id_search("5", [make_item(5, "Five", category="misc")])

        assert result is not None
        assert result.score.exact_match == 1.0
        assert result.score.semantic_similarity == 1.0
        assert result.score.keyword_relevance == 1.0
        assert result.score.category_boost == 0.0
        assert result.score.field_boost == 1.0
        assert result.score.recency_score == pytest.approx(0.05)

    def test_shortcut_ignores_category_filter(self, make_item, clock):
        engine = SearchEngine(SearchOptions(category_filter="python"), clock=clock)

        results = engine.search("1", [make_item(1, "JS thing", category="javascript")])

        assert [r.item.id for r in results] == [1]

    def test_unknown_id_falls_back_to_scoring(self, engine, make_item):
        items = [make_item(1, "Release 2024 notes", "what shipped in 2024")]

        results = engine.search("2024", items)

        assert [r.item.id for r in results] == [1]
        assert results[0].matched_fields == ["title", "content"]


# ============================================================================
# Sub-scores
# ============================================================================

class TestSubScores:
    def test_exact_match_levels(self, engine, make_item):
        assert engine.exact_match_score("hook", make_item(1, "Hook")) == 0.95
        assert engine.exact_match_score("python", make_item(1, "X", category="Python")) == 0.8
        assert engine.exact_match_score("hook", make_item(1, "X", "a hook here")) == 0.7
        assert engine.exact_match_score("hook", make_item(1, "X", "nothing")) == 0.0

    def test_semantic_similarity_weights_title(self, engine, make_item):
        assert engine.semantic_similarity("hook", make_item(1, "Hook")) == pytest.approx(0.8)

    def test_semantic_similarity_survives_distance_failure(self, engine, make_item, monkeypatch):
        def boom(a, b):
            raise RuntimeError("distance failed")

        monkeypatch.setattr(search_module, "jaro_winkler", boom)

        assert engine.semantic_similarity("hook", make_item(1, "Hook")) == 0.0

    def test_keyword_relevance_whole_word_in_title(self, engine, make_item):
        item = make_item(1, "Hook")

        # (1.0 * 0.8) / 4 fields, completeness 1/4
        assert engine.keyword_relevance("hook", item) == pytest.approx(0.2 * 1.05)

    def test_keyword_relevance_partial_word(self, engine, make_item):
        item = make_item(1, "Hooks")

        assert engine.keyword_relevance("hook", item) == pytest.approx(0.7 * 0.8 / 4 * 1.05)

    def test_declared_keywords_weigh_most(self, engine, make_item):
        with_keywords = make_item(1, "X", "y", keywords=("hook",))
        in_title = make_item(2, "hook", "y")

        assert engine.keyword_relevance("hook", with_keywords) == pytest.approx(2.5 / 4 * 1.05)
        assert engine.keyword_relevance("hook", with_keywords) > engine.keyword_relevance("hook", in_title)

    def test_keyword_relevance_escapes_regex_characters(self, engine, make_item):
        item = make_item(1, "Using c++ templates")

        assert engine.keyword_relevance("c++", item) > 0

    def test_keyword_relevance_blank_query(self, engine, make_item):
        assert engine.keyword_relevance("   ", make_item(1, "Hook")) == 0.0

    def test_category_boost(self, engine, make_item):
        assert engine.category_boost("python", make_item(1, "X", category="Python")) == 0.2
        assert engine.category_boost("py", make_item(1, "X", category="python")) == 0.1
        assert engine.category_boost("go", make_item(1, "X", category="python")) == 0.0
        assert engine.category_boost("go", make_item(1, "X")) == 0.0

    def test_recency_decays_over_thirty_days(self, engine, now):
        assert engine.recency_score(now) == pytest.approx(0.05)
        assert engine.recency_score(now - timedelta(days=30)) == pytest.approx(0.05 * math.exp(-1))

    def test_future_timestamps_are_capped(self, engine, now, make_item):
        assert engine.recency_score(now + timedelta(days=277)) == pytest.approx(0.05)

        unrelated = make_item(1, "Quarterly Budget", "spreadsheets", last_updated=now + timedelta(days=60))

        assert engine.search("ship", [unrelated]) == []

    def test_recency_weight_is_configurable(self, clock, now):
        engine = SearchEngine(SearchOptions(recency_weight=0.0), clock=clock)

        assert engine.recency_score(now) == 0.0

    def test_field_boost_short_title(self, engine, make_item):
        # (1 - 4/100) * 0.2 + full bigram overlap * 0.1
        assert engine.field_boost("hook", make_item(1, "Hook")) == pytest.approx(0.96 * 0.2 + 0.1)

    def test_field_boost_long_title_floor(self, engine, make_item):
        title = "hook " + "x" * 200

        assert engine.field_boost("hook", make_item(1, title)) == pytest.approx(0.1 * 0.2 + 0.1)

    def test_bigram_overlap(self):
        assert bigram_overlap("hook", "Hook Pattern") == 1.0
        assert bigram_overlap("a", "abc") == 0.0
        assert bigram_overlap("ab", "x") == 0.0
        assert bigram_overlap("abcd", "ab") == pytest.approx(1 / 3)

    def test_combination_multiplier(self, engine, make_item):
        item = make_item(1, "Hook")

        score = engine.score("hook", item)

        base = (
            score.exact_match * 0.4
            + score.semantic_similarity * 0.25
            + score.keyword_relevance * 0.2
            + score.category_boost * 0.1
            + score.recency_score
            + score.field_boost
        )
        assert score.final == pytest.approx(min(1.0, base * 1.1))

    def test_custom_field_weights(self, clock, make_item):
        weights = FieldWeights(title=0.0, content=0.0, category=0.0)
        engine = SearchEngine(SearchOptions(field_weights=weights), clock=clock)

        assert engine.keyword_relevance("hook", make_item(1, "Hook", "hook")) == 0.0


# ============================================================================
# Annotation
# ============================================================================

class TestAnnotation:
    def test_matched_fields(self, make_item):
        item = make_item(1, "React Hook", "a hook here", None)

        assert SearchEngine.matched_fields("hook", item) == ["title", "content"]

    def test_matched_fields_with_category(self, make_item):
        item = make_item(1, "X", "y", "hooks")

        assert SearchEngine.matched_fields("hook", item) == ["category"]

    def test_highlights(self, make_item):
        item = make_item(1, "React Hook", "a hook here")

        assert SearchEngine.highlights("hook", item) == ['Title: "React Hook"', "...a hook here..."]

    def test_highlight_snippet_is_windowed(self, make_item):
        content = "a" * 100 + "needle" + "b" * 100
        item = make_item(1, "Title", content)

        highlights = SearchEngine.highlights("needle", item)

        assert highlights == ["..." + "a" * 50 + "needle" + "b" * 50 + "..."]

    def test_only_first_found_word_gets_snippet(self, make_item):
        item = make_item(1, "Title", "beta comes first then alpha")

        highlights = SearchEngine.highlights("missing alpha beta", item)

        assert len(highlights) == 1
        assert "alpha" in highlights[0]


# ============================================================================
# Simple similarity search
# ============================================================================

class TestSimilaritySearch:
    def test_best_title_first(self, make_item):
        items = [
            make_item(1, "Database Indexes", "btree and hash"),
            make_item(2, "Authentication Flow", "tokens and sessions"),
        ]

        results = similarity_search("authentication", items)

        assert results[0].item.id == 2
        assert results[0].score.final == round(results[0].score.final, 2)

    def test_id_shortcut(self, make_item):
        results = similarity_search("1", [make_item(1, "One"), make_item(2, "1 and more")])

        assert len(results) == 1
        assert results[0].item.id == 1
        assert results[0].score.final == 1.0

    def test_threshold_is_exclusive(self, make_item):
        results = similarity_search("zzzz", [make_item(1, "Apple", "pie")], threshold=0.99)

        assert results == []

    def test_empty_items(self):
        assert similarity_search("anything", []) == []
