"""tests/test_engine.py"""
from unittest.mock import patch

import pytest

from drawscore.cache.result_cache import ResultCache
from drawscore.data.sequence_store import DrawFilter, InMemorySequenceStore, draws_from_rows
from drawscore.engine import AnalysisEngine
from drawscore.models.predictors import composite_predictor, frequency_predictor, recency_scores
from drawscore.models.types import GameSpec, Prediction
from drawscore.utils.config import EngineSettings
from drawscore.utils.errors import InsufficientDataError, InvalidCombinationError

PICK3 = GameSpec(name="pick3", position_ranges=((0, 9), (0, 9), (0, 9)))

HISTORY_PICK3 = [
    [1, 2, 3], [4, 5, 6], [7, 8, 9], [1, 0, 2], [3, 5, 7],
    [9, 9, 1], [1, 4, 4], [6, 2, 0], [8, 8, 8], [1, 3, 5],
    [2, 7, 1], [0, 6, 9], [5, 5, 5], [1, 2, 3], [4, 1, 7],
    [3, 3, 0], [7, 0, 2], [2, 9, 6], [6, 4, 8], [0, 1, 3],
    [5, 8, 4], [9, 6, 1], [8, 7, 2], [2, 0, 9], [4, 3, 6],
]

SETTINGS = EngineSettings(candidate_pool_size=4)


def make_engine(rows=HISTORY_PICK3, cache=None, **kwargs):
    store = InMemorySequenceStore(draws_from_rows(rows))
    return AnalysisEngine(store, PICK3, settings=SETTINGS, cache=cache, **kwargs)


class TestAnalysisEngine:
    def setup_method(self):
        self.engine = make_engine()

    def test_snapshot_taken_at_construction(self):
        assert len(self.engine.snapshot) == 25

    def test_position_stats_cached(self):
        first = self.engine.get_position_stats(0)
        with patch.object(self.engine.position_analyzer, "analyze_position") as mock_analyze:
            second = self.engine.get_position_stats(0)
        mock_analyze.assert_not_called()
        assert first is second
        assert self.engine.get_cache_stats().hits >= 1

    def test_transitions_ranked(self):
        ranked = self.engine.get_transitions(0, 1, top_k=3)
        probs = [t.probability for t in ranked]
        assert probs == sorted(probs, reverse=True)
        assert len(ranked) <= 3

    def test_transitions_reuse_cached_table(self):
        expected = self.engine.transition_model.predict_next(0, 1, 3, self.engine.snapshot)
        self.engine.get_transition_table(0)
        with patch.object(self.engine.transition_model, "build_transitions") as mock_build:
            ranked = self.engine.get_transitions(0, 1, top_k=3)
        mock_build.assert_not_called()
        assert ranked == expected

    def test_correlations_for_every_pair(self):
        assert len(self.engine.get_correlations()) == 3

    def test_score_combination_deterministic(self):
        a = self.engine.score_combination((1, 2, 3))
        self.engine.clear_cache()
        b = self.engine.score_combination((1, 2, 3))
        assert a.total == b.total

    def test_score_matches_scorer(self):
        direct = self.engine.scorer.score_combination((5, 5, 5), self.engine.snapshot)
        assert self.engine.score_combination([5, 5, 5]) == direct

    def test_invalid_combination_raises(self):
        with pytest.raises(InvalidCombinationError):
            self.engine.score_combination((1, 2, 3, 4))

    def test_top_and_due_combinations(self):
        top = self.engine.get_top_combinations(limit=5)
        assert len(top) == 5
        assert top[0].total >= top[-1].total
        due = self.engine.get_due_combinations(limit=5)
        assert len(due) <= 5

    def test_combination_history(self):
        history = self.engine.get_combination_history((1, 2, 3))
        assert history.straight_hits == 2

    def test_cross_validate_uses_default_folds(self):
        report = self.engine.cross_validate(lambda train, n: [Prediction((1, 2, 3))])
        assert report.k == SETTINGS.default_folds
        assert len(report.folds) == SETTINGS.default_folds

    def test_cross_validate_insufficient(self):
        engine = make_engine(rows=HISTORY_PICK3[:5])
        with pytest.raises(InsufficientDataError):
            engine.cross_validate(lambda train, n: [], k=5)

    def test_refresh_picks_up_new_draws(self):
        store = InMemorySequenceStore(draws_from_rows(HISTORY_PICK3))
        engine = AnalysisEngine(store, PICK3, settings=SETTINGS)
        before = engine.score_combination((1, 2, 3))
        engine.store = store.with_draws(draws_from_rows([[1, 2, 3]], start_date="2030-01-01"))
        engine.refresh()
        assert len(engine.snapshot) == 26
        after = engine.get_combination_history((1, 2, 3))
        assert after.straight_hits == 3
        assert engine.score_combination((1, 2, 3)) is not before

    def test_draw_filter_applied(self):
        engine = make_engine(draw_filter=DrawFilter(last_n=10))
        assert len(engine.snapshot) == 10

    def test_shared_cache_between_engines(self):
        cache = ResultCache()
        a = make_engine(cache=cache)
        b = make_engine(cache=cache)
        a.get_position_stats(1)
        with patch.object(b.position_analyzer, "analyze_position") as mock_analyze:
            b.get_position_stats(1)
        mock_analyze.assert_not_called()

    def test_different_snapshots_do_not_collide(self):
        cache = ResultCache()
        a = make_engine(cache=cache)
        b = make_engine(rows=HISTORY_PICK3[:12], cache=cache)
        assert a.get_position_stats(0)[1].total_appearances != b.get_position_stats(0)[1].total_appearances

    def test_cache_management(self):
        self.engine.get_position_stats(0)
        stats = self.engine.get_cache_stats()
        assert stats.size >= 1
        assert "position_stats" in stats.kind_distribution
        report = self.engine.optimize_cache()
        assert report.removed == 0
        self.engine.clear_cache()
        assert self.engine.get_cache_stats().size == 0


class TestPredictors:
    def test_recency_scores_normalized(self):
        scores = recency_scores(PICK3, 0, draws_from_rows(HISTORY_PICK3))
        assert max(scores.values()) == 1.0
        assert min(scores.values()) >= 0.0

    def test_recency_scores_empty_history(self):
        assert set(recency_scores(PICK3, 0, []).values()) == {1.0}

    def test_frequency_predictor_shape(self):
        predict = frequency_predictor(PICK3, top_n=4, expected_hits=2)
        predictions = predict(draws_from_rows(HISTORY_PICK3), 5)
        assert len(predictions) == 4
        assert all(p.expected_hits == 2 for p in predictions)
        assert all(len(p.combination) == 3 for p in predictions)

    def test_composite_predictor_uses_top_combinations(self):
        predict = composite_predictor(PICK3, SETTINGS, top_n=3)
        predictions = predict(draws_from_rows(HISTORY_PICK3), 5)
        top = make_engine().get_top_combinations(limit=3)
        assert [p.combination for p in predictions] == [s.combination for s in top]

    def test_composite_predictor_falls_back_when_short(self):
        predict = composite_predictor(PICK3, SETTINGS, top_n=3)
        predictions = predict(draws_from_rows(HISTORY_PICK3[:5]), 5)
        assert len(predictions) == 3

    def test_ab_composite_vs_frequency_runs(self):
        engine = make_engine(rows=HISTORY_PICK3 * 2)
        result = engine.perform_ab_test(
            composite_predictor(PICK3, SETTINGS, top_n=3),
            frequency_predictor(PICK3, top_n=3),
            list(engine.snapshot.draws[-10:]),
        )
        assert result.result_a.is_valid
        assert result.result_b.is_valid
        assert 0.0 <= result.p_value <= 1.0
