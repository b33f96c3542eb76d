"""tests/test_validator.py"""
import threading

import pytest

from drawscore.data.sequence_store import InMemorySequenceStore, draws_from_rows
from drawscore.models.types import GameSpec, MatchMode, Prediction
from drawscore.utils.errors import InsufficientDataError, InvalidCombinationError
from drawscore.validation.validator import (
    PredictionValidator,
    at_least_probabilities,
    count_matches,
    overall_confidence,
    wilson_interval,
)

PICK3 = GameSpec(name="pick3", position_ranges=((0, 9), (0, 9), (0, 9)))

ROWS_30 = [[i % 10, (i * 3) % 10, (i * 7) % 10] for i in range(30)]
DRAWS_30 = draws_from_rows(ROWS_30)


def constant_predictor(combination, expected_hits=1):
    def predict(train, test_size):
        return [Prediction(combination=combination, expected_hits=expected_hits)]

    return predict


class TestHelpers:
    def test_straight_matches(self):
        assert count_matches((1, 2, 3), (1, 5, 3), MatchMode.STRAIGHT) == 2

    def test_box_matches(self):
        assert count_matches((1, 2, 3), (3, 1, 9), MatchMode.BOX) == 2
        assert count_matches((1, 1, 2), (1, 2, 2), MatchMode.BOX) == 2

    @pytest.mark.parametrize("successes, total", [(0, 10), (10, 10), (3, 7), (1, 1000), (999, 1000)])
    def test_wilson_bounds(self, successes, total):
        ci = wilson_interval(successes, total)
        rate = successes / total
        assert 0.0 <= ci.lower <= rate <= ci.upper <= 1.0

    def test_wilson_empty(self):
        ci = wilson_interval(0, 0)
        assert (ci.lower, ci.upper) == (0.0, 0.0)

    def test_at_least_probabilities_pick3(self):
        probs = at_least_probabilities([0.1, 0.1, 0.1])
        assert probs[0] == pytest.approx(1 - 0.9 ** 3)
        assert probs[2] == pytest.approx(0.001)
        assert probs[0] >= probs[1] >= probs[2]

    def test_overall_confidence_formula(self):
        assert overall_confidence(0.5, 2000, True) == pytest.approx(0.5)
        assert overall_confidence(0.5, 50, False) == pytest.approx(0.5 * 0.05 * 0.5 * 0.5)


class TestValidatePredictions:
    def setup_method(self):
        self.validator = PredictionValidator(DRAWS_30, PICK3)

    def test_empty_predictions_is_invalid(self):
        result = self.validator.validate_predictions([], DRAWS_30)
        assert result.is_valid is False
        assert result.accuracy == 0
        assert result.confidence == 0
        assert result.error

    def test_no_actual_draws_is_invalid(self):
        result = self.validator.validate_predictions([Prediction((1, 2, 3))], [])
        assert result.is_valid is False

    def test_invalid_prediction_raises(self):
        with pytest.raises(InvalidCombinationError):
            self.validator.validate_predictions([Prediction((1, 2))], DRAWS_30)

    def test_perfect_prediction(self):
        actual = draws_from_rows([[4, 5, 6]] * 10)
        result = self.validator.validate_predictions([Prediction((4, 5, 6), expected_hits=3)], actual)
        assert result.is_valid
        assert result.accuracy == 1.0
        assert result.correct_predictions == 10
        assert result.hit_rates.full_match == 1.0
        assert result.significance.is_significant
        assert result.significance.p_value < 0.05

    def test_hit_buckets_are_cumulative(self):
        actual = draws_from_rows([[1, 2, 3], [1, 2, 9], [1, 8, 9], [7, 8, 9]])
        result = self.validator.validate_predictions([Prediction((1, 2, 3))], actual)
        assert result.hit_rates.counts == (3, 2, 1)
        assert result.hit_rates.as_dict() == {"1+": 0.75, "2+": 0.5, "3+": 0.25}
        assert result.accuracy == 0.75
        assert result.total_predictions == 4

    def test_box_mode(self):
        actual = draws_from_rows([[3, 2, 1]])
        straight = self.validator.validate_predictions([Prediction((1, 2, 3), expected_hits=3)], actual)
        box = self.validator.validate_predictions(
            [Prediction((1, 2, 3), expected_hits=3)], actual, mode=MatchMode.BOX
        )
        assert straight.accuracy == 0.0
        assert box.accuracy == 1.0

    def test_box_baseline_by_enumeration(self):
        # six orderings of three distinct digits out of 1000 combinations
        p = self.validator.baseline_probability(Prediction((1, 2, 3), expected_hits=3), MatchMode.BOX)
        assert p == pytest.approx(6 / 1000)

    def test_interval_contains_accuracy(self):
        result = self.validator.validate_predictions([Prediction((0, 0, 0))], DRAWS_30)
        ci = result.confidence_interval
        assert 0 <= ci.lower <= result.accuracy <= ci.upper <= 1


class TestCrossValidate:
    def setup_method(self):
        self.validator = PredictionValidator(InMemorySequenceStore(DRAWS_30), PICK3)

    def test_thirty_draws_five_folds(self):
        report = self.validator.cross_validate(constant_predictor((1, 3, 7)), k=5)
        assert report.k == 5
        assert len(report.folds) == 5
        assert [f.test_size for f in report.folds] == [6] * 5
        assert [f.train_size for f in report.folds] == [24] * 5

    def test_last_fold_absorbs_remainder(self):
        validator = PredictionValidator(draws_from_rows(ROWS_30[:23]), PICK3)
        report = validator.cross_validate(constant_predictor((1, 3, 7)), k=5)
        assert [f.test_size for f in report.folds] == [4, 4, 4, 4, 7]

    def test_folds_are_disjoint_and_contiguous(self):
        report = self.validator.cross_validate(constant_predictor((1, 3, 7)), k=4)
        covered = []
        for fold in report.folds:
            covered.extend(range(fold.test_start, fold.test_end))
        assert covered == list(range(30))

    def test_train_excludes_test_slice(self):
        seen = []

        def predict(train, test_size):
            seen.append((len(train), test_size))
            return [Prediction((1, 2, 3))]

        self.validator.cross_validate(predict, k=3)
        assert seen == [(20, 10)] * 3

    def test_insufficient_data_raises(self):
        validator = PredictionValidator(DRAWS_30[:9], PICK3)
        with pytest.raises(InsufficientDataError) as exc:
            validator.cross_validate(constant_predictor((1, 2, 3)), k=5)
        assert exc.value.required == 10
        assert exc.value.available == 9

    def test_k_below_two_raises(self):
        with pytest.raises(ValueError):
            self.validator.cross_validate(constant_predictor((1, 2, 3)), k=1)

    def test_failing_fold_is_isolated(self):
        calls = {"n": 0}

        def flaky(train, test_size):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("boom")
            return [Prediction((0, 3, 7))]

        report = self.validator.cross_validate(flaky, k=5)
        assert len(report.folds) == 5
        failed = report.folds[1]
        assert failed.is_valid is False
        assert failed.accuracy == 0.0
        assert "boom" in failed.result.error
        assert report.best_fold_index != 1
        assert report.worst_fold_index != 1
        assert report.mean_accuracy == pytest.approx(sum(f.accuracy for f in report.folds) / 5)

    def test_all_folds_failing(self):
        def broken(train, test_size):
            raise ValueError("nope")

        report = self.validator.cross_validate(broken, k=3)
        assert report.best_fold_index is None
        assert report.worst_fold_index is None
        assert report.mean_accuracy == 0.0
        assert report.overall_confidence == 0.0

    def test_ties_resolve_to_lowest_index(self):
        report = self.validator.cross_validate(constant_predictor((9, 9, 9), expected_hits=3), k=5)
        assert all(f.accuracy == 0.0 for f in report.folds)
        assert report.best_fold_index == 0
        assert report.worst_fold_index == 0

    def test_parallel_matches_sequential(self):
        predict = constant_predictor((1, 3, 7))
        sequential = self.validator.cross_validate(predict, k=5)
        parallel = self.validator.cross_validate(predict, k=5, max_workers=3)
        assert [f.accuracy for f in parallel.folds] == [f.accuracy for f in sequential.folds]
        assert [f.fold_index for f in parallel.folds] == list(range(5))
        assert parallel.best_fold_index == sequential.best_fold_index

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        report = self.validator.cross_validate(constant_predictor((1, 2, 3)), k=5, cancel_event=cancel)
        assert report.cancelled is True
        assert report.folds == ()

    def test_cancel_between_folds(self):
        cancel = threading.Event()

        def predict(train, test_size):
            cancel.set()
            return [Prediction((1, 2, 3))]

        report = self.validator.cross_validate(predict, k=5, cancel_event=cancel)
        assert report.cancelled is True
        assert len(report.folds) == 1

    def test_iter_folds_lazy(self):
        folds = self.validator.iter_folds(3)
        index, train, test = next(folds)
        assert index == 0
        assert len(test) == 10
        assert len(train) == 20


class TestABTest:
    def setup_method(self):
        rows = [[4, 5, 6] if i % 2 else [1, 2, 3] for i in range(40)]
        self.draws = draws_from_rows(rows)
        self.validator = PredictionValidator(self.draws, PICK3)
        self.test_draws = self.draws[-20:]

    def test_clear_winner(self):
        good = constant_predictor((1, 2, 3), expected_hits=3)
        bad = constant_predictor((9, 9, 9), expected_hits=3)
        result = self.validator.perform_ab_test(good, bad, self.test_draws)
        assert result.is_significant
        assert result.winner == "A"
        assert result.confidence == pytest.approx(1 - result.p_value)

    def test_same_algorithm_no_winner(self):
        same = constant_predictor((1, 2, 3))
        result = self.validator.perform_ab_test(same, same, self.test_draws)
        assert result.winner is None
        assert result.confidence == 0.0

    def test_training_excludes_test_draws(self):
        sizes = []

        def spy(train, test_size):
            sizes.append((len(train), test_size))
            return [Prediction((1, 2, 3))]

        self.validator.perform_ab_test(spy, spy, self.test_draws)
        assert sizes == [(20, 20), (20, 20)]

    def test_failing_algorithm_no_winner(self):
        def broken(train, test_size):
            raise RuntimeError("down")

        result = self.validator.perform_ab_test(constant_predictor((1, 2, 3)), broken, self.test_draws)
        assert result.result_b.is_valid is False
        assert result.winner is None
        assert result.p_value == 1.0
