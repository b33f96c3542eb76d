"""tests/test_metrics.py"""
import pytest

from drawscore.models.types import (
    ConfidenceInterval,
    CrossValidationReport,
    FoldResult,
    HitRates,
    Significance,
    SignificanceTest,
    TemporalStability,
    ValidationResult,
)
from drawscore.validation import metrics


def make_report(stability=TemporalStability(), folds=(), cancelled=False):
    return CrossValidationReport(
        k=5,
        folds=folds,
        mean_accuracy=0.0,
        std_accuracy=0.0,
        best_fold_index=None,
        worst_fold_index=None,
        overall_confidence=0.0,
        accuracy_interval=ConfidenceInterval(0.0, 0.0),
        stability=stability,
        cancelled=cancelled,
    )


def make_fold(index, hit_rates, total):
    result = ValidationResult(
        is_valid=True,
        accuracy=hit_rates.rates[0],
        confidence=0.5,
        total_predictions=total,
        correct_predictions=hit_rates.counts[0],
        hit_rates=hit_rates,
        confidence_interval=ConfidenceInterval(0.0, 1.0),
        significance=Significance(p_value=0.5, is_significant=False),
    )
    return FoldResult(index, index * 10, index * 10 + 10, 40, result)


class TestTemporalStability:
    def test_short_series_defaults(self):
        assert metrics.temporal_stability([0.1, 0.2, 0.3]) == TemporalStability(0.0, 1.0, 0.0)

    def test_constant_series_defaults(self):
        assert metrics.temporal_stability([0.2] * 8) == TemporalStability(0.0, 1.0, 0.0)

    def test_monotonic_series_has_trend(self):
        result = metrics.temporal_stability([0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0])
        assert result.trend_p_value < 0.05
        assert result.autocorrelation > 0.9
        assert result.volatility == pytest.approx(0.1)

    def test_alternating_series_negative_autocorrelation(self):
        result = metrics.temporal_stability([0.1, 0.5, 0.1, 0.5, 0.1, 0.5])
        assert result.autocorrelation == pytest.approx(-1.0)
        assert result.volatility == pytest.approx(0.4)
        assert result.trend_p_value > 0.05


class TestAccuracySignificance:
    def test_clearly_above_baseline(self):
        result = metrics.accuracy_significance([0.50, 0.52, 0.48, 0.51, 0.49], baseline=0.27)
        assert result.is_significant
        assert result.effect_size > 0.5

    def test_at_baseline_not_significant(self):
        result = metrics.accuracy_significance([0.25, 0.29, 0.26, 0.28], baseline=0.27)
        assert not result.is_significant

    def test_too_few_points(self):
        assert metrics.accuracy_significance([0.9], baseline=0.1).p_value == 1.0

    def test_constant_series(self):
        result = metrics.accuracy_significance([0.3, 0.3, 0.3], baseline=0.1)
        assert result.p_value == 1.0
        assert result.effect_size == 0.0


class TestHitRateSignificance:
    def test_buckets_labelled(self):
        rates = HitRates(counts=(60, 10, 1), rates=(0.6, 0.1, 0.01))
        result = metrics.hit_rate_significance(rates, 100, [0.271, 0.028, 0.001])
        assert set(result) == {"1+", "2+", "3+"}
        assert result["1+"].is_significant
        assert result["1+"].effect_size == pytest.approx(0.6 - 0.271)

    def test_matching_baseline_not_significant(self):
        rates = HitRates(counts=(27,), rates=(0.27,))
        result = metrics.hit_rate_significance(rates, 100, [0.27])
        assert not result["1+"].is_significant
        assert result["1+"].statistic == pytest.approx(0.0)

    def test_zero_total(self):
        result = metrics.hit_rate_significance(HitRates.empty(2), 0, [0.2, 0.01])
        assert all(r.p_value == 1.0 for r in result.values())


class TestPooledHitRates:
    def test_sums_valid_folds_only(self):
        folds = (
            make_fold(0, HitRates(counts=(4, 1, 0), rates=(0.4, 0.1, 0.0)), 10),
            make_fold(1, HitRates(counts=(6, 2, 1), rates=(0.2, 0.0667, 0.0333)), 30),
            FoldResult(2, 40, 50, 40, ValidationResult.invalid("Fold 3 failed: RuntimeError: boom", 3)),
        )
        rates, total = metrics.pooled_hit_rates(make_report(folds=folds), 3)
        assert total == 40
        assert rates.counts == (10, 3, 1)
        assert rates.rates == pytest.approx((0.25, 0.075, 0.025))

    def test_no_valid_folds(self):
        rates, total = metrics.pooled_hit_rates(make_report(), 3)
        assert total == 0
        assert rates == HitRates.empty(3)

    def test_feeds_recommendations(self):
        folds = (make_fold(0, HitRates(counts=(60, 10, 1), rates=(0.6, 0.1, 0.01)), 100),)
        rates, total = metrics.pooled_hit_rates(make_report(folds=folds), 3)
        hit_tests = metrics.hit_rate_significance(rates, total, [0.271, 0.028, 0.001])
        lines = metrics.recommendations(make_report(folds=folds), SignificanceTest(0.0, 0.5, False), hit_tests)
        assert lines[-1].startswith("Significant hit rates detected for: 1+")


class TestMeanConfidenceInterval:
    def test_empty(self):
        ci = metrics.mean_confidence_interval([])
        assert (ci.lower, ci.upper) == (0.0, 0.0)

    def test_single_value(self):
        ci = metrics.mean_confidence_interval([0.4])
        assert (ci.lower, ci.upper) == (0.4, 0.4)

    def test_contains_mean_and_clipped(self):
        values = [0.1, 0.3, 0.2, 0.25, 0.15]
        ci = metrics.mean_confidence_interval(values, 0.95)
        assert 0.0 <= ci.lower <= 0.2 <= ci.upper <= 1.0
        assert ci.level == 0.95

    def test_wider_at_higher_level(self):
        values = [0.1, 0.3, 0.2, 0.25, 0.15]
        narrow = metrics.mean_confidence_interval(values, 0.80)
        wide = metrics.mean_confidence_interval(values, 0.99)
        assert wide.upper - wide.lower > narrow.upper - narrow.lower


class TestRecommendations:
    def test_not_significant(self):
        lines = metrics.recommendations(make_report(), SignificanceTest(0.0, 0.5, False))
        assert lines[0].startswith("Prediction accuracy is not statistically significant")

    def test_small_effect(self):
        lines = metrics.recommendations(make_report(), SignificanceTest(2.0, 0.01, True, effect_size=0.2))
        assert "small effect size" in lines[0]

    def test_stability_warnings(self):
        report = make_report(stability=TemporalStability(autocorrelation=0.6, trend_p_value=0.5, volatility=0.2))
        lines = metrics.recommendations(report, SignificanceTest(3.0, 0.001, True, effect_size=1.2))
        assert any("autocorrelation" in line for line in lines)
        assert any("volatility" in line for line in lines)

    def test_significant_hit_rates_listed(self):
        hit_tests = {
            "1+": SignificanceTest(10.0, 0.001, True),
            "2+": SignificanceTest(0.1, 0.7, False),
        }
        lines = metrics.recommendations(make_report(), SignificanceTest(0.0, 0.5, False), hit_tests)
        assert lines[-1] == "Significant hit rates detected for: 1+"

    def test_cancelled_run_noted(self):
        lines = metrics.recommendations(make_report(cancelled=True), SignificanceTest(0.0, 0.5, False))
        assert any("cancelled" in line for line in lines)
