"""
src/drawscore/validation/metrics.py
Statistics over a series of validation accuracies: stability over time,
significance against a baseline, interval estimates and plain-text advice.
"""
from __future__ import annotations

import math
from collections import Counter
from typing import Sequence

import numpy as np
from scipy import stats

from drawscore.models.types import (
    ConfidenceInterval,
    CrossValidationReport,
    HitRates,
    SignificanceTest,
    TemporalStability,
)

MIN_STABILITY_POINTS = 5
HIGH_AUTOCORRELATION = 0.3
HIGH_VOLATILITY = 0.1
SMALL_EFFECT = 0.5


def _mann_kendall_p(values: np.ndarray) -> float:
    n = len(values)
    s = 0.0
    for i in range(n - 1):
        s += np.sign(values[i + 1:] - values[i]).sum()
    ties = Counter(values.tolist()).values()
    var_s = (n * (n - 1) * (2 * n + 5) - sum(t * (t - 1) * (2 * t + 5) for t in ties)) / 18.0
    if var_s <= 0 or s == 0:
        return 1.0
    z = (s - 1) / math.sqrt(var_s) if s > 0 else (s + 1) / math.sqrt(var_s)
    return float(2 * stats.norm.sf(abs(z)))


def temporal_stability(values: Sequence[float]) -> TemporalStability:
    """
    Lag-1 autocorrelation, Mann-Kendall trend p-value and volatility (RMS of
    successive differences) of an ordered accuracy series.
    """
    arr = np.asarray(values, dtype=float)
    if len(arr) < MIN_STABILITY_POINTS or arr.var() == 0:
        return TemporalStability()

    lagged, leading = arr[:-1], arr[1:]
    if lagged.std() == 0 or leading.std() == 0:
        autocorrelation = 0.0
    else:
        autocorrelation = float(np.corrcoef(lagged, leading)[0, 1])
        if np.isnan(autocorrelation):
            autocorrelation = 0.0

    volatility = float(np.sqrt(np.mean(np.diff(arr) ** 2)))
    return TemporalStability(
        autocorrelation=autocorrelation,
        trend_p_value=_mann_kendall_p(arr),
        volatility=volatility,
    )


def accuracy_significance(
    accuracies: Sequence[float], baseline: float, confidence_level: float = 0.95
) -> SignificanceTest:
    """One-sample t-test of accuracies against baseline, with Cohen's d as effect size."""
    arr = np.asarray(accuracies, dtype=float)
    if len(arr) < 2:
        return SignificanceTest(statistic=0.0, p_value=1.0, is_significant=False)

    sd = arr.std(ddof=1)
    if sd == 0:
        # Constant series: the test is undefined, report no evidence either way
        return SignificanceTest(statistic=0.0, p_value=1.0, is_significant=False)

    result = stats.ttest_1samp(arr, baseline)
    statistic = float(result.statistic)
    p_value = float(result.pvalue)
    if np.isnan(p_value):
        return SignificanceTest(statistic=0.0, p_value=1.0, is_significant=False)
    return SignificanceTest(
        statistic=statistic,
        p_value=p_value,
        is_significant=p_value < 1 - confidence_level,
        effect_size=float((arr.mean() - baseline) / sd),
    )


def hit_rate_significance(
    hit_rates: HitRates,
    total: int,
    baselines: Sequence[float],
    confidence_level: float = 0.95,
) -> dict[str, SignificanceTest]:
    """
    Chi-square goodness of fit per hit bucket: observed "at least h matches"
    count vs. total * baseline[h-1], one degree of freedom each.
    """
    results: dict[str, SignificanceTest] = {}
    for i, (observed, p) in enumerate(zip(hit_rates.counts, baselines)):
        label = f"{i + 1}+"
        expected = total * p
        if total <= 0 or expected <= 0 or expected >= total:
            results[label] = SignificanceTest(statistic=0.0, p_value=1.0, is_significant=False)
            continue
        chi = (observed - expected) ** 2 / expected
        chi += ((total - observed) - (total - expected)) ** 2 / (total - expected)
        p_value = float(stats.chi2.sf(chi, df=1))
        results[label] = SignificanceTest(
            statistic=float(chi),
            p_value=p_value,
            is_significant=p_value < 1 - confidence_level,
            effect_size=observed / total - p,
        )
    return results


def pooled_hit_rates(report: CrossValidationReport, arity: int) -> tuple[HitRates, int]:
    """Hit counts summed over the valid folds, with the comparison total."""
    valid = [f.result for f in report.folds if f.is_valid]
    total = sum(r.total_predictions for r in valid)
    if total <= 0:
        return HitRates.empty(arity), 0
    counts = tuple(sum(r.hit_rates.counts[i] for r in valid) for i in range(arity))
    return HitRates(counts=counts, rates=tuple(c / total for c in counts)), total


def mean_confidence_interval(values: Sequence[float], confidence_level: float = 0.95) -> ConfidenceInterval:
    """Student-t interval for the mean of values, clipped to [0, 1]."""
    arr = np.asarray(values, dtype=float)
    if len(arr) == 0:
        return ConfidenceInterval(0.0, 0.0, confidence_level)
    mean = float(arr.mean())
    if len(arr) == 1 or arr.std() == 0:
        return ConfidenceInterval(mean, mean, confidence_level)
    sem = arr.std(ddof=1) / math.sqrt(len(arr))
    half = float(sem * stats.t.ppf((1 + confidence_level) / 2, len(arr) - 1))
    return ConfidenceInterval(
        lower=max(0.0, mean - half),
        upper=min(1.0, mean + half),
        level=confidence_level,
    )


def recommendations(
    report: CrossValidationReport,
    significance: SignificanceTest,
    hit_tests: dict[str, SignificanceTest] | None = None,
) -> list[str]:
    lines: list[str] = []
    if not significance.is_significant:
        lines.append(
            "Prediction accuracy is not statistically significant. Consider refining the prediction algorithm."
        )
    elif significance.effect_size < SMALL_EFFECT:
        lines.append("Prediction accuracy shows small effect size. Look for ways to improve prediction quality.")
    else:
        lines.append(
            "Prediction accuracy is statistically significant with good effect size. Continue with current approach."
        )

    if abs(report.stability.autocorrelation) > HIGH_AUTOCORRELATION:
        lines.append("High autocorrelation detected. Predictions may be influenced by recent trends.")
    if report.stability.volatility > HIGH_VOLATILITY:
        lines.append("High prediction volatility detected. Consider stabilizing the prediction algorithm.")

    invalid = sum(1 for f in report.folds if not f.is_valid)
    if invalid:
        lines.append(f"{invalid} of {len(report.folds)} folds failed. Check the prediction function's errors.")
    if report.cancelled:
        lines.append("Run was cancelled; figures cover completed folds only.")

    significant = [label for label, t in (hit_tests or {}).items() if t.is_significant]
    if significant:
        lines.append(f"Significant hit rates detected for: {', '.join(significant)}")
    return lines
