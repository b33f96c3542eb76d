"""
src/drawscore/validation/validator.py
Backtests prediction functions against held-out draws.

  validate_predictions  score one batch of predictions against actual draws
  cross_validate        k contiguous folds, train on the rest, test on the fold
  perform_ab_test       two predictors on the same test draws, two-proportion z-test
"""
from __future__ import annotations

import itertools
import math
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Iterator

import numpy as np
from scipy import stats

from drawscore.models.types import (
    ABTestResult,
    ConfidenceInterval,
    CrossValidationReport,
    Draw,
    FoldResult,
    GameSpec,
    HitRates,
    MatchMode,
    Prediction,
    Significance,
    ValidationResult,
)
from drawscore.utils.errors import FoldExecutionError, InsufficientDataError
from drawscore.utils.logger import get_logger
from drawscore.validation import metrics

log = get_logger("validation")

PredictFn = Callable[[list[Draw], int], Iterable[Prediction]]

BOX_ENUMERATION_LIMIT = 20_000
AB_SIGNIFICANCE = 0.05


def count_matches(predicted: tuple[int, ...], actual: tuple[int, ...], mode: MatchMode) -> int:
    if mode is MatchMode.BOX:
        return sum((Counter(predicted) & Counter(actual)).values())
    return sum(1 for p, a in zip(predicted, actual) if p == a)


def wilson_interval(successes: int, total: int, confidence_level: float = 0.95) -> ConfidenceInterval:
    """Wilson score interval, clamped so lower <= observed rate <= upper."""
    if total <= 0:
        return ConfidenceInterval(0.0, 0.0, confidence_level)
    p = successes / total
    z = float(stats.norm.ppf(1 - (1 - confidence_level) / 2))
    z2 = z * z
    denom = 1 + z2 / total
    center = (p + z2 / (2 * total)) / denom
    half = z * math.sqrt(p * (1 - p) / total + z2 / (4 * total * total)) / denom
    lower = max(0.0, min(center - half, p))
    upper = min(1.0, max(center + half, p))
    return ConfidenceInterval(lower=lower, upper=upper, level=confidence_level)


def at_least_probabilities(match_probs: list[float]) -> list[float]:
    """
    Poisson-binomial tail: result[h-1] = P(at least h of the independent
    per-position matches occur).
    """
    dist = [1.0]
    for p in match_probs:
        nxt = [0.0] * (len(dist) + 1)
        for k, mass in enumerate(dist):
            nxt[k] += mass * (1 - p)
            nxt[k + 1] += mass * p
        dist = nxt
    return [sum(dist[h:]) for h in range(1, len(dist))]


def overall_confidence(accuracy: float, total: int, significant: bool) -> float:
    sample_factor = min(total / 1000, 1.0)
    significance_factor = 1.0 if significant else 0.5
    size_factor = min(1.0, max(0.1, total / 100))
    return min(1.0, max(0.0, accuracy * sample_factor * significance_factor * size_factor))


class PredictionValidator:
    """
    Validates predictions against the draw history it was built with.
    Draws are held sorted ascending by date; nothing here mutates them.
    """

    def __init__(
        self,
        draws,
        game: GameSpec,
        confidence_level: float = 0.95,
        min_draws_per_fold: int = 2,
        match_mode: MatchMode = MatchMode.STRAIGHT,
    ):
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
        source = draws.get_draws() if hasattr(draws, "get_draws") else draws
        self.draws: list[Draw] = sorted(source, key=lambda d: d.date)
        self.game = game
        self.confidence_level = confidence_level
        self.min_draws_per_fold = min_draws_per_fold
        self.match_mode = match_mode
        self._box_baselines: dict[tuple[tuple[int, ...], int], float] = {}

    # ── Random-chance baseline ────────────────────────────────────

    def straight_hit_probabilities(self) -> list[float]:
        """P(at least h positional matches) for a uniformly random combination, h = 1..arity."""
        return at_least_probabilities([1 / self.game.range_size(p) for p in self.game.positions])

    def _box_probability(self, combination: tuple[int, ...], hits: int) -> float:
        key = (combination, hits)
        if key not in self._box_baselines:
            ranges = [self.game.value_range(p) for p in self.game.positions]
            matched = sum(
                1
                for candidate in itertools.product(*ranges)
                if count_matches(combination, candidate, MatchMode.BOX) >= hits
            )
            self._box_baselines[key] = matched / self.game.combination_space()
        return self._box_baselines[key]

    def baseline_probability(self, prediction: Prediction, mode: MatchMode | None = None) -> float:
        mode = mode or self.match_mode
        hits = self._required_hits(prediction)
        if mode is MatchMode.BOX and self.game.combination_space() <= BOX_ENUMERATION_LIMIT:
            return self._box_probability(prediction.combination, hits)
        return self.straight_hit_probabilities()[hits - 1]

    def _required_hits(self, prediction: Prediction) -> int:
        return min(self.game.arity, max(1, int(prediction.expected_hits)))

    # ── Single batch ──────────────────────────────────────────────

    def validate_predictions(
        self,
        predictions: Iterable[Prediction],
        actual_draws: Iterable[Draw],
        mode: MatchMode | None = None,
    ) -> ValidationResult:
        """
        Compare every prediction with every actual draw. Accuracy is the share of
        (prediction, draw) comparisons reaching the prediction's expected_hits;
        total_predictions counts those comparisons.
        """
        mode = mode or self.match_mode
        predictions = list(predictions)
        actual = list(actual_draws)
        if not predictions:
            return ValidationResult.invalid("No predictions to validate", self.game.arity, self.confidence_level)
        if not actual:
            return ValidationResult.invalid("No draws to validate against", self.game.arity, self.confidence_level)

        for pred in predictions:
            self.game.validate_combination(pred.combination)

        arity = self.game.arity
        bucket_counts = [0] * arity
        correct = 0
        for pred in predictions:
            required = self._required_hits(pred)
            for draw in actual:
                matches = count_matches(pred.combination, draw.values, mode)
                for h in range(min(matches, arity)):
                    bucket_counts[h] += 1
                if matches >= required:
                    correct += 1

        total = len(predictions) * len(actual)
        accuracy = correct / total
        baseline = float(np.mean([self.baseline_probability(p, mode) for p in predictions]))
        p_value = float(stats.binomtest(correct, total, baseline).pvalue)
        significant = p_value < 1 - self.confidence_level

        return ValidationResult(
            is_valid=True,
            accuracy=accuracy,
            confidence=overall_confidence(accuracy, total, significant),
            total_predictions=total,
            correct_predictions=correct,
            hit_rates=HitRates(
                counts=tuple(bucket_counts),
                rates=tuple(c / total for c in bucket_counts),
            ),
            confidence_interval=wilson_interval(correct, total, self.confidence_level),
            significance=Significance(p_value=p_value, is_significant=significant, baseline=baseline),
        )

    # ── Cross-validation ──────────────────────────────────────────

    def fold_bounds(self, k: int) -> list[tuple[int, int]]:
        """Contiguous [start, end) test slices; the last one absorbs the remainder."""
        n = len(self.draws)
        size = n // k
        return [(i * size, n if i == k - 1 else (i + 1) * size) for i in range(k)]

    def _check_folds(self, k: int) -> None:
        if k < 2:
            raise ValueError(f"k must be at least 2, got {k}")
        required = k * self.min_draws_per_fold
        if len(self.draws) < required:
            raise InsufficientDataError(f"{k}-fold cross-validation", required, len(self.draws))

    def iter_folds(self, k: int) -> Iterator[tuple[int, list[Draw], list[Draw]]]:
        """Yield (fold_index, train_draws, test_draws) one fold at a time."""
        self._check_folds(k)
        for index, (start, end) in enumerate(self.fold_bounds(k)):
            yield index, self.draws[:start] + self.draws[end:], self.draws[start:end]

    def _run_fold(self, index: int, start: int, end: int, predict_fn: PredictFn) -> FoldResult:
        train = self.draws[:start] + self.draws[end:]
        test = self.draws[start:end]
        try:
            predictions = list(predict_fn(train, len(test)))
            result = self.validate_predictions(predictions, test)
        except Exception as exc:
            error = FoldExecutionError(index, exc)
            log.error(str(error))
            result = ValidationResult.invalid(str(error), self.game.arity, self.confidence_level)
        else:
            log.debug(f"Fold {index}: accuracy={result.accuracy:.4f} over {len(test)} draws")
        return FoldResult(
            fold_index=index,
            test_start=start,
            test_end=end,
            train_size=len(train),
            result=result,
        )

    def cross_validate(
        self,
        predict_fn: PredictFn,
        k: int = 5,
        max_workers: int = 1,
        cancel_event: threading.Event | None = None,
    ) -> CrossValidationReport:
        """
        k-fold validation over the chronological history.
        A fold whose predictor raises is kept as an invalid fold with accuracy 0.
        Setting cancel_event stops further folds; the report then covers completed folds only.
        """
        self._check_folds(k)
        bounds = self.fold_bounds(k)
        log.info(f"Cross-validating {len(self.draws)} draws in {k} folds (workers={max_workers})")

        folds: list[FoldResult] = []
        cancelled = False
        if max_workers <= 1:
            for index, (start, end) in enumerate(bounds):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                folds.append(self._run_fold(index, start, end, predict_fn))
        else:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cv-fold") as executor:
                futures = [
                    executor.submit(self._run_fold, index, start, end, predict_fn)
                    for index, (start, end) in enumerate(bounds)
                ]
                for future in futures:
                    if cancel_event is not None and cancel_event.is_set() and not cancelled:
                        cancelled = True
                        for pending in futures:
                            pending.cancel()
                    if future.cancelled():
                        continue
                    folds.append(future.result())

        if cancelled:
            log.warning(f"Cross-validation cancelled after {len(folds)}/{k} folds")
        return self._report(k, folds, cancelled)

    def _report(self, k: int, folds: list[FoldResult], cancelled: bool) -> CrossValidationReport:
        accuracies = [f.accuracy for f in folds]
        valid = [f for f in folds if f.is_valid]
        best = worst = None
        if valid:
            # min() keeps the first of equal keys, so ties go to the lowest fold index
            best = min(valid, key=lambda f: (-f.accuracy, f.fold_index)).fold_index
            worst = min(valid, key=lambda f: (f.accuracy, f.fold_index)).fold_index

        report = CrossValidationReport(
            k=k,
            folds=tuple(folds),
            mean_accuracy=float(np.mean(accuracies)) if accuracies else 0.0,
            std_accuracy=float(np.std(accuracies)) if accuracies else 0.0,
            best_fold_index=best,
            worst_fold_index=worst,
            overall_confidence=(
                float(np.mean([f.result.confidence for f in valid])) if valid else 0.0
            ),
            accuracy_interval=metrics.mean_confidence_interval(accuracies, self.confidence_level),
            stability=metrics.temporal_stability(accuracies),
            cancelled=cancelled,
        )
        log.info(
            f"CV done: mean={report.mean_accuracy:.4f} std={report.std_accuracy:.4f} "
            f"valid={len(valid)}/{len(folds)} best={best} worst={worst}"
        )
        return report

    # ── A/B test ──────────────────────────────────────────────────

    def _evaluate(self, label: str, predict_fn: PredictFn, train: list[Draw], test: list[Draw]) -> ValidationResult:
        try:
            return self.validate_predictions(predict_fn(train, len(test)), test)
        except Exception as exc:
            log.error(f"A/B algorithm {label} failed: {exc}")
            return ValidationResult.invalid(f"Algorithm {label} failed: {exc}", self.game.arity, self.confidence_level)

    def perform_ab_test(
        self, algorithm_a: PredictFn, algorithm_b: PredictFn, test_draws: Iterable[Draw]
    ) -> ABTestResult:
        """
        Run both predictors on the same held-out draws and compare accuracies
        with a pooled two-proportion z-test. A winner is named only when p < 0.05.
        """
        test = sorted(test_draws, key=lambda d: d.date)
        held_out = {(d.date, d.values) for d in test}
        train = [d for d in self.draws if (d.date, d.values) not in held_out]

        result_a = self._evaluate("A", algorithm_a, train, test)
        result_b = self._evaluate("B", algorithm_b, train, test)

        z_score, p_value = 0.0, 1.0
        if result_a.is_valid and result_b.is_valid:
            n1, n2 = result_a.total_predictions, result_b.total_predictions
            pooled = (result_a.correct_predictions + result_b.correct_predictions) / (n1 + n2)
            se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
            if se > 0:
                z_score = (result_a.accuracy - result_b.accuracy) / se
                p_value = float(2 * stats.norm.sf(abs(z_score)))

        significant = p_value < AB_SIGNIFICANCE
        winner = ("A" if z_score > 0 else "B") if significant else None
        log.info(
            f"A/B: A={result_a.accuracy:.4f} B={result_b.accuracy:.4f} "
            f"z={z_score:.3f} p={p_value:.4f} winner={winner}"
        )
        return ABTestResult(
            winner=winner,
            confidence=1 - p_value if significant else 0.0,
            result_a=result_a,
            result_b=result_b,
            z_score=z_score,
            p_value=p_value,
            is_significant=significant,
        )
