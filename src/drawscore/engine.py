"""
src/drawscore/engine.py
AnalysisEngine: one snapshot of the draw history plus every analysis over it,
memoised in a ResultCache under (kind, game, snapshot fingerprint, params).
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Iterable

from drawscore.cache.result_cache import ResultCache
from drawscore.data.sequence_store import DrawFilter, SequenceStore, take_snapshot
from drawscore.models.composite_scorer import CompositeScorer, ScoringContext
from drawscore.models.markov.transition_model import TransitionModel
from drawscore.models.statistical.correlation import CrossPositionCorrelator
from drawscore.models.statistical.position_analyzer import PositionAnalyzer
from drawscore.models.types import (
    ABTestResult,
    CacheStats,
    CandidateScore,
    CombinationHistory,
    Correlation,
    CrossValidationReport,
    Draw,
    GameSpec,
    OptimizeReport,
    PositionStat,
    PositionSummary,
    Prediction,
    RankedTransition,
    ScoringWeights,
    Snapshot,
    Transition,
    ValidationResult,
)
from drawscore.utils.config import DEFAULT_GAME, EngineSettings, get_game_spec, load_settings
from drawscore.utils.logger import get_logger
from drawscore.validation.validator import PredictionValidator

log = get_logger("engine")


class AnalysisEngine:
    """
    Explicitly constructed analysis context. Holds an immutable snapshot taken
    from the store at construction; refresh() takes a new one.
    Several engines can share one cache.
    """

    def __init__(
        self,
        store: SequenceStore,
        game: GameSpec,
        settings: EngineSettings | None = None,
        cache: ResultCache | None = None,
        draw_filter: DrawFilter | None = None,
    ):
        self.store = store
        self.game = game
        self.settings = settings or EngineSettings()
        self.cache = cache if cache is not None else ResultCache.from_settings(self.settings)
        self.draw_filter = draw_filter

        self.position_analyzer = PositionAnalyzer(game, min_draws_trend=self.settings.min_draws_trend)
        self.transition_model = TransitionModel(game)
        self.correlator = CrossPositionCorrelator(game)
        self.scorer = CompositeScorer(game, self.settings)

        self._context_lock = threading.Lock()
        self._context: ScoringContext | None = None
        self.snapshot: Snapshot = take_snapshot(store, draw_filter)
        log.info(f"Engine ready: {game.name}, {len(self.snapshot)} draws")

    @classmethod
    def for_game(
        cls, store: SequenceStore, game_type: str | None = None, cache: ResultCache | None = None
    ) -> "AnalysisEngine":
        """Build an engine from the game's config file."""
        settings = load_settings(game_type)
        return cls(store, get_game_spec(game_type or DEFAULT_GAME), settings=settings, cache=cache)

    def refresh(self) -> Snapshot:
        """Re-read the store. Cached results for the old snapshot stay until they expire or are evicted."""
        snapshot = take_snapshot(self.store, self.draw_filter)
        with self._context_lock:
            changed = snapshot.fingerprint != self.snapshot.fingerprint
            self.snapshot = snapshot
            if changed:
                self._context = None
        log.info(f"Snapshot refreshed: {len(snapshot)} draws ({'changed' if changed else 'unchanged'})")
        return snapshot

    # ── Internals ─────────────────────────────────────────────────

    def _cached(self, kind: str, params: dict[str, Any], compute: Callable[[], Any]) -> Any:
        key_params = {
            "game": self.game.name,
            "ranges": self.game.position_ranges,
            "snapshot": self.snapshot.fingerprint,
            **params,
        }
        return self.cache.get_or_compute(kind, key_params, compute)

    @staticmethod
    def _weights_key(weights: ScoringWeights | None) -> dict[str, float] | None:
        return weights.as_dict() if weights is not None else None

    def scoring_context(self) -> ScoringContext:
        with self._context_lock:
            snapshot = self.snapshot
            if self._context is None or self._context.snapshot is not snapshot:
                self._context = ScoringContext(
                    snapshot=snapshot,
                    position_stats=tuple(self.get_position_stats(p) for p in self.game.positions),
                    transitions=tuple(self.get_transition_table(p) for p in self.game.positions),
                )
            return self._context

    # ── Position / transition / correlation ───────────────────────

    def get_position_stats(self, position: int) -> dict[int, PositionStat]:
        self.game.check_position(position)
        return self._cached(
            "position_stats",
            {"position": position},
            lambda: self.position_analyzer.analyze_position(position, self.snapshot),
        )

    def get_position_summary(self, position: int) -> PositionSummary:
        self.game.check_position(position)
        return self._cached(
            "position_summary",
            {"position": position},
            lambda: self.position_analyzer.summarize_position(position, self.snapshot),
        )

    def get_transition_table(self, position: int) -> dict[int, list[Transition]]:
        self.game.check_position(position)
        return self._cached(
            "transition_table",
            {"position": position},
            lambda: self.transition_model.build_transitions(position, self.snapshot),
        )

    def get_transitions(self, position: int, value: int, top_k: int = 5) -> list[RankedTransition]:
        self.game.check_position(position)
        return self._cached(
            "transitions",
            {"position": position, "value": value, "top_k": top_k},
            lambda: self.transition_model.predict_next(
                position, value, top_k, self.snapshot, table=self.get_transition_table(position)
            ),
        )

    def get_correlations(self) -> list[Correlation]:
        def compute() -> list[Correlation]:
            result: list[Correlation] = []
            for chunk in self.correlator.iter_correlations(
                self.snapshot, chunk_size=self.settings.correlation_chunk_size
            ):
                result.extend(chunk)
            return result

        return self._cached("correlations", {}, compute)

    # ── Scoring ───────────────────────────────────────────────────

    def score_combination(self, combination, weights: ScoringWeights | None = None) -> CandidateScore:
        combo = self.game.validate_combination(combination)
        return self._cached(
            "score_combination",
            {"combination": combo, "weights": self._weights_key(weights)},
            lambda: self.scorer.score_combination(combo, self.scoring_context(), weights),
        )

    def score_value(self, position: int, value: int, weights: ScoringWeights | None = None) -> CandidateScore:
        return self._cached(
            "score_value",
            {"position": position, "value": value, "weights": self._weights_key(weights)},
            lambda: self.scorer.score_value(position, value, self.scoring_context(), weights),
        )

    def get_top_combinations(self, limit: int = 20, weights: ScoringWeights | None = None) -> list[CandidateScore]:
        return self._cached(
            "top_combinations",
            {"limit": limit, "weights": self._weights_key(weights)},
            lambda: self.scorer.top_combinations(self.scoring_context(), weights, limit=limit),
        )

    def get_due_combinations(self, limit: int = 20, weights: ScoringWeights | None = None) -> list[CandidateScore]:
        return self._cached(
            "due_combinations",
            {"limit": limit, "weights": self._weights_key(weights)},
            lambda: self.scorer.due_combinations(self.scoring_context(), weights, limit=limit),
        )

    def get_combination_history(self, combination) -> CombinationHistory:
        combo = self.game.validate_combination(combination)
        return self._cached(
            "combination_history",
            {"combination": combo},
            lambda: self.scorer.combination_history(combo, self.snapshot),
        )

    # ── Validation ────────────────────────────────────────────────

    def validator(self) -> PredictionValidator:
        return PredictionValidator(
            self.snapshot.draws,
            self.game,
            confidence_level=self.settings.confidence_level,
            min_draws_per_fold=self.settings.fold_multiplier,
        )

    def validate_predictions(
        self, predictions: Iterable[Prediction], actual_draws: Iterable[Draw]
    ) -> ValidationResult:
        return self.validator().validate_predictions(predictions, actual_draws)

    def cross_validate(
        self,
        predict_fn,
        k: int | None = None,
        max_workers: int = 1,
        cancel_event: threading.Event | None = None,
    ) -> CrossValidationReport:
        return self.validator().cross_validate(
            predict_fn,
            k=k or self.settings.default_folds,
            max_workers=max_workers,
            cancel_event=cancel_event,
        )

    def perform_ab_test(self, algorithm_a, algorithm_b, test_draws: Iterable[Draw]) -> ABTestResult:
        return self.validator().perform_ab_test(algorithm_a, algorithm_b, test_draws)

    # ── Cache management ──────────────────────────────────────────

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
        with self._context_lock:
            self._context = None

    def optimize_cache(self) -> OptimizeReport:
        return self.cache.optimize()
