"""
src/drawscore/models/composite_scorer.py
Weighted blend of due-ness, parity balance, hot/cold status, positional
transitions and cross-position correlation into one score per candidate.
"""
from __future__ import annotations

import itertools
import math
from collections import Counter
from dataclasses import dataclass, field

from drawscore.models.markov.transition_model import TransitionModel
from drawscore.models.statistical.correlation import CrossPositionCorrelator
from drawscore.models.statistical.position_analyzer import PositionAnalyzer, rank_due
from drawscore.models.types import (
    CandidateScore,
    CombinationHistory,
    GameSpec,
    PositionStat,
    ScoringWeights,
    Snapshot,
    Transition,
)
from drawscore.utils.config import EngineSettings
from drawscore.utils.errors import InvalidCombinationError
from drawscore.utils.logger import get_logger

log = get_logger("model.scorer")

WEIGHT_TOLERANCE = 1e-9


@dataclass
class ScoringContext:
    """Everything the scorer reads from one snapshot, computed once and reused."""

    snapshot: Snapshot
    position_stats: tuple[dict[int, PositionStat], ...]
    transitions: tuple[dict[int, list[Transition]], ...]
    _phi: dict[tuple[int, int, int, int], float] = field(default_factory=dict, repr=False)

    @property
    def total_draws(self) -> int:
        return len(self.snapshot)

    def last_value(self, position: int) -> int | None:
        if not self.snapshot.draws:
            return None
        return self.snapshot.draws[-1].values[position]


def resolve_weights(weights: ScoringWeights | None, default: ScoringWeights) -> ScoringWeights:
    """Validate weights and normalise them to sum to 1."""
    w = weights or default
    values = w.as_dict()
    negative = [k for k, v in values.items() if v < 0]
    if negative:
        raise ValueError(f"Scoring weights must be non-negative: {negative}")
    total = w.total()
    if total <= 0:
        raise ValueError("Scoring weights must not all be zero.")
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        log.warning(f"Scoring weights sum to {total:.3f}, normalizing.")
        return w.normalized()
    return w


def distinct_orderings(combination: tuple[int, ...]) -> int:
    counts = Counter(combination)
    result = math.factorial(len(combination))
    for c in counts.values():
        result //= math.factorial(c)
    return result


class CompositeScorer:
    """
    Scores single values and full combinations against one snapshot.
    Same (combination, snapshot, weights) always gives the same total.
    """

    def __init__(self, game: GameSpec, settings: EngineSettings | None = None):
        self.game = game
        self.settings = settings or EngineSettings()
        self.position_analyzer = PositionAnalyzer(game, min_draws_trend=self.settings.min_draws_trend)
        self.transition_model = TransitionModel(game)
        self.correlator = CrossPositionCorrelator(game)

    # ── Context ───────────────────────────────────────────────────

    def build_context(self, snapshot: Snapshot) -> ScoringContext:
        return ScoringContext(
            snapshot=snapshot,
            position_stats=tuple(
                self.position_analyzer.analyze_position(p, snapshot) for p in self.game.positions
            ),
            transitions=tuple(
                self.transition_model.build_transitions(p, snapshot) for p in self.game.positions
            ),
        )

    def _context(self, source: Snapshot | ScoringContext) -> ScoringContext:
        return source if isinstance(source, ScoringContext) else self.build_context(source)

    def _has_enough_data(self, ctx: ScoringContext) -> bool:
        if ctx.total_draws < self.settings.min_draws_combination:
            log.warning(
                f"Only {ctx.total_draws} draws (need {self.settings.min_draws_combination}), "
                f"returning neutral score."
            )
            return False
        return True

    # ── Components ────────────────────────────────────────────────

    @staticmethod
    def due_component(stat: PositionStat) -> float:
        if stat.average_gap <= 0:
            return 0.0
        excess = (stat.current_gap - stat.average_gap) / stat.average_gap
        return min(1.0, max(0.0, excess))

    def hot_cold_component(self, stat: PositionStat) -> float:
        if stat.is_hot:
            return 1.0
        if stat.is_cold and stat.is_due:
            return self.settings.cold_due_bonus
        return 0.0

    def transition_component(self, ctx: ScoringContext, position: int, value: int) -> float:
        prev = ctx.last_value(position)
        if prev is None:
            return 0.0
        return TransitionModel.probability(ctx.transitions[position], prev, value)

    @staticmethod
    def parity_balance(combination: tuple[int, ...]) -> float:
        odd = sum(1 for v in combination if v % 2)
        even = len(combination) - odd
        return 1.0 - abs(odd - even) / len(combination)

    @staticmethod
    def value_parity(ctx: ScoringContext, position: int, value: int) -> float:
        """Share of the opposite parity at this position, so the under-represented parity scores higher."""
        column = ctx.snapshot.column(position)
        if not column:
            return 0.5
        same = sum(1 for v in column if v % 2 == value % 2)
        return 1.0 - same / len(column)

    def _phi(self, ctx: ScoringContext, pa: int, va: int, pb: int, vb: int) -> float:
        key = (pa, va, pb, vb)
        if key not in ctx._phi:
            ctx._phi[key] = self.correlator.joint_occurrence(pa, va, pb, vb, ctx.snapshot)
        return ctx._phi[key]

    # ── Scoring ───────────────────────────────────────────────────

    def score_combination(
        self,
        combination,
        source: Snapshot | ScoringContext,
        weights: ScoringWeights | None = None,
    ) -> CandidateScore:
        combo = self.game.validate_combination(combination)
        w = resolve_weights(weights, self.settings.weights)
        ctx = self._context(source)
        if not self._has_enough_data(ctx):
            return CandidateScore.neutral(combo)

        n = len(combo)
        due = hot_cold = transition = 0.0
        signals = 0
        for position, value in enumerate(combo):
            stat = ctx.position_stats[position][value]
            d = self.due_component(stat)
            t = self.transition_component(ctx, position, value)
            due += d
            hot_cold += self.hot_cold_component(stat)
            transition += t
            signals += int(stat.is_due) + int(stat.is_hot) + int(t > 0)
        due /= n
        hot_cold /= n
        transition /= n

        parity = self.parity_balance(combo)
        odd = sum(1 for v in combo if v % 2)
        signals += int(abs(odd - (n - odd)) <= 1)

        pairs = list(itertools.combinations(range(n), 2))
        if pairs:
            penalties = []
            for a, b in pairs:
                phi = self._phi(ctx, a, combo[a], b, combo[b])
                penalties.append(max(0.0, -phi))
                signals += int(phi >= 0)
            correlation = 1.0 - sum(penalties) / len(penalties)
        else:
            correlation = 1.0

        possible = 3 * n + 1 + len(pairs)
        total = (
            w.due * due
            + w.parity * parity
            + w.hot_cold * hot_cold
            + w.transition * transition
            + w.correlation * correlation
        )
        return CandidateScore(
            combination=combo,
            due_component=due,
            parity_component=parity,
            hot_cold_component=hot_cold,
            transition_component=transition,
            correlation_component=correlation,
            total=total,
            confidence=min(1.0, signals / possible),
        )

    def score_value(
        self,
        position: int,
        value: int,
        source: Snapshot | ScoringContext,
        weights: ScoringWeights | None = None,
    ) -> CandidateScore:
        """Score one candidate value at one position (correlation is neutral for a single value)."""
        self.game.check_position(position)
        if value not in self.game.value_range(position):
            lo, hi = self.game.position_ranges[position]
            raise InvalidCombinationError(f"Value {value} at position {position} is outside [{lo}, {hi}]")
        w = resolve_weights(weights, self.settings.weights)
        ctx = self._context(source)
        if not self._has_enough_data(ctx):
            return CandidateScore.neutral((value,))

        stat = ctx.position_stats[position][value]
        due = self.due_component(stat)
        hot_cold = self.hot_cold_component(stat)
        transition = self.transition_component(ctx, position, value)
        parity = self.value_parity(ctx, position, value)
        signals = int(stat.is_due) + int(stat.is_hot) + int(transition > 0) + int(parity >= 0.5)
        total = (
            w.due * due
            + w.parity * parity
            + w.hot_cold * hot_cold
            + w.transition * transition
            + w.correlation * 1.0
        )
        return CandidateScore(
            combination=(value,),
            due_component=due,
            parity_component=parity,
            hot_cold_component=hot_cold,
            transition_component=transition,
            correlation_component=1.0,
            total=total,
            confidence=min(1.0, signals / 4),
        )

    # ── Candidate generation ──────────────────────────────────────

    def candidate_pool(
        self,
        position: int,
        source: Snapshot | ScoringContext,
        weights: ScoringWeights | None = None,
        size: int | None = None,
    ) -> list[int]:
        ctx = self._context(source)
        if size is None:
            size = self.settings.candidate_pool_size
        scored = [
            (self.score_value(position, v, ctx, weights).total, v)
            for v in self.game.value_range(position)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [v for _, v in scored[:size]]

    def _rank(self, scores: list[CandidateScore], limit: int | None) -> list[CandidateScore]:
        scores.sort(key=lambda s: (-s.total, s.combination))
        return scores[:limit] if limit is not None else scores

    def top_combinations(
        self,
        source: Snapshot | ScoringContext,
        weights: ScoringWeights | None = None,
        limit: int = 20,
    ) -> list[CandidateScore]:
        """Best-scoring combinations from the product of each position's candidate pool."""
        ctx = self._context(source)
        if not self._has_enough_data(ctx):
            return []
        pools = [self.candidate_pool(p, ctx, weights) for p in self.game.positions]
        scores = [self.score_combination(c, ctx, weights) for c in itertools.product(*pools)]
        log.info(f"Scored {len(scores)} combinations from pools of {[len(p) for p in pools]}")
        return self._rank(scores, limit)

    def combination_history(self, combination, snapshot: Snapshot) -> CombinationHistory:
        """Straight (exact order) and box (any order) hit history of one combination."""
        combo = self.game.validate_combination(combination)
        box_key = tuple(sorted(combo))
        total = len(snapshot)
        straight_hits = box_hits = 0
        last_straight = last_box = -1
        for idx, draw in enumerate(snapshot.draws):
            if draw.values == combo:
                straight_hits += 1
                last_straight = idx
            if tuple(sorted(draw.values)) == box_key:
                box_hits += 1
                last_box = idx

        since_straight = total - 1 - last_straight if last_straight >= 0 else total
        since_box = total - 1 - last_box if last_box >= 0 else total
        expected_straight_gap = self.game.combination_space()
        expected_box_gap = expected_straight_gap / distinct_orderings(combo)
        return CombinationHistory(
            combination=combo,
            straight_hits=straight_hits,
            box_hits=box_hits,
            draws_since_straight=since_straight,
            draws_since_box=since_box,
            straight_due=since_straight > expected_straight_gap,
            box_due=since_box > expected_box_gap,
        )

    def due_combinations(
        self,
        source: Snapshot | ScoringContext,
        weights: ScoringWeights | None = None,
        limit: int | None = 20,
    ) -> list[CandidateScore]:
        """
        Combinations whose every value is due at its position, plus candidate-pool
        combinations whose box form is overdue.
        """
        ctx = self._context(source)
        if not self._has_enough_data(ctx):
            return []
        size = self.settings.candidate_pool_size

        due_pools = []
        for p in self.game.positions:
            due = rank_due(ctx.position_stats[p], top_n=size)
            due_pools.append([s.value for s in due])
        candidates = set(itertools.product(*due_pools)) if all(due_pools) else set()

        pools = [self.candidate_pool(p, ctx, weights) for p in self.game.positions]
        for combo in itertools.product(*pools):
            if combo not in candidates and self.combination_history(combo, ctx.snapshot).box_due:
                candidates.add(combo)

        scores = [self.score_combination(c, ctx, weights) for c in candidates]
        return self._rank(scores, limit)
