"""
src/drawscore/models/types.py
Typed records shared by every analysis component.
One frozen dataclass per computation kind, so results can be cached,
compared and serialised without guessing their shape.
"""
from __future__ import annotations

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Iterable

from drawscore.utils.errors import InvalidCombinationError


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class CorrelationStrength(str, Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class MatchMode(str, Enum):
    STRAIGHT = "straight"  # exact positional order
    BOX = "box"            # same multiset, any order


def to_dict(obj: Any) -> Any:
    """Recursively convert records/enums/tuples into JSON-friendly values."""
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_dict(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {str(k): to_dict(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_dict(v) for v in obj]
    return obj


# ── Draws & game ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Draw:
    date: str
    values: tuple[int, ...]
    draw_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(int(v) for v in self.values))


@dataclass(frozen=True)
class GameSpec:
    """Positions of a game and the closed value range of each one."""

    name: str
    position_ranges: tuple[tuple[int, int], ...]

    def __post_init__(self):
        ranges = tuple((int(lo), int(hi)) for lo, hi in self.position_ranges)
        for lo, hi in ranges:
            if lo > hi:
                raise ValueError(f"Invalid position range [{lo}, {hi}]")
        object.__setattr__(self, "position_ranges", ranges)

    @property
    def arity(self) -> int:
        return len(self.position_ranges)

    @property
    def positions(self) -> range:
        return range(self.arity)

    def value_range(self, position: int) -> range:
        lo, hi = self.position_ranges[position]
        return range(lo, hi + 1)

    def range_size(self, position: int) -> int:
        lo, hi = self.position_ranges[position]
        return hi - lo + 1

    def combination_space(self) -> int:
        return math.prod(self.range_size(p) for p in self.positions)

    def check_position(self, position: int) -> None:
        if not 0 <= position < self.arity:
            raise ValueError(f"Position {position} out of range for {self.name} (0..{self.arity - 1})")

    def validate_combination(self, combination: Iterable[int]) -> tuple[int, ...]:
        """Return the combination as a tuple, or raise InvalidCombinationError."""
        try:
            combo = tuple(int(v) for v in combination)
        except (TypeError, ValueError) as exc:
            raise InvalidCombinationError(f"Combination must contain integers: {combination!r}") from exc
        if len(combo) != self.arity:
            raise InvalidCombinationError(
                f"{self.name} combinations have {self.arity} values, got {len(combo)}"
            )
        for position, value in enumerate(combo):
            lo, hi = self.position_ranges[position]
            if not lo <= value <= hi:
                raise InvalidCombinationError(
                    f"Value {value} at position {position} is outside [{lo}, {hi}]"
                )
        return combo


@dataclass(frozen=True)
class Snapshot:
    """Immutable, chronologically ascending list of draws."""

    draws: tuple[Draw, ...] = ()

    @classmethod
    def from_draws(cls, draws: Iterable[Draw]) -> "Snapshot":
        return cls(draws=tuple(draws))

    def __len__(self) -> int:
        return len(self.draws)

    @cached_property
    def fingerprint(self) -> str:
        payload = json.dumps(
            [[d.date, list(d.values)] for d in self.draws], separators=(",", ":")
        )
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    def column(self, position: int) -> tuple[int, ...]:
        return tuple(d.values[position] for d in self.draws)

    def slice(self, start: int, end: int | None = None) -> "Snapshot":
        return Snapshot(draws=self.draws[start:end])


# ── Scoring weights ───────────────────────────────────────────────

@dataclass(frozen=True)
class ScoringWeights:
    due: float = 0.35
    parity: float = 0.10
    hot_cold: float = 0.20
    transition: float = 0.25
    correlation: float = 0.10

    def total(self) -> float:
        return self.due + self.parity + self.hot_cold + self.transition + self.correlation

    def normalized(self) -> "ScoringWeights":
        total = self.total()
        return ScoringWeights(
            due=self.due / total,
            parity=self.parity / total,
            hot_cold=self.hot_cold / total,
            transition=self.transition / total,
            correlation=self.correlation / total,
        )

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


# ── Analysis results ──────────────────────────────────────────────

@dataclass(frozen=True)
class PositionStat:
    position: int
    value: int
    total_appearances: int
    current_gap: int
    average_gap: float
    max_gap: int
    min_gap: int
    last_seen_index: int
    skip_history: tuple[int, ...]
    is_hot: bool
    is_cold: bool
    trend: Trend

    @property
    def is_due(self) -> bool:
        return self.current_gap > self.average_gap


@dataclass(frozen=True)
class PositionSummary:
    position: int
    total_draws: int
    unique_values: int
    most_frequent_value: int | None
    least_frequent_value: int | None
    average_gap: float
    median_gap: float
    mode_gap: int
    min_gap: int
    max_gap: int
    std_gap: float
    variance_gap: float
    gap_range: int


@dataclass(frozen=True)
class Correlation:
    position_a: int
    position_b: int
    coefficient: float
    strength: CorrelationStrength
    significance: float
    sample_size: int


@dataclass(frozen=True)
class Transition:
    from_value: int
    to_value: int
    count: int
    probability: float
    last_seen_index: int


@dataclass(frozen=True)
class RankedTransition:
    from_value: int
    to_value: int
    count: int
    probability: float
    adjusted_probability: float
    last_seen_index: int
    skip_count: int


@dataclass(frozen=True)
class CandidateScore:
    combination: tuple[int, ...]
    due_component: float
    parity_component: float
    hot_cold_component: float
    transition_component: float
    correlation_component: float
    total: float
    confidence: float

    @classmethod
    def neutral(cls, combination: tuple[int, ...]) -> "CandidateScore":
        return cls(
            combination=tuple(combination),
            due_component=0.0,
            parity_component=0.0,
            hot_cold_component=0.0,
            transition_component=0.0,
            correlation_component=0.0,
            total=0.0,
            confidence=0.0,
        )


@dataclass(frozen=True)
class CombinationHistory:
    combination: tuple[int, ...]
    straight_hits: int
    box_hits: int
    draws_since_straight: int
    draws_since_box: int
    straight_due: bool
    box_due: bool


# ── Validation ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Prediction:
    combination: tuple[int, ...]
    confidence: float = 0.0
    expected_hits: int = 1

    def __post_init__(self):
        object.__setattr__(self, "combination", tuple(int(v) for v in self.combination))


@dataclass(frozen=True)
class HitRates:
    """rates[i] is the share of comparisons with at least i + 1 matches."""

    counts: tuple[int, ...]
    rates: tuple[float, ...]

    @classmethod
    def empty(cls, arity: int) -> "HitRates":
        return cls(counts=(0,) * arity, rates=(0.0,) * arity)

    def at_least(self, hits: int) -> float:
        if hits < 1 or hits > len(self.rates):
            return 0.0
        return self.rates[hits - 1]

    @property
    def full_match(self) -> float:
        return self.rates[-1] if self.rates else 0.0

    def as_dict(self) -> dict[str, float]:
        return {f"{i + 1}+": rate for i, rate in enumerate(self.rates)}


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float
    level: float = 0.95


@dataclass(frozen=True)
class Significance:
    p_value: float
    is_significant: bool
    baseline: float = 0.0


@dataclass(frozen=True)
class SignificanceTest:
    statistic: float
    p_value: float
    is_significant: bool
    effect_size: float = 0.0


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    accuracy: float
    confidence: float
    total_predictions: int
    correct_predictions: int
    hit_rates: HitRates
    confidence_interval: ConfidenceInterval
    significance: Significance
    error: str | None = None

    @classmethod
    def invalid(cls, error: str, arity: int, level: float = 0.95) -> "ValidationResult":
        return cls(
            is_valid=False,
            accuracy=0.0,
            confidence=0.0,
            total_predictions=0,
            correct_predictions=0,
            hit_rates=HitRates.empty(arity),
            confidence_interval=ConfidenceInterval(0.0, 0.0, level),
            significance=Significance(p_value=1.0, is_significant=False),
            error=error,
        )


@dataclass(frozen=True)
class TemporalStability:
    autocorrelation: float = 0.0
    trend_p_value: float = 1.0
    volatility: float = 0.0


@dataclass(frozen=True)
class FoldResult:
    fold_index: int
    test_start: int
    test_end: int
    train_size: int
    result: ValidationResult

    @property
    def accuracy(self) -> float:
        return self.result.accuracy

    @property
    def is_valid(self) -> bool:
        return self.result.is_valid

    @property
    def test_size(self) -> int:
        return self.test_end - self.test_start


@dataclass(frozen=True)
class CrossValidationReport:
    k: int
    folds: tuple[FoldResult, ...]
    mean_accuracy: float
    std_accuracy: float
    best_fold_index: int | None
    worst_fold_index: int | None
    overall_confidence: float
    accuracy_interval: ConfidenceInterval
    stability: TemporalStability = field(default_factory=TemporalStability)
    cancelled: bool = False


@dataclass(frozen=True)
class ABTestResult:
    winner: str | None
    confidence: float
    result_a: ValidationResult
    result_b: ValidationResult
    z_score: float
    p_value: float
    is_significant: bool


# ── Cache ─────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    key: str
    kind: str
    value: Any
    size: int
    inserted_at: float
    last_accessed_at: float
    access_count: int = 0


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_size: int
    memory_usage: int
    max_memory: int
    memory_usage_percent: float
    hit_rate: float
    hits: int
    misses: int
    total_accesses: int
    kind_distribution: dict[str, int]
    average_age: float


@dataclass(frozen=True)
class OptimizeReport:
    removed: int
    kept: int
    memory_freed: int
