"""
src/drawscore/models/statistical/position_analyzer.py
Per-position gap/skip statistics for every value in the position's range.
A value whose current gap is larger than its historical average is "due".
"""
from __future__ import annotations

from collections import Counter

import numpy as np

from drawscore.models.types import GameSpec, PositionStat, PositionSummary, Snapshot, Trend
from drawscore.utils.logger import get_logger

log = get_logger("model.position")

HOT_MIN_GAP = 3
HOT_SHARE = 0.10
COLD_MIN_GAP = 5
COLD_SHARE = 0.20
TREND_WINDOW = 3
TREND_CHANGE = 0.20


def hot_threshold(total_draws: int) -> int:
    return max(HOT_MIN_GAP, int(total_draws * HOT_SHARE))


def cold_threshold(total_draws: int) -> int:
    return max(COLD_MIN_GAP, int(total_draws * COLD_SHARE))


def detect_trend(gaps: list[int]) -> Trend:
    """
    Compare the mean of the last 3 gaps with the 3 before them.
    Growing gaps mean the value shows up less often.
    """
    if len(gaps) < 2 * TREND_WINDOW:
        return Trend.STABLE
    recent = sum(gaps[-TREND_WINDOW:]) / TREND_WINDOW
    older = sum(gaps[-2 * TREND_WINDOW:-TREND_WINDOW]) / TREND_WINDOW
    if older <= 0:
        return Trend.STABLE
    if recent >= older * (1 + TREND_CHANGE):
        return Trend.INCREASING
    if recent <= older * (1 - TREND_CHANGE):
        return Trend.DECREASING
    return Trend.STABLE


def rank_due(stats: dict[int, PositionStat], top_n: int | None = None) -> list[PositionStat]:
    due = [s for s in stats.values() if s.is_due]
    due.sort(key=lambda s: (-(s.current_gap - s.average_gap) / (s.average_gap or 1.0), s.value))
    return due[:top_n] if top_n is not None else due


class PositionAnalyzer:
    """Gap history, hot/cold status and trend for each (position, value) pair."""

    def __init__(self, game: GameSpec, min_draws_trend: int = 3):
        self.game = game
        self.min_draws_trend = min_draws_trend

    def _occurrences(self, position: int, snapshot: Snapshot) -> dict[int, list[int]]:
        indices: dict[int, list[int]] = {v: [] for v in self.game.value_range(position)}
        for idx, value in enumerate(snapshot.column(position)):
            if value in indices:
                indices[value].append(idx)
        return indices

    def _stat_for(self, position: int, value: int, indices: list[int], total: int) -> PositionStat:
        if not indices:
            return PositionStat(
                position=position,
                value=value,
                total_appearances=0,
                current_gap=total,
                average_gap=float(total),
                max_gap=total,
                min_gap=total,
                last_seen_index=-1,
                skip_history=(total,) if total > 0 else (),
                is_hot=False,
                is_cold=total >= cold_threshold(total),
                trend=Trend.STABLE,
            )

        gaps = [indices[i] - indices[i - 1] for i in range(1, len(indices))]
        last_index = indices[-1]
        current_gap = total - 1 - last_index
        if current_gap > 0:
            gaps.append(current_gap)

        average_gap = sum(gaps) / len(gaps) if gaps else float(total)
        trend = detect_trend(gaps) if total >= self.min_draws_trend else Trend.STABLE

        return PositionStat(
            position=position,
            value=value,
            total_appearances=len(indices),
            current_gap=current_gap,
            average_gap=average_gap,
            max_gap=max(gaps) if gaps else total,
            min_gap=min(gaps) if gaps else total,
            last_seen_index=last_index,
            skip_history=tuple(gaps),
            is_hot=current_gap <= hot_threshold(total),
            is_cold=current_gap >= cold_threshold(total),
            trend=trend,
        )

    def analyze_position(self, position: int, snapshot: Snapshot) -> dict[int, PositionStat]:
        """
        Returns {value: PositionStat} for every value in the position's range.
        Never raises on sparse data: unseen values get the zero-occurrence default.
        """
        self.game.check_position(position)
        total = len(snapshot)
        occurrences = self._occurrences(position, snapshot)
        stats = {
            value: self._stat_for(position, value, indices, total)
            for value, indices in occurrences.items()
        }
        log.debug(
            f"Position {position}: {total} draws, "
            f"{sum(1 for s in stats.values() if s.is_hot)} hot, "
            f"{sum(1 for s in stats.values() if s.is_cold)} cold"
        )
        return stats

    def summarize_position(self, position: int, snapshot: Snapshot) -> PositionSummary:
        stats = self.analyze_position(position, snapshot)
        gaps = np.array([s.current_gap for s in stats.values()], dtype=float)
        counts = {v: s.total_appearances for v, s in stats.items()}
        seen = {v: c for v, c in counts.items() if c > 0}

        most_frequent = min(seen, key=lambda v: (-seen[v], v)) if seen else None
        least_frequent = min(seen, key=lambda v: (seen[v], v)) if seen else None
        gap_counts = Counter(int(g) for g in gaps)
        mode_gap = min(gap_counts, key=lambda g: (-gap_counts[g], g))

        return PositionSummary(
            position=position,
            total_draws=len(snapshot),
            unique_values=len(seen),
            most_frequent_value=most_frequent,
            least_frequent_value=least_frequent,
            average_gap=float(gaps.mean()),
            median_gap=float(np.median(gaps)),
            mode_gap=mode_gap,
            min_gap=int(gaps.min()),
            max_gap=int(gaps.max()),
            std_gap=float(gaps.std()),
            variance_gap=float(gaps.var()),
            gap_range=int(gaps.max() - gaps.min()),
        )

    # ── Ranked views ──────────────────────────────────────────────

    def due_values(self, position: int, snapshot: Snapshot, top_n: int | None = None) -> list[PositionStat]:
        """Due values, most overdue (relative to their average gap) first."""
        return rank_due(self.analyze_position(position, snapshot), top_n)

    def hot_values(self, position: int, snapshot: Snapshot, top_n: int | None = None) -> list[PositionStat]:
        stats = self.analyze_position(position, snapshot)
        hot = [s for s in stats.values() if s.is_hot and s.total_appearances > 0]
        hot.sort(key=lambda s: (s.current_gap, -s.total_appearances, s.value))
        return hot[:top_n] if top_n is not None else hot

    def cold_values(self, position: int, snapshot: Snapshot, top_n: int | None = None) -> list[PositionStat]:
        stats = self.analyze_position(position, snapshot)
        cold = [s for s in stats.values() if s.is_cold]
        cold.sort(key=lambda s: (-s.current_gap, s.value))
        return cold[:top_n] if top_n is not None else cold
