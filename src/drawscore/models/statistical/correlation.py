"""
src/drawscore/models/statistical/correlation.py
Pairwise correlation between positions' value sequences, plus the phi
coefficient of two specific (position, value) occurrences.
"""
from __future__ import annotations

import itertools
from typing import Iterator

import numpy as np
from scipy import stats

from drawscore.models.types import Correlation, CorrelationStrength, GameSpec, Snapshot
from drawscore.utils.logger import get_logger

log = get_logger("model.correlation")

MIN_SAMPLE = 3


def strength_of(coefficient: float) -> CorrelationStrength:
    magnitude = abs(coefficient)
    if magnitude < 0.3:
        return CorrelationStrength.WEAK
    if magnitude < 0.7:
        return CorrelationStrength.MODERATE
    return CorrelationStrength.STRONG


class CrossPositionCorrelator:
    """Pearson correlation between positions, symmetric per unordered pair."""

    def __init__(self, game: GameSpec):
        self.game = game

    def _undefined(self, a: int, b: int, n: int) -> Correlation:
        return Correlation(
            position_a=a,
            position_b=b,
            coefficient=0.0,
            strength=CorrelationStrength.WEAK,
            significance=0.0,
            sample_size=n,
        )

    def correlate(self, position_a: int, position_b: int, snapshot: Snapshot) -> Correlation:
        """
        Coefficient in [-1, 1] and significance = 1 - two-tailed p-value.
        Short or constant sequences are undefined and come back as 0 / weak / 0.
        """
        self.game.check_position(position_a)
        self.game.check_position(position_b)
        a, b = sorted((position_a, position_b))
        n = len(snapshot)
        if a == b:
            raise ValueError("Correlation needs two distinct positions")
        if n < MIN_SAMPLE:
            return self._undefined(a, b, n)

        x = np.array(snapshot.column(a), dtype=float)
        y = np.array(snapshot.column(b), dtype=float)
        if x.std() == 0 or y.std() == 0:
            return self._undefined(a, b, n)

        coefficient, p_value = stats.pearsonr(x, y)
        coefficient = float(np.clip(coefficient, -1.0, 1.0))
        if np.isnan(coefficient) or np.isnan(p_value):
            return self._undefined(a, b, n)

        return Correlation(
            position_a=a,
            position_b=b,
            coefficient=coefficient,
            strength=strength_of(coefficient),
            significance=float(np.clip(1.0 - p_value, 0.0, 1.0)),
            sample_size=n,
        )

    def pairs(self) -> list[tuple[int, int]]:
        return list(itertools.combinations(self.game.positions, 2))

    def iter_correlations(self, snapshot: Snapshot, chunk_size: int = 4) -> Iterator[list[Correlation]]:
        """Yield correlations a chunk of pairs at a time so callers can interleave other work."""
        chunk_size = max(1, chunk_size)
        pairs = self.pairs()
        for start in range(0, len(pairs), chunk_size):
            yield [self.correlate(a, b, snapshot) for a, b in pairs[start:start + chunk_size]]

    def correlate_all(self, snapshot: Snapshot) -> list[Correlation]:
        result: list[Correlation] = []
        for chunk in self.iter_correlations(snapshot):
            result.extend(chunk)
        log.debug(f"Correlated {len(result)} position pairs over {len(snapshot)} draws")
        return result

    def joint_occurrence(
        self, position_a: int, value_a: int, position_b: int, value_b: int, snapshot: Snapshot
    ) -> float:
        """
        Phi coefficient between "value_a at position_a" and "value_b at position_b".
        Negative means the two historically avoid appearing in the same draw.
        """
        if len(snapshot) < MIN_SAMPLE:
            return 0.0
        x = np.array([v == value_a for v in snapshot.column(position_a)], dtype=float)
        y = np.array([v == value_b for v in snapshot.column(position_b)], dtype=float)
        if x.std() == 0 or y.std() == 0:
            return 0.0
        phi = float(np.corrcoef(x, y)[0, 1])
        if np.isnan(phi):
            return 0.0
        return float(np.clip(phi, -1.0, 1.0))
