"""
src/drawscore/models/predictors.py
Prediction functions with the (train_draws, test_size) -> [Prediction] shape
that cross_validate() and perform_ab_test() call.
"""
from __future__ import annotations

import itertools
from typing import Callable

from drawscore.cache.result_cache import ResultCache
from drawscore.data.sequence_store import InMemorySequenceStore
from drawscore.engine import AnalysisEngine
from drawscore.models.types import Draw, GameSpec, Prediction
from drawscore.utils.config import EngineSettings
from drawscore.utils.logger import get_logger

log = get_logger("model.predictors")

PredictFn = Callable[[list[Draw], int], list[Prediction]]


def recency_scores(game: GameSpec, position: int, draws: list[Draw], decay: float = 0.98) -> dict[int, float]:
    """
    Frequency of each value at a position, newer draws weighted higher.
    Normalised to [0, 1]; uniform 1.0 when there is no history.
    """
    values = game.value_range(position)
    if not draws:
        return {v: 1.0 for v in values}
    scores = {v: 0.0 for v in values}
    for age, draw in enumerate(reversed(draws)):
        value = draw.values[position]
        if value in scores:
            scores[value] += decay ** age
    top = max(scores.values()) or 1.0
    return {v: s / top for v, s in scores.items()}


def frequency_predictor(
    game: GameSpec, top_n: int = 5, expected_hits: int = 1, decay: float = 0.98, pool: int = 3
) -> PredictFn:
    """Most frequent recent values per position, combined into top_n combinations."""

    def predict(train: list[Draw], test_size: int) -> list[Prediction]:
        per_position = [recency_scores(game, p, train, decay) for p in game.positions]
        pools = [
            sorted(scores, key=lambda v: (-scores[v], v))[:pool]
            for scores in per_position
        ]
        ranked = sorted(
            itertools.product(*pools),
            key=lambda combo: (-sum(per_position[p][v] for p, v in enumerate(combo)), combo),
        )
        return [
            Prediction(
                combination=combo,
                confidence=sum(per_position[p][v] for p, v in enumerate(combo)) / game.arity,
                expected_hits=expected_hits,
            )
            for combo in ranked[:top_n]
        ]

    return predict


def composite_predictor(
    game: GameSpec,
    settings: EngineSettings | None = None,
    top_n: int = 5,
    expected_hits: int = 1,
) -> PredictFn:
    """
    Top combinations of a throwaway AnalysisEngine built on the training draws.
    Falls back to the frequency predictor when training data is too short to score.
    """
    settings = settings or EngineSettings()
    fallback = frequency_predictor(game, top_n=top_n, expected_hits=expected_hits)

    def predict(train: list[Draw], test_size: int) -> list[Prediction]:
        engine = AnalysisEngine(
            InMemorySequenceStore(train),
            game,
            settings=settings,
            cache=ResultCache(max_size=settings.cache_max_size, max_memory=settings.cache_max_memory_bytes),
        )
        top = engine.get_top_combinations(limit=top_n)
        if not top:
            log.warning(f"Composite predictor: {len(train)} training draws too few, using frequency fallback")
            return fallback(train, test_size)
        return [
            Prediction(combination=s.combination, confidence=s.confidence, expected_hits=expected_hits)
            for s in top
        ]

    return predict
