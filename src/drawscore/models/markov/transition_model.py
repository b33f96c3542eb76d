"""
src/drawscore/models/markov/transition_model.py
First-order positional Markov chain: P(next value | current value) per position,
counted over consecutive draws.
"""
from __future__ import annotations

from collections import defaultdict

from drawscore.models.types import GameSpec, RankedTransition, Snapshot, Transition
from drawscore.utils.logger import get_logger

log = get_logger("model.transition")

SKIP_PENALTY = 0.1
SKIP_FLOOR = 0.1


def skip_factor(skip_count: int) -> float:
    """Confidence multiplier for a state that has persisted for skip_count prior draws."""
    return max(SKIP_FLOOR, 1.0 - skip_count * SKIP_PENALTY)


def _rank_key(t: Transition):
    # probability desc, most recently seen first, then to_value asc
    return (-t.probability, -t.last_seen_index, t.to_value)


class TransitionModel:
    """
    Tracks value→value transitions between consecutive draws at one position.
    Tables are rebuilt from the snapshot on every call; caching lives above this class.
    """

    def __init__(self, game: GameSpec):
        self.game = game

    def build_transitions(self, position: int, snapshot: Snapshot) -> dict[int, list[Transition]]:
        """
        Returns {from_value: [Transition, ...]} ranked by probability.
        Probabilities within each from_value bucket sum to 1.
        """
        self.game.check_position(position)
        column = snapshot.column(position)
        # counts[from][to] = n, last_seen[from][to] = index of the draw that completed the transition
        counts: dict[int, dict[int, int]] = defaultdict(lambda: defaultdict(int))
        last_seen: dict[int, dict[int, int]] = defaultdict(dict)

        for i in range(1, len(column)):
            prev, cur = column[i - 1], column[i]
            counts[prev][cur] += 1
            last_seen[prev][cur] = i

        table: dict[int, list[Transition]] = {}
        for from_value in sorted(counts):
            bucket = counts[from_value]
            total = sum(bucket.values())
            transitions = [
                Transition(
                    from_value=from_value,
                    to_value=to_value,
                    count=count,
                    probability=count / total,
                    last_seen_index=last_seen[from_value][to_value],
                )
                for to_value, count in bucket.items()
            ]
            transitions.sort(key=_rank_key)
            table[from_value] = transitions

        log.debug(f"Position {position}: {len(table)} transition states from {len(column)} draws")
        return table

    def skip_count(self, position: int, current_value: int, snapshot: Snapshot) -> int:
        """
        How many draws before the latest one the position already sat on current_value.
        0 when the latest draw does not hold current_value.
        """
        column = snapshot.column(position)
        if not column or column[-1] != current_value:
            return 0
        run = 0
        for value in reversed(column[:-1]):
            if value != current_value:
                break
            run += 1
        return run

    def predict_next(
        self,
        position: int,
        current_value: int,
        top_k: int,
        snapshot: Snapshot,
        table: dict[int, list[Transition]] | None = None,
    ) -> list[RankedTransition]:
        """
        Top-k next values after current_value, probability down-weighted by how long
        the position has been stuck on current_value. Empty when current_value has
        never been followed by anything. A prebuilt table for this position and
        snapshot may be passed in.
        """
        if top_k <= 0:
            return []
        if table is None:
            table = self.build_transitions(position, snapshot)
        transitions = table.get(current_value, [])
        if not transitions:
            return []

        skips = self.skip_count(position, current_value, snapshot)
        factor = skip_factor(skips)
        return [
            RankedTransition(
                from_value=t.from_value,
                to_value=t.to_value,
                count=t.count,
                probability=t.probability,
                adjusted_probability=t.probability * factor,
                last_seen_index=t.last_seen_index,
                skip_count=skips,
            )
            for t in transitions[:top_k]
        ]

    @staticmethod
    def probability(table: dict[int, list[Transition]], from_value: int, to_value: int) -> float:
        for t in table.get(from_value, []):
            if t.to_value == to_value:
                return t.probability
        return 0.0
