"""
scripts/01_analyze_positions.py
Load a JSONL draw history and print per-position due/hot/cold values,
transitions from the latest draw, correlations and the top-scored combinations.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from drawscore.data.sequence_store import DrawFilter, load_jsonl
from drawscore.engine import AnalysisEngine
from drawscore.utils.config import GAME_CONFIG_FILES, GAME_LABELS, get_game_spec, load_settings
from drawscore.utils.logger import get_logger

log = get_logger("analyze_positions")


def analyze(game_type: str, path: Path, last_n: int | None, top: int) -> None:
    game = get_game_spec(game_type)
    settings = load_settings(game_type)
    store = load_jsonl(path, game)
    engine = AnalysisEngine(store, game, settings=settings, draw_filter=DrawFilter(last_n=last_n))
    snapshot = engine.snapshot
    log.info(f"\n{'='*60}\n{GAME_LABELS[game_type]}: {len(snapshot)} draws\n{'='*60}")
    if not snapshot.draws:
        log.warning("No draws loaded. Nothing to analyze.")
        return

    latest = snapshot.draws[-1]
    for position in game.positions:
        summary = engine.get_position_summary(position)
        due = engine.position_analyzer.due_values(position, snapshot, top_n=5)
        hot = engine.position_analyzer.hot_values(position, snapshot, top_n=5)
        cold = engine.position_analyzer.cold_values(position, snapshot, top_n=5)
        nxt = engine.get_transitions(position, latest.values[position], top_k=3)
        log.info(
            f"Position {position}: avg gap {summary.average_gap:.2f}, "
            f"most frequent {summary.most_frequent_value}\n"
            f"  due:  {[(s.value, s.current_gap) for s in due]}\n"
            f"  hot:  {[s.value for s in hot]}\n"
            f"  cold: {[s.value for s in cold]}\n"
            f"  after {latest.values[position]}: "
            f"{[(t.to_value, round(t.adjusted_probability, 3)) for t in nxt]}"
        )

    for corr in engine.get_correlations():
        log.info(
            f"Positions {corr.position_a}-{corr.position_b}: r={corr.coefficient:+.3f} "
            f"({corr.strength.value}, significance {corr.significance:.3f})"
        )

    for rank, score in enumerate(engine.get_top_combinations(limit=top), start=1):
        log.info(f"#{rank:>2} {score.combination} total={score.total:.4f} confidence={score.confidence:.2f}")

    stats = engine.get_cache_stats()
    log.info(f"Cache: {stats.size} entries, {stats.memory_usage} bytes, hit rate {stats.hit_rate:.2%}")


def main():
    parser = argparse.ArgumentParser(description="Positional gap/transition analysis")
    parser.add_argument("--game", choices=sorted(GAME_CONFIG_FILES), default="pick3")
    parser.add_argument("--data", required=True, help="JSONL file with id/date/result rows")
    parser.add_argument("--last", type=int, default=None, help="Only analyze the most recent N draws")
    parser.add_argument("--top", type=int, default=10, help="How many combinations to print")
    args = parser.parse_args()

    analyze(args.game, Path(args.data), args.last, args.top)


if __name__ == "__main__":
    main()
