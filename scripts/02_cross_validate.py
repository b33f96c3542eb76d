"""
scripts/02_cross_validate.py
Backtest the composite predictor with k-fold cross-validation, then A/B test
it against the frequency baseline on the most recent draws.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from drawscore.data.sequence_store import load_jsonl
from drawscore.engine import AnalysisEngine
from drawscore.models.predictors import composite_predictor, frequency_predictor
from drawscore.utils.config import GAME_CONFIG_FILES, get_game_spec, load_settings
from drawscore.utils.logger import get_logger
from drawscore.validation import metrics

log = get_logger("cross_validate")


def main():
    parser = argparse.ArgumentParser(description="k-fold backtest of the composite predictor")
    parser.add_argument("--game", choices=sorted(GAME_CONFIG_FILES), default="pick3")
    parser.add_argument("--data", required=True, help="JSONL file with id/date/result rows")
    parser.add_argument("--folds", type=int, default=None)
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument("--top", type=int, default=5, help="Predictions per fold")
    parser.add_argument("--hits", type=int, default=1, help="Matches needed to count a prediction as correct")
    parser.add_argument("--holdout", type=int, default=30, help="Draws held out for the A/B test")
    args = parser.parse_args()

    game = get_game_spec(args.game)
    settings = load_settings(args.game)
    engine = AnalysisEngine(load_jsonl(args.data, game), game, settings=settings)

    composite = composite_predictor(game, settings, top_n=args.top, expected_hits=args.hits)
    baseline = frequency_predictor(game, top_n=args.top, expected_hits=args.hits)

    report = engine.cross_validate(composite, k=args.folds, max_workers=args.workers)
    for fold in report.folds:
        status = "ok" if fold.is_valid else f"FAILED ({fold.result.error})"
        log.info(
            f"Fold {fold.fold_index}: draws [{fold.test_start}, {fold.test_end}) "
            f"accuracy={fold.accuracy:.4f} p={fold.result.significance.p_value:.4f} {status}"
        )
    log.info(
        f"Mean accuracy {report.mean_accuracy:.4f} ± {report.std_accuracy:.4f} "
        f"(CI {report.accuracy_interval.lower:.4f}-{report.accuracy_interval.upper:.4f}), "
        f"best fold {report.best_fold_index}, worst fold {report.worst_fold_index}"
    )

    validator = engine.validator()
    baselines = validator.straight_hit_probabilities()
    chance = baselines[min(args.hits, game.arity) - 1]
    significance = metrics.accuracy_significance(
        [f.accuracy for f in report.folds], chance, settings.confidence_level
    )
    hit_rates, comparisons = metrics.pooled_hit_rates(report, game.arity)
    hit_tests = metrics.hit_rate_significance(hit_rates, comparisons, baselines, settings.confidence_level)
    for label, test in hit_tests.items():
        log.info(f"Hit rate {label}: chi2={test.statistic:.3f} p={test.p_value:.4f} effect={test.effect_size:+.4f}")
    for line in metrics.recommendations(report, significance, hit_tests):
        log.info(f"→ {line}")

    holdout = list(engine.snapshot.draws[-args.holdout:])
    ab = engine.perform_ab_test(composite, baseline, holdout)
    log.info(
        f"A/B composite vs frequency on {len(holdout)} draws: "
        f"A={ab.result_a.accuracy:.4f} B={ab.result_b.accuracy:.4f} "
        f"p={ab.p_value:.4f} winner={ab.winner or 'none'}"
    )


if __name__ == "__main__":
    main()
