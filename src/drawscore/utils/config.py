"""
src/drawscore/utils/config.py
Load env vars and game/engine config JSON files.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from drawscore.models.types import GameSpec, ScoringWeights

load_dotenv()

ROOT = Path(__file__).parent.parent.parent.parent
CONFIG_DIR = Path(os.getenv("DRAWSCORE_CONFIG_DIR", str(ROOT / "config")))

# ── Game types ────────────────────────────────────────────────────
GAME_CONFIG_FILES: dict[str, str] = {
    "pick3": "game_params_pick3.json",
    "pick4": "game_params_pick4.json",
    "cash5": "game_params_cash5.json",
}

GAME_LABELS: dict[str, str] = {
    "pick3": "Pick 3",
    "pick4": "Pick 4",
    "cash5": "Cash 5",
}

DEFAULT_GAME: str = os.getenv("DRAWSCORE_GAME", "pick3")

_game_config_cache: dict[str, Any] = {}


@dataclass(frozen=True)
class EngineSettings:
    """Every tunable the engine reads: thresholds, weights, cache limits."""

    min_draws_trend: int = 3
    min_draws_combination: int = 20
    fold_multiplier: int = 2
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    cold_due_bonus: float = 0.3
    candidate_pool_size: int = 10
    cache_max_size: int = 500
    cache_max_memory_bytes: int = 50 * 1024 * 1024
    cache_ttl_seconds: float = 3600.0
    cache_large_entry_bytes: int = 10_000
    cache_stale_after_seconds: float = 3600.0
    cache_idle_after_seconds: float = 86_400.0
    confidence_level: float = 0.95
    default_folds: int = 5
    correlation_chunk_size: int = 4


def get_game_config(game_type: str) -> dict[str, Any]:
    """Load and cache game config JSON for a given game type."""
    if game_type in _game_config_cache:
        return _game_config_cache[game_type]
    filename = GAME_CONFIG_FILES.get(game_type)
    if not filename:
        raise ValueError(f"Unknown game type: {game_type}")
    path = CONFIG_DIR / filename
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        config = json.load(f)
    _game_config_cache[game_type] = config
    return config


def get_game_spec(game_type: str) -> GameSpec:
    cfg = get_game_config(game_type)
    ranges = tuple((int(lo), int(hi)) for lo, hi in cfg["position_ranges"])
    return GameSpec(name=game_type, position_ranges=ranges)


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return cast(default)
    return cast(raw.strip())


def load_settings(game_type: str | None = None) -> EngineSettings:
    """
    Build EngineSettings from the game's JSON file, then apply DRAWSCORE_*
    environment overrides for cache limits and confidence level.
    """
    cfg = get_game_config(game_type or DEFAULT_GAME)
    min_draws = cfg.get("min_draws", {})
    scoring = cfg.get("scoring", {})
    cache = cfg.get("cache", {})
    validation = cfg.get("validation", {})
    w = scoring.get("weights", {})

    defaults = EngineSettings()
    weights = ScoringWeights(
        due=float(w.get("due", defaults.weights.due)),
        parity=float(w.get("parity", defaults.weights.parity)),
        hot_cold=float(w.get("hot_cold", defaults.weights.hot_cold)),
        transition=float(w.get("transition", defaults.weights.transition)),
        correlation=float(w.get("correlation", defaults.weights.correlation)),
    )

    return EngineSettings(
        min_draws_trend=int(min_draws.get("trend", defaults.min_draws_trend)),
        min_draws_combination=int(min_draws.get("combination", defaults.min_draws_combination)),
        fold_multiplier=int(min_draws.get("fold_multiplier", defaults.fold_multiplier)),
        weights=weights,
        cold_due_bonus=float(scoring.get("cold_due_bonus", defaults.cold_due_bonus)),
        candidate_pool_size=int(scoring.get("candidate_pool_size", defaults.candidate_pool_size)),
        cache_max_size=_env_number(
            "DRAWSCORE_CACHE_MAX_SIZE", cache.get("max_size", defaults.cache_max_size), int
        ),
        cache_max_memory_bytes=_env_number(
            "DRAWSCORE_CACHE_MAX_MEMORY",
            cache.get("max_memory_bytes", defaults.cache_max_memory_bytes),
            int,
        ),
        cache_ttl_seconds=_env_number(
            "DRAWSCORE_CACHE_TTL_SECONDS", cache.get("ttl_seconds", defaults.cache_ttl_seconds)
        ),
        cache_large_entry_bytes=int(
            cache.get("large_entry_bytes", defaults.cache_large_entry_bytes)
        ),
        cache_stale_after_seconds=float(
            cache.get("stale_after_seconds", defaults.cache_stale_after_seconds)
        ),
        cache_idle_after_seconds=float(
            cache.get("idle_after_seconds", defaults.cache_idle_after_seconds)
        ),
        confidence_level=_env_number(
            "DRAWSCORE_CONFIDENCE_LEVEL",
            validation.get("confidence_level", defaults.confidence_level),
        ),
        default_folds=int(validation.get("default_folds", defaults.default_folds)),
        correlation_chunk_size=int(
            cfg.get("correlation", {}).get("chunk_size", defaults.correlation_chunk_size)
        ),
    )
