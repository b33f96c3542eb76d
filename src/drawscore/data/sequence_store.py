"""
src/drawscore/data/sequence_store.py
Read-only access to the ordered draw history.
The engine only ever sees draws through get_draws(); how they are fetched
and persisted belongs to the ingestion side.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable, Protocol

from drawscore.models.types import Draw, GameSpec, Snapshot
from drawscore.utils.logger import get_logger

log = get_logger("data.store")


@dataclass(frozen=True)
class DrawFilter:
    start_date: str | None = None   # inclusive, ISO date
    end_date: str | None = None     # inclusive, ISO date
    last_n: int | None = None       # keep only the most recent N after date filtering


class SequenceStore(Protocol):
    def get_draws(self, draw_filter: DrawFilter | None = None) -> list[Draw]:
        """Draws sorted ascending by date."""


class InMemorySequenceStore:
    """Sequence store backed by a tuple of draws, sorted once on construction."""

    def __init__(self, draws: Iterable[Draw] = ()):
        # Stable sort keeps ingestion order for same-date draws (AM/PM sessions)
        self._draws: tuple[Draw, ...] = tuple(sorted(draws, key=lambda d: d.date))

    def __len__(self) -> int:
        return len(self._draws)

    def get_draws(self, draw_filter: DrawFilter | None = None) -> list[Draw]:
        draws = list(self._draws)
        if draw_filter is None:
            return draws
        if draw_filter.start_date:
            draws = [d for d in draws if d.date >= draw_filter.start_date]
        if draw_filter.end_date:
            draws = [d for d in draws if d.date <= draw_filter.end_date]
        if draw_filter.last_n is not None:
            draws = draws[-draw_filter.last_n:] if draw_filter.last_n > 0 else []
        return draws

    def with_draws(self, draws: Iterable[Draw]) -> "InMemorySequenceStore":
        """Return a new store with extra draws appended; this store is left untouched."""
        return InMemorySequenceStore([*self._draws, *draws])


def take_snapshot(store: SequenceStore, draw_filter: DrawFilter | None = None) -> Snapshot:
    return Snapshot.from_draws(store.get_draws(draw_filter))


def draws_from_rows(rows: Iterable[Iterable[int]], start_date: str = "2000-01-01") -> list[Draw]:
    """
    Build draws from bare value rows (oldest first). Dates are synthesised
    as consecutive days so the rows keep their order once sorted.
    """
    base = date.fromisoformat(start_date)
    return [
        Draw(date=(base + timedelta(days=i)).isoformat(), values=tuple(row), draw_id=str(i + 1))
        for i, row in enumerate(rows)
    ]


def load_jsonl(path: str | Path, game: GameSpec) -> InMemorySequenceStore:
    """
    Load draws from a JSONL file with one {"id", "date", "result": [...]} object per line.
    Rows that are short, out of range or not valid JSON are skipped and logged.
    """
    draws: list[Draw] = []
    skipped = 0
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                values = game.validate_combination(data.get("result", [])[: game.arity])
            except ValueError as exc:
                skipped += 1
                log.warning(f"{path}:{line_no} skipped: {exc}")
                continue
            draws.append(
                Draw(date=str(data.get("date", "")), values=values, draw_id=str(data.get("id", line_no)))
            )
    log.info(f"Loaded {len(draws)} draws from {path} ({skipped} skipped)")
    return InMemorySequenceStore(draws)
