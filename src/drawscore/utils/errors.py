"""
src/drawscore/utils/errors.py
Exception types raised by the analysis engine.
"""
from __future__ import annotations


class DrawScoreError(Exception):
    """Base class for every engine error."""


class InsufficientDataError(DrawScoreError, ValueError):
    """Fewer draws than an operation needs to produce a meaningful result."""

    def __init__(self, operation: str, required: int, available: int):
        self.operation = operation
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data for {operation}: need at least {required} draws, got {available}."
        )


class InvalidCombinationError(DrawScoreError, ValueError):
    """Combination has the wrong arity or a value outside its position range."""


class FoldExecutionError(DrawScoreError):
    """A caller-supplied prediction function failed inside a validation fold."""

    def __init__(self, fold_index: int, cause: BaseException):
        self.fold_index = fold_index
        self.cause = cause
        super().__init__(f"Fold {fold_index + 1} failed: {type(cause).__name__}: {cause}")
