from __future__ import annotations


class AlignmentError(RuntimeError):
    """Fatal alignment failure (unreadable inputs or an unwritable output)."""


class EngineError(RuntimeError):
    """An image-engine call failed or produced output that could not be parsed."""


class StrategyFailure(RuntimeError):
    """A strategy finished without producing a candidate."""
