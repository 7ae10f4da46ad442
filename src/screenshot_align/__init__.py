"""Multi-strategy alignment of UI screenshots ahead of pixel diffing."""

from .align import align_images
from .batch import BatchReport, align_batch, pair_directories
from .cascade import AlignmentCascade, CascadeStep
from .config import AlignmentSettings
from .errors import AlignmentError, EngineError, StrategyFailure
from .types import AlignmentOptions, AlignmentResult, MatchingRegion, Offset, StrategyId

__all__ = [
    "AlignmentCascade",
    "AlignmentError",
    "AlignmentOptions",
    "AlignmentResult",
    "AlignmentSettings",
    "BatchReport",
    "CascadeStep",
    "EngineError",
    "MatchingRegion",
    "Offset",
    "StrategyFailure",
    "StrategyId",
    "align_batch",
    "align_images",
    "pair_directories",
]
