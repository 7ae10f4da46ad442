from __future__ import annotations

from pathlib import Path

from ..types import ImageSize, Offset, StrategyId, StrategyResult
from .base import SearchContext


def phase_correlation_fallback(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Last resort: ``1 - NCC`` of the grey, white-padded images.

    The offset is always ``(0, 0)``; the score is only a rough confidence
    signal, not a registration.
    """

    size = ImageSize(
        max(ctx.reference_size.width, ctx.target_size.width),
        max(ctx.reference_size.height, ctx.target_size.height),
    )
    with ctx.scratch.artifacts("gray-ref", "gray-tgt") as (ref_gray, tgt_gray):
        ctx.engine.grayscale_and_pad(reference, size, ref_gray)
        ctx.engine.grayscale_and_pad(target, size, tgt_gray)
        correlation = ctx.engine.normalized_cross_correlation(ref_gray, tgt_gray)
    return StrategyResult(1.0 - correlation, Offset(0, 0), StrategyId.PHASE)
