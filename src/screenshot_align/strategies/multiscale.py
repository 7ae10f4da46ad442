from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import List, Optional

from ..errors import EngineError, StrategyFailure
from ..types import ImageSize, Offset, StrategyId, StrategyResult
from .base import SearchContext
from .subimage import search_either_way

logger = logging.getLogger(__name__)


def grid_offsets(reference_dim: int, target_dim: int, step: int, margin: int) -> List[int]:
    """Symmetric candidate offsets on a fixed step, always including zero."""

    reach = abs(reference_dim - target_dim) + margin
    n = reach // step
    return [k * step for k in range(-n, n + 1)]


def sizes_comparable(a: ImageSize, b: ImageSize, min_ratio: float) -> bool:
    if min(a.width, b.width, a.height, b.height) <= 0:
        return False
    width_ratio = min(a.width, b.width) / max(a.width, b.width)
    height_ratio = min(a.height, b.height) / max(a.height, b.height)
    return width_ratio >= min_ratio and height_ratio >= min_ratio


def grid_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Brute-force translation search at full resolution.

    Each candidate composites the target onto a reference-sized canvas and is
    scored against the reference by RMSE.
    """

    ref_size = ctx.reference_size
    tgt_size = ctx.target_size
    if not sizes_comparable(ref_size, tgt_size, ctx.settings.min_size_ratio):
        raise StrategyFailure("sizes differ too much for a grid search")

    step = ctx.settings.grid_step
    margin = ctx.settings.grid_margin
    xs = grid_offsets(ref_size.width, tgt_size.width, step, margin)
    ys = grid_offsets(ref_size.height, tgt_size.height, step, margin)
    logger.debug("grid search over %d x %d candidates", len(xs), len(ys))

    best: Optional[StrategyResult] = None
    for dy in ys:
        for dx in xs:
            with ctx.scratch.artifact("grid") as canvas:
                ctx.engine.composite(ref_size, target, dx, dy, canvas)
                score = ctx.engine.template_match(reference, canvas).score
            if best is None or score < best.score:
                best = StrategyResult(score, Offset(dx, dy), StrategyId.MULTISCALE)
    if best is None:
        raise StrategyFailure("grid search produced no candidates")
    return best


def _scaled_search(reference: Path, target: Path, scale: float, ctx: SearchContext) -> StrategyResult:
    percent = scale * 100.0
    with ctx.scratch.artifacts("scaled-ref", "scaled-tgt") as (ref_small, tgt_small):
        ctx.engine.resize(reference, percent, ref_small)
        ctx.engine.resize(target, percent, tgt_small)
        found = search_either_way(
            ctx.engine,
            ref_small,
            tgt_small,
            ctx.engine.decode_size(ref_small),
            ctx.engine.decode_size(tgt_small),
            StrategyId.MULTISCALE,
        )
    return StrategyResult(found.score, found.offset.scaled(1.0 / scale), StrategyId.MULTISCALE)


def multi_scale_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Full-scale grid search plus subimage searches on downscaled copies."""

    best: Optional[StrategyResult] = None
    for scale in ctx.settings.scales:
        try:
            if math.isclose(scale, 1.0):
                candidate = grid_search(reference, target, ctx)
            else:
                candidate = _scaled_search(reference, target, scale, ctx)
        except (EngineError, StrategyFailure) as exc:
            logger.debug("multi-scale %.2f: no candidate (%s)", scale, exc)
            continue
        logger.debug(
            "multi-scale %.2f: score=%.2f offset=(%d, %d)",
            scale,
            candidate.score,
            candidate.offset.x,
            candidate.offset.y,
        )
        if best is None or candidate.score < best.score:
            best = candidate
    if best is None:
        raise StrategyFailure("no scale produced a candidate")
    return best
