from __future__ import annotations

import logging
from pathlib import Path

from ..types import StrategyId, StrategyResult
from .base import SearchContext
from .subimage import search_either_way

logger = logging.getLogger(__name__)


def edge_based_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Subimage search on downsampled, inverted Canny edge maps.

    Edge maps survive theme and colour changes that defeat pixel RMSE. The
    search runs at ``1 / edge_downsample`` resolution and the offset is
    multiplied back, so precision is limited to the downsample factor.
    """

    settings = ctx.settings
    factor = settings.edge_downsample
    percent = 100.0 / factor
    with ctx.scratch.artifacts("edge-ref", "edge-tgt", "edge-ref-small", "edge-tgt-small") as (
        ref_edges,
        tgt_edges,
        ref_small,
        tgt_small,
    ):
        ctx.engine.edge_detect(reference, ref_edges, low=settings.canny_low, high=settings.canny_high)
        ctx.engine.edge_detect(target, tgt_edges, low=settings.canny_low, high=settings.canny_high)
        ctx.engine.resize(ref_edges, percent, ref_small)
        ctx.engine.resize(tgt_edges, percent, tgt_small)
        ref_small_size = ctx.engine.decode_size(ref_small)
        tgt_small_size = ctx.engine.decode_size(tgt_small)
        logger.debug(
            "edge maps downsampled x%d: ref=%dx%d tgt=%dx%d",
            factor,
            ref_small_size.width,
            ref_small_size.height,
            tgt_small_size.width,
            tgt_small_size.height,
        )
        found = search_either_way(
            ctx.engine, ref_small, tgt_small, ref_small_size, tgt_small_size, StrategyId.EDGE
        )
    return StrategyResult(found.score, found.offset.scaled(factor), StrategyId.EDGE)
