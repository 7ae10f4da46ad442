from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional, Tuple

from ..errors import EngineError, StrategyFailure
from ..types import ImageSize, Offset, StrategyId, StrategyResult
from .base import SearchContext

logger = logging.getLogger(__name__)


def center_crop_origin(size: ImageSize, crop_w: int, crop_h: int) -> Tuple[int, int]:
    return (size.width - crop_w) // 2, (size.height - crop_h) // 2


def cropped_region_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Compare equal-size centre crops of both images at each configured size.

    The winning crop size yields ``target_origin - reference_origin`` as the
    offset. Crop sizes larger than either image are skipped.
    """

    ref_size = ctx.reference_size
    tgt_size = ctx.target_size
    best: Optional[StrategyResult] = None

    for crop_w, crop_h in ctx.settings.crop_sizes:
        if crop_w > min(ref_size.width, tgt_size.width) or crop_h > min(ref_size.height, tgt_size.height):
            logger.debug("crop %dx%d skipped: larger than an input", crop_w, crop_h)
            continue
        ref_x, ref_y = center_crop_origin(ref_size, crop_w, crop_h)
        tgt_x, tgt_y = center_crop_origin(tgt_size, crop_w, crop_h)
        with ctx.scratch.artifacts("crop-ref", "crop-tgt") as (ref_crop, tgt_crop):
            try:
                ctx.engine.crop(reference, ref_x, ref_y, crop_w, crop_h, ref_crop)
                ctx.engine.crop(target, tgt_x, tgt_y, crop_w, crop_h, tgt_crop)
                score = ctx.engine.template_match(ref_crop, tgt_crop).score
            except EngineError as exc:
                logger.debug("crop %dx%d failed: %s", crop_w, crop_h, exc)
                continue
        logger.debug("crop %dx%d score=%.2f", crop_w, crop_h, score)
        if not math.isfinite(score):
            continue
        if best is None or score < best.score:
            best = StrategyResult(score, Offset(tgt_x - ref_x, tgt_y - ref_y), StrategyId.CROPPED)

    if best is None:
        raise StrategyFailure("no crop size could be compared")
    return best
