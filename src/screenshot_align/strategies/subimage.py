"""Direct and reverse subimage search on full-resolution rasters."""
from __future__ import annotations

import logging
from pathlib import Path

from ..engine import ImageEngine
from ..errors import EngineError, StrategyFailure
from ..types import ImageSize, Offset, StrategyId, StrategyResult
from .base import SearchContext

logger = logging.getLogger(__name__)


def direct_subimage_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Locate *target* inside *reference*; the offset is the target's top-left."""

    if not ctx.target_fits_reference:
        raise StrategyFailure("target is larger than reference")
    match = ctx.engine.template_match(reference, target)
    return StrategyResult(
        score=match.score,
        offset=Offset(match.offset_x, match.offset_y),
        method=StrategyId.TARGET_IN_REF,
    )


def reverse_subimage_search(reference: Path, target: Path, ctx: SearchContext) -> StrategyResult:
    """Locate *reference* inside *target*.

    The returned offset is the reference's position inside the target, i.e.
    the search-direction value. Callers negate it to obtain the displacement
    to apply to the target.
    """

    if not ctx.reference_fits_target:
        raise StrategyFailure("reference is larger than target")
    match = ctx.engine.template_match(target, reference)
    return StrategyResult(
        score=match.score,
        offset=Offset(match.offset_x, match.offset_y),
        method=StrategyId.REF_IN_TARGET,
    )


def search_either_way(
    engine: ImageEngine,
    reference: Path,
    target: Path,
    reference_size: ImageSize,
    target_size: ImageSize,
    method: StrategyId,
) -> StrategyResult:
    """Direct search, falling back to a reverse search with the offset negated.

    Used on derived rasters (edge maps, downscaled copies) whose sizes differ
    from the originals.
    """

    direct_error = None
    if target_size.fits_inside(reference_size):
        try:
            match = engine.template_match(reference, target)
            return StrategyResult(match.score, Offset(match.offset_x, match.offset_y), method)
        except EngineError as exc:
            logger.debug("%s: direct search failed (%s), trying reverse", method.value, exc)
            direct_error = exc
    if reference_size.fits_inside(target_size):
        match = engine.template_match(target, reference)
        return StrategyResult(match.score, -Offset(match.offset_x, match.offset_y), method)
    if direct_error is not None:
        raise StrategyFailure(f"{method.value}: direct search failed: {direct_error}")
    raise StrategyFailure(
        f"{method.value}: neither {target_size.width}x{target_size.height} nor "
        f"{reference_size.width}x{reference_size.height} fits inside the other"
    )
