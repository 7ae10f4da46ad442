from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from .cascade import AlignmentCascade
from .compositor import compose_aligned, compose_warped, matching_region
from .config import AlignmentSettings
from .engine import ImageEngine, create_engine
from .errors import AlignmentError, EngineError
from .metrics import Timer
from .scratch import ScratchSpace
from .strategies import SearchContext
from .types import AlignmentOptions, AlignmentResult, Offset, StrategyId

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def align_images(
    reference_path: PathLike,
    target_path: PathLike,
    output_path: PathLike,
    options: Optional[AlignmentOptions] = None,
    *,
    settings: Optional[AlignmentSettings] = None,
    engine: Optional[ImageEngine] = None,
    cascade: Optional[AlignmentCascade] = None,
    log: Optional[logging.Logger] = None,
) -> AlignmentResult:
    """Align *target_path* onto *reference_path* and write the result to *output_path*.

    Individual strategy failures never abort the call; if every strategy
    fails the identity offset is used. Unreadable inputs, an unavailable
    engine and an unwritable output raise :class:`AlignmentError`.
    """

    options = options or AlignmentOptions()
    settings = settings or AlignmentSettings()
    if engine is None:
        try:
            engine = create_engine(settings)
        except EngineError as exc:
            raise AlignmentError(f"image engine unavailable: {exc}") from exc
    cascade = cascade or AlignmentCascade(log=log)
    reference = Path(reference_path)
    target = Path(target_path)
    output = Path(output_path)

    try:
        reference_size = engine.decode_size(reference)
        target_size = engine.decode_size(target)
    except EngineError as exc:
        raise AlignmentError(f"cannot read input images: {exc}") from exc

    logger.info(
        "aligning %s (%dx%d) onto %s (%dx%d) method=%s engine=%s",
        target.name,
        target_size.width,
        target_size.height,
        reference.name,
        reference_size.width,
        reference_size.height,
        options.method,
        engine.name,
    )

    with ScratchSpace(settings.scratch_dir) as scratch:
        ctx = SearchContext(
            engine=engine,
            scratch=scratch,
            reference_size=reference_size,
            target_size=target_size,
            settings=settings,
            options=options,
        )
        with Timer("align.cascade", logger=logger):
            state = cascade.run(reference, target, ctx)

        best = state.best
        offset = best.offset if state.has_candidate else Offset(0, 0)
        if state.feature is not None and best.method is StrategyId.FEATURE:
            compose_warped(engine, reference_size, target, state.feature.homography, output)
        else:
            compose_aligned(engine, reference_size, target, offset, output)

    region = matching_region(reference_size, target_size, offset)
    logger.info(
        "aligned with %s: offset=(%d, %d) region=%dx%d+%d+%d",
        best.method.value,
        offset.x,
        offset.y,
        region.width,
        region.height,
        region.x,
        region.y,
    )
    return AlignmentResult(
        aligned_path=str(output),
        offset=offset,
        matching_region=region,
        method=best.method,
        score=best.score,
        attempts=list(state.attempts),
        feature=state.feature,
    )
