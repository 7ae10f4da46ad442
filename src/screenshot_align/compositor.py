from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from .engine import ImageEngine
from .errors import AlignmentError
from .types import ImageSize, MatchingRegion, Offset

logger = logging.getLogger(__name__)


def matching_region(reference: ImageSize, target: ImageSize, offset: Offset) -> MatchingRegion:
    """Overlap of the reference canvas and the target placed at *offset*."""

    x0 = max(0, offset.x)
    y0 = max(0, offset.y)
    x1 = min(reference.width, offset.x + target.width)
    y1 = min(reference.height, offset.y + target.height)
    width = max(0, x1 - x0)
    height = max(0, y1 - y0)
    if width == 0 or height == 0:
        return MatchingRegion(x=0, y=0, width=0, height=0)
    return MatchingRegion(x=x0, y=y0, width=width, height=height)


def compose_aligned(
    engine: ImageEngine,
    reference: ImageSize,
    target: Path,
    offset: Offset,
    output_path: Path,
) -> Path:
    """Write *target* shifted by *offset* onto a transparent reference-sized canvas."""

    output_path = Path(output_path)
    try:
        engine.composite(reference, target, offset.x, offset.y, output_path)
    except Exception as exc:
        raise AlignmentError(f"could not write aligned image {output_path}: {exc}") from exc
    logger.debug("aligned image written to %s (offset %d, %d)", output_path, offset.x, offset.y)
    return output_path


def compose_warped(
    engine: ImageEngine,
    reference: ImageSize,
    target: Path,
    homography: Sequence[Sequence[float]],
    output_path: Path,
) -> Path:
    """Write *target* warped by a target-to-reference homography."""

    output_path = Path(output_path)
    try:
        engine.warp_perspective(target, np.asarray(homography, dtype=np.float64), reference, output_path)
    except Exception as exc:
        raise AlignmentError(f"could not write warped image {output_path}: {exc}") from exc
    logger.debug("warped image written to %s", output_path)
    return output_path
