"""Keypoint matching and RANSAC homography estimation (opt-in strategy)."""
from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np

from ..engine import points_from_matches
from ..errors import StrategyFailure
from ..types import FeatureMatchResult, HomographyDecomposition
from .base import SearchContext

logger = logging.getLogger(__name__)


def decompose_homography(H: np.ndarray) -> HomographyDecomposition:
    """Read translation, per-axis scale and rotation off the upper 2x3 block.

    This is exact for similarity transforms only; perspective terms are
    ignored.
    """

    H = np.asarray(H, dtype=np.float64)
    a, b = float(H[0, 0]), float(H[0, 1])
    c, d = float(H[1, 0]), float(H[1, 1])
    return HomographyDecomposition(
        translation=(float(H[0, 2]), float(H[1, 2])),
        scale=(math.hypot(a, c), math.hypot(b, d)),
        rotation_deg=math.degrees(math.atan2(c, a)),
    )


def count_inliers(H: np.ndarray, src: np.ndarray, dst: np.ndarray, threshold: float) -> int:
    """Count correspondences whose reprojection ``H @ src`` lands within *threshold* of *dst*."""

    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if src.size == 0:
        return 0
    homog = np.hstack([src, np.ones((src.shape[0], 1))]) @ np.asarray(H, dtype=np.float64).T
    w = homog[:, 2]
    valid = np.abs(w) > 1e-12
    projected = np.full_like(src, np.inf)
    projected[valid] = homog[valid, :2] / w[valid, None]
    dist = np.linalg.norm(projected - dst, axis=1)
    return int(np.count_nonzero(dist < threshold))


def feature_based_search(reference: Path, target: Path, ctx: SearchContext) -> FeatureMatchResult:
    """Estimate a target-to-reference homography from keypoint matches.

    Fewer than ``min_matches`` retained correspondences fail the strategy
    before any homography is attempted.
    """

    settings = ctx.settings
    detector = ctx.options.opencv_detector or settings.detector
    ref_kps, ref_desc = ctx.engine.detect_and_compute(reference, detector, settings.max_features)
    tgt_kps, tgt_desc = ctx.engine.detect_and_compute(target, detector, settings.max_features)
    logger.debug("%s keypoints: reference=%d target=%d", detector, len(ref_kps), len(tgt_kps))

    matches = sorted(ctx.engine.match_descriptors(ref_desc, tgt_desc), key=lambda m: m.distance)
    good = matches[: int(math.floor(len(matches) * settings.match_threshold))]
    if len(good) < settings.min_matches:
        raise StrategyFailure(f"not enough good matches: {len(good)}")

    ref_pts = points_from_matches(ref_kps, good, query=True)
    tgt_pts = points_from_matches(tgt_kps, good, query=False)

    H = ctx.engine.estimate_homography(tgt_pts, ref_pts, settings.ransac_threshold)
    if H is None:
        raise StrategyFailure("homography estimation returned no transform")

    inliers = count_inliers(H, tgt_pts, ref_pts, settings.inlier_threshold)
    confidence = inliers / len(good)
    transform = decompose_homography(H)
    logger.debug(
        "homography: inliers=%d/%d confidence=%.3f translation=(%.1f, %.1f)",
        inliers,
        len(good),
        confidence,
        transform.translation[0],
        transform.translation[1],
    )
    return FeatureMatchResult(
        homography=tuple(tuple(float(v) for v in row) for row in H),
        inliers=inliers,
        total_matches=len(good),
        confidence=confidence,
        transform=transform,
    )
