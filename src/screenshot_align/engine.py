"""Image-engine capabilities consumed by the alignment strategies.

Images are passed around as paths (``ImageHandle``). Operations that derive a
new raster write it to an output path chosen by the caller, normally an
artifact of the call's :class:`~screenshot_align.scratch.ScratchSpace`.
"""
from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import EngineError
from .types import ImageSize, TemplateMatch

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import AlignmentSettings

ImageHandle = Path

# RMSE scores are reported on ImageMagick's 16-bit quantum scale.
QUANTUM_SCALE = 257.0

logger = logging.getLogger(__name__)


class ImageEngine:
    """Capability set the cascade needs from an image backend."""

    name = "abstract"

    def decode_size(self, image: ImageHandle) -> ImageSize:
        raise NotImplementedError

    def template_match(self, haystack: ImageHandle, needle: ImageHandle) -> TemplateMatch:
        raise NotImplementedError

    def edge_detect(self, image: ImageHandle, out: Path, *, low: int = 50, high: int = 150) -> Path:
        raise NotImplementedError

    def resize(self, image: ImageHandle, percent: float, out: Path) -> Path:
        raise NotImplementedError

    def crop(self, image: ImageHandle, x: int, y: int, width: int, height: int, out: Path) -> Path:
        raise NotImplementedError

    def composite(self, canvas: ImageSize, image: ImageHandle, offset_x: int, offset_y: int, out: Path) -> Path:
        raise NotImplementedError

    def grayscale_and_pad(self, image: ImageHandle, size: ImageSize, out: Path) -> Path:
        raise NotImplementedError

    def normalized_cross_correlation(self, a: ImageHandle, b: ImageHandle) -> float:
        raise NotImplementedError

    def detect_and_compute(self, image: ImageHandle, detector: str, max_features: int):
        raise NotImplementedError

    def match_descriptors(self, query, train) -> List[cv2.DMatch]:
        raise NotImplementedError

    def estimate_homography(
        self, src_pts: np.ndarray, dst_pts: np.ndarray, threshold: float
    ) -> Optional[np.ndarray]:
        raise NotImplementedError

    def warp_perspective(
        self, image: ImageHandle, homography: np.ndarray, size: ImageSize, out: Path
    ) -> Path:
        raise NotImplementedError


def _read_color(path: Path) -> np.ndarray:
    """Load *path* as 8-bit BGR, flattening alpha onto white."""

    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise EngineError(f"could not decode image: {path}")
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.shape[2] == 4:
        alpha = img[:, :, 3:4].astype(np.float32) / 255.0
        rgb = img[:, :, :3].astype(np.float32)
        return (rgb * alpha + 255.0 * (1.0 - alpha)).astype(np.uint8)
    return img


def _read_bgra(path: Path) -> np.ndarray:
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise EngineError(f"could not decode image: {path}")
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    return img


def _write(path: Path, arr: np.ndarray) -> Path:
    try:
        ok = cv2.imwrite(str(path), arr, [cv2.IMWRITE_PNG_COMPRESSION, 1])
    except cv2.error as exc:
        raise EngineError(f"could not write {path}: {exc}") from exc
    if not ok:
        raise EngineError(f"could not write {path}")
    return path


def _save_pil(img: Image.Image, path: Path) -> Path:
    try:
        img.save(path, format="PNG", compress_level=1)
    except (OSError, ValueError) as exc:
        raise EngineError(f"could not write {path}: {exc}") from exc
    return path


def rmse_q16(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        raise EngineError(f"shape mismatch {a.shape} vs {b.shape}")
    if a.size == 0:
        raise EngineError("cannot score empty rasters")
    diff = a.astype(np.float64) - b.astype(np.float64)
    return float(math.sqrt(float(np.mean(diff * diff))) * QUANTUM_SCALE)


def ncc(a: np.ndarray, b: np.ndarray) -> float:
    if a.size == 0 or b.size == 0:
        return float("nan")
    a_mean = float(a.mean())
    b_mean = float(b.mean())
    a_std = float(a.std())
    b_std = float(b.std())
    if a_std <= 1e-9 or b_std <= 1e-9:
        # Flat rasters: identical flats correlate perfectly, anything else not at all.
        return 1.0 if a_std <= 1e-9 and b_std <= 1e-9 and abs(a_mean - b_mean) <= 1e-9 else 0.0
    return float(((a - a_mean) * (b - b_mean)).mean() / (a_std * b_std))


class OpenCVEngine(ImageEngine):
    name = "opencv"

    def decode_size(self, image: ImageHandle) -> ImageSize:
        try:
            with Image.open(image) as img:
                width, height = img.size
        except OSError as exc:
            raise EngineError(f"could not read image size of {image}: {exc}") from exc
        return ImageSize(int(width), int(height))

    def template_match(self, haystack: ImageHandle, needle: ImageHandle) -> TemplateMatch:
        hay = _read_color(haystack)
        ndl = _read_color(needle)
        h, w = ndl.shape[:2]
        if h > hay.shape[0] or w > hay.shape[1]:
            raise EngineError(
                f"needle {w}x{h} does not fit haystack {hay.shape[1]}x{hay.shape[0]}"
            )
        if (h, w) == hay.shape[:2]:
            x, y = 0, 0
        else:
            res = cv2.matchTemplate(hay, ndl, cv2.TM_SQDIFF)
            _, _, min_loc, _ = cv2.minMaxLoc(res)
            x, y = int(min_loc[0]), int(min_loc[1])
        # TM_SQDIFF accumulates in float32; rescore the winning window exactly.
        score = rmse_q16(hay[y : y + h, x : x + w], ndl)
        return TemplateMatch(score=score, offset_x=x, offset_y=y)

    def edge_detect(self, image: ImageHandle, out: Path, *, low: int = 50, high: int = 150) -> Path:
        gray = cv2.cvtColor(_read_color(image), cv2.COLOR_BGR2GRAY)
        edges = cv2.Canny(gray, low, high)
        return _write(out, cv2.bitwise_not(edges))

    def resize(self, image: ImageHandle, percent: float, out: Path) -> Path:
        if percent <= 0:
            raise EngineError("resize percent must be positive")
        img = _read_color(image)
        factor = percent / 100.0
        new_w = max(1, int(round(img.shape[1] * factor)))
        new_h = max(1, int(round(img.shape[0] * factor)))
        resized = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)
        return _write(out, resized)

    def crop(self, image: ImageHandle, x: int, y: int, width: int, height: int, out: Path) -> Path:
        img = _read_bgra(image)
        if x < 0 or y < 0 or width <= 0 or height <= 0:
            raise EngineError(f"invalid crop rectangle {width}x{height}+{x}+{y}")
        if x + width > img.shape[1] or y + height > img.shape[0]:
            raise EngineError(
                f"crop {width}x{height}+{x}+{y} exceeds {img.shape[1]}x{img.shape[0]}"
            )
        return _write(out, img[y : y + height, x : x + width])

    def composite(self, canvas: ImageSize, image: ImageHandle, offset_x: int, offset_y: int, out: Path) -> Path:
        try:
            with Image.open(image) as src:
                layer = src.convert("RGBA")
        except OSError as exc:
            raise EngineError(f"could not read {image}: {exc}") from exc
        board = Image.new("RGBA", (canvas.width, canvas.height), (0, 0, 0, 0))
        board.paste(layer, (int(offset_x), int(offset_y)))
        return _save_pil(board, out)

    def grayscale_and_pad(self, image: ImageHandle, size: ImageSize, out: Path) -> Path:
        try:
            with Image.open(image) as src:
                gray = src.convert("L")
        except OSError as exc:
            raise EngineError(f"could not read {image}: {exc}") from exc
        padded = Image.new("L", (size.width, size.height), 255)
        padded.paste(gray, (0, 0))
        return _save_pil(padded, out)

    def normalized_cross_correlation(self, a: ImageHandle, b: ImageHandle) -> float:
        img_a = cv2.imread(str(a), cv2.IMREAD_GRAYSCALE)
        img_b = cv2.imread(str(b), cv2.IMREAD_GRAYSCALE)
        if img_a is None or img_b is None:
            raise EngineError(f"could not decode {a if img_a is None else b}")
        if img_a.shape != img_b.shape:
            raise EngineError(f"NCC needs equal shapes, got {img_a.shape} vs {img_b.shape}")
        value = ncc(img_a.astype(np.float64), img_b.astype(np.float64))
        if not math.isfinite(value):
            raise EngineError("NCC is undefined for empty rasters")
        return value

    def detect_and_compute(self, image: ImageHandle, detector: str, max_features: int):
        gray = cv2.imread(str(image), cv2.IMREAD_GRAYSCALE)
        if gray is None:
            raise EngineError(f"could not decode image: {image}")
        if detector == "akaze":
            feature_detector = cv2.AKAZE_create()
        elif detector == "brisk":
            feature_detector = cv2.BRISK_create()
        else:
            feature_detector = cv2.ORB_create(nfeatures=int(max_features))
        try:
            keypoints, descriptors = feature_detector.detectAndCompute(gray, None)
        except cv2.error as exc:
            raise EngineError(f"{detector} detection failed: {exc}") from exc
        return list(keypoints), descriptors

    def match_descriptors(self, query, train) -> List[cv2.DMatch]:
        if query is None or train is None or len(query) == 0 or len(train) == 0:
            return []
        matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=True)
        try:
            return list(matcher.match(query, train))
        except cv2.error as exc:
            raise EngineError(f"descriptor matching failed: {exc}") from exc

    def estimate_homography(
        self, src_pts: np.ndarray, dst_pts: np.ndarray, threshold: float
    ) -> Optional[np.ndarray]:
        src = np.asarray(src_pts, dtype=np.float32).reshape(-1, 1, 2)
        dst = np.asarray(dst_pts, dtype=np.float32).reshape(-1, 1, 2)
        try:
            H, _mask = cv2.findHomography(src, dst, cv2.RANSAC, float(threshold))
        except cv2.error as exc:
            raise EngineError(f"homography estimation failed: {exc}") from exc
        if H is None or H.shape != (3, 3) or not np.all(np.isfinite(H)):
            return None
        return H

    def warp_perspective(
        self, image: ImageHandle, homography: np.ndarray, size: ImageSize, out: Path
    ) -> Path:
        img = _read_bgra(image)
        warped = cv2.warpPerspective(
            img,
            np.asarray(homography, dtype=np.float64),
            (size.width, size.height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )
        return _write(out, warped)


def create_engine(settings: "AlignmentSettings") -> ImageEngine:
    if settings.engine == "opencv":
        return OpenCVEngine()
    if settings.engine == "magick":
        from .magick import MagickEngine

        return MagickEngine()
    raise ValueError(f"unknown engine {settings.engine!r}; expected 'opencv' or 'magick'")


def points_from_matches(
    keypoints: Sequence[cv2.KeyPoint], matches: Sequence[cv2.DMatch], *, query: bool
) -> np.ndarray:
    """Return matched keypoint coordinates as an ``(N, 2)`` float array."""

    if query:
        coords: List[Tuple[float, float]] = [keypoints[m.queryIdx].pt for m in matches]
    else:
        coords = [keypoints[m.trainIdx].pt for m in matches]
    return np.asarray(coords, dtype=np.float64).reshape(-1, 2)
