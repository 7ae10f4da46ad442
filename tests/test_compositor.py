from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from screenshot_align.compositor import compose_aligned, compose_warped, matching_region
from screenshot_align.engine import OpenCVEngine
from screenshot_align.errors import AlignmentError
from screenshot_align.types import ImageSize, MatchingRegion, Offset


@pytest.mark.parametrize(
    "offset, expected",
    [
        (Offset(0, 0), MatchingRegion(0, 0, 60, 40)),
        (Offset(20, -10), MatchingRegion(20, 0, 60, 30)),
        (Offset(-30, 15), MatchingRegion(0, 15, 30, 40)),
        (Offset(500, 0), MatchingRegion(0, 0, 0, 0)),
        (Offset(0, -40), MatchingRegion(0, 0, 0, 0)),
    ],
)
def test_matching_region(offset, expected) -> None:
    assert matching_region(ImageSize(100, 80), ImageSize(60, 40), offset) == expected


def test_matching_region_never_exceeds_smaller_image() -> None:
    ref, tgt = ImageSize(100, 80), ImageSize(120, 50)
    for dx in range(-150, 151, 25):
        for dy in range(-100, 101, 20):
            region = matching_region(ref, tgt, Offset(dx, dy))
            assert 0 <= region.width <= min(ref.width, tgt.width)
            assert 0 <= region.height <= min(ref.height, tgt.height)


def test_compose_aligned_places_target_on_transparent_canvas(tmp_path, write_png) -> None:
    tgt = write_png("tgt.png", np.full((10, 20, 3), (255, 0, 0), dtype=np.uint8))
    out = compose_aligned(OpenCVEngine(), ImageSize(50, 40), tgt, Offset(5, -3), tmp_path / "out.png")

    with Image.open(out) as img:
        rgba = np.asarray(img.convert("RGBA"))
    assert rgba.shape == (40, 50, 4)
    assert tuple(rgba[0, 5]) == (255, 0, 0, 255)
    assert tuple(rgba[6, 24]) == (255, 0, 0, 255)
    assert rgba[7, 5, 3] == 0
    assert rgba[0, 4, 3] == 0


def test_compose_warped_identity(tmp_path, texture, write_png) -> None:
    tgt = write_png("tgt.png", texture(30, 20, seed=61))
    identity = ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0))
    out = compose_warped(OpenCVEngine(), ImageSize(40, 25), tgt, identity, tmp_path / "out.png")

    with Image.open(out) as img:
        assert img.size == (40, 25)
        assert img.mode == "RGBA"


def test_unwritable_output_raises_alignment_error(tmp_path, write_png) -> None:
    tgt = write_png("tgt.png", np.zeros((10, 10, 3), dtype=np.uint8))
    with pytest.raises(AlignmentError):
        compose_aligned(OpenCVEngine(), ImageSize(10, 10), tgt, Offset(0, 0), tmp_path / "missing" / "out.png")
