from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from screenshot_align.engine import OpenCVEngine, ncc
from screenshot_align.scratch import ScratchSpace
from screenshot_align.strategies import SearchContext, phase_correlation_fallback
from screenshot_align.types import Offset, StrategyId


def _run(tmp_path, ref, tgt):
    engine = OpenCVEngine()
    with ScratchSpace(tmp_path / "scratch") as scratch:
        ctx = SearchContext(
            engine=engine,
            scratch=scratch,
            reference_size=engine.decode_size(ref),
            target_size=engine.decode_size(tgt),
        )
        result = phase_correlation_fallback(ref, tgt, ctx)
        leftovers = scratch.live_artifacts()
    return result, leftovers


def test_identical_images_score_zero(tmp_path, texture, write_png) -> None:
    img = texture(120, 90, seed=51)
    result, leftovers = _run(tmp_path, write_png("ref.png", img), write_png("tgt.png", img.copy()))

    assert result.method is StrategyId.PHASE
    assert result.offset == Offset(0, 0)
    assert result.score == pytest.approx(0.0, abs=1e-9)
    assert leftovers == []


def test_unrelated_images_score_higher(tmp_path, texture, write_png) -> None:
    ref = write_png("ref.png", texture(120, 90, seed=52))
    tgt = write_png("tgt.png", texture(80, 100, seed=53))
    result, _ = _run(tmp_path, ref, tgt)

    assert result.offset == Offset(0, 0)
    assert 0.5 < result.score <= 2.0


def test_ncc_of_flat_rasters() -> None:
    flat = np.full((4, 4), 200.0)
    assert ncc(flat, flat.copy()) == 1.0
    assert ncc(flat, np.full((4, 4), 10.0)) == 0.0
    ramp = np.arange(16, dtype=np.float64).reshape(4, 4)
    assert ncc(ramp, -ramp) == pytest.approx(-1.0)
