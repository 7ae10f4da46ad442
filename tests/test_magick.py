from __future__ import annotations

import shutil
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from screenshot_align.config import AlignmentSettings
from screenshot_align.engine import create_engine
from screenshot_align.errors import EngineError
from screenshot_align.magick import MagickEngine, parse_metric_output, parse_subimage_output

HAS_COMPARE = shutil.which("compare") is not None or shutil.which("magick") is not None


def test_parse_subimage_output() -> None:
    assert parse_subimage_output("1234.5 (0.0188) @ 10,20") == (1234.5, 10, 20)
    assert parse_subimage_output("0 (0) @ 0,0\n") == (0.0, 0, 0)
    assert parse_subimage_output("2.5e+03 (0.038) @ 3,4") == (2500.0, 3, 4)


def test_parse_subimage_output_without_marker() -> None:
    with pytest.raises(EngineError):
        parse_subimage_output("compare: image widths or heights differ")
    with pytest.raises(EngineError):
        parse_subimage_output("")


def test_parse_metric_output() -> None:
    assert parse_metric_output("5779.2 (0.0881845)") == pytest.approx(5779.2)
    with pytest.raises(EngineError):
        parse_metric_output("compare: unable to open image")


def test_unknown_engine_rejected() -> None:
    with pytest.raises(ValueError):
        create_engine(AlignmentSettings(engine="gimp"))


def test_missing_binary_raises(monkeypatch) -> None:
    monkeypatch.setattr(shutil, "which", lambda name: None)
    with pytest.raises(EngineError):
        MagickEngine()


@pytest.mark.skipif(not HAS_COMPARE, reason="ImageMagick compare not installed")
def test_subimage_search_through_compare(tmp_path, texture, write_png) -> None:
    img = texture(80, 60, seed=71)
    ref = write_png("ref.png", img)
    tgt = write_png("tgt.png", img[10:40, 20:60])

    match = create_engine(AlignmentSettings(engine="magick")).template_match(ref, tgt)

    assert (match.offset_x, match.offset_y) == (20, 10)
    assert match.score == pytest.approx(0.0, abs=1.0)
