from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import numpy as np
from PIL import Image


def _run_cli(args: list, cwd: Path) -> subprocess.CompletedProcess:
    env = os.environ.copy()
    project_root = Path(__file__).resolve().parents[1]
    src_path = project_root / "src"
    pythonpath = env.get("PYTHONPATH", "")
    new_path = str(src_path)
    if pythonpath:
        new_path = os.pathsep.join([new_path, pythonpath])
    env["PYTHONPATH"] = new_path
    return subprocess.run(
        [sys.executable, "-m", "screenshot_align.cli", *args],
        cwd=str(cwd),
        env=env,
        text=True,
        capture_output=True,
    )


def _save(path: Path, arr: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(arr).save(path)
    return path


def test_align_command_prints_json(tmp_path: Path, texture) -> None:
    img = texture(160, 120, seed=101)
    ref = _save(tmp_path / "ref.png", img)
    tgt = _save(tmp_path / "tgt.png", img[12:92, 16:136])
    out = tmp_path / "out.png"

    proc = _run_cli(["align", str(ref), str(tgt), str(out), "--json"], tmp_path)

    assert proc.returncode == 0, proc.stderr
    payload = json.loads(proc.stdout)
    assert payload["offset"] == {"x": 16, "y": 12}
    assert payload["method"] == "target-in-ref"
    assert payload["matching_region"] == {"x": 16, "y": 12, "width": 120, "height": 80}
    assert Path(payload["aligned_path"]).resolve() == out.resolve()
    assert out.exists()


def test_align_command_applies_config_overrides(tmp_path: Path, texture) -> None:
    img = texture(100, 80, seed=102)
    ref = _save(tmp_path / "ref.png", img)
    tgt = _save(tmp_path / "tgt.png", img[10:70, 10:90])
    config = tmp_path / "align.yaml"
    config.write_text("thresholds:\n  edge: 1000\n", encoding="utf-8")

    proc = _run_cli(
        [
            "align",
            str(ref),
            str(tgt),
            str(tmp_path / "out.png"),
            "--config",
            str(config),
            "--opts",
            "thresholds.edge=-1",
            "--json",
        ],
        tmp_path,
    )

    assert proc.returncode == 0, proc.stderr
    statuses = {a["method"]: a["status"] for a in json.loads(proc.stdout)["attempts"]}
    # A negative threshold forces the edge search even after a perfect match.
    assert statuses["edge-based"] != "skipped"


def test_align_command_rejects_unknown_method(tmp_path: Path, texture) -> None:
    img = texture(40, 30)
    ref = _save(tmp_path / "ref.png", img)
    tgt = _save(tmp_path / "tgt.png", img)

    proc = _run_cli(["align", str(ref), str(tgt), str(tmp_path / "out.png"), "--method", "magic"], tmp_path)

    assert proc.returncode == 2
    assert "unknown alignment method" in proc.stderr


def test_align_command_reports_unreadable_input(tmp_path: Path, texture) -> None:
    ref = _save(tmp_path / "ref.png", texture(40, 30))
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"garbage")

    proc = _run_cli(["align", str(ref), str(broken), str(tmp_path / "out.png")], tmp_path)

    assert proc.returncode == 2
    assert "cannot read input images" in proc.stderr


def test_batch_command(tmp_path: Path, texture) -> None:
    img = texture(120, 90, seed=103)
    _save(tmp_path / "ref" / "a.png", img)
    _save(tmp_path / "tgt" / "a.png", img[6:66, 8:88])
    _save(tmp_path / "ref" / "b.png", img)
    _save(tmp_path / "tgt" / "b.png", img)

    proc = _run_cli(
        [
            "batch",
            str(tmp_path / "ref"),
            str(tmp_path / "tgt"),
            str(tmp_path / "out"),
            "--concurrency",
            "2",
            "--json",
        ],
        tmp_path,
    )

    assert proc.returncode == 0, proc.stderr
    payload = json.loads(proc.stdout)
    offsets = {Path(item["target"]).name: item["result"]["offset"] for item in payload}
    assert offsets == {"a.png": {"x": 8, "y": 6}, "b.png": {"x": 0, "y": 0}}
    assert (tmp_path / "out" / "a_aligned.png").exists()
    assert (tmp_path / "out" / "b_aligned.png").exists()


def test_batch_command_accepts_feature_options(tmp_path: Path, texture) -> None:
    img = texture(120, 90, seed=104)
    _save(tmp_path / "ref" / "a.png", img)
    _save(tmp_path / "tgt" / "a.png", img)

    proc = _run_cli(
        [
            "batch",
            str(tmp_path / "ref"),
            str(tmp_path / "tgt"),
            str(tmp_path / "out"),
            "--method",
            "opencv",
            "--detector",
            "brisk",
            "--threshold",
            "0.2",
            "--json",
        ],
        tmp_path,
    )

    assert proc.returncode == 0, proc.stderr
    payload = json.loads(proc.stdout)
    assert len(payload) == 1
    assert (tmp_path / "out" / "a_aligned.png").exists()


def test_batch_command_rejects_unknown_detector(tmp_path: Path, texture) -> None:
    img = texture(40, 30)
    _save(tmp_path / "ref" / "a.png", img)
    _save(tmp_path / "tgt" / "a.png", img)

    proc = _run_cli(
        ["batch", str(tmp_path / "ref"), str(tmp_path / "tgt"), str(tmp_path / "out"), "--detector", "sift"],
        tmp_path,
    )

    assert proc.returncode == 2
    assert "unknown detector" in proc.stderr
