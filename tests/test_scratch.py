from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from screenshot_align.scratch import ScratchSpace


def test_artifact_is_removed_on_exit(tmp_path: Path) -> None:
    with ScratchSpace(tmp_path) as scratch:
        with scratch.artifact("edge") as path:
            path.write_bytes(b"x")
            assert scratch.live_artifacts() == [path]
        assert not path.exists()
        assert scratch.live_artifacts() == []


def test_artifacts_are_removed_when_body_raises(tmp_path: Path) -> None:
    with ScratchSpace(tmp_path) as scratch:
        with pytest.raises(RuntimeError):
            with scratch.artifacts("a", "b") as (a, b):
                a.write_bytes(b"a")
                b.write_bytes(b"b")
                raise RuntimeError("boom")
        assert scratch.live_artifacts() == []


def test_names_are_unique_and_labelled(tmp_path: Path) -> None:
    with ScratchSpace(tmp_path) as scratch:
        names = {scratch.new_path("crop").name for _ in range(50)}
    assert len(names) == 50
    assert all(name.startswith("crop-") and name.endswith(".png") for name in names)


def test_directory_and_stragglers_removed(tmp_path: Path) -> None:
    with ScratchSpace(tmp_path) as scratch:
        root = scratch.root
        assert root is not None and root.parent == tmp_path
        scratch.new_path("orphan").write_bytes(b"x")
    assert not root.exists()
    assert list(tmp_path.iterdir()) == []


def test_new_path_requires_open_space() -> None:
    with pytest.raises(RuntimeError):
        ScratchSpace().new_path("x")


def _failing_rmtree(path) -> None:
    raise OSError("directory busy")


def test_cleanup_failure_does_not_hide_body_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("screenshot_align.scratch.shutil.rmtree", _failing_rmtree)
    with pytest.raises(ValueError, match="body"):
        with ScratchSpace(tmp_path):
            raise ValueError("body")


def test_cleanup_failure_surfaces_without_body_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("screenshot_align.scratch.shutil.rmtree", _failing_rmtree)
    with pytest.raises(OSError, match="directory busy"):
        with ScratchSpace(tmp_path):
            pass
