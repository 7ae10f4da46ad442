from __future__ import annotations

from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from PIL import Image


def make_texture(width: int, height: int, seed: int = 0, block: int = 8) -> np.ndarray:
    """Blocky random RGB texture: unique under template matching, rich in corners."""

    rng = np.random.default_rng(seed)
    cells = rng.integers(0, 256, size=(height // block + 1, width // block + 1, 3), dtype=np.uint8)
    full = np.repeat(np.repeat(cells, block, axis=0), block, axis=1)
    return np.ascontiguousarray(full[:height, :width])


@pytest.fixture
def texture() -> Callable[..., np.ndarray]:
    return make_texture


@pytest.fixture
def write_png(tmp_path: Path) -> Callable[[str, np.ndarray], Path]:
    def _write(name: str, arr: np.ndarray) -> Path:
        path = tmp_path / name
        Image.fromarray(arr).save(path)
        return path

    return _write
