from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence, Tuple

import yaml

from .types import DETECTORS

PACKAGE_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PACKAGE_ROOT / "configs" / "default.yaml"


HARDCODED_DEFAULTS: Dict[str, Any] = {
    "engine": "opencv",
    "scratch_dir": None,
    "thresholds": {
        "edge": 1000.0,
        "cropped": 5000.0,
        "multiscale": 1000.0,
        "feature_confidence": 0.3,
    },
    "edges": {"downsample": 4, "canny_low": 50, "canny_high": 150},
    "cropped": {"sizes": [[800, 600], [1000, 800], [1200, 900]]},
    "multiscale": {
        "scales": [1.0, 0.5, 0.25],
        "grid_step": 50,
        "grid_margin": 200,
        "min_size_ratio": 0.7,
    },
    "feature": {
        "detector": "orb",
        "max_features": 1000,
        "match_threshold": 0.7,
        "ransac_threshold": 5.0,
        "inlier_threshold": 5.0,
        "min_matches": 4,
    },
    "batch": {"concurrency": 4, "pattern": "*.png"},
}


def load_config(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8"))


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def set_nested(config: MutableMapping[str, Any], path: Sequence[str], value: Any) -> None:
    if not path:
        return
    cursor: MutableMapping[str, Any] = config
    for key in path[:-1]:
        next_value = cursor.get(key)
        if not isinstance(next_value, MutableMapping):
            next_value = {}
            cursor[key] = next_value
        cursor = next_value
    cursor[path[-1]] = value


def parse_override(entry: str) -> Tuple[Tuple[str, ...], Any]:
    """Parse ``a.b.c=value`` into a key path and a YAML-typed value."""

    if "=" not in entry:
        raise ValueError(f"override {entry!r} must look like path.to.key=value")
    raw_path, raw_value = entry.split("=", 1)
    path = tuple(part.strip() for part in raw_path.split(".") if part.strip())
    if not path:
        raise ValueError(f"override {entry!r} has an empty key path")
    try:
        value = yaml.safe_load(raw_value)
    except yaml.YAMLError as exc:
        raise ValueError(f"override {raw_path}: value could not be parsed ({exc})") from exc
    return path, value


def load_config_with_defaults(
    path: Optional[Path] = None, overrides: Sequence[str] = ()
) -> Dict[str, Any]:
    raw: Any = {}
    if path is not None:
        raw = load_config(str(path))
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Config root must be a mapping")
    config = deep_merge(HARDCODED_DEFAULTS, raw)
    for entry in overrides:
        key_path, value = parse_override(entry)
        set_nested(config, key_path, value)
    return config


@dataclass(frozen=True)
class AlignmentSettings:
    """Every tunable constant of the cascade, flattened from the YAML config."""

    engine: str = "opencv"
    scratch_dir: Optional[Path] = None
    edge_threshold: float = 1000.0
    cropped_threshold: float = 5000.0
    multiscale_threshold: float = 1000.0
    feature_confidence: float = 0.3
    edge_downsample: int = 4
    canny_low: int = 50
    canny_high: int = 150
    crop_sizes: Tuple[Tuple[int, int], ...] = ((800, 600), (1000, 800), (1200, 900))
    scales: Tuple[float, ...] = (1.0, 0.5, 0.25)
    grid_step: int = 50
    grid_margin: int = 200
    min_size_ratio: float = 0.7
    detector: str = "orb"
    max_features: int = 1000
    match_threshold: float = 0.7
    ransac_threshold: float = 5.0
    inlier_threshold: float = 5.0
    min_matches: int = 4
    batch_concurrency: int = 4
    batch_pattern: str = "*.png"

    def __post_init__(self) -> None:
        if self.edge_downsample < 1:
            raise ValueError("edges.downsample must be >= 1")
        if self.grid_step <= 0:
            raise ValueError("multiscale.grid_step must be positive")
        if any(s <= 0 or s > 1.0 for s in self.scales):
            raise ValueError("multiscale.scales must lie in (0, 1]")
        if not 0.0 < self.match_threshold <= 1.0:
            raise ValueError("feature.match_threshold must lie in (0, 1]")
        if self.detector not in DETECTORS:
            raise ValueError(f"feature.detector must be one of {DETECTORS}, got {self.detector!r}")
        if self.min_matches < 4:
            raise ValueError("feature.min_matches must be >= 4 for a homography")
        if self.batch_concurrency < 1:
            raise ValueError("batch.concurrency must be >= 1")

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "AlignmentSettings":
        merged = deep_merge(HARDCODED_DEFAULTS, cfg)
        thresholds = merged["thresholds"]
        edges = merged["edges"]
        multiscale = merged["multiscale"]
        feature = merged["feature"]
        batch = merged["batch"]
        scratch = merged.get("scratch_dir")
        return cls(
            engine=str(merged["engine"]),
            scratch_dir=Path(scratch) if scratch else None,
            edge_threshold=float(thresholds["edge"]),
            cropped_threshold=float(thresholds["cropped"]),
            multiscale_threshold=float(thresholds["multiscale"]),
            feature_confidence=float(thresholds["feature_confidence"]),
            edge_downsample=int(edges["downsample"]),
            canny_low=int(edges["canny_low"]),
            canny_high=int(edges["canny_high"]),
            crop_sizes=tuple((int(w), int(h)) for w, h in merged["cropped"]["sizes"]),
            scales=tuple(float(s) for s in multiscale["scales"]),
            grid_step=int(multiscale["grid_step"]),
            grid_margin=int(multiscale["grid_margin"]),
            min_size_ratio=float(multiscale["min_size_ratio"]),
            detector=str(feature["detector"]),
            max_features=int(feature["max_features"]),
            match_threshold=float(feature["match_threshold"]),
            ransac_threshold=float(feature["ransac_threshold"]),
            inlier_threshold=float(feature["inlier_threshold"]),
            min_matches=int(feature["min_matches"]),
            batch_concurrency=int(batch["concurrency"]),
            batch_pattern=str(batch["pattern"]),
        )

    @classmethod
    def load(cls, path: Optional[Path] = None, overrides: Sequence[str] = ()) -> "AlignmentSettings":
        return cls.from_mapping(load_config_with_defaults(path, overrides))
