from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

Method = Literal["feature", "phase", "subimage", "opencv"]
Detector = Literal["orb", "akaze", "brisk"]

METHODS: Tuple[str, ...] = ("feature", "phase", "subimage", "opencv")
DETECTORS: Tuple[str, ...] = ("orb", "akaze", "brisk")


class StrategyId(str, Enum):
    NONE = "none"
    FEATURE = "opencv-feature"
    TARGET_IN_REF = "target-in-ref"
    REF_IN_TARGET = "ref-in-target"
    EDGE = "edge-based"
    CROPPED = "cropped-region"
    MULTISCALE = "multi-scale"
    PHASE = "phase-correlation"


class AttemptStatus(str, Enum):
    SKIPPED = "skipped"
    FAILED = "failed"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int

    def fits_inside(self, other: "ImageSize") -> bool:
        return self.width <= other.width and self.height <= other.height


@dataclass(frozen=True)
class Offset:
    """Displacement applied to the target; positive x/y moves it right/down."""

    x: int = 0
    y: int = 0

    def __neg__(self) -> "Offset":
        return Offset(-self.x, -self.y)

    def scaled(self, factor: float) -> "Offset":
        return Offset(int(round(self.x * factor)), int(round(self.y * factor)))

    def as_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class MatchingRegion:
    x: int
    y: int
    width: int
    height: int

    def as_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class TemplateMatch:
    """Raw outcome of a subimage search: needle top-left inside the haystack."""

    score: float
    offset_x: int
    offset_y: int


@dataclass(frozen=True)
class StrategyResult:
    score: float
    offset: Offset
    method: StrategyId


NO_MATCH = StrategyResult(score=math.inf, offset=Offset(0, 0), method=StrategyId.NONE)


@dataclass(frozen=True)
class HomographyDecomposition:
    """Similarity-style reading of a homography.

    Exact only for translation/rotation/scale matrices; for projective
    matrices the scale and rotation values are approximations.
    """

    translation: Tuple[float, float]
    scale: Tuple[float, float]
    rotation_deg: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "translation": {"x": self.translation[0], "y": self.translation[1]},
            "scale": {"x": self.scale[0], "y": self.scale[1]},
            "rotation": self.rotation_deg,
            "approximate": True,
        }


@dataclass(frozen=True)
class FeatureMatchResult:
    homography: Tuple[Tuple[float, float, float], ...]
    inliers: int
    total_matches: int
    confidence: float
    transform: HomographyDecomposition

    @property
    def offset(self) -> Offset:
        tx, ty = self.transform.translation
        return Offset(int(round(tx)), int(round(ty)))


@dataclass(frozen=True)
class AlignmentOptions:
    method: Method = "subimage"
    threshold: Optional[float] = None
    opencv_detector: Optional[Detector] = None

    def __post_init__(self) -> None:
        if self.method not in METHODS:
            raise ValueError(f"unknown alignment method {self.method!r}; expected one of {METHODS}")
        if self.opencv_detector is not None and self.opencv_detector not in DETECTORS:
            raise ValueError(
                f"unknown detector {self.opencv_detector!r}; expected one of {DETECTORS}"
            )


@dataclass(frozen=True)
class StrategyAttempt:
    method: StrategyId
    status: AttemptStatus
    score: Optional[float] = None
    detail: str = ""


@dataclass
class AlignmentResult:
    aligned_path: str
    offset: Offset
    matching_region: MatchingRegion
    method: StrategyId = StrategyId.NONE
    score: float = math.inf
    attempts: List[StrategyAttempt] = field(default_factory=list)
    feature: Optional[FeatureMatchResult] = None

    def attempted(self, method: StrategyId) -> bool:
        """True when *method* ran (successfully or not) rather than being skipped."""

        return any(a.method is method and a.status is not AttemptStatus.SKIPPED for a in self.attempts)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "aligned_path": self.aligned_path,
            "offset": self.offset.as_dict(),
            "matching_region": self.matching_region.as_dict(),
            "method": self.method.value,
            "score": self.score if math.isfinite(self.score) else None,
            "attempts": [
                {
                    "method": a.method.value,
                    "status": a.status.value,
                    "score": a.score,
                    "detail": a.detail,
                }
                for a in self.attempts
            ],
        }
        if self.feature is not None:
            data["feature"] = {
                "homography": [list(row) for row in self.feature.homography],
                "inliers": self.feature.inliers,
                "total_matches": self.feature.total_matches,
                "confidence": self.feature.confidence,
                "transform": self.feature.transform.as_dict(),
            }
        return data
