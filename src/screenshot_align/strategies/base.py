from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..config import AlignmentSettings
from ..engine import ImageEngine
from ..scratch import ScratchSpace
from ..types import AlignmentOptions, ImageSize, StrategyResult


@dataclass
class SearchContext:
    """Everything a strategy needs besides the two image handles."""

    engine: ImageEngine
    scratch: ScratchSpace
    reference_size: ImageSize
    target_size: ImageSize
    settings: AlignmentSettings = field(default_factory=AlignmentSettings)
    options: AlignmentOptions = field(default_factory=AlignmentOptions)

    @property
    def target_fits_reference(self) -> bool:
        return self.target_size.fits_inside(self.reference_size)

    @property
    def reference_fits_target(self) -> bool:
        return self.reference_size.fits_inside(self.target_size)


Strategy = Callable[[Path, Path, SearchContext], StrategyResult]
