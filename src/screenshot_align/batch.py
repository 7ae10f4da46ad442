"""Align many reference/target pairs on a bounded worker pool."""
from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .align import align_images
from .config import AlignmentSettings
from .errors import AlignmentError
from .types import AlignmentOptions, AlignmentResult

logger = logging.getLogger(__name__)

Pair = Tuple[Path, Path]


@dataclass
class BatchItem:
    reference: Path
    target: Path
    output: Path
    result: Optional[AlignmentResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class BatchReport:
    items: List[BatchItem] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.ok)


def pair_directories(reference_dir: Path, target_dir: Path, pattern: str = "*.png") -> List[Pair]:
    """Pair files with the same relative path under both directories."""

    reference_dir = Path(reference_dir)
    target_dir = Path(target_dir)
    pairs: List[Pair] = []
    for ref in sorted(reference_dir.rglob(pattern)):
        if not ref.is_file():
            continue
        candidate = target_dir / ref.relative_to(reference_dir)
        if candidate.is_file():
            pairs.append((ref, candidate))
        else:
            logger.debug("no target for %s", ref)
    return pairs


def _output_for(pair: Pair, output_dir: Path, reference_root: Optional[Path]) -> Path:
    ref, target = pair
    if reference_root is not None:
        try:
            relative_parent = ref.parent.relative_to(reference_root)
        except ValueError:
            relative_parent = Path()
    else:
        relative_parent = Path()
    return output_dir / relative_parent / f"{target.stem}_aligned.png"


def _disambiguate(outputs: List[Path]) -> List[Path]:
    """Suffix colliding output paths with the pair index so no two pairs share a file."""

    counts = Counter(outputs)
    return [
        path.with_name(f"{path.stem}_{index}{path.suffix}") if counts[path] > 1 else path
        for index, path in enumerate(outputs)
    ]


def align_batch(
    pairs: Sequence[Pair],
    output_dir: Path,
    options: Optional[AlignmentOptions] = None,
    *,
    settings: Optional[AlignmentSettings] = None,
    concurrency: Optional[int] = None,
    reference_root: Optional[Path] = None,
) -> BatchReport:
    """Align every pair; a failing pair is recorded, never raised."""

    settings = settings or AlignmentSettings()
    workers = concurrency if concurrency is not None else settings.batch_concurrency
    if workers < 1:
        raise ValueError("concurrency must be >= 1")
    output_dir = Path(output_dir)

    normalised = [(Path(ref), Path(tgt)) for ref, tgt in pairs]
    outputs = _disambiguate([_output_for(pair, output_dir, reference_root) for pair in normalised])
    items = [BatchItem(ref, tgt, out) for (ref, tgt), out in zip(normalised, outputs)]

    def run(item: BatchItem) -> BatchItem:
        try:
            item.output.parent.mkdir(parents=True, exist_ok=True)
            item.result = align_images(item.reference, item.target, item.output, options, settings=settings)
        except (AlignmentError, OSError) as exc:
            logger.warning("alignment failed for %s: %s", item.target, exc)
            item.error = str(exc) or type(exc).__name__
        return item

    with ThreadPoolExecutor(max_workers=workers) as pool:
        done = list(pool.map(run, items))

    report = BatchReport(items=done)
    logger.info("batch finished: %d aligned, %d failed", report.processed, report.failed)
    return report
