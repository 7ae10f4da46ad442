"""Per-call scratch directories for intermediate raster artifacts."""
from __future__ import annotations

import logging
import secrets
import shutil
import tempfile
import time
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ScratchSpace:
    """Owns the temporary files one alignment call creates.

    Every artifact name carries a nanosecond timestamp and a random suffix so
    concurrent calls sharing a parent directory never collide. The directory
    and anything left inside it are removed when the context exits.
    """

    def __init__(self, parent: Optional[Path] = None, prefix: str = "screenshot-align-") -> None:
        self._parent = Path(parent) if parent is not None else None
        self._prefix = prefix
        self.root: Optional[Path] = None

    def __enter__(self) -> "ScratchSpace":
        if self._parent is not None:
            self._parent.mkdir(parents=True, exist_ok=True)
        self.root = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent))
        logger.debug("scratch space opened at %s", self.root)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        root, self.root = self.root, None
        if root is None:
            return None
        leftovers = [p.name for p in root.iterdir()] if root.exists() else []
        if leftovers:
            logger.debug("scratch space %s released %d leftover artifact(s)", root, len(leftovers))
        try:
            shutil.rmtree(root)
        except OSError as cleanup_error:
            logger.warning("could not remove scratch space %s: %s", root, cleanup_error)
            # An error already propagating from the body takes precedence.
            if exc_type is None:
                raise
        return None

    def new_path(self, label: str, suffix: str = ".png") -> Path:
        if self.root is None:
            raise RuntimeError("scratch space is not open")
        name = f"{label}-{time.time_ns()}-{secrets.token_hex(4)}{suffix}"
        return self.root / name

    @contextmanager
    def artifact(self, label: str, suffix: str = ".png") -> Iterator[Path]:
        """Yield a fresh artifact path and delete the file on every exit path."""

        path = self.new_path(label, suffix)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)

    @contextmanager
    def artifacts(self, *labels: str) -> Iterator[Tuple[Path, ...]]:
        with ExitStack() as stack:
            yield tuple(stack.enter_context(self.artifact(label)) for label in labels)

    def live_artifacts(self) -> List[Path]:
        if self.root is None or not self.root.exists():
            return []
        return sorted(self.root.iterdir())
