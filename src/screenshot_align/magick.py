from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from .engine import ImageHandle, OpenCVEngine
from .errors import EngineError
from .types import TemplateMatch

logger = logging.getLogger(__name__)

_SUBIMAGE_RE = re.compile(
    r"(?P<score>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)"
    r"(?:\s*\((?P<norm>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\))?"
    r"\s*@\s*(?P<x>-?\d+),(?P<y>-?\d+)"
)
_METRIC_RE = re.compile(r"^\s*(?P<score>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)", re.MULTILINE)


def parse_subimage_output(text: str) -> Tuple[float, int, int]:
    """Parse ``compare -subimage-search`` output such as ``1234 (0.0188) @ 10,20``."""

    match = _SUBIMAGE_RE.search(text or "")
    if match is None:
        raise EngineError(f"no offset marker in compare output: {text.strip()[:200]!r}")
    return float(match.group("score")), int(match.group("x")), int(match.group("y"))


def parse_metric_output(text: str) -> float:
    match = _METRIC_RE.search(text or "")
    if match is None:
        raise EngineError(f"no metric in compare output: {text.strip()[:200]!r}")
    return float(match.group("score"))


def _find_compare_command() -> Optional[List[str]]:
    path = shutil.which("compare")
    if path:
        return [path]
    magick = shutil.which("magick")
    if magick:
        return [magick, "compare"]
    return None


class MagickEngine(OpenCVEngine):
    """Runs the subimage search through ImageMagick's ``compare``.

    Every other capability is inherited from :class:`OpenCVEngine`.
    """

    name = "magick"

    def __init__(self, command: Optional[List[str]] = None) -> None:
        resolved = command or _find_compare_command()
        if not resolved:
            raise EngineError("ImageMagick 'compare' was not found in PATH")
        self._command = list(resolved)

    def _run(self, args: List[str]) -> str:
        cmd = [*self._command, *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise EngineError(f"could not execute {cmd[0]}: {exc}") from exc

        stdout = proc.stdout.decode("utf-8", errors="replace") if proc.stdout else ""
        stderr = proc.stderr.decode("utf-8", errors="replace") if proc.stderr else ""
        # compare exits 1 when the images differ; 2 signals a real error.
        if proc.returncode not in (0, 1):
            raise EngineError(f"compare failed ({proc.returncode}): {stderr.strip() or stdout.strip()}")
        return stderr or stdout

    def template_match(self, haystack: ImageHandle, needle: ImageHandle) -> TemplateMatch:
        hay_size = self.decode_size(haystack)
        ndl_size = self.decode_size(needle)
        if not ndl_size.fits_inside(hay_size):
            raise EngineError(
                f"needle {ndl_size.width}x{ndl_size.height} does not fit haystack "
                f"{hay_size.width}x{hay_size.height}"
            )
        if ndl_size == hay_size:
            output = self._run(["-metric", "RMSE", str(Path(haystack)), str(Path(needle)), "null:"])
            return TemplateMatch(score=parse_metric_output(output), offset_x=0, offset_y=0)
        output = self._run(
            ["-metric", "RMSE", "-subimage-search", str(Path(haystack)), str(Path(needle)), "null:"]
        )
        score, x, y = parse_subimage_output(output)
        return TemplateMatch(score=score, offset_x=x, offset_y=y)
