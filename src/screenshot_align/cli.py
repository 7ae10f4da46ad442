from __future__ import annotations

import json
import logging
import traceback
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from .align import align_images
from .batch import BatchReport, align_batch, pair_directories
from .config import AlignmentSettings
from .errors import AlignmentError
from .metrics import MetricsTracker, use_tracker
from .types import AlignmentOptions, AlignmentResult

log = logging.getLogger(__name__)


class Logger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        theme = Theme({
            "info": "cyan",
            "step": "bold cyan",
            "warning": "bold yellow",
            "error": "bold red",
        })
        self.console = Console(theme=theme, highlight=False)
        self.err_console = Console(theme=theme, highlight=False, stderr=True)

    def info(self, message: str) -> None:
        self.console.print(f"[info]{message}[/info]")

    def step(self, message: str) -> None:
        self.console.print(f"[step]▶ {message}")

    def warn(self, message: str) -> None:
        self.err_console.print(f"[warning]{message}[/warning]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[error]{message}[/error]")

    def debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]{message}[/dim]")


class _LoggingBridge(logging.Handler):
    def __init__(self, cli_logger: Logger, level: int) -> None:
        super().__init__(level)
        self._cli_logger = cli_logger

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        msg = self.format(record)
        if record.levelno >= logging.ERROR:
            self._cli_logger.error(msg)
        elif record.levelno >= logging.WARNING:
            self._cli_logger.warn(msg)
        else:
            # Per-strategy chatter is only shown with --verbose.
            self._cli_logger.debug(msg)


def _install_bridge(logger: Logger, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    package_logger = logging.getLogger("screenshot_align")
    package_logger.setLevel(level)
    package_logger.propagate = False
    for handler in list(package_logger.handlers):
        if isinstance(handler, _LoggingBridge):
            package_logger.removeHandler(handler)
    bridge = _LoggingBridge(logger, level)
    bridge.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    package_logger.addHandler(bridge)


def _handle_known_exception(logger: Logger, exc: Exception, *, prefix: Optional[str] = None) -> None:
    message = str(exc) if str(exc) else exc.__class__.__name__
    if prefix:
        message = f"{prefix}: {message}"
    logger.error(message)


def _print_result(logger: Logger, result: AlignmentResult) -> None:
    region = result.matching_region
    logger.info(f"Method: {result.method.value}")
    logger.info(f"Offset: x={result.offset.x} y={result.offset.y}")
    logger.info(f"Matching region: {region.width}x{region.height} at ({region.x}, {region.y})")
    logger.info(f"Aligned image: {result.aligned_path}")
    if result.feature is not None:
        transform = result.feature.transform
        logger.info(
            f"Homography: confidence={result.feature.confidence:.3f} "
            f"scale≈({transform.scale[0]:.3f}, {transform.scale[1]:.3f}) "
            f"rotation≈{transform.rotation_deg:.2f}°"
        )
    table = Table(title="Strategy attempts")
    table.add_column("Strategy")
    table.add_column("Outcome")
    table.add_column("Score", justify="right")
    table.add_column("Detail")
    for attempt in result.attempts:
        score = "" if attempt.score is None else f"{attempt.score:.3f}"
        table.add_row(attempt.method.value, attempt.status.value, score, attempt.detail)
    logger.console.print(table)


def _print_batch(logger: Logger, report: BatchReport) -> None:
    table = Table(title="Batch alignment")
    table.add_column("Target")
    table.add_column("Method")
    table.add_column("Offset", justify="right")
    table.add_column("Status")
    for item in report.items:
        if item.result is not None:
            offset = f"{item.result.offset.x}, {item.result.offset.y}"
            table.add_row(str(item.target), item.result.method.value, offset, "ok")
        else:
            table.add_row(str(item.target), "-", "-", f"failed: {item.error}")
    logger.console.print(table)
    logger.info(f"{report.processed} aligned, {report.failed} failed")


app = typer.Typer(help="Align UI screenshots before pixel diffing")


@app.command("align")
def align(
    reference: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Reference image"),
    target: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Image to align"),
    output: Path = typer.Argument(..., resolve_path=True, help="Where to write the aligned image"),
    method: str = typer.Option("subimage", "--method", "-m", help="feature | phase | subimage | opencv"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", "-t", help="Feature confidence needed to skip the cascade"
    ),
    detector: Optional[str] = typer.Option(
        None, "--detector", help="Keypoint detector: orb | akaze | brisk (default: feature.detector)"
    ),
    config: Optional[Path] = typer.Option(None, "--config", exists=True, readable=True, help="YAML config"),
    opts: Optional[List[str]] = typer.Option(
        None, "--opts", metavar="PATH=VALUE", help="Override a config key, e.g. thresholds.edge=1500"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Align TARGET onto REFERENCE and write OUTPUT."""

    logger = Logger(verbose=verbose)
    _install_bridge(logger, verbose)
    tracker = MetricsTracker()
    try:
        settings = AlignmentSettings.load(config, opts or ())
        options = AlignmentOptions(method=method, threshold=threshold, opencv_detector=detector)  # type: ignore[arg-type]
        with use_tracker(tracker):
            result = align_images(reference, target, output, options, settings=settings)
        if as_json:
            typer.echo(json.dumps(result.as_dict(), indent=2))
        else:
            _print_result(logger, result)
            for line in tracker.summary_lines():
                logger.debug(line)
    except (AlignmentError, FileNotFoundError, ValueError) as exc:
        _handle_known_exception(logger, exc, prefix="Error")
        raise typer.Exit(code=2) from exc
    except Exception as exc:  # pragma: no cover - fallback path
        _handle_known_exception(logger, exc, prefix="Unexpected error")
        if verbose:
            traceback.print_exc()
        raise typer.Exit(code=1) from exc


@app.command("batch")
def batch(
    reference_dir: Path = typer.Argument(..., exists=True, file_okay=False, resolve_path=True),
    target_dir: Path = typer.Argument(..., exists=True, file_okay=False, resolve_path=True),
    output_dir: Path = typer.Argument(..., file_okay=False, resolve_path=True),
    pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Glob for reference files"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", min=1, help="Parallel workers"),
    method: str = typer.Option("subimage", "--method", "-m", help="feature | phase | subimage | opencv"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", "-t", help="Feature confidence needed to skip the cascade"
    ),
    detector: Optional[str] = typer.Option(
        None, "--detector", help="Keypoint detector: orb | akaze | brisk (default: feature.detector)"
    ),
    config: Optional[Path] = typer.Option(None, "--config", exists=True, readable=True, help="YAML config"),
    opts: Optional[List[str]] = typer.Option(None, "--opts", metavar="PATH=VALUE"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Align every file in TARGET_DIR onto its namesake in REFERENCE_DIR."""

    logger = Logger(verbose=verbose)
    _install_bridge(logger, verbose)
    try:
        settings = AlignmentSettings.load(config, opts or ())
        options = AlignmentOptions(method=method, threshold=threshold, opencv_detector=detector)  # type: ignore[arg-type]
        pairs = pair_directories(reference_dir, target_dir, pattern or settings.batch_pattern)
        if not pairs:
            raise ValueError(f"no matching files in {reference_dir} and {target_dir}")
        if not as_json:
            logger.step(f"Aligning {len(pairs)} pair(s)")
        report = align_batch(
            pairs,
            output_dir,
            options,
            settings=settings,
            concurrency=concurrency,
            reference_root=reference_dir,
        )
        if as_json:
            payload = [
                {
                    "reference": str(item.reference),
                    "target": str(item.target),
                    "result": item.result.as_dict() if item.result is not None else None,
                    "error": item.error,
                }
                for item in report.items
            ]
            typer.echo(json.dumps(payload, indent=2))
        else:
            _print_batch(logger, report)
    except (FileNotFoundError, ValueError) as exc:
        _handle_known_exception(logger, exc, prefix="Error")
        raise typer.Exit(code=2) from exc
    except Exception as exc:  # pragma: no cover - fallback path
        _handle_known_exception(logger, exc, prefix="Unexpected error")
        if verbose:
            traceback.print_exc()
        raise typer.Exit(code=1) from exc
    if report.failed:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
