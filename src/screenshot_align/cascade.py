"""Score-driven escalation across the alignment strategies.

The cascade is an ordered list of :class:`CascadeStep` entries. Each step
pairs a precondition (size compatibility or "is the best score still poor?")
with a strategy; the running best candidate is replaced only on strict
improvement, so ties keep the cheaper, earlier strategy. Scores from
different strategies are compared as-is even though their scales differ
(pixel RMSE, edge RMSE, ``1 - NCC``).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import AlignmentSettings
from .metrics import record_attempt, record_candidate, strategy_timer
from .strategies import (
    SearchContext,
    Strategy,
    cropped_region_search,
    direct_subimage_search,
    edge_based_search,
    feature_based_search,
    multi_scale_search,
    phase_correlation_fallback,
    reverse_subimage_search,
)
from .types import (
    NO_MATCH,
    AttemptStatus,
    FeatureMatchResult,
    StrategyAttempt,
    StrategyId,
    StrategyResult,
)

logger = logging.getLogger(__name__)


@dataclass
class CascadeState:
    best: StrategyResult = NO_MATCH
    attempts: List[StrategyAttempt] = field(default_factory=list)
    feature: Optional[FeatureMatchResult] = None

    @property
    def has_candidate(self) -> bool:
        return self.best.method is not StrategyId.NONE

    def statuses(self, method: StrategyId) -> List[AttemptStatus]:
        return [a.status for a in self.attempts if a.method is method]


Precondition = Callable[[CascadeState, SearchContext], bool]
FeatureSearch = Callable[[Path, Path, SearchContext], FeatureMatchResult]


@dataclass(frozen=True)
class CascadeStep:
    method: StrategyId
    strategy: Strategy
    precondition: Precondition
    invert_offset: bool = False
    requirement: str = ""


def target_fits(state: CascadeState, ctx: SearchContext) -> bool:
    return ctx.target_fits_reference


def reference_fits(state: CascadeState, ctx: SearchContext) -> bool:
    return ctx.reference_fits_target


def escalate_above(threshold: float) -> Precondition:
    def check(state: CascadeState, ctx: SearchContext) -> bool:
        return not state.has_candidate or state.best.score > threshold

    return check


def phase_requested_or_empty(state: CascadeState, ctx: SearchContext) -> bool:
    return ctx.options.method == "phase" or not state.has_candidate


def default_steps(settings: AlignmentSettings) -> List[CascadeStep]:
    return [
        CascadeStep(
            StrategyId.TARGET_IN_REF,
            direct_subimage_search,
            target_fits,
            requirement="target fits inside reference",
        ),
        CascadeStep(
            StrategyId.REF_IN_TARGET,
            reverse_subimage_search,
            reference_fits,
            invert_offset=True,
            requirement="reference fits inside target",
        ),
        CascadeStep(
            StrategyId.EDGE,
            edge_based_search,
            escalate_above(settings.edge_threshold),
            requirement=f"no candidate or best score > {settings.edge_threshold:g}",
        ),
        CascadeStep(
            StrategyId.CROPPED,
            cropped_region_search,
            escalate_above(settings.cropped_threshold),
            requirement=f"no candidate or best score > {settings.cropped_threshold:g}",
        ),
        CascadeStep(
            StrategyId.MULTISCALE,
            multi_scale_search,
            escalate_above(settings.multiscale_threshold),
            requirement=f"no candidate or best score > {settings.multiscale_threshold:g}",
        ),
        CascadeStep(
            StrategyId.PHASE,
            phase_correlation_fallback,
            phase_requested_or_empty,
            requirement="method 'phase' or no candidate",
        ),
    ]


class AlignmentCascade:
    """Runs the strategies in order and keeps the minimum-score candidate.

    *log* receives one record per attempt with ``strategy`` and ``outcome``
    attributes so callers can assert on what ran.
    """

    def __init__(
        self,
        steps: Optional[Sequence[CascadeStep]] = None,
        *,
        feature_search: FeatureSearch = feature_based_search,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._steps = list(steps) if steps is not None else None
        self._feature_search = feature_search
        self._log = log or logger

    def steps_for(self, ctx: SearchContext) -> List[CascadeStep]:
        if self._steps is not None:
            return self._steps
        return default_steps(ctx.settings)

    def run(self, reference: Path, target: Path, ctx: SearchContext) -> CascadeState:
        state = CascadeState()
        if ctx.options.method == "opencv" and self._try_features(reference, target, ctx, state):
            return state

        for step in self.steps_for(ctx):
            if not step.precondition(state, ctx):
                self._note(state, step.method, AttemptStatus.SKIPPED, detail=step.requirement)
                continue
            result = self._attempt(step, reference, target, ctx, state)
            if result is None:
                continue
            if result.score < state.best.score:
                state.best = result
                self._note(state, step.method, AttemptStatus.ACCEPTED, result)
            else:
                self._note(
                    state,
                    step.method,
                    AttemptStatus.REJECTED,
                    result,
                    detail=f"not better than {state.best.method.value}",
                )

        if not state.has_candidate:
            self._log.warning(
                "no strategy produced a candidate; falling back to identity offset",
                extra={"strategy": StrategyId.NONE.value, "outcome": "exhausted"},
            )
        return state

    def _attempt(
        self,
        step: CascadeStep,
        reference: Path,
        target: Path,
        ctx: SearchContext,
        state: CascadeState,
    ) -> Optional[StrategyResult]:
        record_attempt(step.method)
        try:
            with strategy_timer(step.method, self._log):
                result = step.strategy(reference, target, ctx)
        except Exception as exc:
            self._note(state, step.method, AttemptStatus.FAILED, detail=str(exc) or type(exc).__name__)
            return None
        if not math.isfinite(result.score):
            self._note(state, step.method, AttemptStatus.FAILED, detail="non-finite score")
            return None
        record_candidate(step.method)
        if step.invert_offset:
            result = StrategyResult(result.score, -result.offset, result.method)
        return result

    def _try_features(
        self, reference: Path, target: Path, ctx: SearchContext, state: CascadeState
    ) -> bool:
        cutoff = ctx.options.threshold if ctx.options.threshold is not None else ctx.settings.feature_confidence
        record_attempt(StrategyId.FEATURE)
        try:
            with strategy_timer(StrategyId.FEATURE, self._log):
                found = self._feature_search(reference, target, ctx)
        except Exception as exc:
            self._note(state, StrategyId.FEATURE, AttemptStatus.FAILED, detail=str(exc) or type(exc).__name__)
            return False

        candidate = StrategyResult(1.0 - found.confidence, found.offset, StrategyId.FEATURE)
        if found.confidence > cutoff:
            record_candidate(StrategyId.FEATURE)
            state.best = candidate
            state.feature = found
            self._note(
                state,
                StrategyId.FEATURE,
                AttemptStatus.ACCEPTED,
                candidate,
                detail=f"confidence {found.confidence:.3f} ({found.inliers}/{found.total_matches} inliers)",
            )
            return True
        self._note(
            state,
            StrategyId.FEATURE,
            AttemptStatus.REJECTED,
            candidate,
            detail=f"confidence {found.confidence:.3f} <= {cutoff:g}",
        )
        return False

    def _note(
        self,
        state: CascadeState,
        method: StrategyId,
        status: AttemptStatus,
        result: Optional[StrategyResult] = None,
        detail: str = "",
    ) -> None:
        score = result.score if result is not None else None
        state.attempts.append(StrategyAttempt(method, status, score, detail))
        extra = {"strategy": method.value, "outcome": status.value}
        if status is AttemptStatus.SKIPPED:
            self._log.debug("%s skipped: requires %s", method.value, detail, extra=extra)
        elif status is AttemptStatus.FAILED:
            self._log.info("%s failed: %s", method.value, detail, extra=extra)
        else:
            assert result is not None
            self._log.info(
                "%s %s: score=%.4f offset=(%d, %d)%s",
                method.value,
                status.value,
                result.score,
                result.offset.x,
                result.offset.y,
                f" [{detail}]" if detail else "",
                extra=extra,
            )
