"""Fixed analysis sequence: Register, Scan, Discover, VTable-scan, GapFill,
Merge, Validate."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, Tuple

from ..context import PipelineContext
from ..errors import AnalysisError
from .discover import discover_phase
from .gap_fill import gap_fill_phase
from .merge import merge_phase
from .register import register_phase
from .scan import scan_phase
from .validate import validate_phase
from .vtables import vtable_phase

logger = logging.getLogger(__name__)

Phase = Callable[[PipelineContext], object]

ANALYSIS_PHASES: Tuple[Tuple[str, Phase], ...] = (
    ("register", register_phase),
    ("scan", scan_phase),
    ("discover", discover_phase),
    ("vtables", vtable_phase),
    ("gap_fill", gap_fill_phase),
    ("merge", merge_phase),
    ("validate", validate_phase),
)


@dataclass
class AnalysisResult:
    ok: bool
    functions: int
    errors: Sequence[AnalysisError] = ()
    timings: Dict[str, float] = field(default_factory=dict)

    def describe(self) -> str:
        state = "ok" if self.ok else f"{len(self.errors)} errors"
        return f"{self.functions} functions, {state}"


def analyze(ctx: PipelineContext) -> AnalysisResult:
    """Run every analysis phase over ``ctx``.

    Diagnostics are collected, not raised; the result is ``ok`` only when the
    collector is empty.  Structural failures (an unreadable unwind directory)
    propagate as :class:`~ppcrecomp.errors.CodegenError`.
    """

    timings: Dict[str, float] = {}
    started = time.perf_counter()
    for name, phase in ANALYSIS_PHASES:
        phase_start = time.perf_counter()
        phase(ctx)
        timings[name] = time.perf_counter() - phase_start
        logger.debug("phase %s finished in %.3f s", name, timings[name])

    functions: List[int] = [node.entry for node in ctx.graph.sealed() if not node.is_import]
    result = AnalysisResult(
        ok=not ctx.errors.has_errors,
        functions=len(functions),
        errors=ctx.errors.entries,
        timings=timings,
    )
    logger.info(
        "analysis complete: %s in %.2f s", result.describe(), time.perf_counter() - started
    )
    return result


__all__ = ["ANALYSIS_PHASES", "AnalysisResult", "analyze"]
