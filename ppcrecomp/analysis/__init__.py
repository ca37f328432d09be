"""Analysis phases that turn a loaded image into a sealed function graph."""

from .discover import discover_phase
from .gap_fill import gap_fill_phase
from .merge import merge_phase
from .pipeline import ANALYSIS_PHASES, AnalysisResult, analyze
from .register import register_phase
from .scan import scan_phase
from .validate import validate_phase
from .vtables import vtable_phase

__all__ = [
    "ANALYSIS_PHASES",
    "AnalysisResult",
    "analyze",
    "register_phase",
    "scan_phase",
    "discover_phase",
    "vtable_phase",
    "gap_fill_phase",
    "merge_phase",
    "validate_phase",
]
