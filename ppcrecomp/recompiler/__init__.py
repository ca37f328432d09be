"""C++ code generation for sealed guest functions."""

from .function import RecompiledFunction, recompile_function
from .locals import FloatingPointMode, FpMode, LocalVariables, MmioTracker, RegisterNamer
from .output import OutputBuffer
from .recompiler import RecompileResult, Recompiler
from .writer import CodeWriter

__all__ = [
    "CodeWriter",
    "FloatingPointMode",
    "FpMode",
    "LocalVariables",
    "MmioTracker",
    "OutputBuffer",
    "RecompiledFunction",
    "RecompileResult",
    "Recompiler",
    "RegisterNamer",
    "recompile_function",
]
