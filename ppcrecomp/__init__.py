"""Static recompiler for big-endian 32-bit PowerPC console executables."""

from .analysis import AnalysisResult, analyze
from .binary_view import BinaryView, ImportSymbol, SectionView
from .code_region import CodeRegion
from .config import RecompilerConfig
from .context import PipelineContext
from .errors import (
    AnalysisError,
    BinaryLoadError,
    CodegenError,
    ConfigError,
    ErrorCategory,
    ErrorCollector,
    OutputError,
)
from .function_graph import Authority, FunctionGraph, FunctionNode, FunctionStatus
from .instruction import Instruction, PowerPCDecoder
from .loader import LoadedBinary, LoadedSection, LoadedSymbol, ManifestLoader, SymbolKind
from .pipeline import CodegenPipeline, PipelineResult, recompile
from .recompiler import RecompileResult, Recompiler
from .sig_scanner import Signature, SignatureScanner

__all__ = [
    "AnalysisError",
    "AnalysisResult",
    "Authority",
    "BinaryLoadError",
    "BinaryView",
    "CodeRegion",
    "CodegenError",
    "CodegenPipeline",
    "ConfigError",
    "ErrorCategory",
    "ErrorCollector",
    "FunctionGraph",
    "FunctionNode",
    "FunctionStatus",
    "ImportSymbol",
    "Instruction",
    "LoadedBinary",
    "LoadedSection",
    "LoadedSymbol",
    "ManifestLoader",
    "OutputError",
    "PipelineContext",
    "PipelineResult",
    "PowerPCDecoder",
    "RecompileResult",
    "Recompiler",
    "RecompilerConfig",
    "SectionView",
    "Signature",
    "SignatureScanner",
    "SymbolKind",
    "analyze",
    "recompile",
]
