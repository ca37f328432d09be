"""Pipeline context threaded through every analysis phase and the recompiler."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .binary_view import BinaryView, SectionView
from .code_region import CodeRegion, RangeSet
from .config import RecompilerConfig
from .errors import ErrorCollector
from .function_graph import FunctionGraph
from .instruction import Instruction, InstructionDecoder, PowerPCDecoder


@dataclass
class HelperAddresses:
    """Entry points of the register 14 save/restore thunks; 0 when absent."""

    restgprlr_14: int = 0
    savegprlr_14: int = 0
    restfpr_14: int = 0
    savefpr_14: int = 0
    restvmx_14: int = 0
    savevmx_14: int = 0
    restvmx_64: int = 0
    savevmx_64: int = 0

    def items(self) -> List[Tuple[str, int]]:
        return [(name, getattr(self, name)) for name in self.__dataclass_fields__]


@dataclass
class AnalysisState:
    format: str = ""
    load_address: int = 0
    entry_point: int = 0
    image_size: int = 0

    sections: List[SectionView] = field(default_factory=list)
    analyzed_functions: List[int] = field(default_factory=list)
    chunks_by_parent: Dict[int, List[int]] = field(default_factory=dict)
    helpers: HelperAddresses = field(default_factory=HelperAddresses)

    invalid_instructions: RangeSet = field(default_factory=RangeSet)
    known_indirect_calls: Set[int] = field(default_factory=set)
    exception_handler_funcs: List[int] = field(default_factory=list)

    def mark_invalid(self, address: int, size: int) -> None:
        self.invalid_instructions.add(address, size)

    def is_invalid(self, address: int) -> bool:
        return self.invalid_instructions.contains(address)


@dataclass
class ScanArtifacts:
    code_regions: List[CodeRegion] = field(default_factory=list)
    data_regions: List[CodeRegion] = field(default_factory=list)
    pdata_sizes: Dict[int, int] = field(default_factory=dict)
    call_targets: Set[int] = field(default_factory=set)
    indirect_sites: Set[int] = field(default_factory=set)

    def region_for(self, address: int) -> Optional[CodeRegion]:
        """Region holding ``address``; ``code_regions`` is kept sorted and disjoint."""

        index = bisect.bisect_right(self.code_regions, address, key=lambda region: region.start) - 1
        if index >= 0 and self.code_regions[index].contains(address):
            return self.code_regions[index]
        return None


class PipelineContext:
    """Owns the binary view, graph, diagnostics, state and configuration."""

    def __init__(
        self,
        binary: BinaryView,
        config: RecompilerConfig,
        *,
        decoder: Optional[InstructionDecoder] = None,
    ) -> None:
        self.binary = binary
        self.config = config
        self.decoder: InstructionDecoder = decoder or PowerPCDecoder()
        self.graph = FunctionGraph()
        self.errors = ErrorCollector()
        self.scan = ScanArtifacts()
        self.state = AnalysisState(
            format=binary.format,
            load_address=binary.base,
            entry_point=binary.entry_point,
            image_size=binary.image_size,
            sections=list(binary.sections),
        )
        self._decoded: Dict[int, Instruction] = {}

    @classmethod
    def create(
        cls,
        binary: BinaryView,
        config: Optional[RecompilerConfig] = None,
        *,
        decoder: Optional[InstructionDecoder] = None,
    ) -> "PipelineContext":
        return cls(binary, config or RecompilerConfig(), decoder=decoder)

    def decode(self, address: int) -> Optional[Instruction]:
        """Decode the word at ``address``; ``None`` when it is not mapped."""

        cached = self._decoded.get(address)
        if cached is not None:
            return cached
        word = self.binary.read_u32(address)
        if word is None:
            return None
        instruction = self.decoder.decode(address, word)
        self._decoded[address] = instruction
        return instruction


__all__ = ["HelperAddresses", "AnalysisState", "ScanArtifacts", "PipelineContext"]
