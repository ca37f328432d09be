"""Analysis diagnostics and structural failure exceptions."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, TextIO


class CodegenError(RuntimeError):
    """Hard failure that stops the pipeline before or after analysis."""


class ConfigError(CodegenError):
    """Configuration could not be read or is structurally invalid."""


class BinaryLoadError(CodegenError):
    """No usable binary image could be produced."""


class OutputError(CodegenError):
    """Generated files could not be committed to disk."""


class ErrorCategory(Enum):
    UNRESOLVED_CALL = "UnresolvedCall"
    MISSING_JUMP_TABLE = "MissingJumpTable"
    JUMP_TARGET_OUT_OF_BOUNDS = "JumpTargetOutOfBounds"
    DISCONTINUOUS_FUNCTION = "DiscontinuousFunction"
    UNIMPLEMENTED_INSN = "UnimplementedInsn"


@dataclass(frozen=True)
class AnalysisError:
    """Single diagnostic keyed by guest address."""

    category: ErrorCategory
    address: int
    secondary: Optional[int]
    message: str

    def describe(self) -> str:
        if self.secondary is not None:
            return f"0x{self.address:08X} from 0x{self.secondary:08X}: {self.message}"
        return f"0x{self.address:08X}: {self.message}"


class ErrorCollector:
    """Ordered diagnostics accumulated across the analysis phases.

    Entries are only ever appended.  The recompiler inspects the collector to
    decide whether output may be written but never changes it.
    """

    def __init__(self) -> None:
        self._entries: List[AnalysisError] = []

    def add(
        self,
        category: ErrorCategory,
        address: int,
        message: str,
        *,
        secondary: Optional[int] = None,
    ) -> AnalysisError:
        entry = AnalysisError(category, address, secondary, message)
        self._entries.append(entry)
        return entry

    def extend(self, entries: Sequence[AnalysisError]) -> None:
        self._entries.extend(entries)

    @property
    def entries(self) -> Sequence[AnalysisError]:
        return tuple(self._entries)

    @property
    def has_errors(self) -> bool:
        return bool(self._entries)

    def count(self, category: Optional[ErrorCategory] = None) -> int:
        if category is None:
            return len(self._entries)
        return sum(1 for entry in self._entries if entry.category is category)

    def by_category(self) -> Dict[ErrorCategory, List[AnalysisError]]:
        grouped: Dict[ErrorCategory, List[AnalysisError]] = {}
        for entry in self._entries:
            grouped.setdefault(entry.category, []).append(entry)
        return grouped

    def summary(self) -> Counter:
        return Counter(entry.category for entry in self._entries)

    def __iter__(self) -> Iterator[AnalysisError]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def render(self) -> str:
        """Return a printable report grouped by category."""

        if not self._entries:
            return "No analysis errors\n"
        lines: List[str] = []
        grouped = self.by_category()
        for category in ErrorCategory:
            entries = grouped.get(category)
            if not entries:
                continue
            lines.append(f"{category.value} ({len(entries)}):")
            for entry in entries:
                lines.append(f"  {entry.describe()}")
        lines.append(f"Total: {len(self._entries)} errors")
        return "\n".join(lines) + "\n"

    def print_report(self, stream: Optional[TextIO] = None) -> None:
        text = self.render()
        if stream is None:
            print(text, end="")
        else:
            stream.write(text)


__all__ = [
    "CodegenError",
    "ConfigError",
    "BinaryLoadError",
    "OutputError",
    "ErrorCategory",
    "AnalysisError",
    "ErrorCollector",
]
