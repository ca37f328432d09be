"""Self-contained view over a loaded guest image."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from .loader import LoadedBinary, SymbolKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionView:
    """A mapped section holding its own copy of the bytes."""

    name: str
    base: int
    size: int
    data: bytes
    executable: bool = False
    writable: bool = False

    @property
    def end(self) -> int:
        return self.base + self.size

    def contains(self, address: int) -> bool:
        return self.base <= address < self.base + self.size

    def words(self, start: Optional[int] = None, end: Optional[int] = None) -> Iterator[Tuple[int, int]]:
        """Yield ``(address, word)`` pairs for aligned words in ``[start, end)``."""

        first = self.base if start is None else max(start, self.base)
        last = self.end if end is None else min(end, self.end)
        first += (-(first - self.base)) % 4
        for address in range(first, last - 3, 4):
            offset = address - self.base
            yield address, int.from_bytes(self.data[offset : offset + 4], "big")


@dataclass(frozen=True)
class ImportSymbol:
    """Import thunk address and its ``module@ordinal`` name."""

    address: int
    name: str


class BinaryView:
    """Owns the sections and metadata the analysis needs.

    A view is built once from a :class:`~ppcrecomp.loader.LoadedBinary` and is
    immutable afterwards.  Section bytes are copied so the view outlives the
    loader.  The buffers can be large, so copying a view is refused; pass the
    instance around instead.
    """

    def __init__(
        self,
        *,
        base: int,
        image_size: int,
        entry_point: int,
        sections: Sequence[SectionView],
        imports: Sequence[ImportSymbol] = (),
        exception_directory: Tuple[int, int] = (0, 0),
        export_table: int = 0,
        format: str = "xex",
    ) -> None:
        self.base = base
        self.image_size = image_size
        self.entry_point = entry_point
        self.format = format
        self.exception_directory = exception_directory
        self.export_table = export_table
        self._sections: Tuple[SectionView, ...] = tuple(sections)
        self._imports: Tuple[ImportSymbol, ...] = tuple(
            sorted(imports, key=lambda symbol: symbol.address)
        )
        self.import_range = self._compute_import_range()

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    def from_loaded(cls, binary: LoadedBinary) -> "BinaryView":
        image_end = binary.base + binary.image_size
        sections: List[SectionView] = []
        for section in binary.sections:
            if section.data is None:
                logger.warning("skipping unmapped section %s", section.name)
                continue
            if section.address + section.size > image_end:
                logger.warning(
                    "skipping section %s: 0x%08X+0x%X extends past image end 0x%08X",
                    section.name,
                    section.address,
                    section.size,
                    image_end,
                )
                continue
            sections.append(
                SectionView(
                    name=section.name,
                    base=section.address,
                    size=section.size,
                    data=bytes(section.data[: section.size]),
                    executable=section.executable,
                    writable=section.writable,
                )
            )

        imports = [
            ImportSymbol(symbol.address, symbol.name)
            for symbol in binary.symbols
            if symbol.kind is SymbolKind.IMPORT
        ]
        return cls(
            base=binary.base,
            image_size=binary.image_size,
            entry_point=binary.entry_point,
            sections=sections,
            imports=imports,
            exception_directory=binary.exception_directory,
            export_table=binary.export_table,
            format=binary.format,
        )

    def __copy__(self) -> "BinaryView":
        raise TypeError("BinaryView owns its section buffers and cannot be copied")

    def __deepcopy__(self, memo: dict) -> "BinaryView":
        raise TypeError("BinaryView owns its section buffers and cannot be copied")

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    @property
    def sections(self) -> Sequence[SectionView]:
        return self._sections

    @property
    def imports(self) -> Sequence[ImportSymbol]:
        return self._imports

    def executable_sections(self) -> List[SectionView]:
        return [section for section in self._sections if section.executable]

    def find_section(self, address: int) -> Optional[SectionView]:
        for section in self._sections:
            if section.contains(address):
                return section
        return None

    def find_section_by_name(self, name: str) -> Optional[SectionView]:
        for section in self._sections:
            if section.name == name:
                return section
        return None

    def translate(self, address: int, length: int = 4) -> Optional[memoryview]:
        section = self.find_section(address)
        if section is None:
            return None
        offset = address - section.base
        if offset + length > section.size:
            return None
        return memoryview(section.data)[offset : offset + length]

    def is_executable(self, address: int) -> bool:
        section = self.find_section(address)
        return section is not None and section.executable

    def read_u32(self, address: int) -> Optional[int]:
        raw = self.translate(address, 4)
        return None if raw is None else int.from_bytes(raw, "big")

    def read_u16(self, address: int) -> Optional[int]:
        raw = self.translate(address, 2)
        return None if raw is None else int.from_bytes(raw, "big")

    def read_u8(self, address: int) -> Optional[int]:
        raw = self.translate(address, 1)
        return None if raw is None else raw[0]

    def read_bytes(self, address: int, length: int) -> Optional[bytes]:
        raw = self.translate(address, length)
        return None if raw is None else bytes(raw)

    def in_import_range(self, address: int) -> bool:
        start, end = self.import_range
        return start <= address < end

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _compute_import_range(self) -> Tuple[int, int]:
        if not self._imports:
            return (0, 0)
        start = self._imports[0].address
        section = self.find_section(start)
        if section is None:
            end = self._imports[-1].address + 4
        else:
            end = section.end
        logger.debug("import/export range: 0x%08X-0x%08X", start, end)
        return (start, end)


__all__ = ["SectionView", "ImportSymbol", "BinaryView"]
