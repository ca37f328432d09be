"""Generic loaded-binary model and the manifest based loader.

Decrypting and unpacking console containers happens outside this package.  The
pipeline only needs the flattened result: a list of mapped sections with their
bytes, the symbols the container exposes and a handful of directory addresses.
:class:`ManifestLoader` reads that result back from a small JSON manifest so the
pipeline can be driven from pre-extracted images.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from .errors import BinaryLoadError

logger = logging.getLogger(__name__)


class SymbolKind(Enum):
    FUNCTION = "function"
    DATA = "data"
    IMPORT = "import"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LoadedSection:
    name: str
    address: int
    size: int
    data: Optional[bytes]
    executable: bool = False
    writable: bool = False


@dataclass(frozen=True)
class LoadedSymbol:
    name: str
    address: int
    size: int = 0
    kind: SymbolKind = SymbolKind.UNKNOWN


@dataclass
class LoadedBinary:
    """Flattened image as produced by an external container loader."""

    base: int
    image_size: int
    entry_point: int
    sections: List[LoadedSection] = field(default_factory=list)
    symbols: List[LoadedSymbol] = field(default_factory=list)
    exception_directory: Tuple[int, int] = (0, 0)
    export_table: int = 0
    format: str = "xex"


class BinaryLoader(Protocol):
    def load(self, path: Path) -> LoadedBinary:
        ...


def parse_int(value: Any) -> int:
    """Accept ``int`` values or decimal/hexadecimal strings."""

    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip(), 0)
    raise ValueError(f"expected an integer, got {value!r}")


class ManifestLoader:
    """Load a :class:`LoadedBinary` from a JSON manifest.

    Sections either reference their own raw file via ``file`` or a slice of a
    shared ``image`` file via ``offset``.  Paths are resolved relative to the
    manifest.  Sections that declare a size but carry no bytes are kept as
    unmapped so the binary view can report them.
    """

    def load(self, path: Path) -> LoadedBinary:
        path = Path(path)
        try:
            manifest = json.loads(path.read_text("utf-8"))
        except OSError as exc:
            raise BinaryLoadError(f"cannot read image manifest {path}: {exc}") from exc
        except ValueError as exc:
            raise BinaryLoadError(f"image manifest {path} is not valid JSON: {exc}") from exc
        if not isinstance(manifest, Mapping):
            raise BinaryLoadError(f"image manifest {path} must be a JSON object")

        try:
            return self._build(manifest, path.parent)
        except (KeyError, ValueError, TypeError) as exc:
            raise BinaryLoadError(f"invalid image manifest {path}: {exc}") from exc

    def _build(self, manifest: Mapping[str, Any], root: Path) -> LoadedBinary:
        image_bytes: Optional[bytes] = None
        image_name = manifest.get("image")
        if image_name:
            image_bytes = self._read(root / image_name)

        sections = [
            self._section(entry, root, image_bytes) for entry in manifest.get("sections", [])
        ]
        symbols = [self._symbol(entry) for entry in manifest.get("symbols", [])]

        directory = manifest.get("exception_directory") or {}
        exception_directory = (
            parse_int(directory.get("address", 0)),
            parse_int(directory.get("size", 0)),
        )

        binary = LoadedBinary(
            base=parse_int(manifest["base"]),
            image_size=parse_int(manifest["image_size"]),
            entry_point=parse_int(manifest.get("entry_point", 0)),
            sections=sections,
            symbols=symbols,
            exception_directory=exception_directory,
            export_table=parse_int(manifest.get("export_table", 0)),
            format=str(manifest.get("format", "xex")),
        )
        logger.info(
            "loaded image manifest: %d sections, %d symbols, base=0x%08X",
            len(sections),
            len(symbols),
            binary.base,
        )
        return binary

    def _section(
        self, entry: Mapping[str, Any], root: Path, image_bytes: Optional[bytes]
    ) -> LoadedSection:
        size = parse_int(entry["size"])
        data: Optional[bytes] = None
        if "file" in entry:
            data = self._read(root / entry["file"])
        elif "offset" in entry and image_bytes is not None:
            offset = parse_int(entry["offset"])
            if offset < 0 or offset > len(image_bytes):
                raise ValueError(f"section {entry.get('name')} offset 0x{offset:X} outside image")
            data = image_bytes[offset : offset + size]
        if data is not None and len(data) < size:
            # Sections are zero filled up to their virtual size.
            data = data + bytes(size - len(data))
        return LoadedSection(
            name=str(entry["name"]),
            address=parse_int(entry["address"]),
            size=size,
            data=data[:size] if data is not None else None,
            executable=bool(entry.get("executable", False)),
            writable=bool(entry.get("writable", False)),
        )

    @staticmethod
    def _symbol(entry: Mapping[str, Any]) -> LoadedSymbol:
        return LoadedSymbol(
            name=str(entry["name"]),
            address=parse_int(entry["address"]),
            size=parse_int(entry.get("size", 0)),
            kind=SymbolKind(entry.get("kind", "unknown")),
        )

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise BinaryLoadError(f"cannot read image data {path}: {exc}") from exc


__all__ = [
    "SymbolKind",
    "LoadedSection",
    "LoadedSymbol",
    "LoadedBinary",
    "BinaryLoader",
    "ManifestLoader",
    "parse_int",
]
