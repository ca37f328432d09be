"""VTable-scan phase: recover virtual methods through MSVC RTTI records.

A Complete Object Locator (COL) is a 20-byte record in ``.rdata``::

    +0  signature            (0 for 32-bit images)
    +4  offset
    +8  constructor displacement offset
    +12 type descriptor pointer
    +16 class hierarchy descriptor pointer

The type descriptor carries the decorated class name 8 bytes in.  The
compiler stores a pointer to the COL immediately in front of each vtable, so
the dword following any reference to a COL is the first slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..binary_view import BinaryView, SectionView
from ..constants import RTTI_CLASS_PREFIXES, WORD_SIZE
from ..context import PipelineContext
from ..function_graph import Authority
from .discover import discover_phase

logger = logging.getLogger(__name__)

COL_SIZE = 20
TYPE_NAME_OFFSET = 8
MAX_TYPE_NAME = 256


@dataclass
class VTableInfo:
    vtable_address: int
    col_address: int
    class_name: str = ""
    slots: List[int] = field(default_factory=list)


def _read_cstring(view: BinaryView, address: int, limit: int = MAX_TYPE_NAME) -> bytes:
    section = view.find_section(address)
    if section is None:
        return b""
    offset = address - section.base
    chunk = section.data[offset : offset + limit]
    terminator = chunk.find(b"\x00")
    return chunk if terminator < 0 else chunk[:terminator]


def class_name(view: BinaryView, col_address: int) -> str:
    """Undecorated class name for the COL at ``col_address``."""

    type_descriptor = view.read_u32(col_address + 12)
    if type_descriptor is None:
        return ""
    mangled = _read_cstring(view, type_descriptor + TYPE_NAME_OFFSET).decode("latin-1")
    if mangled[:4] in (".?AV", ".?AU"):
        end = mangled.find("@@")
        if end >= 0:
            return mangled[4:end]
    return mangled


def find_object_locators(view: BinaryView, rdata: SectionView) -> List[int]:
    locators: List[int] = []
    for address, word in rdata.words():
        if address + COL_SIZE > rdata.end or word != 0:
            continue
        type_descriptor = view.read_u32(address + 12)
        if type_descriptor is None or view.find_section(type_descriptor) is None:
            continue
        name = _read_cstring(view, type_descriptor + TYPE_NAME_OFFSET, 8)
        if name.startswith(RTTI_CLASS_PREFIXES):
            locators.append(address)
    return locators


def read_vtable_slots(view: BinaryView, start: int) -> List[int]:
    slots: List[int] = []
    address = start
    while True:
        value = view.read_u32(address)
        if not value or value % WORD_SIZE or not view.is_executable(value):
            break
        slots.append(value)
        address += WORD_SIZE
    return slots


def scan_vtables(view: BinaryView) -> List[VTableInfo]:
    rdata = view.find_section_by_name(".rdata")
    if rdata is None:
        logger.warning(".rdata section not found; skipping vtable scan")
        return []

    locators = find_object_locators(view, rdata)
    logger.debug("found %d complete object locators", len(locators))
    first_reference: Dict[int, int] = {}
    wanted = set(locators)
    for address, word in rdata.words():
        if word in wanted and word not in first_reference:
            first_reference[word] = address

    tables: List[VTableInfo] = []
    for col in locators:
        reference = first_reference.get(col)
        if reference is None:
            continue
        info = VTableInfo(reference + WORD_SIZE, col, class_name(view, col))
        info.slots = read_vtable_slots(view, info.vtable_address)
        if not info.slots:
            continue
        logger.debug(
            "vtable at 0x%08X (%s) has %d slots", info.vtable_address, info.class_name, len(info.slots)
        )
        tables.append(info)
    return tables


def vtable_phase(ctx: PipelineContext) -> int:
    """Register unknown virtual methods and discover them; return the count."""

    tables = scan_vtables(ctx.binary)
    added = 0
    for table in tables:
        for slot in table.slots:
            if slot in ctx.graph or ctx.binary.in_import_range(slot):
                continue
            ctx.graph.add_function(slot, WORD_SIZE, Authority.VTABLE, xrefs=True)
            added += 1
    logger.info("%d vtables, %d new virtual functions", len(tables), added)
    if added:
        discover_phase(ctx)
    return added


__all__ = [
    "VTableInfo",
    "class_name",
    "find_object_locators",
    "read_vtable_slots",
    "scan_vtables",
    "vtable_phase",
]
