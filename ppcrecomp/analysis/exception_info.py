"""Unwind-directory entries and structured exception scope tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

from ..binary_view import BinaryView, SectionView
from ..constants import (
    CXX_MAX_CATCHES,
    CXX_MAX_IP_ENTRIES,
    CXX_MAX_STATES,
    CXX_MAX_TRY_BLOCKS,
    EXCEPTION_HEADER_SIZE,
    SEH_MAX_SCOPES,
)

RUNTIME_FUNCTION_SIZE = 8
CXX_EH_MAGIC = 0x19930522


@dataclass(frozen=True)
class RuntimeFunction:
    """One 8-byte unwind directory record.

    The packed ``data`` word holds, from the least significant bit upwards:
    prolog length (8 bits), function length in words (22 bits), a 32-bit code
    flag and the exception handler flag.
    """

    begin: int
    data: int

    @property
    def prolog_length(self) -> int:
        return self.data & 0xFF

    @property
    def function_length(self) -> int:
        return (self.data >> 8) & 0x3FFFFF

    @property
    def thirty_two_bit(self) -> bool:
        return bool((self.data >> 30) & 1)

    @property
    def exception_flag(self) -> bool:
        return bool((self.data >> 31) & 1)

    @property
    def size(self) -> int:
        return self.function_length * 4 or 4


def iter_runtime_functions(view: BinaryView) -> Iterator[RuntimeFunction]:
    address, size = view.exception_directory
    raw = view.read_bytes(address, size - size % RUNTIME_FUNCTION_SIZE)
    if raw is None:
        raise ValueError(
            f"exception directory 0x{address:08X}+0x{size:X} is not inside a mapped section"
        )
    for offset in range(0, len(raw), RUNTIME_FUNCTION_SIZE):
        begin = int.from_bytes(raw[offset : offset + 4], "big")
        data = int.from_bytes(raw[offset + 4 : offset + 8], "big")
        yield RuntimeFunction(begin, data)


@dataclass(frozen=True)
class SehScope:
    try_start: int
    try_end: int
    filter: int
    handler: int


@dataclass
class SehInfo:
    handler_thunk: int
    table_address: int
    scopes: List[SehScope] = field(default_factory=list)
    max_address: int = 0

    def discovered_functions(self) -> List[int]:
        """``__finally`` handlers and ``__except`` filters are standalone code."""

        found: List[int] = []
        for scope in self.scopes:
            if scope.filter == 0 and scope.handler != 0:
                found.append(scope.handler)
            if scope.filter != 0:
                found.append(scope.filter)
        return found

    def labels(self) -> List[int]:
        labels: List[int] = []
        for scope in self.scopes:
            if scope.try_start:
                labels.append(scope.try_start)
            if scope.try_end:
                labels.append(scope.try_end)
            if scope.filter and scope.handler:
                labels.append(scope.handler)
        return labels


def read_exception_header(view: BinaryView, entry: int) -> Optional[Tuple[int, int, SectionView]]:
    """``(handler_thunk, table_address, rdata)`` from the header in front of ``entry``."""

    header = view.read_bytes(entry - EXCEPTION_HEADER_SIZE, EXCEPTION_HEADER_SIZE)
    rdata = view.find_section_by_name(".rdata")
    if header is None or rdata is None:
        return None
    handler_thunk = int.from_bytes(header[:4], "big")
    table_address = int.from_bytes(header[4:8], "big")
    if not rdata.contains(table_address):
        return None
    return handler_thunk, table_address, rdata


def parse_seh_info(view: BinaryView, entry: int) -> Optional[SehInfo]:
    """Parse the scope table referenced by the header in front of ``entry``.

    Returns ``None`` when the header does not point into ``.rdata`` or the
    table is a C++ function-info record.
    """

    header = read_exception_header(view, entry)
    if header is None:
        return None
    handler_thunk, table_address, rdata = header

    count = view.read_u32(table_address)
    if count is None or count == CXX_EH_MAGIC or not 0 < count <= SEH_MAX_SCOPES:
        return None
    raw = view.read_bytes(table_address + 4, count * 16)
    if raw is None or table_address + 4 + count * 16 > rdata.end:
        return None

    info = SehInfo(handler_thunk, table_address, max_address=entry)
    for index in range(count):
        chunk = raw[index * 16 : index * 16 + 16]
        try_start, try_end, filter_addr, handler = (
            int.from_bytes(chunk[pos : pos + 4], "big") for pos in range(0, 16, 4)
        )
        if handler == 0 and filter_addr != 0:
            handler, filter_addr = filter_addr, 0
        scope = SehScope(try_start, try_end, filter_addr, handler)
        info.scopes.append(scope)
        info.max_address = max(info.max_address, try_start, try_end, filter_addr, handler)
    return info



# ---------------------------------------------------------------------------
# C++ exception handling (FuncInfo records)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CxxUnwindEntry:
    to_state: int
    action: int


@dataclass(frozen=True)
class CxxCatchHandler:
    adjectives: int
    type_descriptor: int
    displacement: int
    handler: int


@dataclass
class CxxTryBlock:
    try_low: int
    try_high: int
    catch_high: int
    handlers: List[CxxCatchHandler] = field(default_factory=list)


@dataclass(frozen=True)
class CxxIpState:
    ip: int
    state: int


@dataclass
class CxxFuncInfo:
    """A ``FuncInfo`` record: unwind map, try blocks and the IP-to-state map.

    Unwind actions and catch handlers are funclets the runtime calls on its
    own, so each is a function of its own.  The IP-to-state map covers every
    instruction of the parent, which makes its highest ``ip`` a lower bound
    on the parent's end.
    """

    handler_thunk: int
    table_address: int
    max_state: int
    unwind_map: List[CxxUnwindEntry] = field(default_factory=list)
    try_blocks: List[CxxTryBlock] = field(default_factory=list)
    ip_to_state: List[CxxIpState] = field(default_factory=list)
    max_address: int = 0

    def discovered_functions(self) -> List[int]:
        found: List[int] = []
        if self.handler_thunk:
            found.append(self.handler_thunk)
        found.extend(entry.action for entry in self.unwind_map if entry.action)
        for block in self.try_blocks:
            found.extend(handler.handler for handler in block.handlers if handler.handler)
        return found

    def labels(self) -> List[int]:
        return []


def _records(
    view: BinaryView, rdata: SectionView, address: int, count: int, stride: int
) -> Iterator[List[int]]:
    """Big-endian words of ``count`` records of ``stride`` bytes inside ``rdata``."""

    if not address or not count:
        return
    if address < rdata.base or address + count * stride > rdata.end:
        return
    raw = view.read_bytes(address, count * stride)
    if raw is None:
        return
    for index in range(count):
        record = raw[index * stride : (index + 1) * stride]
        yield [int.from_bytes(record[pos : pos + 4], "big") for pos in range(0, stride, 4)]


def _signed(value: int) -> int:
    return value - (1 << 32) if value & 0x80000000 else value


def parse_cxx_func_info(view: BinaryView, entry: int) -> Optional[CxxFuncInfo]:
    """Parse the ``FuncInfo`` record referenced by the header in front of ``entry``.

    Returns ``None`` when the header does not point at a record carrying
    ``CXX_EH_MAGIC`` or the record's counts are implausible.  Sub-tables that
    fall outside ``.rdata`` are skipped.
    """

    header = read_exception_header(view, entry)
    if header is None:
        return None
    handler_thunk, table_address, rdata = header
    fields = next(_records(view, rdata, table_address, 1, 28), None)
    if fields is None:
        return None
    magic, max_state, unwind_map, try_count, try_map, ip_count, ip_map = fields
    if magic != CXX_EH_MAGIC:
        return None
    if max_state > CXX_MAX_STATES or try_count > CXX_MAX_TRY_BLOCKS or ip_count > CXX_MAX_IP_ENTRIES:
        return None

    info = CxxFuncInfo(handler_thunk, table_address, max_state, max_address=entry)
    for to_state, action in _records(view, rdata, unwind_map, max_state, 8):
        info.unwind_map.append(CxxUnwindEntry(_signed(to_state), action))

    for try_low, try_high, catch_high, catches, handlers in _records(view, rdata, try_map, try_count, 20):
        block = CxxTryBlock(_signed(try_low), _signed(try_high), _signed(catch_high))
        if catches <= CXX_MAX_CATCHES:
            for adjectives, descriptor, displacement, handler in _records(view, rdata, handlers, catches, 16):
                block.handlers.append(CxxCatchHandler(adjectives, descriptor, _signed(displacement), handler))
        info.try_blocks.append(block)

    for ip, state in _records(view, rdata, ip_map, ip_count, 8):
        info.ip_to_state.append(CxxIpState(ip, _signed(state)))
        info.max_address = max(info.max_address, ip)
    return info


ExceptionInfo = Union[SehInfo, CxxFuncInfo]


def parse_exception_info(view: BinaryView, entry: int) -> Optional[ExceptionInfo]:
    """Whichever of the two handler table formats sits in front of ``entry``."""

    return parse_cxx_func_info(view, entry) or parse_seh_info(view, entry)


__all__ = [
    "RuntimeFunction",
    "iter_runtime_functions",
    "read_exception_header",
    "SehScope",
    "SehInfo",
    "parse_seh_info",
    "CxxUnwindEntry",
    "CxxCatchHandler",
    "CxxTryBlock",
    "CxxIpState",
    "CxxFuncInfo",
    "ExceptionInfo",
    "parse_cxx_func_info",
    "parse_exception_info",
]
