"""Arena of candidate and confirmed guest functions.

Nodes are stored in a dictionary keyed by entry address.  Every cross
reference (call edges, jump table targets, chunk parents) is kept as an
address and resolved through the graph, so the arena can grow or replace
nodes while other nodes still refer to them.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class Authority(Enum):
    """How a function node came to exist."""

    CONFIG = "config"
    PDATA = "pdata"
    IMPORT = "import"
    HELPER = "helper"
    VTABLE = "vtable"
    DISCOVERED = "discovered"
    GAP_FILL = "gap_fill"

    @property
    def priority(self) -> int:
        return AUTHORITY_PRIORITY[self]

    def outranks(self, other: "Authority") -> bool:
        return self.priority > other.priority


# Single source of truth for claim precedence when two phases register the
# same address.  Higher wins.
AUTHORITY_PRIORITY: Dict[Authority, int] = {
    Authority.CONFIG: 7,
    Authority.PDATA: 6,
    Authority.IMPORT: 5,
    Authority.HELPER: 4,
    Authority.VTABLE: 3,
    Authority.DISCOVERED: 2,
    Authority.GAP_FILL: 1,
}


class FunctionStatus(Enum):
    NEW = "new"
    DISCOVERED = "discovered"
    SEALED = "sealed"
    VALIDATED = "validated"
    FAILED = "failed"


class EdgeKind(Enum):
    CALL = "call"
    TAIL_CALL = "tail_call"
    CONDITIONAL = "conditional"


class JumpTableKind(Enum):
    ABSOLUTE = "absolute"
    BYTE_OFFSET = "byte_offset"
    SHORT_OFFSET = "short_offset"
    COMPUTED = "computed"


# Bytes per table entry for each encoding.
ENTRY_WIDTH: Dict[JumpTableKind, int] = {
    JumpTableKind.ABSOLUTE: 4,
    JumpTableKind.SHORT_OFFSET: 2,
    JumpTableKind.BYTE_OFFSET: 1,
    JumpTableKind.COMPUTED: 1,
}


@dataclass(frozen=True, order=True)
class Block:
    start: int
    size: int

    @property
    def end(self) -> int:
        return self.start + self.size

    def contains(self, address: int) -> bool:
        return self.start <= address < self.start + self.size


@dataclass
class CallEdge:
    """Outgoing control transfer from ``site`` to another function."""

    site: int
    target: int
    kind: EdgeKind = EdgeKind.CALL
    resolved: bool = False

    def describe(self) -> str:
        state = "resolved" if self.resolved else "pending"
        return f"0x{self.site:08X} -> 0x{self.target:08X} ({self.kind.value}, {state})"


@dataclass
class JumpTable:
    bctr_address: int
    table_address: int
    index_register: int
    targets: List[int] = field(default_factory=list)
    kind: JumpTableKind = JumpTableKind.ABSOLUTE
    base_address: int = 0
    shift: int = 0

    def data_range(self) -> Tuple[int, int]:
        """``[start, end)`` of the table data itself; empty when computed inline."""

        if not self.table_address:
            return 0, 0
        width = ENTRY_WIDTH[self.kind]
        return self.table_address, self.table_address + width * len(self.targets)

    def describe(self) -> str:
        return (
            f"jump table at 0x{self.bctr_address:08X}: {self.kind.value}"
            f" table=0x{self.table_address:08X} r{self.index_register}"
            f" entries={len(self.targets)}"
        )


@dataclass
class FunctionNode:
    entry: int
    authority: Authority
    size: int = 0
    name: str = ""
    status: FunctionStatus = FunctionStatus.NEW
    blocks: List[Block] = field(default_factory=list)
    calls: List[CallEdge] = field(default_factory=list)
    jump_tables: Dict[int, JumpTable] = field(default_factory=dict)
    labels: Set[int] = field(default_factory=set)
    end: Optional[int] = None
    parent: Optional[int] = None
    xrefs: bool = False
    has_exception_handler: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"sub_{self.entry:08X}"

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    @property
    def is_import(self) -> bool:
        return self.authority is Authority.IMPORT

    @property
    def is_helper(self) -> bool:
        return self.authority is Authority.HELPER

    @property
    def is_sealed(self) -> bool:
        return self.status in (FunctionStatus.SEALED, FunctionStatus.VALIDATED, FunctionStatus.FAILED)

    @property
    def block_end(self) -> int:
        if not self.blocks:
            return self.entry
        return max(block.end for block in self.blocks)

    @property
    def extent(self) -> int:
        """Best known exclusive end address."""

        if self.end is not None:
            return self.end
        return max(self.block_end, self.entry + self.size, self.entry + 4)

    def contains(self, address: int) -> bool:
        if self.end is not None:
            return self.entry <= address < self.end
        if any(block.contains(address) for block in self.blocks):
            return True
        return self.entry <= address < self.entry + max(self.size, 4)

    def covers(self, address: int) -> bool:
        return any(block.contains(address) for block in self.blocks)

    def trim(self, limit: int) -> None:
        """Drop everything at or after ``limit`` (blocks are cut, not removed)."""

        blocks = []
        for block in self.blocks:
            if block.start >= limit:
                continue
            blocks.append(Block(block.start, min(block.end, limit) - block.start))
        self.blocks = blocks
        self.labels = {label for label in self.labels if label < limit}
        self.calls = [edge for edge in self.calls if edge.site < limit]
        self.jump_tables = {
            site: table for site, table in self.jump_tables.items() if site < limit
        }

    def unresolved_calls(self) -> List[CallEdge]:
        return [edge for edge in self.calls if not edge.resolved]

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    def set_blocks(self, blocks: Iterable[Block]) -> None:
        self.blocks = sorted(set(blocks))

    def add_call(self, site: int, target: int, kind: EdgeKind = EdgeKind.CALL) -> bool:
        for edge in self.calls:
            if edge.site == site and edge.target == target:
                return False
        self.calls.append(CallEdge(site, target, kind))
        return True

    def add_jump_table(self, table: JumpTable) -> bool:
        existing = self.jump_tables.get(table.bctr_address)
        if existing is not None and existing.targets == table.targets:
            return False
        self.jump_tables[table.bctr_address] = table
        return True

    def seal(self, end: int) -> None:
        self.end = end
        self.status = FunctionStatus.SEALED

    def describe(self) -> str:
        end = f"0x{self.end:08X}" if self.end is not None else "?"
        return (
            f"{self.name} [0x{self.entry:08X}, {end}) {self.authority.value}"
            f" {self.status.value} blocks={len(self.blocks)} calls={len(self.calls)}"
        )


class FunctionGraph:
    """Mutable arena of :class:`FunctionNode` keyed by entry address."""

    def __init__(self) -> None:
        self._nodes: Dict[int, FunctionNode] = {}
        self._sorted: Optional[List[int]] = None
        self._max_span = 4

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------
    def add_function(
        self,
        entry: int,
        size: int,
        authority: Authority,
        *,
        name: Optional[str] = None,
        xrefs: bool = False,
    ) -> FunctionNode:
        existing = self._nodes.get(entry)
        if existing is not None:
            if not authority.outranks(existing.authority):
                logger.debug(
                    "ignoring %s claim on 0x%08X: already %s",
                    authority.value,
                    entry,
                    existing.authority.value,
                )
                if xrefs:
                    existing.xrefs = True
                return existing
            logger.debug(
                "replacing %s claim on 0x%08X with %s",
                existing.authority.value,
                entry,
                authority.value,
            )

        node = FunctionNode(entry=entry, authority=authority, size=size, name=name or "")
        if existing is not None:
            node.labels |= existing.labels
            node.xrefs = existing.xrefs or xrefs
            node.has_exception_handler = existing.has_exception_handler
            if not name and not existing.name.startswith("sub_"):
                node.name = existing.name
        else:
            node.xrefs = xrefs
        self._nodes[entry] = node
        self._sorted = None
        self._max_span = max(self._max_span, size)
        return node

    def add_import(self, address: int, name: str) -> FunctionNode:
        node = self.add_function(address, 4, Authority.IMPORT, name=name, xrefs=True)
        if node.is_import:
            node.set_blocks([Block(address, 4)])
            node.seal(address + 4)
        return node

    def remove(self, entry: int) -> Optional[FunctionNode]:
        node = self._nodes.pop(entry, None)
        if node is not None:
            self._sorted = None
        return node

    def add_label(self, entry: int, address: int) -> None:
        node = self._nodes.get(entry)
        if node is not None:
            node.labels.add(address)

    def note_extent(self, node: FunctionNode) -> None:
        self._max_span = max(self._max_span, node.extent - node.entry)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get(self, entry: int) -> Optional[FunctionNode]:
        return self._nodes.get(entry)

    def __contains__(self, entry: object) -> bool:
        return entry in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[FunctionNode]:
        return iter(self.functions())

    def entries(self) -> List[int]:
        if self._sorted is None:
            self._sorted = sorted(self._nodes)
        return self._sorted

    def functions(self, authority: Optional[Authority] = None) -> List[FunctionNode]:
        nodes = [self._nodes[entry] for entry in self.entries()]
        if authority is None:
            return nodes
        return [node for node in nodes if node.authority is authority]

    def pending(self) -> List[FunctionNode]:
        return [node for node in self.functions() if node.status is FunctionStatus.NEW]

    def sealed(self) -> List[FunctionNode]:
        return [node for node in self.functions() if node.is_sealed]

    def is_import(self, address: int) -> bool:
        node = self._nodes.get(address)
        return node is not None and node.is_import

    def next_entry(self, address: int) -> Optional[int]:
        """Smallest entry strictly greater than ``address``."""

        entries = self.entries()
        index = bisect.bisect_right(entries, address)
        return entries[index] if index < len(entries) else None

    def find_containing(
        self, address: int, *, exclude: Optional[int] = None
    ) -> Optional[FunctionNode]:
        entries = self.entries()
        index = bisect.bisect_right(entries, address) - 1
        while index >= 0:
            entry = entries[index]
            if entry < address - self._max_span:
                break
            node = self._nodes[entry]
            if entry != exclude and node.contains(address):
                return node
            index -= 1
        return None

    def chunks_of(self, entry: int) -> List[FunctionNode]:
        """Chunk nodes whose code belongs to the function at ``entry``."""

        return [node for node in self.functions() if node.parent == entry]

    def owner_of(self, node: FunctionNode) -> FunctionNode:
        """The function a chunk is emitted into; ``node`` itself otherwise."""

        if node.parent is not None:
            parent = self._nodes.get(node.parent)
            if parent is not None and parent.parent is None:
                return parent
        return node

    def ranges_of(self, node: FunctionNode) -> List[Tuple[int, int]]:
        """Sealed ``[start, end)`` ranges emitted as one body with ``node``."""

        ranges = [(node.entry, node.extent)]
        for chunk in self.chunks_of(node.entry):
            ranges.append((chunk.entry, chunk.extent))
        return ranges

    def edges(self) -> Iterator[CallEdge]:
        for node in self.functions():
            yield from node.calls

    def resolve_edges(self) -> int:
        resolved = 0
        for edge in self.edges():
            if not edge.resolved and edge.target in self._nodes:
                edge.resolved = True
                resolved += 1
        return resolved

    def describe(self) -> str:
        return "\n".join(node.describe() for node in self.functions()) + "\n"


__all__ = [
    "Authority",
    "AUTHORITY_PRIORITY",
    "FunctionStatus",
    "EdgeKind",
    "JumpTableKind",
    "ENTRY_WIDTH",
    "Block",
    "CallEdge",
    "JumpTable",
    "FunctionNode",
    "FunctionGraph",
]
