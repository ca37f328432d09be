"""Discover phase: recover basic blocks, calls and jump tables per function.

Discovery is a pair of explicit worklists.  The outer loop repeatedly takes
every function still in the ``NEW`` state and walks it; walking may register
further functions (call targets), which the next round picks up.  The inner
loop walks one function's blocks from its entry, keyed by a visited set of
addresses.  Neither recurses, so pathological images cannot exhaust the
stack.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterable, List, Optional, Set

from ..code_region import CodeRegion
from ..constants import PADDING_WORDS, WORD_SIZE
from ..context import PipelineContext
from ..function_graph import (
    Authority,
    Block,
    CallEdge,
    EdgeKind,
    FunctionNode,
    FunctionStatus,
    JumpTable,
)
from .jump_tables import detect_jump_table

logger = logging.getLogger(__name__)

MAX_DISCOVERY_ROUNDS = 1000


@dataclass
class BlockDiscovery:
    """Everything one walk over a function produced."""

    blocks: List[Block] = field(default_factory=list)
    labels: Set[int] = field(default_factory=set)
    jump_tables: List[JumpTable] = field(default_factory=list)
    branches: List[CallEdge] = field(default_factory=list)
    external_calls: List[int] = field(default_factory=list)
    invalid: List[int] = field(default_factory=list)
    end: int = 0


def _read(ctx: PipelineContext):
    def read(address: int, width: int) -> Optional[int]:
        raw = ctx.binary.translate(address, width)
        return None if raw is None else int.from_bytes(raw, "big")

    return read


def configured_jump_table(ctx: PipelineContext, bctr: int) -> Optional[JumpTable]:
    entry = ctx.config.switch_tables.get(bctr)
    if entry is None:
        return None
    return JumpTable(
        bctr_address=bctr,
        table_address=0,
        index_register=entry.register,
        targets=list(entry.labels),
    )


def discover_blocks(
    ctx: PipelineContext,
    entry: int,
    region: CodeRegion,
    known: Set[int],
    size_hint: int = 0,
    roots: Iterable[int] = (),
) -> BlockDiscovery:
    """Walk the function at ``entry`` inside ``region``.

    ``size_hint`` (from the unwind directory or configuration) bounds the
    function; without one the function may extend to the end of its region.
    ``roots`` are additional block starts known up front, such as structured
    exception scope boundaries that no branch reaches.
    """

    result = BlockDiscovery()
    function_end = entry + size_hint if size_hint else region.end
    end_cap = min(region.end, entry + ctx.config.large_function_threshold)
    function_end = min(function_end, end_cap)

    def within(address: int) -> bool:
        return entry <= address < function_end

    def internal(target: int) -> bool:
        return within(target) and (target == entry or target not in known)

    visited: Set[int] = set()
    queued: Set[int] = {entry}
    worklist: Deque[int] = deque([entry])

    def enqueue(target: int) -> None:
        result.labels.add(target)
        if target not in visited and target not in queued:
            queued.add(target)
            worklist.append(target)

    for root in sorted(roots):
        if within(root):
            enqueue(root)

    while worklist:
        start = worklist.popleft()
        if start in visited or not within(start):
            continue
        address = start
        block_end: Optional[int] = None
        while within(address):
            if address != start and address in visited:
                block_end = address
                break
            if ctx.state.is_invalid(address):
                block_end = address
                break
            instr = ctx.decode(address)
            if instr is None:
                block_end = address
                break
            if instr.code in PADDING_WORDS:
                block_end = address
                break
            if not instr.is_valid:
                result.invalid.append(address)
                block_end = address
                break
            visited.add(address)
            next_address = address + WORD_SIZE

            if instr.mnemonic == "b" or (instr.mnemonic == "bc" and instr.bo_always):
                target = instr.branch_target
                if instr.lk:
                    result.branches.append(CallEdge(address, target, EdgeKind.CALL))
                    if not internal(target):
                        result.external_calls.append(target)
                elif internal(target):
                    enqueue(target)
                    block_end = next_address
                    break
                else:
                    result.branches.append(CallEdge(address, target, EdgeKind.TAIL_CALL))
                    block_end = next_address
                    break
            elif instr.mnemonic == "bc":
                target = instr.branch_target
                if instr.lk:
                    if target != next_address:
                        result.branches.append(CallEdge(address, target, EdgeKind.CALL))
                        if not internal(target):
                            result.external_calls.append(target)
                elif internal(target):
                    enqueue(target)
                else:
                    result.branches.append(CallEdge(address, target, EdgeKind.CONDITIONAL))
                if within(next_address):
                    enqueue(next_address)
                block_end = next_address
                break
            elif instr.is_return:
                block_end = next_address
                break
            elif instr.is_indirect_jump:
                table = configured_jump_table(ctx, address) or detect_jump_table(
                    ctx.decode, _read(ctx), address, region, entry
                )
                if table is not None:
                    result.jump_tables.append(table)
                    for target in table.targets:
                        if target >= end_cap:
                            logger.warning(
                                "0x%08X: jump table target 0x%08X exceeds function size cap",
                                entry,
                                target,
                            )
                            continue
                        if target >= function_end:
                            function_end = target + WORD_SIZE
                        enqueue(target)
                block_end = next_address
                break
            elif instr.is_conditional_return and within(next_address):
                enqueue(next_address)
                block_end = next_address
                break
            address = next_address

        if block_end is None:
            block_end = address
        if block_end > start:
            result.blocks.append(Block(start, block_end - start))

    result.blocks.sort()
    result.labels.discard(entry)
    result.end = function_end
    return result


def _scan_unreached(
    ctx: PipelineContext, node: FunctionNode, size: int, covered: Iterable[Block]
) -> List[CallEdge]:
    """Branches inside an unwind-sized body that control flow never reached.

    Exception handler code inside the declared range is only entered by the
    runtime, so its outgoing calls would otherwise be missed.
    """

    seen = {address for block in covered for address in range(block.start, block.end, WORD_SIZE)}
    edges: List[CallEdge] = []
    end = node.entry + size
    for address in range(node.entry, end, WORD_SIZE):
        if address in seen or ctx.state.is_invalid(address):
            continue
        instr = ctx.decode(address)
        if instr is None or instr.mnemonic not in ("b", "bc"):
            continue
        target = instr.branch_target
        if not instr.lk and node.entry <= target < end:
            continue
        edges.append(CallEdge(address, target, EdgeKind.CALL if instr.lk else EdgeKind.TAIL_CALL))
    return edges


def discover_function(ctx: PipelineContext, node: FunctionNode, known: Set[int]) -> bool:
    """Walk ``node``; return ``True`` when the graph changed."""

    if node.status is not FunctionStatus.NEW:
        return False
    if node.is_import:
        node.status = FunctionStatus.SEALED
        return False

    if node.authority is Authority.CONFIG:
        size_hint = node.size
    else:
        size_hint = ctx.scan.pdata_sizes.get(node.entry, 0)

    region = ctx.scan.region_for(node.entry)
    if region is None:
        logger.warning("function 0x%08X is not inside any code region", node.entry)
        node.status = FunctionStatus.FAILED
        return True

    result = discover_blocks(ctx, node.entry, region, known, size_hint, node.labels)
    for address in result.invalid:
        ctx.state.mark_invalid(address, WORD_SIZE)
    if not result.blocks:
        logger.warning("no blocks found for function 0x%08X", node.entry)
        if node.authority is Authority.GAP_FILL:
            # orphan words that never decode are data, not code
            ctx.state.mark_invalid(node.entry, node.size)
        node.status = FunctionStatus.FAILED
        return True

    node.set_blocks(result.blocks)
    node.labels |= result.labels
    node.status = FunctionStatus.DISCOVERED
    for table in result.jump_tables:
        node.add_jump_table(table)
    branches = list(result.branches)
    if size_hint:
        branches.extend(_scan_unreached(ctx, node, size_hint, result.blocks))
    for edge in branches:
        node.add_call(edge.site, edge.target, edge.kind)
        if edge.target in result.external_calls:
            continue
        if not (node.entry <= edge.target < result.end):
            result.external_calls.append(edge.target)
    ctx.graph.note_extent(node)

    for target in result.external_calls:
        if target in ctx.graph or ctx.binary.in_import_range(target):
            continue
        ctx.graph.add_function(target, 4, Authority.DISCOVERED, xrefs=True)
    return True


def known_entries(ctx: PipelineContext, exclude: Iterable[Authority] = (Authority.HELPER,)) -> Set[int]:
    skipped = set(exclude)
    return {node.entry for node in ctx.graph.functions() if node.authority not in skipped}


def discover_phase(
    ctx: PipelineContext, *, exclude: Iterable[Authority] = (Authority.HELPER,)
) -> int:
    """Run discovery to a fixed point; return the number of functions walked."""

    excluded = tuple(exclude)
    walked = 0
    for round_number in range(1, MAX_DISCOVERY_ROUNDS + 1):
        pending = ctx.graph.pending()
        if not pending:
            logger.debug("discovery reached a fixed point after %d rounds", round_number - 1)
            break
        known = known_entries(ctx, excluded)
        for node in pending:
            if discover_function(ctx, node, known):
                walked += 1
    else:
        logger.warning("discovery stopped after %d rounds without converging", MAX_DISCOVERY_ROUNDS)
    ctx.graph.resolve_edges()
    logger.info("discovered %d functions (%d total)", walked, len(ctx.graph))
    return walked


__all__ = [
    "BlockDiscovery",
    "discover_blocks",
    "discover_function",
    "discover_phase",
    "known_entries",
    "configured_jump_table",
]
