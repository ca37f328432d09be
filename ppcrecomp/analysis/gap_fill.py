"""GapFill phase: claim code that no earlier phase reached.

Code only reachable through function pointers the earlier phases could not
see (callbacks stored in data, tables built at run time) is left uncovered.
Each code region is cut at ``blr`` and at tail calls to known functions; every
resulting segment whose start is still orphaned becomes a ``GAP_FILL``
function and goes through discovery like any other candidate.
"""

from __future__ import annotations

import bisect
import logging
from typing import List, Set, Tuple

from ..binary_view import BinaryView
from ..code_region import CodeRegion
from ..constants import WORD_SIZE
from ..context import PipelineContext
from ..function_graph import Authority, FunctionGraph
from .discover import discover_phase

logger = logging.getLogger(__name__)


def split_region(ctx: PipelineContext, region: CodeRegion, callables: Set[int]) -> List[CodeRegion]:
    """Cut ``region`` after every return and every tail call to ``callables``."""

    segments: List[CodeRegion] = []
    segment_start = region.start
    for address in range(region.start, region.end, WORD_SIZE):
        instr = ctx.decode(address)
        if instr is None:
            break
        split = instr.is_return
        if not split and instr.is_unconditional_jump:
            target = instr.branch_target
            split = target != segment_start and target in callables
        if split:
            segments.append(CodeRegion(segment_start, address + WORD_SIZE))
            segment_start = address + WORD_SIZE
    if segment_start < region.end:
        segments.append(CodeRegion(segment_start, region.end))
    return segments


def looks_like_exception_data(view: BinaryView, graph: FunctionGraph, address: int) -> bool:
    """A handler entry followed by a ``.rdata`` pointer is a scope header."""

    handler = view.read_u32(address)
    table = view.read_u32(address + WORD_SIZE)
    if handler is None or table is None or handler not in graph:
        return False
    rdata = view.find_section_by_name(".rdata")
    return rdata is not None and rdata.contains(table)


def register_gaps(ctx: PipelineContext) -> int:
    graph = ctx.graph
    callables = set(graph.entries())
    created = 0
    for region in ctx.scan.code_regions:
        for segment in split_region(ctx, region, callables):
            start = segment.start
            if start in graph or graph.find_containing(start) is not None:
                continue
            if ctx.state.is_invalid(start):
                continue
            if looks_like_exception_data(ctx.binary, graph, start):
                logger.debug("0x%08X looks like exception data, skipping", start)
                continue
            graph.add_function(start, segment.size, Authority.GAP_FILL)
            logger.debug("gap at 0x%08X-0x%08X registered", start, segment.end)
            created += 1
    if created:
        logger.info("registered %d gap functions", created)
    else:
        logger.info("no uncovered code regions found")
    return created


def remove_absorbed(ctx: PipelineContext) -> int:
    """Drop gap-fills that ended up inside another function's range.

    A gap-fill inside a non gap-fill function is removed first; among the
    remaining ones a lower-address gap-fill absorbs any that start inside it.
    """

    graph = ctx.graph
    intervals: List[Tuple[int, int]] = sorted(
        (node.entry, node.extent)
        for node in graph.functions()
        if node.authority is not Authority.GAP_FILL and node.blocks
    )
    starts = [start for start, _ in intervals]
    gaps = graph.functions(Authority.GAP_FILL)

    removed: List[int] = []
    survivors = []
    for node in gaps:
        index = bisect.bisect_right(starts, node.entry) - 1
        if index >= 0 and intervals[index][0] <= node.entry < intervals[index][1]:
            removed.append(node.entry)
        else:
            survivors.append(node)

    cover_end = 0
    for node in survivors:
        if node.entry < cover_end:
            removed.append(node.entry)
            continue
        cover_end = node.extent

    for entry in removed:
        graph.remove(entry)
    if removed:
        logger.info("removed %d absorbed gap functions", len(removed))
    return len(removed)


def gap_fill_phase(ctx: PipelineContext) -> int:
    """Register, discover and clean up gap functions; return the survivors."""

    created = register_gaps(ctx)
    if not created:
        return 0
    discover_phase(ctx, exclude=(Authority.GAP_FILL, Authority.HELPER))
    removed = remove_absorbed(ctx)
    return created - removed


__all__ = [
    "split_region",
    "looks_like_exception_data",
    "register_gaps",
    "remove_absorbed",
    "gap_fill_phase",
]
