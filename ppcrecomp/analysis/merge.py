"""Merge phase: resolve pending branches and seal function boundaries.

After discovery several candidates may claim the same bytes: a function
whose walk ran through the entry of a callee it had no way of knowing
about, helper thunks that deliberately fall into each other, gap-fills
later reached from elsewhere.  Merge settles every such claim so that no two
sealed ranges overlap, then freezes the nodes.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..context import PipelineContext
from ..function_graph import Authority, EdgeKind, FunctionNode, FunctionStatus

logger = logging.getLogger(__name__)

MAX_RESOLVE_ROUNDS = 100


def _internalize(node: FunctionNode, limit: int) -> int:
    """Turn jumps that land inside ``node`` into labels."""

    kept = []
    moved = 0
    for edge in node.calls:
        if (
            not edge.resolved
            and edge.kind is not EdgeKind.CALL
            and node.entry <= edge.target < limit
        ):
            node.labels.add(edge.target)
            moved += 1
            continue
        kept.append(edge)
    node.calls = kept
    return moved


def resolve_pending(ctx: PipelineContext) -> int:
    """Resolve edges against entries, imports and the caller's own labels."""

    total = 0
    for round_number in range(1, MAX_RESOLVE_ROUNDS + 1):
        changed = ctx.graph.resolve_edges()
        for node in ctx.graph.functions():
            if node.status is FunctionStatus.DISCOVERED:
                changed += _internalize(node, node.block_end)
        total += changed
        logger.debug("merge round %d resolved %d branches", round_number, changed)
        if not changed:
            break
    return total


def _absorbable(owner: FunctionNode, other: FunctionNode) -> bool:
    if other.is_import or other.parent is not None:
        return False
    if other.authority is Authority.GAP_FILL:
        return True
    return owner.authority.outranks(other.authority) and not other.xrefs


def _drop_unwalked(ctx: PipelineContext) -> int:
    dropped = 0
    for node in ctx.graph.functions():
        if node.is_import or node.blocks:
            continue
        logger.warning("dropping %s: no code was recovered", node.name)
        ctx.graph.remove(node.entry)
        dropped += 1
    return dropped


def seal_functions(ctx: PipelineContext) -> int:
    graph = ctx.graph
    sealed = 0
    absorbed = 0
    for node in list(graph.functions()):
        if node.entry not in graph or node.is_import or node.is_sealed:
            continue
        region = ctx.scan.region_for(node.entry)
        region_end = region.end if region is not None else node.extent
        natural_end = max(node.block_end, node.entry + node.size)

        while True:
            next_entry: Optional[int] = graph.next_entry(node.entry)
            if next_entry is None or next_entry >= node.block_end:
                break
            other = graph.get(next_entry)
            if other is None or not _absorbable(node, other):
                break
            logger.debug("%s absorbs %s", node.name, other.name)
            graph.remove(next_entry)
            absorbed += 1

        limit = region_end
        if next_entry is not None and next_entry < limit:
            limit = next_entry
        end = min(natural_end, limit)
        if node.block_end > end:
            logger.debug("%s clipped at 0x%08X", node.name, end)
            node.trim(end)
        node.seal(end)
        sealed += 1

    if absorbed:
        logger.info("absorbed %d overlapping candidates", absorbed)
    return sealed


def remove_overlaps(ctx: PipelineContext) -> int:
    """Trim whatever overlap survived sealing, favouring the higher authority."""

    trimmed = 0
    previous: Optional[FunctionNode] = None
    for node in ctx.graph.sealed():
        if previous is not None and previous.end is not None and previous.end > node.entry:
            if previous.authority.outranks(node.authority) and _absorbable(previous, node):
                ctx.graph.remove(node.entry)
                trimmed += 1
                continue
            previous.trim(node.entry)
            previous.end = node.entry
            trimmed += 1
        previous = node
    return trimmed


def merge_phase(ctx: PipelineContext) -> List[FunctionNode]:
    logger.info("resolving branches and sealing functions")
    dropped = _drop_unwalked(ctx)
    resolved = resolve_pending(ctx)
    sealed = seal_functions(ctx)
    overlaps = remove_overlaps(ctx)

    for node in ctx.graph.sealed():
        if not node.is_import:
            _internalize(node, node.end)
            node.labels = {label for label in node.labels if node.entry < label < node.end}
    ctx.graph.resolve_edges()
    ctx.state.analyzed_functions = [node.entry for node in ctx.graph.sealed()]

    pending = sum(len(node.unresolved_calls()) for node in ctx.graph.sealed())
    logger.info(
        "resolved %d branches, sealed %d functions (%d dropped, %d overlaps trimmed)",
        resolved,
        sealed,
        dropped,
        overlaps,
    )
    if pending:
        logger.warning("%d branches still unresolved after merge", pending)
    return ctx.graph.sealed()


__all__ = [
    "resolve_pending",
    "seal_functions",
    "remove_overlaps",
    "merge_phase",
]
