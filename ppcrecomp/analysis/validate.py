"""Validate phase: confirm every sealed function can be emitted faithfully.

Nothing here raises.  Each problem becomes an entry in the error collector;
a function with at least one entry ends up ``FAILED`` and the rest
``VALIDATED``.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

from ..code_region import CodeRegion
from ..constants import PADDING_WORDS, WORD_SIZE
from ..context import PipelineContext
from ..errors import ErrorCategory
from ..function_graph import FunctionNode, FunctionStatus
from ..instruction import Instruction
from ..recompiler.builders import has_builder
from .jump_tables import is_indirect_tail_call

logger = logging.getLogger(__name__)


def _in_ranges(ranges: List[Tuple[int, int]], address: int) -> bool:
    return any(start <= address < end for start, end in ranges)


def iter_instructions(ctx: PipelineContext, node: FunctionNode) -> Iterator[Instruction]:
    for block in node.blocks:
        for address in range(block.start, block.end, WORD_SIZE):
            instr = ctx.decode(address)
            if instr is not None:
                yield instr


def is_callable_entry(ctx: PipelineContext, target: int) -> bool:
    """``target`` is emitted as a function of its own, not spliced into another."""

    node = ctx.graph.get(target)
    if node is None or not node.is_sealed:
        return False
    return node.parent is None or ctx.graph.owner_of(node) is node


def target_is_resolved(
    ctx: PipelineContext, ranges: List[Tuple[int, int]], target: int, *, call: bool = False
) -> bool:
    """Whether emission can reach ``target``: a local label for jumps, an entry for calls."""

    if not call and _in_ranges(ranges, target):
        return True
    if call and target and target in (ctx.config.setjmp_address, ctx.config.longjmp_address):
        return True
    return is_callable_entry(ctx, target)


def check_branches(ctx: PipelineContext, node: FunctionNode, ranges: List[Tuple[int, int]]) -> int:
    found = 0
    for instr in iter_instructions(ctx, node):
        if instr.mnemonic not in ("b", "bc"):
            continue
        target = instr.branch_target
        if instr.mnemonic == "bc" and instr.lk and target == instr.address + WORD_SIZE:
            continue
        if target_is_resolved(ctx, ranges, target, call=instr.lk):
            continue
        kind = "bl" if instr.lk else "b"
        ctx.errors.add(
            ErrorCategory.UNRESOLVED_CALL,
            target,
            f"{kind} 0x{target:08X} from 0x{instr.address:08X} - target not in any function",
            secondary=instr.address,
        )
        found += 1
    return found


def last_instruction(ctx: PipelineContext, node: FunctionNode) -> Optional[Instruction]:
    """Final instruction emitted for ``[entry, extent)``, skipping filler and table data."""

    tables = [table.data_range() for table in node.jump_tables.values()]
    for address in range(node.extent - WORD_SIZE, node.entry - WORD_SIZE, -WORD_SIZE):
        if ctx.state.is_invalid(address) or _in_ranges(tables, address):
            continue
        word = ctx.binary.read_u32(address)
        if word is None or word in PADDING_WORDS:
            continue
        instr = ctx.decode(address)
        if instr is not None:
            return instr
    return None


def check_fall_through(ctx: PipelineContext, node: FunctionNode, ranges: List[Tuple[int, int]]) -> int:
    last = last_instruction(ctx, node)
    if last is None or last.ends_block:
        return 0
    end = node.extent
    if _in_ranges(ranges, end) or is_callable_entry(ctx, end):
        return 0
    ctx.errors.add(
        ErrorCategory.UNRESOLVED_CALL,
        end,
        f"{node.name} falls through to 0x{end:08X} from 0x{last.address:08X} - target not in any function",
        secondary=last.address,
    )
    return 1


def check_jump_tables(ctx: PipelineContext, node: FunctionNode, ranges: List[Tuple[int, int]]) -> int:
    found = 0
    for site, table in sorted(node.jump_tables.items()):
        for index, target in enumerate(table.targets):
            if _in_ranges(ranges, target):
                continue
            ctx.errors.add(
                ErrorCategory.JUMP_TARGET_OUT_OF_BOUNDS,
                target,
                f"jump table at 0x{site:08X} entry {index} targets 0x{target:08X}"
                f" outside {node.name}",
                secondary=site,
            )
            found += 1
    return found


def check_indirect_jumps(ctx: PipelineContext, node: FunctionNode) -> int:
    found = 0
    region = ctx.scan.region_for(node.entry) or CodeRegion(node.entry, node.extent)
    for instr in iter_instructions(ctx, node):
        if not instr.is_indirect_jump or instr.address in node.jump_tables:
            continue
        if instr.address in ctx.state.known_indirect_calls:
            continue
        if is_indirect_tail_call(ctx.decode, instr.address, region):
            continue
        ctx.errors.add(
            ErrorCategory.MISSING_JUMP_TABLE,
            instr.address,
            f"bctr at 0x{instr.address:08X} in {node.name} has no jump table",
        )
        found += 1
    return found


def first_gap(ctx: PipelineContext, node: FunctionNode) -> Optional[int]:
    """First address in ``[entry, end)`` that is neither code nor filler."""

    tables = [table.data_range() for table in node.jump_tables.values()]
    end = node.extent
    for address in range(node.entry, end, WORD_SIZE):
        if node.covers(address) or ctx.state.is_invalid(address):
            continue
        if _in_ranges(tables, address):
            continue
        word = ctx.binary.read_u32(address)
        if word is None or word in PADDING_WORDS:
            continue
        return address
    return None


def check_continuity(ctx: PipelineContext, node: FunctionNode) -> int:
    gap = first_gap(ctx, node)
    if gap is None:
        return 0
    ctx.errors.add(
        ErrorCategory.DISCONTINUOUS_FUNCTION,
        node.entry,
        f"{node.name} has unreached code at 0x{gap:08X}",
        secondary=gap,
    )
    return 1


def check_builders(ctx: PipelineContext, node: FunctionNode) -> int:
    found = 0
    for instr in iter_instructions(ctx, node):
        if has_builder(instr.mnemonic):
            continue
        ctx.errors.add(
            ErrorCategory.UNIMPLEMENTED_INSN,
            instr.address,
            f"no builder for {instr.mnemonic} (0x{instr.code:08X}) in {node.name}",
        )
        found += 1
    return found


def validate_function(ctx: PipelineContext, node: FunctionNode) -> int:
    owner = ctx.graph.owner_of(node)
    ranges = ctx.graph.ranges_of(owner)
    problems = 0
    problems += check_branches(ctx, node, ranges)
    problems += check_fall_through(ctx, node, ranges)
    problems += check_jump_tables(ctx, node, ranges)
    problems += check_indirect_jumps(ctx, node)
    problems += check_continuity(ctx, node)
    problems += check_builders(ctx, node)
    node.status = FunctionStatus.FAILED if problems else FunctionStatus.VALIDATED
    return problems


def validate_phase(ctx: PipelineContext) -> bool:
    """Validate every sealed function; ``True`` when nothing was reported."""

    logger.info("validating call graph")
    checked = failed = 0
    for node in ctx.graph.sealed():
        if node.is_import:
            node.status = FunctionStatus.VALIDATED
            continue
        checked += 1
        if validate_function(ctx, node):
            failed += 1

    if ctx.errors.has_errors:
        logger.warning(
            "%d validation issues in %d of %d functions (%d unresolved calls)",
            len(ctx.errors),
            failed,
            checked,
            ctx.errors.count(ErrorCategory.UNRESOLVED_CALL),
        )
    else:
        logger.info("all %d functions validated", checked)
    return not ctx.errors.has_errors


__all__ = [
    "iter_instructions",
    "is_callable_entry",
    "target_is_resolved",
    "last_instruction",
    "first_gap",
    "validate_function",
    "validate_phase",
]
