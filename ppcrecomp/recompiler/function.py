"""Translate one sealed function (and its chunks) into a C++ body."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set, Tuple

from ..constants import PADDING_WORDS, WORD_SIZE
from ..context import PipelineContext
from ..function_graph import FunctionNode
from ..instruction import Instruction
from .builders import BuildContext, build_instruction, label_name
from .writer import CodeWriter

logger = logging.getLogger(__name__)


@dataclass
class RecompiledFunction:
    entry: int
    name: str
    code: str
    instructions: int = 0
    unimplemented: Counter = field(default_factory=Counter)
    warnings: List[str] = field(default_factory=list)
    mode_switches: int = 0


def _in_ranges(ranges: List[Tuple[int, int]], address: int) -> bool:
    return any(start <= address < end for start, end in ranges)


def _words(ranges: List[Tuple[int, int]]) -> Iterator[int]:
    for start, end in ranges:
        yield from range(start, end, WORD_SIZE)


def collect_labels(
    ctx: PipelineContext, node: FunctionNode, build: BuildContext
) -> Set[int]:
    """Every address inside the emitted ranges that something jumps to."""

    ranges = build.ranges
    labels: Set[int] = set(node.labels)
    for chunk in ctx.graph.chunks_of(node.entry):
        labels.add(chunk.entry)
        labels |= chunk.labels
    for table in build.jump_tables.values():
        labels.update(table.targets)
    for address in _words(ranges):
        instr = ctx.decode(address)
        if instr is None or instr.mnemonic not in ("b", "bc"):
            continue
        target = instr.branch_target
        if instr.lk and target == address + WORD_SIZE:
            continue
        labels.add(target)
    # a range that falls through into another emitted range
    for _, end in ranges:
        labels.add(end)
    return {label for label in labels if _in_ranges(ranges, label)}


def _skipped(ctx: PipelineContext, build: BuildContext, address: int) -> Optional[str]:
    """Why ``address`` produces no code, or ``None`` when it is an instruction."""

    if ctx.state.is_invalid(address):
        return "invalid"
    word = ctx.binary.read_u32(address)
    if word is None:
        return "unmapped"
    if word in PADDING_WORDS:
        return "padding"
    for table in build.jump_tables.values():
        start, end = table.data_range()
        if start <= address < end:
            return "table"
    return None


def recompile_function(ctx: PipelineContext, node: FunctionNode) -> RecompiledFunction:
    """Emit ``node`` as ``PPC_FUNC_IMPL`` with its chunks spliced in.

    Instructions are visited in address order across the sorted ranges.  The
    body is rendered first so only the locals it touched get declared.
    """

    ranges = sorted(ctx.graph.ranges_of(node))
    body = CodeWriter()
    body.indent()
    build = BuildContext(ctx, node, body, ranges=ranges)
    labels = collect_labels(ctx, node, build)

    count = 0
    for start, end in ranges:
        last: Optional[Instruction] = None
        for address in range(start, end, WORD_SIZE):
            if address in labels:
                body.write_label(label_name(address))
                build.forget_state()
            reason = _skipped(ctx, build, address)
            if reason is not None:
                if reason == "table":
                    body.write_comment(f".long 0x{ctx.binary.read_u32(address) or 0:08X}")
                continue
            instr = ctx.decode(address)
            if instr is None:
                continue
            following = None
            if address + WORD_SIZE < end:
                following = ctx.decode(address + WORD_SIZE)
            body.write_comment(instr.text())
            with build.at(instr, following):
                build_instruction(build)
            last = instr
            count += 1

        if last is not None and not last.ends_block:
            logger.debug("%s falls through at 0x%08X", node.name, end)
            with build.at(last, None):
                build.emit_jump(end)

    out = CodeWriter()
    out.write_line(f'__attribute__((alias("__imp__{node.name}"))) PPC_WEAK_FUNC({node.name});')
    with out.block(f"PPC_FUNC_IMPL(__imp__{node.name})"):
        out.write_line("PPC_FUNC_PROLOGUE();")
        out.write_lines(build.locals.declarations())
        out.extend(body)

    if build.unimplemented:
        logger.debug(
            "%s: %d unimplemented instructions", node.name, sum(build.unimplemented.values())
        )
    return RecompiledFunction(
        entry=node.entry,
        name=node.name,
        code=out.render(),
        instructions=count,
        unimplemented=build.unimplemented,
        warnings=build.warnings,
        mode_switches=build.fp_mode.switches,
    )


__all__ = ["RecompiledFunction", "collect_labels", "recompile_function"]
