"""Scan phase: split executable sections into code and data regions."""

from __future__ import annotations

import logging
from typing import List, Set

from ..binary_view import SectionView
from ..code_region import CodeRegion
from ..constants import C_SPECIFIC_HANDLER_IMPORT, EXCEPTION_SKIP_BYTES, PADDING_WORDS, WORD_SIZE
from ..context import PipelineContext
from ..function_graph import Authority

logger = logging.getLogger(__name__)


def scan_limit(section: SectionView, export_table: int) -> int:
    """Exclusive scan end: the export table when it lives inside ``section``."""

    if export_table and section.contains(export_table):
        return export_table
    return section.end


def segment_section(
    section: SectionView, handler_funcs: Set[int], export_table: int = 0
) -> List[CodeRegion]:
    """Return the null-delimited code regions of ``section``.

    A zero word closes the current region.  When the word after it names a
    registered exception handler the zero starts a 12-byte scope record, which
    is skipped as a whole.
    """

    end = scan_limit(section, export_table)
    regions: List[CodeRegion] = []
    region_start = None
    address = section.base
    while address + WORD_SIZE <= end:
        offset = address - section.base
        word = int.from_bytes(section.data[offset : offset + 4], "big")
        if word == 0:
            if region_start is not None:
                regions.append(CodeRegion(region_start, address))
                region_start = None
            if address + EXCEPTION_SKIP_BYTES <= end:
                following = int.from_bytes(section.data[offset + 4 : offset + 8], "big")
                if following in handler_funcs:
                    address += EXCEPTION_SKIP_BYTES
                    continue
            address += WORD_SIZE
            continue
        if region_start is None:
            region_start = address
        address += WORD_SIZE
    if region_start is not None:
        regions.append(CodeRegion(region_start, end))
    return regions


def find_data_regions(section: SectionView, threshold: int, export_table: int = 0) -> List[CodeRegion]:
    """Runs of zero or all-ones words at least ``threshold`` words long."""

    end = scan_limit(section, export_table)
    regions: List[CodeRegion] = []
    run_start = 0
    run_length = 0
    for address, word in section.words(section.base, end):
        if word in PADDING_WORDS:
            if run_length == 0:
                run_start = address
            run_length += 1
            continue
        if run_length >= threshold:
            regions.append(CodeRegion(run_start, address))
        run_length = 0
    if run_length >= threshold:
        regions.append(CodeRegion(run_start, run_start + run_length * WORD_SIZE))
    return regions


def exception_handler_set(ctx: PipelineContext) -> Set[int]:
    handlers = set(ctx.state.exception_handler_funcs)
    for node in ctx.graph.functions(Authority.IMPORT):
        if node.name == C_SPECIFIC_HANDLER_IMPORT:
            handlers.add(node.entry)
    return handlers


def scan_phase(ctx: PipelineContext) -> None:
    logger.info("scanning binary")
    handlers = exception_handler_set(ctx)
    ctx.state.exception_handler_funcs = sorted(handlers)
    export_table = ctx.binary.export_table
    threshold = ctx.config.data_region_threshold

    for section in ctx.binary.executable_sections():
        ctx.scan.code_regions.extend(segment_section(section, handlers, export_table))
        ctx.scan.data_regions.extend(find_data_regions(section, threshold, export_table))
    ctx.scan.code_regions.sort()
    ctx.scan.data_regions.sort()

    for region in ctx.scan.code_regions:
        for address in range(region.start, region.end, WORD_SIZE):
            instruction = ctx.decode(address)
            if instruction is None:
                continue
            if instruction.is_direct_call and not instruction.aa:
                ctx.scan.call_targets.add(instruction.branch_target)
            elif instruction.is_indirect_jump:
                ctx.scan.indirect_sites.add(address)

    logger.info(
        "%d code regions, %d data regions, %d call targets, %d indirect branches",
        len(ctx.scan.code_regions),
        len(ctx.scan.data_regions),
        len(ctx.scan.call_targets),
        len(ctx.scan.indirect_sites),
    )


__all__ = [
    "scan_limit",
    "segment_section",
    "find_data_regions",
    "exception_handler_set",
    "scan_phase",
]
