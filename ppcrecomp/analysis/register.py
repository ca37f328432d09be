"""Register phase: seed the graph with functions whose existence is certain."""

from __future__ import annotations

import logging
import re
from typing import List

from ..constants import FIRST_NONVOLATILE_GPR, FIRST_VMX128_HIGH, LAST_GPR, LAST_VMX128
from ..context import PipelineContext
from ..errors import BinaryLoadError
from ..function_graph import Authority
from ..sig_scanner import detect_helpers
from .exception_info import iter_runtime_functions, parse_exception_info

logger = logging.getLogger(__name__)

_IDENTIFIER_UNSAFE = re.compile(r"[^0-9A-Za-z_]")

# (state field, name prefix, stride, last register, extra bytes)
_HELPER_FAMILIES = (
    ("restgprlr_14", "__restgprlr_", 4, LAST_GPR, 12),
    ("savegprlr_14", "__savegprlr_", 4, LAST_GPR, 8),
    ("restfpr_14", "__restfpr_", 4, LAST_GPR, 4),
    ("savefpr_14", "__savefpr_", 4, LAST_GPR, 4),
    ("restvmx_14", "__restvmx_", 8, LAST_GPR, 4),
    ("savevmx_14", "__savevmx_", 8, LAST_GPR, 4),
)
_VMX128_FAMILIES = (
    ("restvmx_64", "__restvmx_"),
    ("savevmx_64", "__savevmx_"),
)


def register_phase(ctx: PipelineContext) -> None:
    logger.info("registering entry points")
    merge_config_hints(ctx)
    detect_abi_helpers(ctx)
    register_imports(ctx)
    register_helpers(ctx)
    register_config_functions(ctx)
    discovered = register_unwind_entries(ctx)
    register_exception_handlers(ctx, discovered)


# ----------------------------------------------------------------------
# steps
# ----------------------------------------------------------------------


def merge_config_hints(ctx: PipelineContext) -> None:
    state, config = ctx.state, ctx.config
    for address, size in sorted(config.invalid_instructions.items()):
        state.mark_invalid(address, size)
    state.known_indirect_calls.update(config.indirect_calls)
    state.exception_handler_funcs.extend(config.exception_handler_funcs)
    for address, entry in sorted(config.functions.items()):
        if entry.is_chunk:
            state.chunks_by_parent.setdefault(entry.parent, []).append(address)


def detect_abi_helpers(ctx: PipelineContext) -> None:
    helpers = ctx.state.helpers
    for name, address in detect_helpers(ctx.binary).items():
        setattr(helpers, name, address)
    for name, address in ctx.config.helper_addresses.items():
        if address:
            logger.debug("helper %s overridden by config: 0x%08X", name, address)
            setattr(helpers, name, address)


def import_function_name(ctx: PipelineContext, symbol_name: str, address: int) -> str:
    resolved = ctx.config.export_names.get(symbol_name)
    if resolved:
        return f"__imp__{resolved}"
    module, _, ordinal = symbol_name.partition("@")
    module = module.rsplit(".", 1)[0] if module.endswith((".exe", ".xex", ".dll")) else module
    if ordinal.isdigit():
        return f"__imp__{_IDENTIFIER_UNSAFE.sub('_', module)}_{int(ordinal)}"
    return f"sub_{address:X}"


def register_imports(ctx: PipelineContext) -> None:
    registered = 0
    named = 0
    for symbol in ctx.binary.imports:
        if "@" not in symbol.name:
            logger.error("invalid import format (missing @): %s", symbol.name)
            continue
        name = import_function_name(ctx, symbol.name, symbol.address)
        if symbol.name in ctx.config.export_names:
            named += 1
        ctx.graph.add_import(symbol.address, name)
        registered += 1
    logger.info("loaded %d imports (%d with export names)", registered, named)


def register_helpers(ctx: PipelineContext) -> None:
    helpers = ctx.state.helpers
    count = 0
    for field_name, prefix, stride, last, extra in _HELPER_FAMILIES:
        base = getattr(helpers, field_name)
        if not base:
            continue
        for register in range(FIRST_NONVOLATILE_GPR, last + 1):
            address = base + (register - FIRST_NONVOLATILE_GPR) * stride
            size = (last + 1 - register) * stride + extra
            ctx.graph.add_function(
                address, size, Authority.HELPER, name=f"{prefix}{register}", xrefs=True
            )
            count += 1
    for field_name, prefix in _VMX128_FAMILIES:
        base = getattr(helpers, field_name)
        if not base:
            continue
        for register in range(FIRST_VMX128_HIGH, LAST_VMX128 + 1):
            address = base + (register - FIRST_VMX128_HIGH) * 8
            size = (LAST_VMX128 + 1 - register) * 8 + 4
            ctx.graph.add_function(
                address, size, Authority.HELPER, name=f"{prefix}{register}", xrefs=True
            )
            count += 1
    if count:
        logger.info("registered %d ABI helper entry points", count)


def register_config_functions(ctx: PipelineContext) -> None:
    functions = chunks = 0
    for address, entry in sorted(ctx.config.functions.items()):
        size = entry.get_size(address)
        name = entry.name or None
        if entry.is_chunk and name is None:
            parent = ctx.config.functions.get(entry.parent)
            parent_name = (parent.name if parent and parent.name else f"sub_{entry.parent:08X}")
            name = f"{parent_name}_chunk_{address:08X}"
        node = ctx.graph.add_function(address, size, Authority.CONFIG, name=name, xrefs=True)
        if entry.is_chunk:
            node.parent = entry.parent
            chunks += 1
        else:
            functions += 1
        if size:
            ctx.scan.pdata_sizes[address] = size
    if functions or chunks:
        logger.debug("registered %d config functions, %d chunks", functions, chunks)


def register_unwind_entries(ctx: PipelineContext) -> List[int]:
    """Add one function per unwind record; return exception-handler discoveries."""

    address, size = ctx.binary.exception_directory
    if size == 0:
        logger.warning("image has no exception directory; boundaries come from discovery only")
        return []
    try:
        records = list(iter_runtime_functions(ctx.binary))
    except ValueError as exc:
        raise BinaryLoadError(str(exc)) from exc
    logger.info("unwind directory at 0x%08X: %d records", address, len(records))

    discovered: List[int] = []
    added = 0
    for record in records:
        if record.begin == 0 or record.begin in ctx.graph:
            continue
        size = record.size
        info = parse_exception_info(ctx.binary, record.begin) if record.exception_flag else None
        if info is not None:
            if info.max_address > record.begin + size:
                size = info.max_address - record.begin + 4
            ctx.state.mark_invalid(record.begin - 8, 8)
            discovered.extend(info.discovered_functions())

        node = ctx.graph.add_function(record.begin, size, Authority.PDATA, xrefs=True)
        node.has_exception_handler = record.exception_flag
        if info is not None:
            node.labels.update(info.labels())
        ctx.scan.pdata_sizes[record.begin] = size
        added += 1

    logger.info("added %d functions from the unwind directory", added)
    return discovered


def register_exception_handlers(ctx: PipelineContext, addresses: List[int]) -> None:
    queued = 0
    for address in addresses:
        if address in ctx.graph or ctx.graph.is_import(address):
            continue
        ctx.graph.add_function(address, 0, Authority.DISCOVERED, xrefs=True)
        queued += 1
    if queued:
        logger.info("queued %d functions from exception handling", queued)


__all__ = [
    "register_phase",
    "merge_config_hints",
    "detect_abi_helpers",
    "import_function_name",
    "register_imports",
    "register_helpers",
    "register_config_functions",
    "register_unwind_entries",
    "register_exception_handlers",
]
