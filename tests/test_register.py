import pytest

from ppc_image import BASE, BLR, NOP, PDATA, RDATA, make_binary, make_context, words_to_bytes
from ppcrecomp.analysis.exception_info import (
    CXX_EH_MAGIC,
    CxxUnwindEntry,
    RuntimeFunction,
    iter_runtime_functions,
    parse_cxx_func_info,
    parse_seh_info,
)
from ppcrecomp.analysis.register import import_function_name, register_phase
from ppcrecomp.binary_view import BinaryView
from ppcrecomp.config import RecompilerConfig
from ppcrecomp.context import PipelineContext
from ppcrecomp.errors import BinaryLoadError
from ppcrecomp.function_graph import Authority, FunctionStatus
from ppcrecomp.loader import LoadedSection, LoadedSymbol, SymbolKind


def test_runtime_function_fields() -> None:
    record = RuntimeFunction(BASE, 0xC0000000 | (0x1234 << 8) | 0x10)

    assert record.prolog_length == 0x10
    assert record.function_length == 0x1234
    assert record.thirty_two_bit
    assert record.exception_flag
    assert record.size == 0x1234 * 4
    assert RuntimeFunction(BASE, 0).size == 4


def test_unwind_records_become_pdata_functions() -> None:
    ctx = make_context([NOP, BLR, 0, 0, BLR], pdata=[(BASE, 8), (BASE + 0x10, 4)])

    register_phase(ctx)

    records = list(iter_runtime_functions(ctx.binary))
    assert [record.begin for record in records] == [BASE, BASE + 0x10]
    assert [node.entry for node in ctx.graph] == [BASE, BASE + 0x10]
    assert all(node.authority is Authority.PDATA for node in ctx.graph)
    assert ctx.scan.pdata_sizes == {BASE: 8, BASE + 0x10: 4}


def test_unmapped_exception_directory_is_fatal() -> None:
    binary = make_binary([NOP, BLR])
    binary.exception_directory = (BASE + 0x9000, 16)
    ctx = PipelineContext.create(BinaryView.from_loaded(binary))

    with pytest.raises(BinaryLoadError):
        register_phase(ctx)


def test_missing_exception_directory_only_warns() -> None:
    ctx = make_context([NOP, BLR])

    register_phase(ctx)

    assert len(ctx.graph) == 0


def test_scope_table_registers_handlers_and_labels() -> None:
    entry = BASE + 0x10
    handler = BASE + 0x20
    text = [NOP, BLR, 0x82000400, RDATA, NOP, NOP, NOP, BLR, NOP, BLR]
    scope_table = words_to_bytes([1, entry + 4, entry + 8, 0, handler])
    binary = make_binary(text, rdata=scope_table)
    records = words_to_bytes([entry, 0x80000000 | (4 << 8)])
    binary.sections.append(LoadedSection(".pdata", PDATA, len(records), records))
    binary.exception_directory = (PDATA, len(records))
    ctx = PipelineContext.create(BinaryView.from_loaded(binary))

    info = parse_seh_info(ctx.binary, entry)
    assert info is not None
    assert info.discovered_functions() == [handler]
    assert info.labels() == [entry + 4, entry + 8]

    register_phase(ctx)

    node = ctx.graph.get(entry)
    assert node.has_exception_handler
    assert node.labels == {entry + 4, entry + 8}
    assert ctx.state.is_invalid(entry - 8)
    assert ctx.graph.get(handler).authority is Authority.DISCOVERED



def _cxx_image(func_info):
    entry = BASE + 0x10
    text = [NOP, BLR, BASE, RDATA, NOP, NOP, NOP, NOP, BLR, 0, NOP, BLR, NOP, BLR]
    binary = make_binary(text, rdata=words_to_bytes(func_info))
    records = words_to_bytes([entry, 0x80000000 | (4 << 8)])
    binary.sections.append(LoadedSection(".pdata", PDATA, len(records), records))
    binary.exception_directory = (PDATA, len(records))
    return PipelineContext.create(BinaryView.from_loaded(binary))


CXX_FUNC_INFO = (
    [CXX_EH_MAGIC, 1, RDATA + 0x20, 1, RDATA + 0x28, 2, RDATA + 0x40, 0]
    + [0xFFFFFFFF, BASE + 0x28]
    + [0, 0, 1, 1, RDATA + 0x50, 0]
    + [BASE + 0x10, 0xFFFFFFFF, BASE + 0x20, 0]
    + [0, 0, 0, BASE + 0x30]
)


def test_cxx_function_info_is_parsed() -> None:
    ctx = _cxx_image(CXX_FUNC_INFO)
    entry = BASE + 0x10

    info = parse_cxx_func_info(ctx.binary, entry)

    assert info is not None
    assert parse_seh_info(ctx.binary, entry) is None
    assert info.max_state == 1
    assert info.unwind_map == [CxxUnwindEntry(-1, BASE + 0x28)]
    block = info.try_blocks[0]
    assert (block.try_low, block.try_high, block.catch_high) == (0, 0, 1)
    assert [handler.handler for handler in block.handlers] == [BASE + 0x30]
    assert [(state.ip, state.state) for state in info.ip_to_state] == [(entry, -1), (BASE + 0x20, 0)]
    assert info.max_address == BASE + 0x20
    assert info.discovered_functions() == [BASE, BASE + 0x28, BASE + 0x30]


def test_cxx_funclets_are_registered_and_the_parent_grows() -> None:
    ctx = _cxx_image(CXX_FUNC_INFO)
    entry = BASE + 0x10

    register_phase(ctx)

    node = ctx.graph.get(entry)
    assert node.has_exception_handler
    assert ctx.scan.pdata_sizes[entry] == 0x14
    assert ctx.state.is_invalid(entry - 8)
    assert ctx.state.is_invalid(entry - 4)
    for funclet in (BASE, BASE + 0x28, BASE + 0x30):
        assert ctx.graph.get(funclet).authority is Authority.DISCOVERED


def test_implausible_cxx_function_info_is_ignored() -> None:
    func_info = list(CXX_FUNC_INFO)
    func_info[1] = 1000
    ctx = _cxx_image(func_info)

    assert parse_cxx_func_info(ctx.binary, BASE + 0x10) is None

    register_phase(ctx)

    assert ctx.scan.pdata_sizes[BASE + 0x10] == 0x10
    assert BASE + 0x28 not in ctx.graph

def test_imports_and_config_functions() -> None:
    config = RecompilerConfig.from_mapping(
        {
            "file_path": "x",
            "export_names": {"xam.xex@5": "XamShowMessageBoxUI"},
            "functions": {
                "0x82000000": {"size": 8, "name": "start"},
                "0x82000010": {"parent": 0x82000000, "size": 4},
            },
        }
    )
    symbols = [
        LoadedSymbol("xboxkrnl.exe@12", BASE + 0x30, kind=SymbolKind.IMPORT),
        LoadedSymbol("xam.xex@5", BASE + 0x34, kind=SymbolKind.IMPORT),
        LoadedSymbol("broken", BASE + 0x38, kind=SymbolKind.IMPORT),
    ]
    ctx = make_context([NOP, BLR, 0, 0, BLR], config, text_size=0x40, symbols=symbols)

    register_phase(ctx)

    assert ctx.graph.get(BASE + 0x30).name == "__imp__xboxkrnl_12"
    assert ctx.graph.get(BASE + 0x34).name == "__imp__XamShowMessageBoxUI"
    assert BASE + 0x38 not in ctx.graph
    assert ctx.graph.get(BASE + 0x30).status is FunctionStatus.SEALED
    assert ctx.graph.get(BASE).name == "start"
    chunk = ctx.graph.get(BASE + 0x10)
    assert chunk.parent == BASE
    assert chunk.name == "start_chunk_82000010"
    assert ctx.state.chunks_by_parent == {BASE: [BASE + 0x10]}


def test_import_names_fall_back_to_address() -> None:
    ctx = make_context([BLR])

    assert import_function_name(ctx, "xboxkrnl.exe@300", BASE) == "__imp__xboxkrnl_300"
    assert import_function_name(ctx, "xbdm.dll@ord", BASE + 4) == "sub_82000004"


def test_detected_helpers_register_every_register_entry() -> None:
    ctx = make_context([NOP, 0xE9C1FF68] + [NOP] * 20 + [BLR])

    register_phase(ctx)

    assert ctx.state.helpers.restgprlr_14 == BASE + 4
    first = ctx.graph.get(BASE + 4)
    last = ctx.graph.get(BASE + 4 + 17 * 4)
    assert first.name == "__restgprlr_14"
    assert first.authority is Authority.HELPER
    assert last.name == "__restgprlr_31"
    assert last.size == 4 + 12
