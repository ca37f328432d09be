from ppc_image import BASE, BLR, NOP, RDATA, bc, bl, cmpwi, li, make_context, make_view, words_to_bytes
from ppcrecomp.analysis import (
    discover_phase,
    gap_fill_phase,
    register_phase,
    scan_phase,
    vtable_phase,
)
from ppcrecomp.analysis.vtables import scan_vtables
from ppcrecomp.function_graph import Authority, Block, EdgeKind, FunctionStatus


def _prepare(ctx) -> None:
    register_phase(ctx)
    scan_phase(ctx)


def _snapshot(ctx):
    return [
        (node.entry, node.status, tuple(node.blocks), tuple((e.site, e.target) for e in node.calls))
        for node in ctx.graph
    ]


def test_discovery_follows_calls_and_records_edges() -> None:
    ctx = make_context(
        [bl(BASE, BASE + 0x10), BLR, 0, 0, BLR], pdata=[(BASE, 8), (BASE + 0x10, 4)]
    )
    _prepare(ctx)

    walked = discover_phase(ctx)

    assert walked == 2
    caller = ctx.graph.get(BASE)
    assert caller.status is FunctionStatus.DISCOVERED
    assert caller.blocks == [Block(BASE, 8)]
    assert len(caller.calls) == 1
    edge = caller.calls[0]
    assert (edge.site, edge.target, edge.kind) == (BASE, BASE + 0x10, EdgeKind.CALL)
    assert edge.resolved


def test_call_targets_become_candidates() -> None:
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, li(3, 1), BLR], pdata=[(BASE, 8)])
    _prepare(ctx)

    discover_phase(ctx)

    callee = ctx.graph.get(BASE + 0x10)
    assert callee.authority is Authority.DISCOVERED
    assert callee.blocks == [Block(BASE + 0x10, 8)]


def test_discovery_is_idempotent() -> None:
    ctx = make_context(
        [bl(BASE, BASE + 0x10), BLR, 0, 0, BLR], pdata=[(BASE, 8), (BASE + 0x10, 4)]
    )
    _prepare(ctx)
    discover_phase(ctx)
    before = _snapshot(ctx)

    assert discover_phase(ctx) == 0
    assert _snapshot(ctx) == before


def test_gap_fill_claims_unreached_code() -> None:
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, BLR])
    _prepare(ctx)
    assert discover_phase(ctx) == 0

    survivors = gap_fill_phase(ctx)

    assert survivors == 2
    assert [node.name for node in ctx.graph] == ["sub_82000000", "sub_82000010"]
    assert all(node.authority is Authority.GAP_FILL for node in ctx.graph)
    assert ctx.graph.get(BASE).calls[0].resolved


def test_gap_inside_a_known_function_is_not_claimed() -> None:
    ctx = make_context([NOP, BLR, NOP, BLR], pdata=[(BASE, 0x10)])
    _prepare(ctx)
    discover_phase(ctx)

    assert gap_fill_phase(ctx) == 0
    assert [node.entry for node in ctx.graph] == [BASE]


def _rtti_rdata() -> bytes:
    type_descriptor = RDATA + 0x40
    header = words_to_bytes([0, 0, 0, type_descriptor, 0, RDATA, BASE + 0x10, BASE + 0x20, 0])
    descriptor = words_to_bytes([0, 0]) + b".?AVFoo@@\x00"
    return header.ljust(0x40, b"\x00") + descriptor.ljust(0x14, b"\x00")


def test_vtable_scan_reads_slots_after_the_locator_reference() -> None:
    view = make_view([NOP, BLR, 0, 0, NOP, BLR, 0, 0, NOP, BLR], rdata=_rtti_rdata())

    tables = scan_vtables(view)

    assert len(tables) == 1
    table = tables[0]
    assert table.col_address == RDATA
    assert table.vtable_address == RDATA + 0x18
    assert table.class_name == "Foo"
    assert table.slots == [BASE + 0x10, BASE + 0x20]


def test_vtable_phase_registers_and_discovers_methods() -> None:
    ctx = make_context(
        [NOP, BLR, 0, 0, NOP, BLR, 0, 0, NOP, BLR], pdata=[(BASE, 8)], rdata=_rtti_rdata()
    )
    _prepare(ctx)
    discover_phase(ctx)

    assert vtable_phase(ctx) == 2
    for entry in (BASE + 0x10, BASE + 0x20):
        node = ctx.graph.get(entry)
        assert node.authority is Authority.VTABLE
        assert node.status is FunctionStatus.DISCOVERED
        assert node.blocks == [Block(entry, 8)]


def test_vtable_phase_without_rdata_is_a_no_op() -> None:
    ctx = make_context([NOP, BLR])
    _prepare(ctx)

    assert vtable_phase(ctx) == 0


def test_undecodable_gap_is_marked_invalid_as_a_whole() -> None:
    ctx = make_context([BLR, 0, 0x04000000, 0x04000001, 0x04000002, 0, BLR])
    _prepare(ctx)
    discover_phase(ctx)

    gap_fill_phase(ctx)

    assert ctx.graph.get(BASE + 8).status is FunctionStatus.FAILED
    for address in (BASE + 8, BASE + 0x0C, BASE + 0x10):
        assert ctx.state.is_invalid(address)
    assert not ctx.state.is_invalid(BASE + 0x18)


def test_conditional_branch_out_of_a_function_registers_its_target() -> None:
    text = [cmpwi(0, 3, 0), bc(BASE + 4, BASE + 0x14, 12, 2), BLR, 0, li(3, 1), li(4, 2), BLR]
    ctx = make_context(text, pdata=[(BASE, 0x0C), (BASE + 0x10, 0x0C)])
    _prepare(ctx)

    discover_phase(ctx)

    target = ctx.graph.get(BASE + 0x14)
    assert target is not None
    assert target.authority is Authority.DISCOVERED
    assert target.xrefs
    edge = ctx.graph.get(BASE).calls[0]
    assert (edge.target, edge.kind) == (BASE + 0x14, EdgeKind.CONDITIONAL)
