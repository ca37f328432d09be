from ppcrecomp.function_graph import (
    AUTHORITY_PRIORITY,
    Authority,
    Block,
    EdgeKind,
    FunctionGraph,
    FunctionStatus,
    JumpTable,
    JumpTableKind,
)

BASE = 0x82000000


def test_authority_priority_is_a_total_order() -> None:
    ordered = sorted(Authority, key=lambda authority: authority.priority, reverse=True)

    assert ordered == [
        Authority.CONFIG,
        Authority.PDATA,
        Authority.IMPORT,
        Authority.HELPER,
        Authority.VTABLE,
        Authority.DISCOVERED,
        Authority.GAP_FILL,
    ]
    assert len(set(AUTHORITY_PRIORITY.values())) == len(Authority)
    assert Authority.PDATA.outranks(Authority.DISCOVERED)
    assert not Authority.GAP_FILL.outranks(Authority.GAP_FILL)


def test_higher_authority_replaces_and_keeps_labels() -> None:
    graph = FunctionGraph()
    weak = graph.add_function(BASE, 4, Authority.DISCOVERED, name="callback", xrefs=True)
    weak.labels.add(BASE + 8)

    strong = graph.add_function(BASE, 0x20, Authority.PDATA)

    assert graph.get(BASE) is strong
    assert strong.authority is Authority.PDATA
    assert strong.size == 0x20
    assert strong.labels == {BASE + 8}
    assert strong.xrefs
    assert strong.name == "callback"


def test_lower_or_equal_authority_is_ignored() -> None:
    graph = FunctionGraph()
    first = graph.add_function(BASE, 0x10, Authority.PDATA, name="first")

    assert graph.add_function(BASE, 4, Authority.DISCOVERED, xrefs=True) is first
    assert graph.add_function(BASE, 8, Authority.PDATA, name="second") is first
    assert first.size == 0x10
    assert first.name == "first"
    assert first.xrefs


def test_default_names_and_lookups() -> None:
    graph = FunctionGraph()
    low = graph.add_function(BASE + 0x10, 0x10, Authority.PDATA)
    high = graph.add_function(BASE, 0x8, Authority.PDATA)

    assert low.name == "sub_82000010"
    assert graph.entries() == [BASE, BASE + 0x10]
    assert graph.next_entry(BASE) == BASE + 0x10
    assert graph.next_entry(BASE + 0x10) is None
    assert graph.find_containing(BASE + 0x14) is low
    assert graph.find_containing(BASE + 4) is high
    assert graph.find_containing(BASE + 0x0C) is None
    assert graph.find_containing(BASE + 4, exclude=BASE) is None


def test_imports_are_sealed_on_registration() -> None:
    graph = FunctionGraph()
    node = graph.add_import(BASE + 0x100, "__imp__xboxkrnl_12")

    assert node.is_import
    assert node.status is FunctionStatus.SEALED
    assert node.end == BASE + 0x104
    assert graph.is_import(BASE + 0x100)
    assert graph.pending() == []


def test_edges_resolve_once_the_target_exists() -> None:
    graph = FunctionGraph()
    caller = graph.add_function(BASE, 8, Authority.PDATA)
    assert caller.add_call(BASE, BASE + 0x10)
    assert not caller.add_call(BASE, BASE + 0x10)

    assert graph.resolve_edges() == 0
    graph.add_function(BASE + 0x10, 4, Authority.DISCOVERED)

    assert graph.resolve_edges() == 1
    assert caller.unresolved_calls() == []
    assert caller.calls[0].kind is EdgeKind.CALL


def test_trim_cuts_blocks_labels_and_edges() -> None:
    graph = FunctionGraph()
    node = graph.add_function(BASE, 0x20, Authority.PDATA)
    node.set_blocks([Block(BASE + 0x10, 0x10), Block(BASE, 0x10)])
    node.labels = {BASE + 0x10, BASE + 0x18}
    node.add_call(BASE + 0x18, BASE + 0x100)
    node.add_jump_table(JumpTable(BASE + 0x1C, BASE + 0x400, 3, [BASE + 0x10]))

    node.trim(BASE + 0x14)

    assert node.blocks == [Block(BASE, 0x10), Block(BASE + 0x10, 4)]
    assert node.labels == {BASE + 0x10}
    assert node.calls == []
    assert node.jump_tables == {}


def test_chunks_are_owned_by_their_parent() -> None:
    graph = FunctionGraph()
    parent = graph.add_function(BASE, 0x10, Authority.CONFIG)
    parent.seal(BASE + 0x10)
    chunk = graph.add_function(BASE + 0x100, 0x8, Authority.CONFIG)
    chunk.parent = BASE
    chunk.seal(BASE + 0x108)

    assert graph.chunks_of(BASE) == [chunk]
    assert graph.owner_of(chunk) is parent
    assert graph.owner_of(parent) is parent
    assert graph.ranges_of(parent) == [(BASE, BASE + 0x10), (BASE + 0x100, BASE + 0x108)]


def test_jump_table_data_range_depends_on_entry_width() -> None:
    targets = [BASE + 0x20, BASE + 0x28, BASE + 0x30]

    absolute = JumpTable(BASE + 0x1C, BASE + 0x400, 3, targets)
    short = JumpTable(BASE + 0x1C, BASE + 0x400, 3, targets, JumpTableKind.SHORT_OFFSET)
    inline = JumpTable(BASE + 0x1C, 0, 3, targets)

    assert absolute.data_range() == (BASE + 0x400, BASE + 0x40C)
    assert short.data_range() == (BASE + 0x400, BASE + 0x406)
    assert inline.data_range() == (0, 0)
