from ppc_image import BASE, BLR, NOP, b, bl, li, make_context
from ppcrecomp.analysis import (
    analyze,
    discover_phase,
    merge_phase,
    register_phase,
    scan_phase,
    validate_phase,
)
from ppcrecomp.config import RecompilerConfig
from ppcrecomp.errors import ErrorCategory
from ppcrecomp.function_graph import Authority, FunctionStatus
from ppcrecomp.recompiler import recompile_function


def _sealed_ranges(ctx):
    return [(node.entry, node.end) for node in ctx.graph.sealed() if not node.is_import]


def _assert_disjoint(ranges) -> None:
    ordered = sorted(ranges)
    for (_, end), (start, _) in zip(ordered, ordered[1:]):
        assert end <= start


def test_two_function_image_validates() -> None:
    ctx = make_context(
        [bl(BASE, BASE + 0x10), BLR, 0, 0, BLR],
        pdata=[(BASE, 8), (BASE + 0x10, 4)],
    )

    result = analyze(ctx)

    assert result.ok
    assert result.functions == 2
    assert _sealed_ranges(ctx) == [(BASE, BASE + 8), (BASE + 0x10, BASE + 0x14)]
    assert all(node.status is FunctionStatus.VALIDATED for node in ctx.graph)
    assert ctx.state.analyzed_functions == [BASE, BASE + 0x10]


def test_entry_inside_a_walk_clips_the_earlier_function() -> None:
    config = RecompilerConfig.from_mapping(
        {"file_path": "x", "functions": {"0x82000004": {"size": 8}}}
    )
    ctx = make_context([NOP, NOP, BLR], config, pdata=[(BASE, 0x0C)])

    result = analyze(ctx)

    assert result.ok, ctx.errors.render()
    assert _sealed_ranges(ctx) == [(BASE, BASE + 4), (BASE + 4, BASE + 0x0C)]


def test_unreferenced_lower_authority_candidate_is_absorbed() -> None:
    ctx = make_context([NOP, NOP, NOP, BLR], pdata=[(BASE, 0x10)])
    register_phase(ctx)
    scan_phase(ctx)
    ctx.graph.add_function(BASE + 8, 4, Authority.DISCOVERED)
    discover_phase(ctx)

    merge_phase(ctx)

    assert BASE + 8 not in ctx.graph
    assert _sealed_ranges(ctx) == [(BASE, BASE + 0x10)]


def test_sealed_functions_never_overlap() -> None:
    text = [
        NOP,
        bl(BASE + 0x04, BASE + 0x14),
        b(BASE + 0x08, BASE + 0x1C),
        NOP,
        BLR,
        NOP,
        BLR,
        NOP,
        BLR,
    ]
    ctx = make_context(text, pdata=[(BASE + 0x14, 8)])

    analyze(ctx)

    ranges = _sealed_ranges(ctx)
    assert BASE in ctx.graph
    assert BASE + 0x14 in ctx.graph
    _assert_disjoint(ranges)


def test_call_to_nowhere_is_an_unresolved_call() -> None:
    ctx = make_context([bl(BASE, BASE + 0x100), BLR], text_size=0x200, pdata=[(BASE, 8)])

    result = analyze(ctx)

    assert not result.ok
    assert ctx.errors.count() == 1
    error = ctx.errors.entries[0]
    assert error.category is ErrorCategory.UNRESOLVED_CALL
    assert (error.address, error.secondary) == (BASE + 0x100, BASE)
    assert BASE + 0x100 not in ctx.graph
    assert ctx.graph.get(BASE).status is FunctionStatus.FAILED


def test_unreached_code_inside_a_function_is_discontinuous() -> None:
    ctx = make_context([NOP, BLR, NOP, BLR], pdata=[(BASE, 0x10)])

    analyze(ctx)

    assert ctx.errors.count(ErrorCategory.DISCONTINUOUS_FUNCTION) == 1
    assert ctx.errors.entries[0].secondary == BASE + 8


def test_undecodable_word_is_not_emitted() -> None:
    ctx = make_context([NOP, 0x04000000, BLR], pdata=[(BASE, 0x0C)])

    analyze(ctx)

    assert ctx.state.is_invalid(BASE + 4)
    assert ctx.errors.count(ErrorCategory.UNIMPLEMENTED_INSN) == 0


def test_tail_call_into_the_middle_of_a_function_splits_it() -> None:
    text = [b(BASE, BASE + 0x14), 0, 0, 0, li(3, 1), li(4, 2), BLR]
    ctx = make_context(text, pdata=[(BASE, 4), (BASE + 0x10, 0x0C)])

    result = analyze(ctx)

    assert result.ok, ctx.errors.render()
    assert ctx.graph.get(BASE + 0x14).xrefs
    assert _sealed_ranges(ctx) == [
        (BASE, BASE + 4),
        (BASE + 0x10, BASE + 0x14),
        (BASE + 0x14, BASE + 0x1C),
    ]
    for entry in (BASE, BASE + 0x10):
        code = recompile_function(ctx, ctx.graph.get(entry)).code
        assert "PPC_UNRESOLVED_BRANCH" not in code
        assert "\tsub_82000014(ctx, base);\n\treturn;\n}" in code


def test_fall_through_into_no_function_is_an_unresolved_call() -> None:
    config = RecompilerConfig.from_mapping(
        {"file_path": "x", "functions": {"0x82000000": {"size": 4}}}
    )
    ctx = make_context([NOP, 0, BLR], config)

    result = analyze(ctx)

    assert not result.ok
    assert ctx.errors.count(ErrorCategory.UNRESOLVED_CALL) == 1
    error = ctx.errors.entries[0]
    assert (error.address, error.secondary) == (BASE + 4, BASE)
    code = recompile_function(ctx, ctx.graph.get(BASE)).code
    assert "\tPPC_UNRESOLVED_BRANCH(0x82000004, 0x82000000);" in code


def test_call_into_a_spliced_chunk_is_unresolved() -> None:
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, NOP, BLR], pdata=[(BASE, 8)])
    register_phase(ctx)
    scan_phase(ctx)
    discover_phase(ctx)
    merge_phase(ctx)
    chunk = ctx.graph.get(BASE + 0x10)
    chunk.parent = BASE

    assert not validate_phase(ctx)
    assert ctx.errors.count(ErrorCategory.UNRESOLVED_CALL) == 1
