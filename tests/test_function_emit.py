import pytest

from ppc_image import (
    BASE,
    BCTR,
    BLR,
    EIEIO,
    NOP,
    add,
    addi,
    b,
    bc,
    bl,
    cmpwi,
    fadd,
    li,
    lis,
    make_context,
    mtctr,
    sealed_function,
    stw,
    vaddfp,
)
from ppcrecomp.analysis import analyze
from ppcrecomp.config import RecompilerConfig
from ppcrecomp.function_graph import Authority, JumpTable
from ppcrecomp.loader import LoadedSymbol, SymbolKind
from ppcrecomp.recompiler import CodeWriter, Recompiler, recompile_function
from ppcrecomp.recompiler.builders import BuildContext


def _emit(text, end=None, config=None, **kwargs):
    ctx = make_context(text, config, **kwargs)
    node = sealed_function(ctx, BASE, end or BASE + 4 * len(text))
    return ctx, node


def _body(text, **kwargs) -> str:
    ctx, node = _emit(text, **kwargs)
    return recompile_function(ctx, node).code


def test_call_and_return_frame() -> None:
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, BLR])
    caller = sealed_function(ctx, BASE, BASE + 8)
    sealed_function(ctx, BASE + 0x10, BASE + 0x14)

    result = recompile_function(ctx, caller)

    assert result.code == "\n".join(
        [
            '__attribute__((alias("__imp__sub_82000000"))) PPC_WEAK_FUNC(sub_82000000);',
            "PPC_FUNC_IMPL(__imp__sub_82000000) {",
            "\tPPC_FUNC_PROLOGUE();",
            "\t// bl 0x82000010",
            "\tctx.lr = 0x82000004;",
            "\tsub_82000010(ctx, base);",
            "\t// blr",
            "\treturn;",
            "}",
            "",
        ]
    )
    assert result.instructions == 2
    assert result.warnings == []


def test_skip_lr_omits_link_register_update() -> None:
    config = RecompilerConfig.from_mapping({"file_path": "x", "skip_lr": True})
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, BLR], config)
    caller = sealed_function(ctx, BASE, BASE + 8)
    sealed_function(ctx, BASE + 0x10, BASE + 0x14)

    code = recompile_function(ctx, caller).code

    assert "ctx.lr" not in code
    assert "\tsub_82000010(ctx, base);" in code



def test_call_to_an_import_thunk_dispatches_to_the_import() -> None:
    symbols = [LoadedSymbol("xboxkrnl.exe@12", BASE + 0x30, kind=SymbolKind.IMPORT)]
    ctx = make_context([bl(BASE, BASE + 0x30), BLR], text_size=0x40, symbols=symbols)

    assert analyze(ctx).ok, ctx.errors.render()
    recompiler = Recompiler(ctx)
    functions = recompiler.recompile_all()
    buffer = recompiler.build_output(functions)

    assert [func.name for func in functions] == ["sub_82000000"]
    assert "\tctx.lr = 0x82000004;\n\t__imp__xboxkrnl_12(ctx, base);\n" in functions[0].code
    assert "PPC_UNRESOLVED_BRANCH" not in functions[0].code
    assert "PPC_EXTERN_FUNC(__imp__xboxkrnl_12);" in buffer.get("ppc_init.h")
    assert "\t{ 0x82000030, __imp__xboxkrnl_12 },\n" in buffer.get("ppc_init.cpp")


def test_tail_call_and_fall_through_leave_the_function() -> None:
    ctx = make_context([b(BASE, BASE + 0x10), NOP, NOP, 0, BLR])
    jumper = sealed_function(ctx, BASE, BASE + 4)
    falls = sealed_function(ctx, BASE + 4, BASE + 8)
    sealed_function(ctx, BASE + 8, BASE + 0x0C)
    sealed_function(ctx, BASE + 0x10, BASE + 0x14)

    jump_code = recompile_function(ctx, jumper).code
    fall_code = recompile_function(ctx, falls).code

    assert "\tsub_82000010(ctx, base);\n\treturn;\n}" in jump_code
    assert "\tsub_82000008(ctx, base);\n\treturn;\n}" in fall_code


def test_fall_through_into_nothing_is_unresolved() -> None:
    ctx = make_context([NOP, 0, BLR])
    node = sealed_function(ctx, BASE, BASE + 4)

    result = recompile_function(ctx, node)

    assert "\tPPC_UNRESOLVED_BRANCH(0x82000004, 0x82000000);" in result.code
    assert result.warnings


def test_unresolved_call_becomes_a_runtime_trap() -> None:
    ctx, node = _emit([bl(BASE, BASE + 0x100), BLR], text_size=0x200)

    result = recompile_function(ctx, node)

    assert "\tPPC_UNRESOLVED_BRANCH(0x82000100, 0x82000000);" in result.code
    assert "ctx.lr" not in result.code
    assert len(result.warnings) == 1


def test_conditional_branch_uses_a_label() -> None:
    code = _body([cmpwi(0, 3, 0), bc(BASE + 4, BASE + 0x0C, 12, 2), li(3, 1), BLR])

    assert "\tctx.cr0.compare<int32_t>(ctx.r3.s32, 0, ctx.xer);" in code
    assert "\tif (ctx.cr0.eq) goto loc_8200000C;" in code
    assert "\nloc_8200000C:\n" in code
    assert "\tctx.r3.s64 = 1;" in code


def test_record_form_updates_cr0() -> None:
    code = _body([add(3, 4, 5, record=True), add(6, 4, 5), BLR])

    assert "\tctx.r3.u64 = ctx.r4.u64 + ctx.r5.u64;\n" in code
    assert "\tctx.cr0.compare<int32_t>(ctx.r3.s32, 0, ctx.xer);\n" in code
    assert code.count("compare<") == 1


def test_cr_as_local_declares_the_field() -> None:
    config = RecompilerConfig.from_mapping({"file_path": "x", "cr_as_local": True})

    code = _body([cmpwi(6, 3, -1), BLR], config=config)

    assert "\tPPCCRRegister cr6{};" in code
    assert "\tcr6.compare<int32_t>(ctx.r3.s32, -1, ctx.xer);" in code


def test_store_through_hardware_register_base_is_mmio() -> None:
    code = _body([lis(11, 0x7FC8), stw(3, 11, 0x10), BLR])

    assert "\tctx.r11.s64 = 2143813632;" in code
    assert "\tPPC_MM_STORE_U32(ctx.r11.u32 + 16, ctx.r3.u32);" in code


def test_store_through_ordinary_base_is_not_mmio() -> None:
    code = _body([lis(11, 0x8200), stw(3, 11, 0x10), BLR])

    assert "\tPPC_STORE_U32(ctx.r11.u32 + 16, ctx.r3.u32);" in code
    assert "PPC_MM_" not in code


def test_overwritten_base_register_is_no_longer_mmio() -> None:
    code = _body([lis(11, 0x7FC8), li(11, 0), stw(3, 11, 0x10), BLR])

    assert "\tPPC_STORE_U32(ctx.r11.u32 + 16, ctx.r3.u32);" in code


def test_store_before_eieio_is_mmio() -> None:
    code = _body([stw(3, 4, 0), EIEIO, BLR])

    assert "\tPPC_MM_STORE_U32(ctx.r4.u32, ctx.r3.u32);" in code


def test_flush_mode_switches_only_on_transitions() -> None:
    ctx, node = _emit([fadd(1, 1, 2), fadd(3, 1, 2), vaddfp(0, 1, 2), fadd(1, 1, 2), BLR])

    result = recompile_function(ctx, node)

    assert result.code.count("PPC_SET_FLUSH_MODE(false);") == 2
    assert result.code.count("PPC_SET_FLUSH_MODE(true);") == 1
    assert result.mode_switches == 3
    assert "\tctx.f1.f64 = ctx.f1.f64 + ctx.f2.f64;" in result.code


def test_flush_mode_is_forgotten_after_calls() -> None:
    ctx = make_context([fadd(1, 1, 2), bl(BASE + 4, BASE + 0x10), fadd(1, 1, 2), BLR, BLR])
    caller = sealed_function(ctx, BASE, BASE + 0x10)
    sealed_function(ctx, BASE + 0x10, BASE + 0x14)

    result = recompile_function(ctx, caller)

    assert result.code.count("PPC_SET_FLUSH_MODE(false);") == 2


def test_switch_over_a_jump_table() -> None:
    ctx, node = _emit([mtctr(4), BCTR, li(3, 1), BLR, li(3, 2), BLR])
    node.add_jump_table(JumpTable(BASE + 4, 0, 4, [BASE + 8, BASE + 0x10]))

    code = recompile_function(ctx, node).code

    assert "\tctx.ctr.u64 = ctx.r4.u64;" in code
    assert "\tswitch (ctx.r4.u64) {" in code
    assert "\t\tcase 0:\n\t\t\tgoto loc_82000008;" in code
    assert "\t\tcase 1:\n\t\t\tgoto loc_82000010;" in code
    assert "\t\tdefault:\n\t\t\tPPC_UNRESOLVED_BRANCH(ctx.ctr.u32, 0x82000004);\n\t}" in code
    assert "\nloc_82000008:\n" in code
    assert "\nloc_82000010:\n" in code


def test_bctr_without_table_calls_through_ctr() -> None:
    code = _body([mtctr(4), BCTR])

    assert "\tPPC_CALL_INDIRECT_FUNC(ctx.ctr.u32);\n\treturn;" in code


def test_non_volatile_registers_as_locals() -> None:
    config = RecompilerConfig.from_mapping({"file_path": "x", "non_volatile_as_local": True})

    code = _body([addi(31, 1, 8), BLR], config=config)

    assert "\tPPCRegister r31{};" in code
    assert "\tr31.s64 = ctx.r1.s64 + 8;" in code


def test_save_helper_calls_are_elided_with_local_non_volatiles() -> None:
    text = [bl(BASE, BASE + 0x10), BLR, 0, 0, BLR]
    for flag, expected in ((False, True), (True, False)):
        config = RecompilerConfig.from_mapping({"file_path": "x", "non_volatile_as_local": flag})
        ctx = make_context(text, config)
        caller = sealed_function(ctx, BASE, BASE + 8)
        sealed_function(
            ctx, BASE + 0x10, BASE + 0x14, name="__savegprlr_14", authority=Authority.HELPER
        )

        code = recompile_function(ctx, caller).code

        assert ("__savegprlr_14(ctx, base);" in code) is expected


def test_unknown_special_register_is_unimplemented() -> None:
    mfspr_1013 = (31 << 26) | (3 << 21) | (21 << 16) | (31 << 11) | (339 << 1)
    ctx, node = _emit([mfspr_1013, BLR])

    result = recompile_function(ctx, node)

    assert '\tPPC_UNIMPLEMENTED(0x82000000, "mfspr 1013");' in result.code
    assert result.unimplemented["mfspr 1013"] == 1


def test_setjmp_and_longjmp_calls_are_lowered() -> None:
    config = RecompilerConfig.from_mapping(
        {"file_path": "x", "setjmp_address": BASE + 0x10, "longjmp_address": BASE + 0x14}
    )

    code = _body([bl(BASE, BASE + 0x10), bl(BASE + 4, BASE + 0x14), BLR], config=config)

    assert "\tPPCContext env{};" in code
    assert "\tPPCRegister temp{};" in code
    assert (
        "\tenv = ctx;\n"
        "\ttemp.s64 = setjmp(*reinterpret_cast<jmp_buf*>(base + ctx.r3.u32));\n"
        "\tif (temp.s64 != 0) ctx = env;\n"
        "\tctx.r3 = temp;\n"
    ) in code
    assert "\tlongjmp(*reinterpret_cast<jmp_buf*>(base + ctx.r3.u32), ctx.r4.s32);" in code
    assert "PPC_UNRESOLVED_BRANCH" not in code


def test_instruction_state_exists_only_while_building() -> None:
    ctx, node = _emit([NOP, BLR])
    build = BuildContext(ctx, node, CodeWriter(), ranges=[(BASE, BASE + 8)])
    instr = ctx.decode(BASE)

    with pytest.raises(RuntimeError):
        build.next_address()
    with build.at(instr, None):
        assert build.current() is instr
        assert build.next_address() == BASE + 4
    with pytest.raises(RuntimeError):
        build.current()
