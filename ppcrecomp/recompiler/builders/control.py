"""Branch, condition register, special register and system builders."""

from __future__ import annotations

from typing import Dict, List

from ...instruction import CONDITION_NAMES
from .context import Builder, BuildContext, label_name

# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def build_b(b: BuildContext) -> None:
    i = b.instr
    if i.lk:
        b.emit_call(i.branch_target)
    else:
        b.emit_jump(i.branch_target)


def build_bc(b: BuildContext) -> None:
    i = b.instr
    target = i.branch_target
    if i.lk and target == b.next_address():
        # bcl 20,31,$+4 only reads the program counter into lr
        b.emit(f"ctx.lr = 0x{target:X};")
        return
    condition = b.branch_condition()
    if i.lk:
        with b.guarded(condition):
            b.emit_call(target)
        return
    if condition is not None and b.is_local(target):
        b.emit(f"if ({condition}) goto {label_name(target)};")
        return
    with b.guarded(condition):
        b.emit_jump(target)


def build_bclr(b: BuildContext) -> None:
    i = b.instr
    condition = b.branch_condition()
    if i.lk:
        with b.guarded(condition):
            temp = b.temp()
            b.emit(f"{temp}.u64 = ctx.lr;")
            b.emit_indirect_call(f"{temp}.u32")
        return
    if condition is None:
        b.emit("return;")
    else:
        b.emit(f"if ({condition}) return;")


def build_bcctr(b: BuildContext) -> None:
    i = b.instr
    condition = b.branch_condition()
    ctr = b.ctr()
    if i.lk:
        with b.guarded(condition):
            b.emit_indirect_call(f"{ctr}.u32")
        return
    table = b.jump_tables.get(i.address)
    if table is not None and condition is None:
        b.emit_switch(table)
        return
    with b.guarded(condition):
        b.emit(f"PPC_CALL_INDIRECT_FUNC({ctr}.u32);")
        b.emit("return;")


# ---------------------------------------------------------------------------
# Condition register
# ---------------------------------------------------------------------------


def _cr_bit(b: BuildContext, bit: int) -> str:
    return f"{b.cr(bit >> 2)}.{CONDITION_NAMES[bit & 3]}"


def _cr_logical(template: str) -> Builder:
    """``template`` combines the source bits ``{a}`` and ``{b}``."""

    def build(b: BuildContext) -> None:
        i = b.instr
        expression = template.format(a=_cr_bit(b, i.ra), b=_cr_bit(b, i.rb))
        b.emit(f"{_cr_bit(b, i.rd)} = {expression};")

    return build


def build_mcrf(b: BuildContext) -> None:
    i = b.instr
    b.emit(f"{b.cr(i.crfd)} = {b.cr(i.crfs)};")


def build_mfcr(b: BuildContext) -> None:
    rd = b.write_r(b.instr.rd)
    b.emit(f"{rd}.u64 = 0;")
    for field in range(8):
        cr = b.cr(field)
        shift = 31 - 4 * field
        bits = " | ".join(
            f"({cr}.{name} << {shift - offset})" for offset, name in enumerate(CONDITION_NAMES)
        )
        b.emit(f"{rd}.u32 |= {bits};")


def build_mtcrf(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    for field in range(8):
        if not i.crm & (0x80 >> field):
            continue
        cr = b.cr(field)
        for offset, name in enumerate(CONDITION_NAMES):
            b.emit(f"{cr}.{name} = ({rs}.u32 >> {31 - 4 * field - offset}) & 1;")


# ---------------------------------------------------------------------------
# Special purpose registers
# ---------------------------------------------------------------------------

SPR_XER = 1
SPR_LR = 8
SPR_CTR = 9
SPR_VRSAVE = 256
SPR_TIME_BASE = (268, 269)


def build_mfspr(b: BuildContext) -> None:
    i = b.instr
    spr = i.spr
    if spr == SPR_LR:
        value = "ctx.lr"
    elif spr == SPR_CTR:
        value = f"{b.ctr()}.u64"
    elif spr == SPR_XER:
        xer = b.xer()
        value = f"({xer}.so << 31) | ({xer}.ov << 30) | ({xer}.ca << 29)"
    elif spr in SPR_TIME_BASE:
        value = "__rdtsc()"
    elif spr == SPR_VRSAVE:
        # every vector register is reported live
        value = "0xFFFFFFFF"
    else:
        b.unimplemented_insn(f"mfspr {spr}")
        return
    b.emit(f"{b.write_r(i.rd)}.u64 = {value};")


def build_mtspr(b: BuildContext) -> None:
    i = b.instr
    spr = i.spr
    rs = b.r(i.rs)
    if spr == SPR_LR:
        b.emit(f"ctx.lr = {rs}.u64;")
    elif spr == SPR_CTR:
        b.emit(f"{b.ctr()}.u64 = {rs}.u64;")
    elif spr == SPR_XER:
        xer = b.xer()
        b.emit(f"{xer}.so = ({rs}.u32 >> 31) & 1;")
        b.emit(f"{xer}.ov = ({rs}.u32 >> 30) & 1;")
        b.emit(f"{xer}.ca = ({rs}.u32 >> 29) & 1;")
    elif spr == SPR_VRSAVE:
        return
    else:
        b.unimplemented_insn(f"mtspr {spr}")


def build_mftb(b: BuildContext) -> None:
    b.emit(f"{b.write_r(b.instr.rd)}.u64 = __rdtsc();")


def build_mfmsr(b: BuildContext) -> None:
    if not b.config.skip_msr:
        b.emit(f"{b.write_r(b.instr.rd)}.u64 = ctx.msr;")


def build_mtmsr(b: BuildContext) -> None:
    if not b.config.skip_msr:
        b.emit(f"ctx.msr = ({b.r(b.instr.rs)}.u32 & 0x8020) | (ctx.msr & ~0x8020);")


# ---------------------------------------------------------------------------
# Traps and system
# ---------------------------------------------------------------------------


def _trap(immediate: bool, width: int) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        to = i.rd
        if to == 0:
            return
        if to == 0x1F:
            b.emit("__builtin_trap();")
            return
        left = b.r(i.ra)
        if immediate:
            signed_right = str(i.simm)
            unsigned_right = f"uint{width}_t({i.simm})"
        else:
            rb = b.r(i.rb)
            signed_right = f"{rb}.s{width}"
            unsigned_right = f"{rb}.u{width}"
        conditions: List[str] = []
        for mask, operator, is_signed in (
            (0x10, "<", True),
            (0x08, ">", True),
            (0x04, "==", True),
            (0x02, "<", False),
            (0x01, ">", False),
        ):
            if not to & mask:
                continue
            if is_signed:
                conditions.append(f"{left}.s{width} {operator} {signed_right}")
            else:
                conditions.append(f"{left}.u{width} {operator} {unsigned_right}")
        b.emit(f"if ({' || '.join(conditions)}) __builtin_trap();")

    return build


def build_sc(b: BuildContext) -> None:
    b.unimplemented_insn()


def build_barrier(b: BuildContext) -> None:
    """Ordering barriers are no-ops on the host."""


BUILDERS: Dict[str, Builder] = {
    "b": build_b,
    "bc": build_bc,
    "bclr": build_bclr,
    "bcctr": build_bcctr,
    "crand": _cr_logical("{a} & {b}"),
    "crandc": _cr_logical("{a} & !{b}"),
    "cror": _cr_logical("{a} | {b}"),
    "crorc": _cr_logical("{a} | !{b}"),
    "crxor": _cr_logical("{a} ^ {b}"),
    "crnand": _cr_logical("!({a} & {b})"),
    "crnor": _cr_logical("!({a} | {b})"),
    "creqv": _cr_logical("{a} == {b}"),
    "mcrf": build_mcrf,
    "mfcr": build_mfcr,
    "mtcrf": build_mtcrf,
    "mfspr": build_mfspr,
    "mtspr": build_mtspr,
    "mftb": build_mftb,
    "mfmsr": build_mfmsr,
    "mtmsr": build_mtmsr,
    "mtmsrd": build_mtmsr,
    "tw": _trap(False, 32),
    "twi": _trap(True, 32),
    "td": _trap(False, 64),
    "tdi": _trap(True, 64),
    "sc": build_sc,
    "sync": build_barrier,
    "isync": build_barrier,
    "eieio": build_barrier,
}


__all__ = ["BUILDERS"]
