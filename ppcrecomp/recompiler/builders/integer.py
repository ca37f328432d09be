"""Integer arithmetic, logical, shift/rotate and compare builders."""

from __future__ import annotations

from typing import Dict

from .context import Builder, BuildContext, mask64


# ---------------------------------------------------------------------------
# Addition and subtraction
# ---------------------------------------------------------------------------


def build_add(b: BuildContext) -> None:
    i = b.instr
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = {b.r(i.ra)}.u64 + {b.r(i.rb)}.u64;")
    b.record(rd)


def build_addc(b: BuildContext) -> None:
    i = b.instr
    ra, rb, xer = b.r(i.ra), b.r(i.rb), b.xer()
    b.emit(f"{xer}.ca = {ra}.u32 + {rb}.u32 < {ra}.u32;")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = {ra}.u64 + {rb}.u64;")
    b.record(rd)


def build_adde(b: BuildContext) -> None:
    i = b.instr
    ra, rb, xer, temp = b.r(i.ra), b.r(i.rb), b.xer(), b.temp()
    b.emit(
        f"{temp}.u8 = ({ra}.u32 + {rb}.u32 < {ra}.u32)"
        f" | ({ra}.u32 + {rb}.u32 + {xer}.ca < {xer}.ca);"
    )
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = {ra}.u64 + {rb}.u64 + {xer}.ca;")
    b.emit(f"{xer}.ca = {temp}.u8;")
    b.record(rd)


def build_addi(b: BuildContext) -> None:
    i = b.instr
    rd = b.write_r(i.rd)
    if i.ra == 0:
        b.emit(f"{rd}.s64 = {i.simm};")
    else:
        b.emit(f"{rd}.s64 = {b.r(i.ra)}.s64 + {i.simm};")


def build_addic(b: BuildContext) -> None:
    i = b.instr
    ra = b.r(i.ra)
    b.emit(f"{b.xer()}.ca = {ra}.u32 > 0x{~i.simm & 0xFFFFFFFF:X};")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = {ra}.s64 + {i.simm};")
    b.record(rd)


def build_addis(b: BuildContext) -> None:
    i = b.instr
    rd = b.write_r(i.rd)
    value = i.simm << 16
    if i.ra == 0:
        b.emit(f"{rd}.s64 = {value};")
        b.mmio.note_lis(i.rd, i.uimm)
    else:
        b.emit(f"{rd}.s64 = {b.r(i.ra)}.s64 + {value};")


def build_addme(b: BuildContext) -> None:
    i = b.instr
    ra, xer, temp = b.r(i.ra), b.xer(), b.temp()
    b.emit(
        f"{temp}.u8 = ({ra}.u32 + 0xFFFFFFFFu < {ra}.u32)"
        f" | ({ra}.u32 + 0xFFFFFFFFu + {xer}.ca < {xer}.ca);"
    )
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = {ra}.u64 + {xer}.ca + 0xFFFFFFFFFFFFFFFFull;")
    b.emit(f"{xer}.ca = {temp}.u8;")
    b.record(rd)


def build_addze(b: BuildContext) -> None:
    i = b.instr
    ra, xer, temp = b.r(i.ra), b.xer(), b.temp()
    b.emit(f"{temp}.s64 = {ra}.s64 + {xer}.ca;")
    b.emit(f"{xer}.ca = {temp}.u32 < {ra}.u32;")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = {temp}.s64;")
    b.record(rd)


def build_subf(b: BuildContext) -> None:
    i = b.instr
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = {b.r(i.rb)}.s64 - {b.r(i.ra)}.s64;")
    b.record(rd)


def build_subfc(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    b.emit(f"{b.xer()}.ca = {rb}.u32 >= {ra}.u32;")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = {rb}.s64 - {ra}.s64;")
    b.record(rd)


def build_subfe(b: BuildContext) -> None:
    i = b.instr
    ra, rb, xer, temp = b.r(i.ra), b.r(i.rb), b.xer(), b.temp()
    b.emit(
        f"{temp}.u8 = (~{ra}.u32 + {rb}.u32 < ~{ra}.u32)"
        f" | (~{ra}.u32 + {rb}.u32 + {xer}.ca < {xer}.ca);"
    )
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = ~{ra}.u64 + {rb}.u64 + {xer}.ca;")
    b.emit(f"{xer}.ca = {temp}.u8;")
    b.record(rd)


def build_subfic(b: BuildContext) -> None:
    i = b.instr
    ra = b.r(i.ra)
    b.emit(f"{b.xer()}.ca = {ra}.u32 <= 0x{i.simm & 0xFFFFFFFF:X};")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = {i.simm} - {ra}.s64;")


def build_subfme(b: BuildContext) -> None:
    i = b.instr
    ra, xer, temp = b.r(i.ra), b.xer(), b.temp()
    b.emit(
        f"{temp}.u8 = (~{ra}.u32 + 0xFFFFFFFFu < ~{ra}.u32)"
        f" | (~{ra}.u32 + 0xFFFFFFFFu + {xer}.ca < {xer}.ca);"
    )
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = ~{ra}.u64 + {xer}.ca + 0xFFFFFFFFFFFFFFFFull;")
    b.emit(f"{xer}.ca = {temp}.u8;")
    b.record(rd)


def build_subfze(b: BuildContext) -> None:
    i = b.instr
    ra, xer, temp = b.r(i.ra), b.xer(), b.temp()
    b.emit(f"{temp}.u8 = ~{ra}.u32 + {xer}.ca < ~{ra}.u32;")
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = ~{ra}.u64 + {xer}.ca;")
    b.emit(f"{xer}.ca = {temp}.u8;")
    b.record(rd)


def build_neg(b: BuildContext) -> None:
    i = b.instr
    ra = b.r(i.ra)
    rd = b.write_r(i.rd)
    # unsigned negation wraps INT64_MIN like the hardware does
    b.emit(f"{rd}.s64 = static_cast<int64_t>(-{ra}.u64);")
    b.record(rd)


# ---------------------------------------------------------------------------
# Multiplication and division
# ---------------------------------------------------------------------------


def build_mulli(b: BuildContext) -> None:
    i = b.instr
    ra = b.r(i.ra)
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = static_cast<int64_t>({ra}.u64 * static_cast<uint64_t>({i.simm}));")


def build_mullw(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = int64_t({ra}.s32) * int64_t({rb}.s32);")
    b.record(rd)


def build_mulld(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = static_cast<int64_t>({ra}.u64 * {rb}.u64);")
    b.record(rd)


def build_mulhw(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.s64 = (int64_t({ra}.s32) * int64_t({rb}.s32)) >> 32;")
    b.record(rd)


def build_mulhwu(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(f"{rd}.u64 = (uint64_t({ra}.u32) * uint64_t({rb}.u32)) >> 32;")
    b.record(rd)


def build_mulhd(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(
        f"{rd}.s64 = static_cast<int64_t>((static_cast<__int128>({ra}.s64)"
        f" * static_cast<__int128>({rb}.s64)) >> 64);"
    )
    b.record(rd)


def build_mulhdu(b: BuildContext) -> None:
    i = b.instr
    ra, rb = b.r(i.ra), b.r(i.rb)
    rd = b.write_r(i.rd)
    b.emit(
        f"{rd}.u64 = static_cast<uint64_t>((static_cast<__uint128_t>({ra}.u64)"
        f" * static_cast<__uint128_t>({rb}.u64)) >> 64);"
    )
    b.record(rd)


def _division(field: str) -> Builder:
    # Division by zero does not trap on the guest; the result is 0 here.
    def build(b: BuildContext) -> None:
        i = b.instr
        ra, rb = b.r(i.ra), b.r(i.rb)
        rd = b.write_r(i.rd)
        b.emit(f"{rd}.{field} = {rb}.{field} ? {ra}.{field} / {rb}.{field} : 0;")
        b.record(rd)

    return build


# ---------------------------------------------------------------------------
# Logical
# ---------------------------------------------------------------------------


def _logical(template: str) -> Builder:
    """X-form ``rA = f(rS, rB)``; ``template`` uses ``{s}`` and ``{b}``."""

    def build(b: BuildContext) -> None:
        i = b.instr
        expression = template.format(s=b.r(i.rs), b=b.r(i.rb))
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.u64 = {expression};")
        b.record(ra)

    return build


def build_or(b: BuildContext) -> None:
    i = b.instr
    rs, rb = b.r(i.rs), b.r(i.rb)
    ra = b.write_r(i.ra)
    if i.rs == i.rb:
        b.emit(f"{ra}.u64 = {rs}.u64;")
    else:
        b.emit(f"{ra}.u64 = {rs}.u64 | {rb}.u64;")
    b.record(ra)


def _logical_immediate(operator: str, shifted: bool, record: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        if i.code == 0x60000000:
            return
        value = i.uimm << 16 if shifted else i.uimm
        rs = b.r(i.rs)
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.u64 = {rs}.u64 {operator} 0x{value:X};")
        if record:
            b.emit(f"{b.cr(0)}.compare<int32_t>({ra}.s32, 0, {b.xer()});")

    return build


def build_oris(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = {rs}.u64 | 0x{i.uimm << 16:X};")
    b.mmio.note_oris(i.ra, i.uimm)


def _extend(field: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        rs = b.r(i.rs)
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.s64 = {rs}.{field};")
        b.record(ra)

    return build


def build_cntlzw(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = {rs}.u32 == 0 ? 32 : __builtin_clz({rs}.u32);")
    b.record(ra)


def build_cntlzd(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = {rs}.u64 == 0 ? 64 : __builtin_clzll({rs}.u64);")
    b.record(ra)


# ---------------------------------------------------------------------------
# Shifts
# ---------------------------------------------------------------------------


def _shift(operator: str, width: int) -> Builder:
    # Shift amounts of ``width`` or more produce zero.
    field = f"u{width}"

    def build(b: BuildContext) -> None:
        i = b.instr
        rs, rb = b.r(i.rs), b.r(i.rb)
        ra = b.write_r(i.ra)
        b.emit(
            f"{ra}.u64 = {rb}.u8 & 0x{width:X} ? 0"
            f" : ({rs}.{field} {operator} ({rb}.u8 & 0x{width * 2 - 1:X}));"
        )
        b.record(ra)

    return build


def build_sraw(b: BuildContext) -> None:
    i = b.instr
    rs, rb, temp, xer = b.r(i.rs), b.r(i.rb), b.temp(), b.xer()
    b.emit(f"{temp}.u32 = {rb}.u32 & 0x3F;")
    b.emit(f"if ({temp}.u32 > 0x1F) {temp}.u32 = 0x1F;")
    b.emit(f"{xer}.ca = ({rs}.s32 < 0) & ((({rs}.s32 >> {temp}.u32) << {temp}.u32) != {rs}.s32);")
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.s64 = {rs}.s32 >> {temp}.u32;")
    b.record(ra)


def build_srawi(b: BuildContext) -> None:
    i = b.instr
    rs, xer = b.r(i.rs), b.xer()
    if i.sh == 0:
        b.emit(f"{xer}.ca = 0;")
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.s64 = {rs}.s32;")
    else:
        b.emit(f"{xer}.ca = ({rs}.s32 < 0) & (({rs}.u32 & 0x{(1 << i.sh) - 1:X}) != 0);")
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.s64 = {rs}.s32 >> {i.sh};")
    b.record(ra)


def build_srad(b: BuildContext) -> None:
    i = b.instr
    rs, rb, temp, xer = b.r(i.rs), b.r(i.rb), b.temp(), b.xer()
    b.emit(f"{temp}.u64 = {rb}.u64 & 0x7F;")
    b.emit(f"if ({temp}.u64 > 0x3F) {temp}.u64 = 0x3F;")
    b.emit(f"{xer}.ca = ({rs}.s64 < 0) & ((({rs}.s64 >> {temp}.u64) << {temp}.u64) != {rs}.s64);")
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.s64 = {rs}.s64 >> {temp}.u64;")
    b.record(ra)


def build_sradi(b: BuildContext) -> None:
    i = b.instr
    rs, xer = b.r(i.rs), b.xer()
    sh = i.sh64
    if sh == 0:
        b.emit(f"{xer}.ca = 0;")
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.s64 = {rs}.s64;")
    else:
        b.emit(f"{xer}.ca = ({rs}.s64 < 0) & (({rs}.u64 & 0x{(1 << sh) - 1:X}) != 0);")
        ra = b.write_r(i.ra)
        b.emit(f"{ra}.s64 = {rs}.s64 >> {sh};")
    b.record(ra)


# ---------------------------------------------------------------------------
# Rotates
# ---------------------------------------------------------------------------


def _rotated_word(rs: str, amount: str) -> str:
    # The low word is duplicated into the high half so a 64-bit rotate
    # reproduces the 32-bit one and the wrapping masks see the right bits.
    return f"__builtin_rotateleft64({rs}.u32 | ({rs}.u64 << 32), {amount})"


def build_rlwinm(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    mask = mask64(i.mb + 32, i.me + 32)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = {_rotated_word(rs, str(i.sh))} & 0x{mask:X};")
    b.record(ra)


def build_rlwnm(b: BuildContext) -> None:
    i = b.instr
    rs, rb = b.r(i.rs), b.r(i.rb)
    mask = mask64(i.mb + 32, i.me + 32)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = {_rotated_word(rs, f'{rb}.u8 & 0x1F')} & 0x{mask:X};")
    b.record(ra)


def build_rlwimi(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    mask = mask64(i.mb + 32, i.me + 32)
    ra = b.write_r(i.ra)
    b.emit(
        f"{ra}.u64 = (__builtin_rotateleft32({rs}.u32, {i.sh}) & 0x{mask:X})"
        f" | ({ra}.u64 & 0x{~mask & 0xFFFFFFFFFFFFFFFF:X});"
    )
    b.record(ra)


def build_rldicl(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = __builtin_rotateleft64({rs}.u64, {i.sh64}) & 0x{mask64(i.mb64, 63):X};")
    b.record(ra)


def build_rldicr(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    ra = b.write_r(i.ra)
    # the MD-form mask field holds ME for rldicr
    b.emit(f"{ra}.u64 = __builtin_rotateleft64({rs}.u64, {i.sh64}) & 0x{mask64(0, i.mb64):X};")
    b.record(ra)


def build_rldic(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    mask = mask64(i.mb64, 63 - i.sh64)
    ra = b.write_r(i.ra)
    b.emit(f"{ra}.u64 = __builtin_rotateleft64({rs}.u64, {i.sh64}) & 0x{mask:X};")
    b.record(ra)


def build_rldimi(b: BuildContext) -> None:
    i = b.instr
    rs = b.r(i.rs)
    mask = mask64(i.mb64, 63 - i.sh64)
    ra = b.write_r(i.ra)
    b.emit(
        f"{ra}.u64 = (__builtin_rotateleft64({rs}.u64, {i.sh64}) & 0x{mask:X})"
        f" | ({ra}.u64 & 0x{~mask & 0xFFFFFFFFFFFFFFFF:X});"
    )
    b.record(ra)


def build_rldcl(b: BuildContext) -> None:
    i = b.instr
    rs, rb = b.r(i.rs), b.r(i.rb)
    ra = b.write_r(i.ra)
    b.emit(
        f"{ra}.u64 = __builtin_rotateleft64({rs}.u64, {rb}.u8 & 0x3F) & 0x{mask64(i.mb64, 63):X};"
    )
    b.record(ra)


def build_rldcr(b: BuildContext) -> None:
    i = b.instr
    rs, rb = b.r(i.rs), b.r(i.rb)
    ra = b.write_r(i.ra)
    b.emit(
        f"{ra}.u64 = __builtin_rotateleft64({rs}.u64, {rb}.u8 & 0x3F) & 0x{mask64(0, i.mb64):X};"
    )
    b.record(ra)


# ---------------------------------------------------------------------------
# Compares
# ---------------------------------------------------------------------------


def build_cmp(b: BuildContext) -> None:
    i = b.instr
    kind, field = ("int64_t", "s64") if i.l64 else ("int32_t", "s32")
    b.emit(
        f"{b.cr(i.crfd)}.compare<{kind}>({b.r(i.ra)}.{field}, {b.r(i.rb)}.{field}, {b.xer()});"
    )


def build_cmpl(b: BuildContext) -> None:
    i = b.instr
    kind, field = ("uint64_t", "u64") if i.l64 else ("uint32_t", "u32")
    b.emit(
        f"{b.cr(i.crfd)}.compare<{kind}>({b.r(i.ra)}.{field}, {b.r(i.rb)}.{field}, {b.xer()});"
    )


def build_cmpi(b: BuildContext) -> None:
    i = b.instr
    kind, field = ("int64_t", "s64") if i.l64 else ("int32_t", "s32")
    b.emit(f"{b.cr(i.crfd)}.compare<{kind}>({b.r(i.ra)}.{field}, {i.simm}, {b.xer()});")


def build_cmpli(b: BuildContext) -> None:
    i = b.instr
    kind, field = ("uint64_t", "u64") if i.l64 else ("uint32_t", "u32")
    b.emit(f"{b.cr(i.crfd)}.compare<{kind}>({b.r(i.ra)}.{field}, {i.uimm}, {b.xer()});")


BUILDERS: Dict[str, Builder] = {
    "add": build_add,
    "addc": build_addc,
    "adde": build_adde,
    "addi": build_addi,
    "addic": build_addic,
    "addic.": build_addic,
    "addis": build_addis,
    "addme": build_addme,
    "addze": build_addze,
    "subf": build_subf,
    "subfc": build_subfc,
    "subfe": build_subfe,
    "subfic": build_subfic,
    "subfme": build_subfme,
    "subfze": build_subfze,
    "neg": build_neg,
    "mulli": build_mulli,
    "mullw": build_mullw,
    "mulld": build_mulld,
    "mulhw": build_mulhw,
    "mulhwu": build_mulhwu,
    "mulhd": build_mulhd,
    "mulhdu": build_mulhdu,
    "divw": _division("s32"),
    "divwu": _division("u32"),
    "divd": _division("s64"),
    "divdu": _division("u64"),
    "and": _logical("{s}.u64 & {b}.u64"),
    "andc": _logical("{s}.u64 & ~{b}.u64"),
    "or": build_or,
    "orc": _logical("{s}.u64 | ~{b}.u64"),
    "xor": _logical("{s}.u64 ^ {b}.u64"),
    "nand": _logical("~({s}.u64 & {b}.u64)"),
    "nor": _logical("~({s}.u64 | {b}.u64)"),
    "eqv": _logical("~({s}.u64 ^ {b}.u64)"),
    "ori": _logical_immediate("|", False),
    "oris": build_oris,
    "xori": _logical_immediate("^", False),
    "xoris": _logical_immediate("^", True),
    "andi.": _logical_immediate("&", False, record=True),
    "andis.": _logical_immediate("&", True, record=True),
    "extsb": _extend("s8"),
    "extsh": _extend("s16"),
    "extsw": _extend("s32"),
    "cntlzw": build_cntlzw,
    "cntlzd": build_cntlzd,
    "slw": _shift("<<", 32),
    "srw": _shift(">>", 32),
    "sld": _shift("<<", 64),
    "srd": _shift(">>", 64),
    "sraw": build_sraw,
    "srawi": build_srawi,
    "srad": build_srad,
    "sradi": build_sradi,
    "rlwinm": build_rlwinm,
    "rlwnm": build_rlwnm,
    "rlwimi": build_rlwimi,
    "rldicl": build_rldicl,
    "rldicr": build_rldicr,
    "rldic": build_rldic,
    "rldimi": build_rldimi,
    "rldcl": build_rldcl,
    "rldcr": build_rldcr,
    "cmp": build_cmp,
    "cmpl": build_cmpl,
    "cmpi": build_cmpi,
    "cmpli": build_cmpli,
}


__all__ = ["BUILDERS"]
