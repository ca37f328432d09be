"""Load, store, atomic and cache builders.

Every guest access goes through the ``PPC_LOAD_*``/``PPC_STORE_*`` macros,
which take a 32-bit guest address and handle byte order.  Accesses whose base
register was loaded with a hardware register address, or that are followed
by ``eieio``, use the ``PPC_MM_*`` variants instead.
"""

from __future__ import annotations

from typing import Dict

from ..locals import FpMode
from .context import Builder, BuildContext, signed

_VECTOR_LOAD = (
    "simde_mm_store_si128((simde__m128i*){vd}.u8, simde_mm_shuffle_epi8("
    "simde_mm_load_si128((simde__m128i*)(base + (({address}) & ~0xF))),"
    " simde_mm_load_si128((simde__m128i*)VectorMaskL)));"
)
_VECTOR_STORE = (
    "simde_mm_store_si128((simde__m128i*)(base + (({address}) & ~0xF)), simde_mm_shuffle_epi8("
    "simde_mm_load_si128((simde__m128i*){vs}.u8),"
    " simde_mm_load_si128((simde__m128i*)VectorMaskL)));"
)


def _macro(kind: str, bits: int, mmio: bool) -> str:
    return f"PPC_MM_{kind}_U{bits}" if mmio else f"PPC_{kind}_U{bits}"


def _address(b: BuildContext, indexed: bool, update: bool) -> str:
    """Effective address expression; update forms go through ``ea``."""

    expression = b.x_address() if indexed else b.d_address()
    if not update:
        return expression
    instr = b.instr
    # update forms always add rA even when it is r0
    if indexed:
        tail = f" + {b.r(instr.rb)}.u32"
    else:
        tail = signed(instr.ds if instr.form == "DSLOAD" else instr.simm)
    ea = b.ea()
    b.emit(f"{ea} = {b.r(instr.ra)}.u32{tail};")
    return ea


def _finish_update(b: BuildContext, update: bool) -> None:
    if update:
        ra = b.write_r(b.instr.ra)
        b.emit(f"{ra}.u32 = {b.ea()};")


# ---------------------------------------------------------------------------
# Integer loads and stores
# ---------------------------------------------------------------------------


def _load(bits: int, *, indexed: bool = False, update: bool = False, sign: bool = False,
          reverse: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        mmio = b.is_mmio_x_form() if indexed else b.is_mmio_d_form()
        address = _address(b, indexed, update)
        value = f"{_macro('LOAD', bits, mmio)}({address})"
        if reverse:
            value = f"__builtin_bswap{bits}({value})"
        rd = b.write_r(i.rd)
        if sign:
            b.emit(f"{rd}.s64 = int{bits}_t({value});")
        else:
            b.emit(f"{rd}.u64 = {value};")
        _finish_update(b, update)

    return build


def _store(bits: int, *, indexed: bool = False, update: bool = False,
           reverse: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        mmio = b.is_mmio_x_form() if indexed else b.is_mmio_d_form()
        address = _address(b, indexed, update)
        value = f"{b.r(i.rs)}.u{bits}"
        if reverse:
            value = f"__builtin_bswap{bits}({value})"
        b.emit(f"{_macro('STORE', bits, mmio)}({address}, {value});")
        _finish_update(b, update)

    return build


def build_lmw(b: BuildContext) -> None:
    i = b.instr
    for offset, register in enumerate(range(i.rd, 32)):
        address = b.d_address(i.simm + offset * 4)
        b.emit(f"{b.write_r(register)}.u64 = PPC_LOAD_U32({address});")


def build_stmw(b: BuildContext) -> None:
    i = b.instr
    for offset, register in enumerate(range(i.rs, 32)):
        address = b.d_address(i.simm + offset * 4)
        b.emit(f"PPC_STORE_U32({address}, {b.r(register)}.u32);")


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


def _load_reserved(bits: int) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        reserved = b.reserved()
        ea = b.ea()
        b.emit(f"{ea} = {b.x_address()};")
        b.emit(f"{reserved}.u{bits} = *(uint{bits}_t*)(base + {ea});")
        b.emit(f"{b.write_r(i.rd)}.u64 = __builtin_bswap{bits}({reserved}.u{bits});")

    return build


def _store_conditional(bits: int) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        cr0, ea = b.cr(0), b.ea()
        b.emit(f"{ea} = {b.x_address()};")
        b.emit(f"{cr0}.lt = 0;")
        b.emit(f"{cr0}.gt = 0;")
        b.emit(
            f"{cr0}.eq = __sync_bool_compare_and_swap(reinterpret_cast<uint{bits}_t*>(base + {ea}),"
            f" {b.reserved()}.s{bits}, __builtin_bswap{bits}({b.r(i.rs)}.s{bits}));"
        )
        b.emit(f"{cr0}.so = {b.xer()}.so;")

    return build


# ---------------------------------------------------------------------------
# Floating point loads and stores
# ---------------------------------------------------------------------------


def _load_float(double: bool, *, indexed: bool = False, update: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        address = _address(b, indexed, update)
        fd = b.f(i.fd)
        if double:
            b.emit(f"{fd}.u64 = PPC_LOAD_U64({address});")
        else:
            b.set_mode(FpMode.FPU)
            temp = b.temp()
            b.emit(f"{temp}.u32 = PPC_LOAD_U32({address});")
            b.emit(f"{fd}.f64 = double({temp}.f32);")
        _finish_update(b, update)

    return build


def _store_float(double: bool, *, indexed: bool = False, update: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        address = _address(b, indexed, update)
        fs = b.f(i.fd)
        if double:
            b.emit(f"PPC_STORE_U64({address}, {fs}.u64);")
        else:
            b.set_mode(FpMode.FPU)
            temp = b.temp()
            b.emit(f"{temp}.f32 = float({fs}.f64);")
            b.emit(f"PPC_STORE_U32({address}, {temp}.u32);")
        _finish_update(b, update)

    return build


def build_stfiwx(b: BuildContext) -> None:
    i = b.instr
    b.emit(f"PPC_STORE_U32({b.x_address()}, {b.f(i.fd)}.u32);")


# ---------------------------------------------------------------------------
# Vector loads and stores
# ---------------------------------------------------------------------------


def _vector_register(b: BuildContext) -> str:
    i = b.instr
    return b.v(i.vd128 if i.form == "V128LOAD" else i.vd)


def build_lvx(b: BuildContext) -> None:
    # lvebx/lvehx/lvewx load the whole aligned quadword as well; the element
    # the guest asked for ends up in the same lane either way.
    b.emit(_VECTOR_LOAD.format(vd=_vector_register(b), address=b.x_address()))


def build_stvx(b: BuildContext) -> None:
    b.emit(_VECTOR_STORE.format(vs=_vector_register(b), address=b.x_address()))


def _store_vector_element(bits: int) -> Builder:
    lanes = 128 // bits
    scale = bits // 8

    def build(b: BuildContext) -> None:
        ea = b.ea()
        vs = _vector_register(b)
        b.emit(f"{ea} = {b.x_address()};")
        if scale == 1:
            b.emit(f"PPC_STORE_U8({ea}, {vs}.u8[15 - ({ea} & 0xF)]);")
        else:
            b.emit(
                f"PPC_STORE_U{bits}({ea} & ~0x{scale - 1:X},"
                f" {vs}.u{bits}[{lanes - 1} - (({ea} & 0xF) >> {scale.bit_length() - 1})]);"
            )

    return build


def _shift_vector(table: str) -> Builder:
    def build(b: BuildContext) -> None:
        temp = b.temp()
        b.emit(f"{temp}.u32 = {b.x_address()};")
        b.emit(
            f"simde_mm_store_si128((simde__m128i*){_vector_register(b)}.u8,"
            f" simde_mm_load_si128((simde__m128i*)&{table}[({temp}.u32 & 0xF) * 16]));"
        )

    return build


# ---------------------------------------------------------------------------
# Cache control
# ---------------------------------------------------------------------------


def build_dcbz(b: BuildContext) -> None:
    b.emit(f"memset(base + (({b.x_address()}) & ~31), 0, 32);")


def build_cache_hint(b: BuildContext) -> None:
    """Cache hints and flushes have no effect on the host."""


BUILDERS: Dict[str, Builder] = {
    "lbz": _load(8),
    "lbzu": _load(8, update=True),
    "lbzx": _load(8, indexed=True),
    "lbzux": _load(8, indexed=True, update=True),
    "lhz": _load(16),
    "lhzu": _load(16, update=True),
    "lhzx": _load(16, indexed=True),
    "lhzux": _load(16, indexed=True, update=True),
    "lha": _load(16, sign=True),
    "lhau": _load(16, update=True, sign=True),
    "lhax": _load(16, indexed=True, sign=True),
    "lhaux": _load(16, indexed=True, update=True, sign=True),
    "lhbrx": _load(16, indexed=True, reverse=True),
    "lwz": _load(32),
    "lwzu": _load(32, update=True),
    "lwzx": _load(32, indexed=True),
    "lwzux": _load(32, indexed=True, update=True),
    "lwa": _load(32, sign=True),
    "lwax": _load(32, indexed=True, sign=True),
    "lwaux": _load(32, indexed=True, update=True, sign=True),
    "lwbrx": _load(32, indexed=True, reverse=True),
    "ld": _load(64),
    "ldu": _load(64, update=True),
    "ldx": _load(64, indexed=True),
    "ldux": _load(64, indexed=True, update=True),
    "stb": _store(8),
    "stbu": _store(8, update=True),
    "stbx": _store(8, indexed=True),
    "stbux": _store(8, indexed=True, update=True),
    "sth": _store(16),
    "sthu": _store(16, update=True),
    "sthx": _store(16, indexed=True),
    "sthux": _store(16, indexed=True, update=True),
    "sthbrx": _store(16, indexed=True, reverse=True),
    "stw": _store(32),
    "stwu": _store(32, update=True),
    "stwx": _store(32, indexed=True),
    "stwux": _store(32, indexed=True, update=True),
    "stwbrx": _store(32, indexed=True, reverse=True),
    "std": _store(64),
    "stdu": _store(64, update=True),
    "stdx": _store(64, indexed=True),
    "stdux": _store(64, indexed=True, update=True),
    "lmw": build_lmw,
    "stmw": build_stmw,
    "lwarx": _load_reserved(32),
    "ldarx": _load_reserved(64),
    "stwcx.": _store_conditional(32),
    "stdcx.": _store_conditional(64),
    "lfs": _load_float(False),
    "lfsu": _load_float(False, update=True),
    "lfsx": _load_float(False, indexed=True),
    "lfsux": _load_float(False, indexed=True, update=True),
    "lfd": _load_float(True),
    "lfdu": _load_float(True, update=True),
    "lfdx": _load_float(True, indexed=True),
    "lfdux": _load_float(True, indexed=True, update=True),
    "stfs": _store_float(False),
    "stfsu": _store_float(False, update=True),
    "stfsx": _store_float(False, indexed=True),
    "stfsux": _store_float(False, indexed=True, update=True),
    "stfd": _store_float(True),
    "stfdu": _store_float(True, update=True),
    "stfdx": _store_float(True, indexed=True),
    "stfdux": _store_float(True, indexed=True, update=True),
    "stfiwx": build_stfiwx,
    "lvx": build_lvx,
    "lvxl": build_lvx,
    "lvx128": build_lvx,
    "lvxl128": build_lvx,
    "lvebx": build_lvx,
    "lvehx": build_lvx,
    "lvewx": build_lvx,
    "stvx": build_stvx,
    "stvxl": build_stvx,
    "stvx128": build_stvx,
    "stvxl128": build_stvx,
    "stvebx": _store_vector_element(8),
    "stvehx": _store_vector_element(16),
    "stvewx": _store_vector_element(32),
    "lvsl": _shift_vector("VectorShiftTableL"),
    "lvsr": _shift_vector("VectorShiftTableR"),
    "dcbz": build_dcbz,
    "dcbt": build_cache_hint,
    "dcbtst": build_cache_hint,
    "dcbf": build_cache_hint,
    "dcbst": build_cache_hint,
    "icbi": build_cache_hint,
}


__all__ = ["BUILDERS"]
