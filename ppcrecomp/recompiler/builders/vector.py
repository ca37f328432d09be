"""AltiVec / VMX128 arithmetic and permute builders.

Vector registers are kept byte reversed on the host: guest element ``i`` of an
``n`` element view lives at host index ``n - 1 - i``.  Element-wise operations
therefore map straight onto SSE intrinsics, while merges, splats and permutes
translate indices explicitly.  Float vector operations run in VMX mode.
"""

from __future__ import annotations

from typing import Dict

from ..locals import FpMode
from .context import Builder, BuildContext

_ELEMENT = {8: ("u8", 16), 16: ("u16", 8), 32: ("u32", 4)}


def _load_ps(register: str) -> str:
    return f"simde_mm_load_ps({register}.f32)"


def _load_si(register: str) -> str:
    return f"simde_mm_load_si128((simde__m128i*){register}.u8)"


def _store_ps(b: BuildContext, expression: str) -> None:
    b.emit(f"simde_mm_store_ps({b.v(b.instr.vd)}.f32, {expression});")


def _store_si(b: BuildContext, expression: str) -> None:
    b.emit(f"simde_mm_store_si128((simde__m128i*){b.v(b.instr.vd)}.u8, {expression});")


# ---------------------------------------------------------------------------
# Float
# ---------------------------------------------------------------------------


def _float_binary(operation: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.VMX)
        _store_ps(b, f"simde_mm_{operation}_ps({_load_ps(b.v(i.va))}, {_load_ps(b.v(i.vb))})")

    return build


def build_vmaddfp(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.VMX)
    product = f"simde_mm_mul_ps({_load_ps(b.v(i.va))}, {_load_ps(b.v(i.vc))})"
    _store_ps(b, f"simde_mm_add_ps({product}, {_load_ps(b.v(i.vb))})")


def build_vnmsubfp(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.VMX)
    product = f"simde_mm_mul_ps({_load_ps(b.v(i.va))}, {_load_ps(b.v(i.vc))})"
    _store_ps(b, f"simde_mm_sub_ps({_load_ps(b.v(i.vb))}, {product})")


def build_vrefp(b: BuildContext) -> None:
    b.set_mode(FpMode.VMX)
    _store_ps(b, f"simde_mm_div_ps(simde_mm_set1_ps(1), {_load_ps(b.v(b.instr.vb))})")


def build_vrsqrtefp(b: BuildContext) -> None:
    b.set_mode(FpMode.VMX)
    root = f"simde_mm_sqrt_ps({_load_ps(b.v(b.instr.vb))})"
    _store_ps(b, f"simde_mm_div_ps(simde_mm_set1_ps(1), {root})")


def _round(mode: str) -> Builder:
    def build(b: BuildContext) -> None:
        b.set_mode(FpMode.VMX)
        _store_ps(
            b,
            f"simde_mm_round_ps({_load_ps(b.v(b.instr.vb))},"
            f" SIMDE_MM_FROUND_{mode} | SIMDE_MM_FROUND_NO_EXC)",
        )

    return build


def _scale_literal(exponent: int) -> str:
    return f"{2.0 ** exponent!r}f"


def build_vcfsx(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.VMX)
    converted = f"simde_mm_cvtepi32_ps({_load_si(b.v(i.vb))})"
    if i.ra:
        converted = f"simde_mm_mul_ps({converted}, simde_mm_set1_ps({_scale_literal(-i.ra)}))"
    _store_ps(b, converted)


def build_vcfux(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.VMX)
    vd, vb = b.v(i.vd), b.v(i.vb)
    scale = f" * {_scale_literal(-i.ra)}" if i.ra else ""
    b.emit(f"for (size_t i = 0; i < 4; i++) {vd}.f32[i] = float({vb}.u32[i]){scale};")


def _saturating_convert(signed_result: bool) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.VMX)
        vd, vb = b.v(i.vd), b.v(i.vb)
        value = f"{vb}.f32[i] * {_scale_literal(i.ra)}" if i.ra else f"{vb}.f32[i]"
        with b.block("for (size_t i = 0; i < 4; i++)"):
            if signed_result:
                b.emit(
                    f"{vd}.s32[i] = ({value} != {value}) ? 0"
                    f" : ({value} >= 2147483648.0f) ? INT_MAX"
                    f" : ({value} < -2147483648.0f) ? INT_MIN : int32_t({value});"
                )
            else:
                b.emit(
                    f"{vd}.u32[i] = ({value} != {value} || {value} < 0.0f) ? 0"
                    f" : ({value} >= 4294967296.0f) ? UINT_MAX : uint32_t({value});"
                )

    return build


# ---------------------------------------------------------------------------
# Integer and logical
# ---------------------------------------------------------------------------


def _int_binary(operation: str, *, swapped: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        left, right = _load_si(b.v(i.va)), _load_si(b.v(i.vb))
        if swapped:
            left, right = right, left
        _store_si(b, f"simde_mm_{operation}({left}, {right})")

    return build


def build_vnor(b: BuildContext) -> None:
    i = b.instr
    combined = f"simde_mm_or_si128({_load_si(b.v(i.va))}, {_load_si(b.v(i.vb))})"
    _store_si(b, f"simde_mm_xor_si128({combined}, simde_mm_set1_epi32(-1))")


def build_vsel(b: BuildContext) -> None:
    i = b.instr
    mask = _load_si(b.v(i.vc))
    kept = f"simde_mm_andnot_si128({mask}, {_load_si(b.v(i.va))})"
    taken = f"simde_mm_and_si128({mask}, {_load_si(b.v(i.vb))})"
    _store_si(b, f"simde_mm_or_si128({kept}, {taken})")


def _word_shift(operator: str, field: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        vd, va, vb = b.v(i.vd), b.v(i.va), b.v(i.vb)
        b.emit(
            f"for (size_t i = 0; i < 4; i++)"
            f" {vd}.{field}[i] = {va}.{field}[i] {operator} ({vb}.u32[i] & 0x1F);"
        )

    return build


# ---------------------------------------------------------------------------
# Compares
# ---------------------------------------------------------------------------


def _record_cr6(b: BuildContext, *, bounds: bool = False) -> None:
    if not b.instr.rc:
        return
    cr6, vd = b.cr(6), b.v(b.instr.vd)
    if bounds:
        zero = f"simde_mm_cmpeq_epi32({_load_si(vd)}, simde_mm_setzero_si128())"
        b.emit(f"{cr6}.lt = 0;")
        b.emit(f"{cr6}.gt = 0;")
        b.emit(f"{cr6}.eq = simde_mm_movemask_epi8({zero}) == 0xFFFF;")
    else:
        temp = b.temp()
        b.emit(f"{temp}.u32 = simde_mm_movemask_ps({_load_ps(vd)});")
        b.emit(f"{cr6}.lt = {temp}.u32 == 0xF;")
        b.emit(f"{cr6}.gt = 0;")
        b.emit(f"{cr6}.eq = {temp}.u32 == 0;")
    b.emit(f"{cr6}.so = 0;")


def _compare_int(operation: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        _store_si(b, f"simde_mm_{operation}({_load_si(b.v(i.va))}, {_load_si(b.v(i.vb))})")
        _record_cr6(b)

    return build


def build_vcmpgtuw(b: BuildContext) -> None:
    i = b.instr
    vd, va, vb = b.v(i.vd), b.v(i.va), b.v(i.vb)
    b.emit(
        f"for (size_t i = 0; i < 4; i++)"
        f" {vd}.u32[i] = {va}.u32[i] > {vb}.u32[i] ? 0xFFFFFFFF : 0;"
    )
    _record_cr6(b)


def _compare_float(operation: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.VMX)
        _store_ps(b, f"simde_mm_{operation}_ps({_load_ps(b.v(i.va))}, {_load_ps(b.v(i.vb))})")
        _record_cr6(b)

    return build


def build_vcmpbfp(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.VMX)
    vd, va, vb = b.v(i.vd), b.v(i.va), b.v(i.vb)
    with b.block("for (size_t i = 0; i < 4; i++)"):
        b.emit(
            f"{vd}.u32[i] = ({va}.f32[i] <= {vb}.f32[i] ? 0 : 0x80000000)"
            f" | ({va}.f32[i] >= -{vb}.f32[i] ? 0 : 0x40000000);"
        )
    _record_cr6(b, bounds=True)


# ---------------------------------------------------------------------------
# Permutes, merges and splats
# ---------------------------------------------------------------------------


def _merge(bits: int, high: bool) -> Builder:
    field, count = _ELEMENT[bits]
    half = count // 2
    # guest element k of the source half, counted from the top of the host array
    source = count - 1 if high else count - 1 - half

    def build(b: BuildContext) -> None:
        i = b.instr
        va, vb, temp = b.v(i.va), b.v(i.vb), b.v_temp()
        with b.block(f"for (size_t i = 0; i < {half}; i++)"):
            b.emit(f"{temp}.{field}[{count - 1} - 2 * i] = {va}.{field}[{source} - i];")
            b.emit(f"{temp}.{field}[{count - 2} - 2 * i] = {vb}.{field}[{source} - i];")
        b.emit(f"{b.v(i.vd)} = {temp};")

    return build


def _splat(bits: int) -> Builder:
    field, count = _ELEMENT[bits]
    intrinsic = {8: "epi8(char(", 16: "epi16(short(", 32: "epi32(int("}[bits]

    def build(b: BuildContext) -> None:
        i = b.instr
        element = count - 1 - (i.ra & (count - 1))
        _store_si(b, f"simde_mm_set1_{intrinsic}{b.v(i.vb)}.{field}[{element}]))")

    return build


def _splat_immediate(bits: int) -> Builder:
    intrinsic = {8: "epi8(char(", 16: "epi16(short(", 32: "epi32(int("}[bits]

    def build(b: BuildContext) -> None:
        _store_si(b, f"simde_mm_set1_{intrinsic}{b.instr.splat_simm}))")

    return build


def build_vperm(b: BuildContext) -> None:
    i = b.instr
    va, vb, vc, temp, vtemp = b.v(i.va), b.v(i.vb), b.v(i.vc), b.temp(), b.v_temp()
    with b.block("for (size_t i = 0; i < 16; i++)"):
        b.emit(f"{temp}.u8 = {vc}.u8[i] & 0x1F;")
        b.emit(
            f"{vtemp}.u8[i] = {temp}.u8 < 16 ? {va}.u8[15 - {temp}.u8] : {vb}.u8[31 - {temp}.u8];"
        )
    b.emit(f"{b.v(i.vd)} = {vtemp};")


def build_vsldoi(b: BuildContext) -> None:
    i = b.instr
    shift = i.vsldoi_sh
    va, vb, vtemp = b.v(i.va), b.v(i.vb), b.v_temp()
    b.emit(
        f"for (size_t i = 0; i < 16; i++) {vtemp}.u8[15 - i] = i < {16 - shift}"
        f" ? {va}.u8[{15 - shift} - i] : {vb}.u8[{31 - shift} - i];"
    )
    b.emit(f"{b.v(i.vd)} = {vtemp};")


# ---------------------------------------------------------------------------
# VSCR
# ---------------------------------------------------------------------------


def build_mfvscr(b: BuildContext) -> None:
    # Non-Java mode is always on: denormals flush to zero in VMX mode.
    _store_si(b, "simde_mm_set_epi32(0, 0, 0, 0x10000)")


def build_mtvscr(b: BuildContext) -> None:
    """Writes to VSCR are ignored; the host mode follows the instruction stream."""


BUILDERS: Dict[str, Builder] = {
    "vaddfp": _float_binary("add"),
    "vsubfp": _float_binary("sub"),
    "vmaxfp": _float_binary("max"),
    "vminfp": _float_binary("min"),
    "vmaddfp": build_vmaddfp,
    "vnmsubfp": build_vnmsubfp,
    "vrefp": build_vrefp,
    "vrsqrtefp": build_vrsqrtefp,
    "vrfin": _round("TO_NEAREST_INT"),
    "vrfiz": _round("TO_ZERO"),
    "vrfip": _round("TO_POS_INF"),
    "vrfim": _round("TO_NEG_INF"),
    "vcfsx": build_vcfsx,
    "vcfux": build_vcfux,
    "vctsxs": _saturating_convert(True),
    "vctuxs": _saturating_convert(False),
    "vand": _int_binary("and_si128"),
    "vandc": _int_binary("andnot_si128", swapped=True),
    "vor": _int_binary("or_si128"),
    "vxor": _int_binary("xor_si128"),
    "vnor": build_vnor,
    "vsel": build_vsel,
    "vadduwm": _int_binary("add_epi32"),
    "vsubuwm": _int_binary("sub_epi32"),
    "vslw": _word_shift("<<", "u32"),
    "vsrw": _word_shift(">>", "u32"),
    "vsraw": _word_shift(">>", "s32"),
    "vcmpequw": _compare_int("cmpeq_epi32"),
    "vcmpgtsw": _compare_int("cmpgt_epi32"),
    "vcmpgtuw": build_vcmpgtuw,
    "vcmpeqfp": _compare_float("cmpeq"),
    "vcmpgefp": _compare_float("cmpge"),
    "vcmpgtfp": _compare_float("cmpgt"),
    "vcmpbfp": build_vcmpbfp,
    "vmrghb": _merge(8, True),
    "vmrghh": _merge(16, True),
    "vmrghw": _merge(32, True),
    "vmrglb": _merge(8, False),
    "vmrglh": _merge(16, False),
    "vmrglw": _merge(32, False),
    "vspltb": _splat(8),
    "vsplth": _splat(16),
    "vspltw": _splat(32),
    "vspltisb": _splat_immediate(8),
    "vspltish": _splat_immediate(16),
    "vspltisw": _splat_immediate(32),
    "vperm": build_vperm,
    "vsldoi": build_vsldoi,
    "mfvscr": build_mfvscr,
    "mtvscr": build_mtvscr,
}


__all__ = ["BUILDERS"]
