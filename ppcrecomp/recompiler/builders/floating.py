"""Scalar floating point builders.

Every arithmetic builder switches the host into FPU mode first.  Pure bit
manipulations (``fmr``, ``fneg``, ``fabs``, ``fnabs``) never look at the
denormal mode and leave it alone.  The record bit of floating point forms is
not modelled.
"""

from __future__ import annotations

from typing import Dict

from ..locals import FpMode
from .context import Builder, BuildContext

SIGN_BIT = 0x8000000000000000


def _single(expression: str, single: bool) -> str:
    return f"double(float({expression}))" if single else expression


def _binary(operator: str, single: bool, *, use_fc: bool = False) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.FPU)
        right = b.f(i.fc if use_fc else i.fb)
        expression = f"{b.f(i.fa)}.f64 {operator} {right}.f64"
        b.emit(f"{b.f(i.fd)}.f64 = {_single(expression, single)};")

    return build


def _fused(template: str, single: bool) -> Builder:
    """``template`` combines ``{a}``, ``{c}`` and ``{b}``."""

    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.FPU)
        expression = template.format(a=f"{b.f(i.fa)}.f64", c=f"{b.f(i.fc)}.f64", b=f"{b.f(i.fb)}.f64")
        b.emit(f"{b.f(i.fd)}.f64 = {_single(expression, single)};")

    return build


def _unary(template: str, *, fpu: bool = True) -> Builder:
    """``template`` receives the source register as ``{b}``."""

    def build(b: BuildContext) -> None:
        i = b.instr
        if fpu:
            b.set_mode(FpMode.FPU)
        b.emit(template.format(d=b.f(i.fd), b=b.f(i.fb)) + ";")

    return build


def build_fsel(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.FPU)
    b.emit(f"{b.f(i.fd)}.f64 = {b.f(i.fa)}.f64 >= 0.0 ? {b.f(i.fc)}.f64 : {b.f(i.fb)}.f64;")


def build_fcmp(b: BuildContext) -> None:
    i = b.instr
    b.set_mode(FpMode.FPU)
    b.emit(f"{b.cr(i.crfd)}.compare({b.f(i.fa)}.f64, {b.f(i.fb)}.f64);")


def _convert(limit: str, intrinsic: str) -> Builder:
    def build(b: BuildContext) -> None:
        i = b.instr
        b.set_mode(FpMode.FPU)
        fb = b.f(i.fb)
        b.emit(
            f"{b.f(i.fd)}.s64 = ({fb}.f64 > double({limit})) ? {limit}"
            f" : {intrinsic}(simde_mm_load_sd(&{fb}.f64));"
        )

    return build


# ---------------------------------------------------------------------------
# FPSCR
# ---------------------------------------------------------------------------


def build_mffs(b: BuildContext) -> None:
    b.emit(f"{b.f(b.instr.fd)}.u64 = ctx.fpscr.loadFromHost();")


def build_mtfsf(b: BuildContext) -> None:
    b.emit(f"ctx.fpscr.storeFromGuest({b.f(b.instr.fb)}.u32);")
    b.fp_mode.reset()


def _fpscr_bit(set_bit: bool) -> Builder:
    def build(b: BuildContext) -> None:
        mask = 0x80000000 >> b.instr.rd
        if set_bit:
            b.emit(f"ctx.fpscr.storeFromGuest(ctx.fpscr.loadFromHost() | 0x{mask:X});")
        else:
            b.emit(f"ctx.fpscr.storeFromGuest(ctx.fpscr.loadFromHost() & ~0x{mask:X});")
        b.fp_mode.reset()

    return build


def build_mtfsfi(b: BuildContext) -> None:
    i = b.instr
    shift = 4 * (7 - i.crfd)
    value = (i.code >> 12) & 0xF
    b.emit(
        f"ctx.fpscr.storeFromGuest((ctx.fpscr.loadFromHost() & ~0x{0xF << shift:X})"
        f" | 0x{value << shift:X});"
    )
    b.fp_mode.reset()


BUILDERS: Dict[str, Builder] = {
    "fadd": _binary("+", False),
    "fadds": _binary("+", True),
    "fsub": _binary("-", False),
    "fsubs": _binary("-", True),
    "fmul": _binary("*", False, use_fc=True),
    "fmuls": _binary("*", True, use_fc=True),
    "fdiv": _binary("/", False),
    "fdivs": _binary("/", True),
    "fmadd": _fused("{a} * {c} + {b}", False),
    "fmadds": _fused("{a} * {c} + {b}", True),
    "fmsub": _fused("{a} * {c} - {b}", False),
    "fmsubs": _fused("{a} * {c} - {b}", True),
    "fnmadd": _fused("-({a} * {c} + {b})", False),
    "fnmadds": _fused("-({a} * {c} + {b})", True),
    "fnmsub": _fused("-({a} * {c} - {b})", False),
    "fnmsubs": _fused("-({a} * {c} - {b})", True),
    "fsqrt": _unary("{d}.f64 = sqrt({b}.f64)"),
    "fsqrts": _unary("{d}.f64 = double(float(sqrt({b}.f64)))"),
    "fres": _unary("{d}.f64 = float(1.0 / {b}.f64)"),
    "frsqrte": _unary("{d}.f64 = 1.0 / sqrt({b}.f64)"),
    "frsp": _unary("{d}.f64 = double(float({b}.f64))"),
    "fcfid": _unary("{d}.f64 = double({b}.s64)"),
    "fmr": _unary("{d}.f64 = {b}.f64", fpu=False),
    "fneg": _unary(f"{{d}}.u64 = {{b}}.u64 ^ 0x{SIGN_BIT:X}", fpu=False),
    "fabs": _unary(f"{{d}}.u64 = {{b}}.u64 & ~0x{SIGN_BIT:X}", fpu=False),
    "fnabs": _unary(f"{{d}}.u64 = {{b}}.u64 | 0x{SIGN_BIT:X}", fpu=False),
    "fsel": build_fsel,
    "fcmpu": build_fcmp,
    "fcmpo": build_fcmp,
    "fctiw": _convert("INT_MAX", "simde_mm_cvtsd_si32"),
    "fctiwz": _convert("INT_MAX", "simde_mm_cvttsd_si32"),
    "fctid": _convert("LLONG_MAX", "simde_mm_cvtsd_si64"),
    "fctidz": _convert("LLONG_MAX", "simde_mm_cvttsd_si64"),
    "mffs": build_mffs,
    "mtfsf": build_mtfsf,
    "mtfsb0": _fpscr_bit(False),
    "mtfsb1": _fpscr_bit(True),
    "mtfsfi": build_mtfsfi,
}


__all__ = ["SIGN_BIT", "BUILDERS"]
