"""Per-function register bookkeeping for the emitter.

Three small pieces of state travel through the translation of one function:

* :class:`LocalVariables` remembers which guest registers the body touched
  as C++ locals so only those get declared;
* :class:`RegisterNamer` decides whether a register lives in ``ctx`` or in a
  local, following the ``*_as_local`` configuration switches;
* :class:`FloatingPointMode` tracks whether the host is in FPU or VMX
  denormal handling so switches are only emitted on a real transition.

:class:`MmioTracker` is the odd one out: it follows registers holding an
upper address half that points into the hardware register window.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Set

from ..config import RecompilerConfig
from ..constants import DEFAULT_MMIO_LIS_THRESHOLD, DEFAULT_MMIO_ORIS_THRESHOLD

GPR_NON_ARGUMENT = frozenset({0, 2, 11, 12})
FPR_NON_ARGUMENT = frozenset({0})


def _vr_non_argument(index: int) -> bool:
    return index in (0, 1) or 32 <= index < 64


def _vr_non_volatile(index: int) -> bool:
    return 14 <= index < 32 or index >= 64


class FpMode(Enum):
    UNKNOWN = "unknown"
    FPU = "fpu"
    VMX = "vmx"


MODE_STATEMENTS = {
    FpMode.FPU: "PPC_SET_FLUSH_MODE(false);",
    FpMode.VMX: "PPC_SET_FLUSH_MODE(true);",
}


class FloatingPointMode:
    """Current host floating-point mode inside one function body."""

    def __init__(self) -> None:
        self.mode = FpMode.UNKNOWN
        self.switches = 0

    def ensure(self, mode: FpMode) -> Optional[str]:
        """Statement switching to ``mode``, or ``None`` when already there."""

        if mode is FpMode.UNKNOWN or mode is self.mode:
            return None
        self.mode = mode
        self.switches += 1
        return MODE_STATEMENTS[mode]

    def reset(self) -> None:
        """Forget the mode; a callee may have changed it."""

        self.mode = FpMode.UNKNOWN


class LocalVariables:
    def __init__(self) -> None:
        self.gpr: Set[int] = set()
        self.fpr: Set[int] = set()
        self.vr: Set[int] = set()
        self.cr: Set[int] = set()
        self.ctr = False
        self.xer = False
        self.reserved = False
        self.temp = False
        self.v_temp = False
        self.env = False
        self.ea = False

    def declarations(self) -> List[str]:
        lines: List[str] = []
        lines.extend(f"PPCRegister r{index}{{}};" for index in sorted(self.gpr))
        lines.extend(f"PPCCRRegister cr{index}{{}};" for index in sorted(self.cr))
        if self.ctr:
            lines.append("PPCRegister ctr{};")
        if self.xer:
            lines.append("PPCXERRegister xer{};")
        if self.reserved:
            lines.append("PPCRegister reserved{};")
        lines.extend(f"PPCRegister f{index}{{}};" for index in sorted(self.fpr))
        lines.extend(f"PPCVRegister v{index}{{}};" for index in sorted(self.vr))
        if self.env:
            lines.append("PPCContext env{};")
        if self.temp:
            lines.append("PPCRegister temp{};")
        if self.v_temp:
            lines.append("PPCVRegister vTemp{};")
        if self.ea:
            lines.append("uint32_t ea{};")
        return lines


class RegisterNamer:
    """Spell guest registers as ``ctx.`` members or function locals."""

    def __init__(self, config: RecompilerConfig, local_vars: LocalVariables) -> None:
        self.config = config
        self.locals = local_vars

    def r(self, index: int) -> str:
        config = self.config
        if (config.non_argument_as_local and index in GPR_NON_ARGUMENT) or (
            config.non_volatile_as_local and index >= 14
        ):
            self.locals.gpr.add(index)
            return f"r{index}"
        return f"ctx.r{index}"

    def f(self, index: int) -> str:
        config = self.config
        if (config.non_argument_as_local and index in FPR_NON_ARGUMENT) or (
            config.non_volatile_as_local and index >= 14
        ):
            self.locals.fpr.add(index)
            return f"f{index}"
        return f"ctx.f{index}"

    def v(self, index: int) -> str:
        config = self.config
        if (config.non_argument_as_local and _vr_non_argument(index)) or (
            config.non_volatile_as_local and _vr_non_volatile(index)
        ):
            self.locals.vr.add(index)
            return f"v{index}"
        return f"ctx.v{index}"

    def cr(self, index: int) -> str:
        if self.config.cr_as_local:
            self.locals.cr.add(index)
            return f"cr{index}"
        return f"ctx.cr{index}"

    def ctr(self) -> str:
        if self.config.ctr_as_local:
            self.locals.ctr = True
            return "ctr"
        return "ctx.ctr"

    def xer(self) -> str:
        if self.config.xer_as_local:
            self.locals.xer = True
            return "xer"
        return "ctx.xer"

    def reserved(self) -> str:
        if self.config.reserved_as_local:
            self.locals.reserved = True
            return "reserved"
        return "ctx.reserved"

    def temp(self) -> str:
        self.locals.temp = True
        return "temp"

    def v_temp(self) -> str:
        self.locals.v_temp = True
        return "vTemp"

    def env(self) -> str:
        self.locals.env = True
        return "env"

    def ea(self) -> str:
        self.locals.ea = True
        return "ea"


class MmioTracker:
    """32-bit mask of GPRs currently holding a hardware register base."""

    def __init__(
        self,
        lis_threshold: int = DEFAULT_MMIO_LIS_THRESHOLD,
        oris_threshold: int = DEFAULT_MMIO_ORIS_THRESHOLD,
    ) -> None:
        self.mask = 0
        self.lis_threshold = lis_threshold
        self.oris_threshold = oris_threshold

    def is_marked(self, register: int) -> bool:
        return bool(self.mask & (1 << register))

    def mark(self, register: int) -> None:
        self.mask |= 1 << register

    def clear(self, register: int) -> None:
        self.mask &= ~(1 << register) & 0xFFFFFFFF

    def reset(self) -> None:
        self.mask = 0

    def note_lis(self, register: int, immediate: int) -> None:
        # 0x8000 and up sign-extends to a negative upper half: ordinary memory.
        if self.lis_threshold <= immediate < 0x8000:
            self.mark(register)
        else:
            self.clear(register)

    def note_oris(self, register: int, immediate: int) -> None:
        if immediate >= self.oris_threshold:
            self.mark(register)
        else:
            self.clear(register)


__all__ = [
    "FpMode",
    "MODE_STATEMENTS",
    "FloatingPointMode",
    "LocalVariables",
    "RegisterNamer",
    "MmioTracker",
]
