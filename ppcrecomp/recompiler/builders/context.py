"""State shared by every instruction builder while one function is emitted.

A :class:`BuildContext` is created per function.  The function emitter
points :attr:`BuildContext.instr` at each instruction in turn and calls the
builder registered for its mnemonic; builders only ever talk to the context.
"""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import contextmanager, nullcontext
from typing import Callable, ContextManager, Dict, Iterator, List, Optional, Sequence, Tuple

from ...context import PipelineContext
from ...function_graph import Authority, FunctionNode, JumpTable
from ...instruction import CONDITION_NAMES, Instruction
from ..locals import FloatingPointMode, FpMode, LocalVariables, MmioTracker, RegisterNamer
from ..writer import CodeWriter

logger = logging.getLogger(__name__)

UINT64_MAX = 0xFFFFFFFFFFFFFFFF


def mask64(mstart: int, mstop: int) -> int:
    """PowerPC ``MASK(mstart, mstop)`` over 64 bits, wrapping when start > stop."""

    mstart &= 0x3F
    mstop &= 0x3F
    value = (UINT64_MAX >> mstart) ^ (0 if mstop >= 63 else UINT64_MAX >> (mstop + 1))
    return value if mstart <= mstop else ~value & UINT64_MAX


def signed(value: int) -> str:
    """`` + n`` / `` - n`` suffix for an address expression."""

    return f" - {-value}" if value < 0 else f" + {value}"


def label_name(address: int) -> str:
    return f"loc_{address:08X}"


Builder = Callable[["BuildContext"], None]


class BuildContext:
    """Registers, writer and control-flow knowledge for one emitted function."""

    def __init__(
        self,
        pipeline: PipelineContext,
        node: FunctionNode,
        writer: CodeWriter,
        *,
        ranges: Sequence[Tuple[int, int]] = (),
    ) -> None:
        self.pipeline = pipeline
        self.config = pipeline.config
        self.graph = pipeline.graph
        self.node = node
        self.writer = writer
        self.ranges: List[Tuple[int, int]] = list(ranges) or [(node.entry, node.extent)]
        self.jump_tables: Dict[int, JumpTable] = dict(node.jump_tables)
        for chunk in self.graph.chunks_of(node.entry):
            self.jump_tables.update(chunk.jump_tables)
        self.locals = LocalVariables()
        self.names = RegisterNamer(self.config, self.locals)
        self.fp_mode = FloatingPointMode()
        self.mmio = MmioTracker(self.config.mmio_lis_threshold, self.config.mmio_oris_threshold)
        self.instr: Optional[Instruction] = None
        self.next_instr: Optional[Instruction] = None
        self.unimplemented: Counter = Counter()
        self.warnings: List[str] = []

    # ------------------------------------------------------------------
    # register spelling
    # ------------------------------------------------------------------
    def r(self, index: int) -> str:
        return self.names.r(index)

    def write_r(self, index: int) -> str:
        """Spelling of a GPR about to be overwritten; forgets any MMIO base."""

        self.mmio.clear(index)
        return self.names.r(index)

    def f(self, index: int) -> str:
        return self.names.f(index)

    def v(self, index: int) -> str:
        return self.names.v(index)

    def cr(self, index: int) -> str:
        return self.names.cr(index)

    def ctr(self) -> str:
        return self.names.ctr()

    def xer(self) -> str:
        return self.names.xer()

    def reserved(self) -> str:
        return self.names.reserved()

    def temp(self) -> str:
        return self.names.temp()

    def v_temp(self) -> str:
        return self.names.v_temp()

    def env(self) -> str:
        return self.names.env()

    def ea(self) -> str:
        return self.names.ea()

    # ------------------------------------------------------------------
    # output
    # ------------------------------------------------------------------
    def emit(self, text: str) -> None:
        self.writer.write_line(text)

    def block(self, header: str) -> ContextManager[None]:
        return self.writer.block(header)

    def guarded(self, condition: Optional[str]) -> ContextManager[None]:
        """``if (condition) { ... }`` or nothing when unconditional."""

        if condition is None:
            return nullcontext()
        return self.writer.block(f"if ({condition})")

    def record(self, register: str, compare_type: str = "int32_t", field: str = "s32") -> None:
        """Emit the ``cr0`` update of a record-form (``.``) instruction."""

        if self.instr is not None and self.instr.rc:
            self.emit(f"{self.cr(0)}.compare<{compare_type}>({register}.{field}, 0, {self.xer()});")

    def set_mode(self, mode: FpMode) -> None:
        statement = self.fp_mode.ensure(mode)
        if statement is not None:
            self.emit(statement)

    def unimplemented_insn(self, detail: str = "") -> None:
        instr = self.current()
        name = detail or instr.mnemonic
        self.unimplemented[name] += 1
        self.emit(f'PPC_UNIMPLEMENTED(0x{instr.address:X}, "{name}");')

    def forget_state(self) -> None:
        """Anything may have happened before this point (label or call)."""

        self.fp_mode.reset()
        self.mmio.reset()

    # ------------------------------------------------------------------
    # memory operands
    # ------------------------------------------------------------------
    def d_address(self, offset: Optional[int] = None) -> str:
        instr = self.current()
        if offset is None:
            offset = instr.ds if instr.form == "DSLOAD" else instr.simm
        if instr.ra == 0:
            return str(offset & 0xFFFFFFFF) if offset >= 0 else f"uint32_t({offset})"
        return f"{self.r(instr.ra)}.u32{signed(offset)}" if offset else f"{self.r(instr.ra)}.u32"

    def x_address(self) -> str:
        instr = self.current()
        if instr.ra == 0:
            return f"{self.r(instr.rb)}.u32"
        return f"{self.r(instr.ra)}.u32 + {self.r(instr.rb)}.u32"

    def _followed_by_eieio(self) -> bool:
        return self.next_instr is not None and self.next_instr.mnemonic == "eieio"

    def is_mmio_d_form(self) -> bool:
        instr = self.current()
        return self._followed_by_eieio() or (instr.ra != 0 and self.mmio.is_marked(instr.ra))

    def is_mmio_x_form(self) -> bool:
        instr = self.current()
        if self._followed_by_eieio():
            return True
        return (instr.ra != 0 and self.mmio.is_marked(instr.ra)) or self.mmio.is_marked(instr.rb)

    # ------------------------------------------------------------------
    # control flow
    # ------------------------------------------------------------------
    def is_local(self, address: int) -> bool:
        return any(start <= address < end for start, end in self.ranges)

    def next_address(self) -> int:
        return self.current().address + 4

    def callee(self, address: int) -> Optional[FunctionNode]:
        """Function emitted under its own name with entry ``address``."""

        node = self.graph.get(address)
        if node is None or not node.is_sealed:
            return None
        if node.parent is not None and self.graph.owner_of(node) is not node:
            return None
        return node

    def branch_condition(self) -> Optional[str]:
        """C++ condition for the current ``bc``/``bclr``/``bcctr``.

        Decrementing forms emit the ``ctr`` update first.
        """

        instr = self.current()
        bo = instr.bo
        parts: List[str] = []
        if not bo & 0x04:
            ctr = self.ctr()
            self.emit(f"{ctr}.u64--;")
            parts.append(f"{ctr}.u32 == 0" if bo & 0x02 else f"{ctr}.u32 != 0")
        if not bo & 0x10:
            field = f"{self.cr(instr.bi >> 2)}.{CONDITION_NAMES[instr.bi & 3]}"
            parts.append(field if bo & 0x08 else f"!{field}")
        return " && ".join(parts) or None

    def emit_unresolved(self, target: int) -> None:
        instr = self.instr
        site = instr.address if instr is not None else target
        message = f"branch 0x{target:08X} from 0x{site:08X} does not reach a function entry"
        logger.warning("%s in %s", message, self.node.name)
        self.warnings.append(message)
        self.emit(f"PPC_UNRESOLVED_BRANCH(0x{target:X}, 0x{site:X});")

    def _helper_kind(self, node: FunctionNode) -> str:
        if node.authority is not Authority.HELPER:
            return ""
        if node.name.startswith("__save"):
            return "save"
        if node.name.startswith("__rest"):
            return "rest"
        return ""

    def emit_call(self, target: int) -> None:
        """``bl target``: call with the link register pointing after the site."""

        config = self.config
        if config.setjmp_address and target == config.setjmp_address:
            env, temp, r3 = self.env(), self.temp(), self.r(3)
            self.emit(f"{env} = ctx;")
            self.emit(f"{temp}.s64 = setjmp(*reinterpret_cast<jmp_buf*>(base + {r3}.u32));")
            self.emit(f"if ({temp}.s64 != 0) ctx = {env};")
            self.emit(f"{self.write_r(3)} = {temp};")
            self.forget_state()
            return
        if config.longjmp_address and target == config.longjmp_address:
            self.emit(
                f"longjmp(*reinterpret_cast<jmp_buf*>(base + {self.r(3)}.u32), {self.r(4)}.s32);"
            )
            return

        node = self.callee(target)
        if node is None:
            self.emit_unresolved(target)
            return
        if config.non_volatile_as_local and self._helper_kind(node):
            return
        if not config.skip_lr:
            self.emit(f"ctx.lr = 0x{self.next_address():X};")
        self.emit(f"{node.name}(ctx, base);")
        self.forget_state()

    def emit_jump(self, target: int) -> None:
        """``b target``: local ``goto`` or tail call into another function."""

        if self.is_local(target):
            self.emit(f"goto {label_name(target)};")
            return
        node = self.callee(target)
        if node is None:
            self.emit_unresolved(target)
            return
        if self.config.non_volatile_as_local and self._helper_kind(node) == "rest":
            self.emit("return;")
            return
        self.emit(f"{node.name}(ctx, base);")
        self.emit("return;")

    def emit_indirect_call(self, register: str) -> None:
        if not self.config.skip_lr:
            self.emit(f"ctx.lr = 0x{self.next_address():X};")
        self.emit(f"PPC_CALL_INDIRECT_FUNC({register});")
        self.forget_state()

    def emit_switch(self, table: JumpTable) -> None:
        with self.block(f"switch ({self.r(table.index_register)}.u64)"):
            for index, target in enumerate(table.targets):
                self.emit(f"case {index}:")
                with self.writer.indented():
                    if self.is_local(target):
                        self.emit(f"goto {label_name(target)};")
                    else:
                        self.emit_unresolved(target)
            self.emit("default:")
            with self.writer.indented():
                self.emit(f"PPC_UNRESOLVED_BRANCH({self.ctr()}.u32, 0x{table.bctr_address:X});")

    # ------------------------------------------------------------------
    # per-instruction bookkeeping
    # ------------------------------------------------------------------
    def current(self) -> Instruction:
        """The instruction being built; only valid inside :meth:`at`."""

        if self.instr is None:
            raise RuntimeError("no instruction is being built")
        return self.instr

    @contextmanager
    def at(self, instr: Instruction, next_instr: Optional[Instruction]) -> Iterator["BuildContext"]:
        self.instr = instr
        self.next_instr = next_instr
        try:
            yield self
        finally:
            self.instr = None
            self.next_instr = None


__all__ = ["UINT64_MAX", "Builder", "mask64", "signed", "label_name", "BuildContext"]
