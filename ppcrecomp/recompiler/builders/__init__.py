"""Instruction builders keyed by mnemonic.

Each family module exposes a ``BUILDERS`` table; they are merged here into
the single dispatch table the function emitter consults.
"""

from __future__ import annotations

from typing import Dict

from . import control, floating, integer, memory, vector
from .context import Builder, BuildContext, label_name

BUILDERS: Dict[str, Builder] = {}
for _family in (integer, memory, floating, vector, control):
    BUILDERS.update(_family.BUILDERS)


def has_builder(mnemonic: str) -> bool:
    return mnemonic in BUILDERS


def build_instruction(context: BuildContext) -> bool:
    """Translate ``context.instr``; ``False`` when no builder exists."""

    instr = context.current()
    builder = BUILDERS.get(instr.mnemonic)
    if builder is None:
        context.unimplemented_insn()
        return False
    builder(context)
    return True


__all__ = ["BUILDERS", "Builder", "BuildContext", "label_name", "has_builder", "build_instruction"]
