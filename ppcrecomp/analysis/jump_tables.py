"""Recognise ``mtctr``/``bctr`` switch idioms and read their tables.

The compiler emits four table flavours in front of a ``bctr``:

* absolute: ``lwzx rT, rTable, rIndex`` loads the target directly;
* byte offset: ``lbzx`` loads an offset added to a base address;
* computed: like byte offset, but the byte is shifted by ``rlwinm`` first;
* short offset: ``lhzx`` loads a 16-bit offset added to a base address.

Detection walks backwards from the ``bctr`` and reconstructs the table and
base addresses from their ``lis``/``addi`` (or ``lis``/``ori``) halves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..code_region import CodeRegion
from ..constants import JUMP_TABLE_MAX_ENTRIES, JUMP_TABLE_SCAN_LIMIT, WORD_SIZE
from ..function_graph import JumpTable, JumpTableKind
from ..instruction import Instruction

logger = logging.getLogger(__name__)

Decode = Callable[[int], Optional[Instruction]]

# Instructions whose first operand field is a destination register.
_D_FORM_WRITERS = frozenset({"lbz", "lhz", "lwz", "ld", "addi", "addis", "ori"})
_X_FORM_WRITERS = frozenset({"lbzx", "lhzx", "lwzx", "add", "subf"})
_S_FORM_WRITERS = frozenset({"or", "and", "xor"})
# Producers of a CTR value that only make sense when indexing a table.
_TABLE_SOURCES = frozenset({"lwzx", "lbzx", "lhzx", "add"})


@dataclass
class _AddressHalves:
    """Accumulates a ``hi``/``lo`` immediate pair seen in reverse order."""

    value: int = 0
    pending_lo: Optional[int] = None
    pending_is_addi: bool = False

    @staticmethod
    def combine(hi: int, lo: int, is_addi: bool) -> int:
        if is_addi:
            lo = lo - 0x10000 if lo & 0x8000 else lo
            return (hi + lo) & 0xFFFFFFFF
        return hi | lo

    def feed_hi(self, hi: int) -> None:
        if self.value:
            return
        if self.pending_lo is not None:
            self.value = self.combine(hi, self.pending_lo, self.pending_is_addi)
            self.pending_lo = None
        else:
            self.value = hi

    def feed_lo(self, lo: int, is_addi: bool) -> None:
        if self.value == 0:
            if self.pending_lo is None:
                self.pending_lo = lo
                self.pending_is_addi = is_addi
        elif self.value & 0xFFFF == 0:
            self.value = self.combine(self.value, lo, is_addi)


def _destination(instr: Instruction) -> Optional[int]:
    name = instr.mnemonic
    if name == "rlwinm" or name in _S_FORM_WRITERS:
        return instr.ra
    if name in _D_FORM_WRITERS or name in _X_FORM_WRITERS:
        return instr.rd
    return None


def _is_slwi(instr: Instruction) -> bool:
    return instr.mnemonic == "rlwinm" and instr.sh > 0 and instr.mb == 0 and instr.me == 31 - instr.sh


def _is_mtctr(instr: Instruction) -> bool:
    return instr.mnemonic == "mtspr" and instr.spr == 9


def scan_for_bounds(decode: Decode, bctr: int, region: CodeRegion, register: int) -> Optional[int]:
    """Entry count implied by a bounds check on ``register``, if one exists."""

    address = bctr
    for _ in range(JUMP_TABLE_SCAN_LIMIT):
        if address < region.start + WORD_SIZE:
            break
        address -= WORD_SIZE
        instr = decode(address)
        if instr is None:
            break
        if instr.mnemonic == "cmpli" and instr.ra == register:
            return instr.uimm + 1
        if instr.mnemonic == "cmpi" and instr.ra == register:
            return (instr.simm & 0xFFFF) + 1
        if (
            instr.mnemonic == "rlwinm"
            and instr.ra == register
            and instr.sh == 0
            and instr.me == 31
            and instr.mb > 0
        ):
            return 1 << (32 - instr.mb)
    return None


def ctr_source(decode: Decode, bctr: int, region: CodeRegion) -> Optional[Instruction]:
    """The instruction that produced the register moved into CTR."""

    register: Optional[int] = None
    address = bctr
    for _ in range(JUMP_TABLE_SCAN_LIMIT):
        if address < region.start + WORD_SIZE:
            break
        address -= WORD_SIZE
        instr = decode(address)
        if instr is None or instr.ends_block:
            break
        if register is None:
            if _is_mtctr(instr):
                register = instr.rs
            continue
        if _destination(instr) == register:
            return instr
    return None


def is_indirect_tail_call(decode: Decode, bctr: int, region: CodeRegion) -> bool:
    """``True`` unless the CTR value comes from an indexed load or an add.

    Function pointers loaded with ``lwz`` (virtual calls, callbacks) or passed
    in a register reach ``bctr`` as tail calls; an indexed load is the shape
    of a switch whose table could not be read.
    """

    source = ctr_source(decode, bctr, region)
    return source is None or source.mnemonic not in _TABLE_SOURCES


def detect_jump_table(
    decode: Decode,
    read: Callable[[int, int], Optional[int]],
    bctr: int,
    region: CodeRegion,
    function_start: int,
) -> Optional[JumpTable]:
    """Return the table feeding the ``bctr`` at ``bctr`` or ``None``.

    ``read(address, width)`` returns a big-endian unsigned value of ``width``
    bytes or ``None`` when unmapped.
    """

    ctr_source: Optional[int] = None
    found_load = False
    kind = JumpTableKind.ABSOLUTE
    index_register: Optional[int] = None
    final_index = 0xFF
    shift = 0
    table = _AddressHalves()
    base = _AddressHalves()

    address = bctr
    for _ in range(JUMP_TABLE_SCAN_LIMIT):
        if address < region.start + WORD_SIZE:
            break
        address -= WORD_SIZE
        instr = decode(address)
        if instr is None:
            break
        if instr.ends_block:
            break

        if ctr_source is None:
            if _is_mtctr(instr):
                ctr_source = instr.rs
            continue

        if not found_load:
            name = instr.mnemonic
            if name in ("lwzx", "lbzx", "lhzx") and instr.rd == ctr_source:
                if name == "lwzx":
                    kind = JumpTableKind.ABSOLUTE
                elif kind is not JumpTableKind.COMPUTED:
                    kind = JumpTableKind.BYTE_OFFSET if name == "lbzx" else JumpTableKind.SHORT_OFFSET
                index_register = instr.rb
                final_index = instr.rb
                found_load = True
                continue
            if name == "add" and instr.rd == ctr_source:
                ctr_source = instr.rb if instr.ra == ctr_source else instr.ra
                continue
            if name == "rlwinm" and instr.ra == ctr_source:
                shift = instr.sh
                if shift > 0:
                    kind = JumpTableKind.COMPUTED
                ctr_source = instr.rs
                continue

        if found_load and index_register is not None and _destination(instr) == index_register:
            if _is_slwi(instr):
                index_register = instr.rs
                final_index = index_register
            else:
                index_register = None

        target_halves = table if found_load else base
        if instr.mnemonic == "addis" and instr.ra == 0:
            target_halves.feed_hi((instr.uimm << 16) & 0xFFFFFFFF)
        elif instr.mnemonic in ("addi", "ori"):
            target_halves.feed_lo(instr.uimm, instr.mnemonic == "addi")

    if ctr_source is None or not found_load or table.value == 0:
        return None

    base_address = base.value
    if kind is not JumpTableKind.ABSOLUTE and base_address == 0:
        base_address = region.start

    bound = scan_for_bounds(decode, bctr, region, final_index)
    count = bound if bound is not None else JUMP_TABLE_MAX_ENTRIES

    targets = []
    for index in range(count):
        if kind is JumpTableKind.ABSOLUTE:
            value = read(table.value + index * 4, 4)
            target = value
        elif kind is JumpTableKind.SHORT_OFFSET:
            value = read(table.value + index * 2, 2)
            target = None if value is None else (base_address + value) & 0xFFFFFFFF
        else:
            value = read(table.value + index, 1)
            target = None if value is None else (base_address + (value << shift)) & 0xFFFFFFFF
        if target is None:
            logger.warning("0x%08X: jump table entry %d at 0x%08X is unreadable", bctr, index, table.value)
            break
        if not target or not region.contains(target) or target < function_start:
            if bound is None:
                break
            # a bounded table keeps its bad entries so the case can be reported
            logger.debug("0x%08X: jump table entry %d targets 0x%08X", bctr, index, target)
        targets.append(target)

    if not targets:
        return None
    jump_table = JumpTable(
        bctr_address=bctr,
        table_address=table.value,
        index_register=final_index,
        targets=targets,
        kind=kind,
        base_address=base_address,
        shift=shift,
    )
    logger.debug("detected %s", jump_table.describe())
    return jump_table


__all__ = ["scan_for_bounds", "ctr_source", "is_indirect_tail_call", "detect_jump_table"]
