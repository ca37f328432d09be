"""Well known instruction words and analysis defaults."""

from __future__ import annotations

from typing import Dict, Tuple

WORD_SIZE = 4

# ---------------------------------------------------------------------------
# Raw instruction words
# ---------------------------------------------------------------------------

BLR_WORD = 0x4E800020
BCTR_WORD = 0x4E800420
NOP_WORD = 0x60000000
EIEIO_WORD = 0x7C0006AC
PADDING_WORDS = frozenset({0x00000000, 0xFFFFFFFF})

# Prefix shared by every unwind/exception handler record the toolchain emits
# in front of a function that owns SEH scopes.
EXCEPTION_HEADER_SIZE = 8
EXCEPTION_SKIP_BYTES = 12
SEH_MAX_SCOPES = 100
CXX_MAX_STATES = 100
CXX_MAX_TRY_BLOCKS = 50
CXX_MAX_CATCHES = 20
CXX_MAX_IP_ENTRIES = 200

# ---------------------------------------------------------------------------
# ABI helper families
# ---------------------------------------------------------------------------

FIRST_NONVOLATILE_GPR = 14
LAST_GPR = 31
FIRST_VMX128_HIGH = 64
LAST_VMX128 = 127

# Exact prologue words of the compiler emitted save/restore thunks at the
# register 14 entry point.
HELPER_EXACT_WORDS: Dict[int, str] = {
    0xE9C1FF68: "restgprlr_14",
    0xF9C1FF68: "savegprlr_14",
    0xC9CCFF70: "restfpr_14",
    0xD9CCFF70: "savefpr_14",
}

# (first word, second word) -> helper name. The vector thunks load their
# offset into r11 first, so the pair identifies both direction and bank.
HELPER_WORD_PAIRS: Dict[Tuple[int, int], str] = {
    (0x3960FEE0, 0x7DCB60CE): "restvmx_14",
    (0x3960FEE0, 0x7DCB61CE): "savevmx_14",
    (0x3960FC00, 0x100B60CB): "restvmx_64",
    (0x3960FC00, 0x100B61CB): "savevmx_64",
}

HELPER_KINDS = (
    "restgprlr_14",
    "savegprlr_14",
    "restfpr_14",
    "savefpr_14",
    "restvmx_14",
    "savevmx_14",
    "restvmx_64",
    "savevmx_64",
)

# ---------------------------------------------------------------------------
# Analysis defaults
# ---------------------------------------------------------------------------

DEFAULT_DATA_REGION_THRESHOLD = 16
DEFAULT_LARGE_FUNCTION_THRESHOLD = 0x100000
DEFAULT_MAX_JUMP_EXTENSION = 0x10000
JUMP_TABLE_SCAN_LIMIT = 64
JUMP_TABLE_MAX_ENTRIES = 512

# ---------------------------------------------------------------------------
# Recompiler defaults
# ---------------------------------------------------------------------------

DEFAULT_FUNCTIONS_PER_FILE = 500
DEFAULT_PROJECT_NAME = "ppc"

# Upper halves loaded by ``lis``/``oris`` at or above these values point into
# the hardware register window rather than ordinary guest memory.
DEFAULT_MMIO_LIS_THRESHOLD = 0x7F00
DEFAULT_MMIO_ORIS_THRESHOLD = 0xC800

RTTI_CLASS_PREFIXES = (b".?AV", b".?AU")
C_SPECIFIC_HANDLER_IMPORT = "__imp____C_specific_handler"

__all__ = [
    "WORD_SIZE",
    "BLR_WORD",
    "BCTR_WORD",
    "NOP_WORD",
    "EIEIO_WORD",
    "PADDING_WORDS",
    "EXCEPTION_HEADER_SIZE",
    "EXCEPTION_SKIP_BYTES",
    "SEH_MAX_SCOPES",
    "CXX_MAX_STATES",
    "CXX_MAX_TRY_BLOCKS",
    "CXX_MAX_CATCHES",
    "CXX_MAX_IP_ENTRIES",
    "FIRST_NONVOLATILE_GPR",
    "LAST_GPR",
    "FIRST_VMX128_HIGH",
    "LAST_VMX128",
    "HELPER_EXACT_WORDS",
    "HELPER_WORD_PAIRS",
    "HELPER_KINDS",
    "DEFAULT_DATA_REGION_THRESHOLD",
    "DEFAULT_LARGE_FUNCTION_THRESHOLD",
    "DEFAULT_MAX_JUMP_EXTENSION",
    "JUMP_TABLE_SCAN_LIMIT",
    "JUMP_TABLE_MAX_ENTRIES",
    "DEFAULT_FUNCTIONS_PER_FILE",
    "DEFAULT_PROJECT_NAME",
    "DEFAULT_MMIO_LIS_THRESHOLD",
    "DEFAULT_MMIO_ORIS_THRESHOLD",
    "RTTI_CLASS_PREFIXES",
    "C_SPECIFIC_HANDLER_IMPORT",
]
