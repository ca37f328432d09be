"""PowerPC instruction words and the table driven decoder.

The decoder turns a raw big-endian word into an :class:`Instruction` carrying
the base mnemonic plus accessors for every encoding field the analysis and
the instruction builders need.  Anything outside the supported tables decodes
to the ``"unknown"`` mnemonic; callers record such words as invalid
instructions instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from .constants import WORD_SIZE

UNKNOWN = "unknown"


def _sign_extend(value: int, bits: int) -> int:
    sign = 1 << (bits - 1)
    return (value & (sign - 1)) - (value & sign)


# ---------------------------------------------------------------------------
# Opcode tables: mnemonic plus operand format key
# ---------------------------------------------------------------------------

PRIMARY: Dict[int, Tuple[str, str]] = {
    2: ("tdi", "TRAPI"),
    3: ("twi", "TRAPI"),
    7: ("mulli", "D"),
    8: ("subfic", "D"),
    10: ("cmpli", "CMPLI"),
    11: ("cmpi", "CMPI"),
    12: ("addic", "D"),
    13: ("addic.", "D"),
    14: ("addi", "D"),
    15: ("addis", "D"),
    16: ("bc", "BC"),
    17: ("sc", "NONE"),
    18: ("b", "I"),
    20: ("rlwimi", "M"),
    21: ("rlwinm", "M"),
    23: ("rlwnm", "MR"),
    24: ("ori", "DU"),
    25: ("oris", "DU"),
    26: ("xori", "DU"),
    27: ("xoris", "DU"),
    28: ("andi.", "DU"),
    29: ("andis.", "DU"),
    32: ("lwz", "LOAD"),
    33: ("lwzu", "LOAD"),
    34: ("lbz", "LOAD"),
    35: ("lbzu", "LOAD"),
    36: ("stw", "LOAD"),
    37: ("stwu", "LOAD"),
    38: ("stb", "LOAD"),
    39: ("stbu", "LOAD"),
    40: ("lhz", "LOAD"),
    41: ("lhzu", "LOAD"),
    42: ("lha", "LOAD"),
    43: ("lhau", "LOAD"),
    44: ("sth", "LOAD"),
    45: ("sthu", "LOAD"),
    46: ("lmw", "LOAD"),
    47: ("stmw", "LOAD"),
    48: ("lfs", "FLOAD"),
    49: ("lfsu", "FLOAD"),
    50: ("lfd", "FLOAD"),
    51: ("lfdu", "FLOAD"),
    52: ("stfs", "FLOAD"),
    53: ("stfsu", "FLOAD"),
    54: ("stfd", "FLOAD"),
    55: ("stfdu", "FLOAD"),
}

# Primary opcode 19, 10 bit extended opcode.
TABLE_19: Dict[int, Tuple[str, str]] = {
    0: ("mcrf", "MCRF"),
    16: ("bclr", "BCLR"),
    33: ("crnor", "CR3"),
    129: ("crandc", "CR3"),
    150: ("isync", "NONE"),
    193: ("crxor", "CR3"),
    225: ("crnand", "CR3"),
    257: ("crand", "CR3"),
    289: ("creqv", "CR3"),
    417: ("crorc", "CR3"),
    449: ("cror", "CR3"),
    528: ("bcctr", "BCLR"),
}

# Primary opcode 31, 10 bit extended opcode (X form).
TABLE_31_X: Dict[int, Tuple[str, str]] = {
    0: ("cmp", "CMP"),
    4: ("tw", "TRAP"),
    6: ("lvsl", "VXLOAD"),
    7: ("lvebx", "VXLOAD"),
    19: ("mfcr", "R1"),
    20: ("lwarx", "X3"),
    21: ("ldx", "X3"),
    23: ("lwzx", "X3"),
    24: ("slw", "XS"),
    26: ("cntlzw", "XS2"),
    27: ("sld", "XS"),
    28: ("and", "XS"),
    32: ("cmpl", "CMP"),
    38: ("lvsr", "VXLOAD"),
    39: ("lvehx", "VXLOAD"),
    53: ("ldux", "X3"),
    54: ("dcbst", "CACHE"),
    55: ("lwzux", "X3"),
    58: ("cntlzd", "XS2"),
    60: ("andc", "XS"),
    68: ("td", "TRAP"),
    71: ("lvewx", "VXLOAD"),
    83: ("mfmsr", "R1"),
    84: ("ldarx", "X3"),
    86: ("dcbf", "CACHE"),
    87: ("lbzx", "X3"),
    103: ("lvx", "VXLOAD"),
    119: ("lbzux", "X3"),
    124: ("nor", "XS"),
    135: ("stvebx", "VXLOAD"),
    144: ("mtcrf", "MTCRF"),
    146: ("mtmsr", "R1"),
    149: ("stdx", "X3"),
    150: ("stwcx.", "X3"),
    151: ("stwx", "X3"),
    167: ("stvehx", "VXLOAD"),
    178: ("mtmsrd", "R1"),
    181: ("stdux", "X3"),
    183: ("stwux", "X3"),
    199: ("stvewx", "VXLOAD"),
    214: ("stdcx.", "X3"),
    215: ("stbx", "X3"),
    231: ("stvx", "VXLOAD"),
    246: ("dcbtst", "CACHE"),
    247: ("stbux", "X3"),
    278: ("dcbt", "CACHE"),
    279: ("lhzx", "X3"),
    284: ("eqv", "XS"),
    311: ("lhzux", "X3"),
    316: ("xor", "XS"),
    339: ("mfspr", "MFSPR"),
    341: ("lwax", "X3"),
    343: ("lhax", "X3"),
    359: ("lvxl", "VXLOAD"),
    371: ("mftb", "MFSPR"),
    373: ("lwaux", "X3"),
    375: ("lhaux", "X3"),
    407: ("sthx", "X3"),
    412: ("orc", "XS"),
    439: ("sthux", "X3"),
    444: ("or", "XS"),
    467: ("mtspr", "MTSPR"),
    476: ("nand", "XS"),
    487: ("stvxl", "VXLOAD"),
    534: ("lwbrx", "X3"),
    535: ("lfsx", "FXLOAD"),
    536: ("srw", "XS"),
    539: ("srd", "XS"),
    567: ("lfsux", "FXLOAD"),
    598: ("sync", "NONE"),
    599: ("lfdx", "FXLOAD"),
    631: ("lfdux", "FXLOAD"),
    662: ("stwbrx", "X3"),
    663: ("stfsx", "FXLOAD"),
    695: ("stfsux", "FXLOAD"),
    727: ("stfdx", "FXLOAD"),
    759: ("stfdux", "FXLOAD"),
    790: ("lhbrx", "X3"),
    792: ("sraw", "XS"),
    794: ("srad", "XS"),
    824: ("srawi", "SRAWI"),
    854: ("eieio", "NONE"),
    918: ("sthbrx", "X3"),
    922: ("extsh", "XS2"),
    954: ("extsb", "XS2"),
    982: ("icbi", "CACHE"),
    983: ("stfiwx", "FXLOAD"),
    986: ("extsw", "XS2"),
    1014: ("dcbz", "CACHE"),
}

# Primary opcode 31, 9 bit extended opcode (XO form, OE in bit 21).
TABLE_31_XO: Dict[int, Tuple[str, str]] = {
    8: ("subfc", "X3"),
    9: ("mulhdu", "X3"),
    10: ("addc", "X3"),
    11: ("mulhwu", "X3"),
    40: ("subf", "X3"),
    73: ("mulhd", "X3"),
    75: ("mulhw", "X3"),
    104: ("neg", "X2"),
    136: ("subfe", "X3"),
    138: ("adde", "X3"),
    200: ("subfze", "X2"),
    202: ("addze", "X2"),
    232: ("subfme", "X2"),
    233: ("mulld", "X3"),
    234: ("addme", "X2"),
    235: ("mullw", "X3"),
    266: ("add", "X3"),
    457: ("divdu", "X3"),
    459: ("divwu", "X3"),
    489: ("divd", "X3"),
    491: ("divw", "X3"),
}

# Primary opcode 30 (MD/MDS forms).
TABLE_30: Dict[int, Tuple[str, str]] = {
    0: ("rldicl", "MD"),
    1: ("rldicr", "MD"),
    2: ("rldic", "MD"),
    3: ("rldimi", "MD"),
}
TABLE_30_MDS: Dict[int, Tuple[str, str]] = {
    8: ("rldcl", "MDS"),
    9: ("rldcr", "MDS"),
}

TABLE_58: Dict[int, Tuple[str, str]] = {
    0: ("ld", "DSLOAD"),
    1: ("ldu", "DSLOAD"),
    2: ("lwa", "DSLOAD"),
}
TABLE_62: Dict[int, Tuple[str, str]] = {
    0: ("std", "DSLOAD"),
    1: ("stdu", "DSLOAD"),
}

TABLE_59_A: Dict[int, Tuple[str, str]] = {
    18: ("fdivs", "F3"),
    20: ("fsubs", "F3"),
    21: ("fadds", "F3"),
    22: ("fsqrts", "F2"),
    24: ("fres", "F2"),
    25: ("fmuls", "FMUL"),
    28: ("fmsubs", "F4"),
    29: ("fmadds", "F4"),
    30: ("fnmsubs", "F4"),
    31: ("fnmadds", "F4"),
}
TABLE_63_A: Dict[int, Tuple[str, str]] = {
    18: ("fdiv", "F3"),
    20: ("fsub", "F3"),
    21: ("fadd", "F3"),
    22: ("fsqrt", "F2"),
    23: ("fsel", "F4"),
    25: ("fmul", "FMUL"),
    26: ("frsqrte", "F2"),
    28: ("fmsub", "F4"),
    29: ("fmadd", "F4"),
    30: ("fnmsub", "F4"),
    31: ("fnmadd", "F4"),
}
TABLE_63_X: Dict[int, Tuple[str, str]] = {
    0: ("fcmpu", "FCMP"),
    12: ("frsp", "F2"),
    14: ("fctiw", "F2"),
    15: ("fctiwz", "F2"),
    32: ("fcmpo", "FCMP"),
    38: ("mtfsb1", "NONE"),
    40: ("fneg", "F2"),
    70: ("mtfsb0", "NONE"),
    72: ("fmr", "F2"),
    134: ("mtfsfi", "NONE"),
    136: ("fnabs", "F2"),
    264: ("fabs", "F2"),
    583: ("mffs", "F1"),
    711: ("mtfsf", "MTFSF"),
    814: ("fctid", "F2"),
    815: ("fctidz", "F2"),
    846: ("fcfid", "F2"),
}

# Primary opcode 4 (AltiVec).  VA forms use the low 6 bits, VX the low 11 and
# the compares the low 10 with the record bit at 0x400.
TABLE_4_VA: Dict[int, Tuple[str, str]] = {
    42: ("vsel", "V4"),
    43: ("vperm", "V4"),
    44: ("vsldoi", "VSLDOI"),
    46: ("vmaddfp", "V4"),
    47: ("vnmsubfp", "V4"),
}
TABLE_4_VX: Dict[int, Tuple[str, str]] = {
    10: ("vaddfp", "V3"),
    12: ("vmrghb", "V3"),
    74: ("vsubfp", "V3"),
    76: ("vmrghh", "V3"),
    128: ("vadduwm", "V3"),
    140: ("vmrghw", "V3"),
    266: ("vrefp", "V2"),
    268: ("vmrglb", "V3"),
    330: ("vrsqrtefp", "V2"),
    332: ("vmrglh", "V3"),
    388: ("vslw", "V3"),
    396: ("vmrglw", "V3"),
    522: ("vrfin", "V2"),
    524: ("vspltb", "VSPLT"),
    586: ("vrfiz", "V2"),
    588: ("vsplth", "VSPLT"),
    644: ("vsrw", "V3"),
    650: ("vrfip", "V2"),
    652: ("vspltw", "VSPLT"),
    714: ("vrfim", "V2"),
    778: ("vcfux", "VSPLT"),
    780: ("vspltisb", "VSPLTI"),
    842: ("vcfsx", "VSPLT"),
    844: ("vspltish", "VSPLTI"),
    900: ("vsraw", "V3"),
    906: ("vctuxs", "VSPLT"),
    908: ("vspltisw", "VSPLTI"),
    970: ("vctsxs", "VSPLT"),
    1028: ("vand", "V3"),
    1034: ("vmaxfp", "V3"),
    1092: ("vandc", "V3"),
    1098: ("vminfp", "V3"),
    1152: ("vsubuwm", "V3"),
    1156: ("vor", "V3"),
    1220: ("vxor", "V3"),
    1284: ("vnor", "V3"),
    1540: ("mfvscr", "V1"),
    1604: ("mtvscr", "V2"),
}
TABLE_4_VC: Dict[int, Tuple[str, str]] = {
    134: ("vcmpequw", "V3"),
    198: ("vcmpeqfp", "V3"),
    454: ("vcmpgefp", "V3"),
    646: ("vcmpgtuw", "V3"),
    710: ("vcmpgtfp", "V3"),
    902: ("vcmpgtsw", "V3"),
    966: ("vcmpbfp", "V3"),
}
# VMX128 loads/stores: xo in the low 11 bits masked with 0x7F3, register
# number extended by bits 28-29.
TABLE_4_VMX128_MEM: Dict[int, Tuple[str, str]] = {
    0x0C3: ("lvx128", "V128LOAD"),
    0x1C3: ("stvx128", "V128LOAD"),
    0x2C3: ("lvxl128", "V128LOAD"),
    0x3C3: ("stvxl128", "V128LOAD"),
}

SPR_NAMES = {1: "xer", 8: "lr", 9: "ctr", 256: "vrsave", 268: "tbl", 269: "tbu"}

CONDITION_NAMES = ("lt", "gt", "eq", "so")
NEGATED_CONDITION_NAMES = ("ge", "le", "ne", "ns")


# ---------------------------------------------------------------------------
# Instruction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Instruction:
    """A decoded PowerPC instruction word."""

    address: int
    code: int
    mnemonic: str
    form: str = "NONE"
    oe: bool = False

    # -- raw fields -----------------------------------------------------
    @property
    def opcd(self) -> int:
        return (self.code >> 26) & 0x3F

    @property
    def rd(self) -> int:
        return (self.code >> 21) & 0x1F

    rs = rd
    rt = rd
    fd = rd
    vd = rd
    bo = rd

    @property
    def ra(self) -> int:
        return (self.code >> 16) & 0x1F

    fa = ra
    va = ra
    bi = ra

    @property
    def rb(self) -> int:
        return (self.code >> 11) & 0x1F

    fb = rb
    vb = rb
    sh = rb

    @property
    def fc(self) -> int:
        return (self.code >> 6) & 0x1F

    vc = fc
    mb = fc

    @property
    def me(self) -> int:
        return (self.code >> 1) & 0x1F

    @property
    def simm(self) -> int:
        return _sign_extend(self.code & 0xFFFF, 16)

    @property
    def uimm(self) -> int:
        return self.code & 0xFFFF

    @property
    def ds(self) -> int:
        return _sign_extend(self.code & 0xFFFC, 16)

    @property
    def rc(self) -> bool:
        if self.mnemonic.endswith("."):
            return True
        if self.opcd in (31, 59, 63, 21, 20, 23, 30):
            return bool(self.code & 1)
        if self.opcd == 4 and self.mnemonic.startswith("vcmp"):
            return bool(self.code & 0x400)
        return False

    @property
    def lk(self) -> bool:
        return bool(self.code & 1)

    @property
    def aa(self) -> bool:
        return bool(self.code & 2)

    @property
    def crfd(self) -> int:
        return (self.code >> 23) & 0x7

    @property
    def crfs(self) -> int:
        return (self.code >> 18) & 0x7

    @property
    def l64(self) -> bool:
        return bool((self.code >> 21) & 1)

    @property
    def crm(self) -> int:
        return (self.code >> 12) & 0xFF

    @property
    def spr(self) -> int:
        return ((self.code >> 16) & 0x1F) | (((self.code >> 11) & 0x1F) << 5)

    @property
    def sh64(self) -> int:
        return ((self.code >> 11) & 0x1F) | (((self.code >> 1) & 1) << 5)

    @property
    def mb64(self) -> int:
        return ((self.code >> 6) & 0x1F) | (((self.code >> 5) & 1) << 5)

    @property
    def vd128(self) -> int:
        return ((self.code >> 21) & 0x1F) | ((self.code & 0xC) << 3)

    @property
    def vsldoi_sh(self) -> int:
        return (self.code >> 6) & 0xF

    @property
    def splat_simm(self) -> int:
        return _sign_extend((self.code >> 16) & 0x1F, 5)

    # -- control flow ---------------------------------------------------
    @property
    def branch_offset(self) -> int:
        if self.opcd == 18:
            return _sign_extend(self.code & 0x03FFFFFC, 26)
        if self.opcd == 16:
            return _sign_extend(self.code & 0xFFFC, 16)
        return 0

    @property
    def branch_target(self) -> Optional[int]:
        if self.opcd not in (16, 18):
            return None
        if self.aa:
            return self.branch_offset & 0xFFFFFFFF
        return (self.address + self.branch_offset) & 0xFFFFFFFF

    @property
    def is_valid(self) -> bool:
        return self.mnemonic != UNKNOWN

    @property
    def bo_always(self) -> bool:
        return (self.bo & 0x14) == 0x14

    @property
    def is_branch(self) -> bool:
        return self.mnemonic in ("b", "bc", "bclr", "bcctr")

    @property
    def is_call(self) -> bool:
        return self.is_branch and self.lk

    @property
    def is_direct_call(self) -> bool:
        return self.mnemonic == "b" and self.lk

    @property
    def is_unconditional_jump(self) -> bool:
        return self.mnemonic == "b" and not self.lk

    @property
    def is_conditional_branch(self) -> bool:
        return self.mnemonic == "bc" and not self.bo_always and not self.lk

    @property
    def is_return(self) -> bool:
        return self.mnemonic == "bclr" and self.bo_always and not self.lk

    @property
    def is_conditional_return(self) -> bool:
        return self.mnemonic == "bclr" and not self.bo_always and not self.lk

    @property
    def is_indirect_jump(self) -> bool:
        return self.mnemonic == "bcctr" and self.bo_always and not self.lk

    @property
    def is_indirect_call(self) -> bool:
        return self.mnemonic in ("bcctr", "bclr") and self.lk

    @property
    def ends_block(self) -> bool:
        return self.is_return or self.is_indirect_jump or self.is_unconditional_jump or (
            self.mnemonic == "bc" and self.bo_always and not self.lk
        )

    # -- text -----------------------------------------------------------
    def display_mnemonic(self) -> str:
        name = self.mnemonic
        if self.form in ("BC", "BCLR"):
            return _branch_display(self)
        if name == "b":
            return "b" + ("l" if self.lk else "") + ("a" if self.aa else "")
        if name == "mfspr" and self.spr in SPR_NAMES:
            return "mf" + SPR_NAMES[self.spr]
        if name == "mtspr" and self.spr in SPR_NAMES:
            return "mt" + SPR_NAMES[self.spr]
        if name == "or" and self.rs == self.rb and not self.rc:
            return "mr"
        if name == "ori" and self.code == 0x60000000:
            return "nop"
        if self.oe:
            name += "o"
        if self.rc and not name.endswith("."):
            name += "."
        return name

    def operand_text(self) -> str:
        return _format_operands(self)

    def text(self) -> str:
        operands = self.operand_text()
        mnemonic = self.display_mnemonic()
        return f"{mnemonic} {operands}" if operands else mnemonic

    def format(self) -> str:
        return f"{self.address:08X}: {self.code:08X}    {self.text()}"


def _condition_suffix(instr: Instruction) -> Optional[str]:
    bo = instr.bo
    bit = instr.bi & 3
    if (bo & 0x14) == 0x14:
        return ""
    if (bo & 0x1C) == 0x0C:
        return CONDITION_NAMES[bit]
    if (bo & 0x1C) == 0x04:
        return NEGATED_CONDITION_NAMES[bit]
    if (bo & 0x16) == 0x10:
        return "dnz"
    if (bo & 0x16) == 0x12:
        return "dz"
    return None


def _branch_display(instr: Instruction) -> str:
    suffix = _condition_suffix(instr)
    tail = {"bc": "", "bclr": "lr", "bcctr": "ctr"}[instr.mnemonic]
    if suffix is None:
        base = instr.mnemonic
    elif suffix.startswith("d"):
        base = "bd" + suffix[1:] + tail
    else:
        base = "b" + suffix + tail
    if instr.lk:
        base += "l"
    if instr.mnemonic == "bc" and instr.aa:
        base += "a"
    return base


def _format_operands(instr: Instruction) -> str:
    form = instr.form
    if form == "NONE":
        return ""
    if form == "I":
        return f"0x{instr.branch_target:08X}"
    if form in ("BC", "BCLR"):
        suffix = _condition_suffix(instr)
        parts: List[str] = []
        if suffix is None:
            parts.extend([str(instr.bo), str(instr.bi)])
        elif suffix and not suffix.startswith("d"):
            parts.append(f"cr{instr.bi >> 2}")
        if form == "BC":
            parts.append(f"0x{instr.branch_target:08X}")
        return ",".join(parts)
    if form == "D":
        return f"r{instr.rd},r{instr.ra},{instr.simm}"
    if form == "DU":
        return f"r{instr.ra},r{instr.rs},0x{instr.uimm:X}"
    if form == "CMPI":
        return f"cr{instr.crfd},r{instr.ra},{instr.simm}"
    if form == "CMPLI":
        return f"cr{instr.crfd},r{instr.ra},{instr.uimm}"
    if form == "CMP":
        return f"cr{instr.crfd},r{instr.ra},r{instr.rb}"
    if form == "LOAD":
        return f"r{instr.rd},{instr.simm}(r{instr.ra})"
    if form == "FLOAD":
        return f"f{instr.fd},{instr.simm}(r{instr.ra})"
    if form == "DSLOAD":
        return f"r{instr.rd},{instr.ds}(r{instr.ra})"
    if form == "X3":
        return f"r{instr.rd},r{instr.ra},r{instr.rb}"
    if form == "X2":
        return f"r{instr.rd},r{instr.ra}"
    if form == "XS":
        return f"r{instr.ra},r{instr.rs},r{instr.rb}"
    if form == "XS2":
        return f"r{instr.ra},r{instr.rs}"
    if form == "SRAWI":
        return f"r{instr.ra},r{instr.rs},{instr.sh}"
    if form == "SRADI":
        return f"r{instr.ra},r{instr.rs},{instr.sh64}"
    if form == "M":
        return f"r{instr.ra},r{instr.rs},{instr.sh},{instr.mb},{instr.me}"
    if form == "MR":
        return f"r{instr.ra},r{instr.rs},r{instr.rb},{instr.mb},{instr.me}"
    if form == "MD":
        return f"r{instr.ra},r{instr.rs},{instr.sh64},{instr.mb64}"
    if form == "MDS":
        return f"r{instr.ra},r{instr.rs},r{instr.rb},{instr.mb64}"
    if form == "MFSPR":
        if instr.spr in SPR_NAMES:
            return f"r{instr.rd}"
        return f"r{instr.rd},{instr.spr}"
    if form == "MTSPR":
        if instr.spr in SPR_NAMES:
            return f"r{instr.rs}"
        return f"{instr.spr},r{instr.rs}"
    if form == "R1":
        return f"r{instr.rd}"
    if form == "MTCRF":
        return f"0x{instr.crm:02X},r{instr.rs}"
    if form == "MCRF":
        return f"cr{instr.crfd},cr{instr.crfs}"
    if form == "CR3":
        return f"{instr.rd},{instr.ra},{instr.rb}"
    if form == "CACHE":
        return f"r{instr.ra},r{instr.rb}"
    if form == "TRAP":
        return f"{instr.rd},r{instr.ra},r{instr.rb}"
    if form == "TRAPI":
        return f"{instr.rd},r{instr.ra},{instr.simm}"
    if form == "FXLOAD":
        return f"f{instr.fd},r{instr.ra},r{instr.rb}"
    if form == "VXLOAD":
        return f"v{instr.vd},r{instr.ra},r{instr.rb}"
    if form == "V128LOAD":
        return f"v{instr.vd128},r{instr.ra},r{instr.rb}"
    if form == "F1":
        return f"f{instr.fd}"
    if form == "F2":
        return f"f{instr.fd},f{instr.fb}"
    if form == "F3":
        return f"f{instr.fd},f{instr.fa},f{instr.fb}"
    if form == "FMUL":
        return f"f{instr.fd},f{instr.fa},f{instr.fc}"
    if form == "F4":
        return f"f{instr.fd},f{instr.fa},f{instr.fc},f{instr.fb}"
    if form == "FCMP":
        return f"cr{instr.crfd},f{instr.fa},f{instr.fb}"
    if form == "MTFSF":
        return f"0x{(instr.code >> 17) & 0xFF:02X},f{instr.fb}"
    if form == "V1":
        return f"v{instr.vd}"
    if form == "V2":
        return f"v{instr.vd},v{instr.vb}"
    if form == "V3":
        return f"v{instr.vd},v{instr.va},v{instr.vb}"
    if form == "V4":
        return f"v{instr.vd},v{instr.va},v{instr.vb},v{instr.vc}"
    if form == "VSLDOI":
        return f"v{instr.vd},v{instr.va},v{instr.vb},{instr.vsldoi_sh}"
    if form == "VSPLT":
        return f"v{instr.vd},v{instr.vb},{instr.ra}"
    if form == "VSPLTI":
        return f"v{instr.vd},{instr.splat_simm}"
    return f"0x{instr.code:08X}"


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


class InstructionDecoder(Protocol):
    def decode(self, address: int, code: int) -> Instruction:
        ...


class PowerPCDecoder:
    """Decode 32-bit big-endian PowerPC words, including the AltiVec subset."""

    def decode(self, address: int, code: int) -> Instruction:
        code &= 0xFFFFFFFF
        entry, oe = self._lookup(code)
        if entry is None:
            return Instruction(address, code, UNKNOWN, "RAW")
        mnemonic, form = entry
        return Instruction(address, code, mnemonic, form, oe)

    def _lookup(self, code: int) -> Tuple[Optional[Tuple[str, str]], bool]:
        opcd = (code >> 26) & 0x3F
        if code in (0x00000000, 0xFFFFFFFF):
            return None, False
        if opcd in PRIMARY:
            return PRIMARY[opcd], False
        if opcd == 19:
            return TABLE_19.get((code >> 1) & 0x3FF), False
        if opcd == 31:
            xo10 = (code >> 1) & 0x3FF
            if xo10 in TABLE_31_X:
                return TABLE_31_X[xo10], False
            if (code >> 2) & 0x1FF == 413:
                return ("sradi", "SRADI"), False
            xo9 = (code >> 1) & 0x1FF
            if xo9 in TABLE_31_XO:
                return TABLE_31_XO[xo9], bool(code & 0x400)
            return None, False
        if opcd == 30:
            if (code >> 1) & 0xF in TABLE_30_MDS:
                return TABLE_30_MDS[(code >> 1) & 0xF], False
            return TABLE_30.get((code >> 2) & 0x7), False
        if opcd == 58:
            return TABLE_58.get(code & 3), False
        if opcd == 62:
            return TABLE_62.get(code & 3), False
        if opcd == 59:
            return TABLE_59_A.get((code >> 1) & 0x1F), False
        if opcd == 63:
            xo5 = (code >> 1) & 0x1F
            if xo5 >= 16:
                return TABLE_63_A.get(xo5), False
            return TABLE_63_X.get((code >> 1) & 0x3FF), False
        if opcd == 4:
            return self._lookup_vector(code), False
        return None, False

    @staticmethod
    def _lookup_vector(code: int) -> Optional[Tuple[str, str]]:
        if code & 0x3F in TABLE_4_VA and (code & 0x20):
            return TABLE_4_VA[code & 0x3F]
        if code & 0x7FF in TABLE_4_VX:
            return TABLE_4_VX[code & 0x7FF]
        if code & 0x3FF in TABLE_4_VC:
            return TABLE_4_VC[code & 0x3FF]
        if code & 0x7F3 in TABLE_4_VMX128_MEM:
            return TABLE_4_VMX128_MEM[code & 0x7F3]
        return None


def read_words(data: bytes, base_address: int) -> Iterator[Tuple[int, int]]:
    """Yield ``(address, word)`` for every aligned big-endian word in ``data``."""

    usable = len(data) - len(data) % WORD_SIZE
    for offset in range(0, usable, WORD_SIZE):
        yield base_address + offset, int.from_bytes(data[offset : offset + WORD_SIZE], "big")


__all__ = [
    "UNKNOWN",
    "Instruction",
    "InstructionDecoder",
    "PowerPCDecoder",
    "read_words",
]
