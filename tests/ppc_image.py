"""Instruction encoders and synthetic images shared by the tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from ppcrecomp.binary_view import BinaryView
from ppcrecomp.config import RecompilerConfig
from ppcrecomp.context import PipelineContext
from ppcrecomp.function_graph import Authority, Block, FunctionNode
from ppcrecomp.loader import LoadedBinary, LoadedSection, LoadedSymbol

BASE = 0x82000000
TEXT = BASE
PDATA = BASE + 0x2000
RDATA = BASE + 0x4000
IMAGE_SIZE = 0x10000

BLR = 0x4E800020
BCTR = 0x4E800420
NOP = 0x60000000
EIEIO = 0x7C0006AC


# ---------------------------------------------------------------------------
# encoders
# ---------------------------------------------------------------------------


def b(site: int, target: int, *, link: bool = False) -> int:
    return (18 << 26) | ((target - site) & 0x03FFFFFC) | int(link)


def bl(site: int, target: int) -> int:
    return b(site, target, link=True)


def bc(site: int, target: int, bo: int, bi: int, *, link: bool = False) -> int:
    return (16 << 26) | (bo << 21) | (bi << 16) | ((target - site) & 0xFFFC) | int(link)


def d_form(opcode: int, rd: int, ra: int, immediate: int) -> int:
    return (opcode << 26) | (rd << 21) | (ra << 16) | (immediate & 0xFFFF)


def li(rd: int, value: int) -> int:
    return d_form(14, rd, 0, value)


def addi(rd: int, ra: int, value: int) -> int:
    return d_form(14, rd, ra, value)


def lis(rd: int, value: int) -> int:
    return d_form(15, rd, 0, value)


def lwz(rd: int, ra: int, offset: int) -> int:
    return d_form(32, rd, ra, offset)


def stw(rs: int, ra: int, offset: int) -> int:
    return d_form(36, rs, ra, offset)


def cmpwi(crf: int, ra: int, value: int) -> int:
    return (11 << 26) | (crf << 23) | (ra << 16) | (value & 0xFFFF)


def cmplwi(crf: int, ra: int, value: int) -> int:
    return (10 << 26) | (crf << 23) | (ra << 16) | (value & 0xFFFF)


def x_form(rd: int, ra: int, rb: int, xo: int, rc: bool = False) -> int:
    return (31 << 26) | (rd << 21) | (ra << 16) | (rb << 11) | (xo << 1) | int(rc)


def add(rd: int, ra: int, rb: int, *, record: bool = False) -> int:
    return x_form(rd, ra, rb, 266, record)


def lwzx(rd: int, ra: int, rb: int) -> int:
    return x_form(rd, ra, rb, 23)


def mtctr(rs: int) -> int:
    return (31 << 26) | (rs << 21) | (9 << 16) | (467 << 1)


def slwi(ra: int, rs: int, shift: int) -> int:
    return (21 << 26) | (rs << 21) | (ra << 16) | (shift << 11) | (0 << 6) | ((31 - shift) << 1)


def fadd(fd: int, fa: int, fb: int) -> int:
    return (63 << 26) | (fd << 21) | (fa << 16) | (fb << 11) | (21 << 1)


def vaddfp(vd: int, va: int, vb: int) -> int:
    return (4 << 26) | (vd << 21) | (va << 16) | (vb << 11) | 10


# ---------------------------------------------------------------------------
# images
# ---------------------------------------------------------------------------


def words_to_bytes(words: Iterable[int]) -> bytes:
    return b"".join((word & 0xFFFFFFFF).to_bytes(4, "big") for word in words)


def runtime_functions(entries: Sequence[Tuple[int, int]]) -> bytes:
    """Unwind records for ``(begin, size in bytes)`` pairs."""

    words = []
    for begin, size in entries:
        words.extend([begin, (size // 4) << 8])
    return words_to_bytes(words)


def make_binary(
    text: Sequence[int],
    *,
    text_size: Optional[int] = None,
    pdata: Sequence[Tuple[int, int]] = (),
    rdata: bytes = b"",
    symbols: Sequence[LoadedSymbol] = (),
) -> LoadedBinary:
    code = words_to_bytes(text)
    size = text_size if text_size is not None else len(code)
    sections = [LoadedSection(".text", TEXT, size, code.ljust(size, b"\x00"), executable=True)]
    exception_directory = (0, 0)
    if pdata:
        records = runtime_functions(pdata)
        sections.append(LoadedSection(".pdata", PDATA, len(records), records))
        exception_directory = (PDATA, len(records))
    if rdata:
        sections.append(LoadedSection(".rdata", RDATA, len(rdata), rdata))
    return LoadedBinary(
        base=BASE,
        image_size=IMAGE_SIZE,
        entry_point=TEXT,
        sections=sections,
        symbols=list(symbols),
        exception_directory=exception_directory,
    )


def make_view(text: Sequence[int], **kwargs) -> BinaryView:
    return BinaryView.from_loaded(make_binary(text, **kwargs))


def make_context(
    text: Sequence[int], config: Optional[RecompilerConfig] = None, **kwargs
) -> PipelineContext:
    return PipelineContext.create(make_view(text, **kwargs), config)


def sealed_function(
    ctx: PipelineContext,
    entry: int,
    end: int,
    *,
    name: Optional[str] = None,
    authority: Authority = Authority.CONFIG,
) -> FunctionNode:
    """Register ``[entry, end)`` as an already analysed function."""

    node = ctx.graph.add_function(entry, end - entry, authority, name=name)
    node.set_blocks([Block(entry, end - entry)])
    node.seal(end)
    return node


def write_project(
    root: Path,
    text: Sequence[int],
    *,
    text_size: Optional[int] = None,
    pdata: Sequence[Tuple[int, int]] = (),
    extra_config: str = "",
) -> Path:
    """Write a manifest, its section files and a TOML config under ``root``.

    Returns the config path; output goes to ``root / "out"``.
    """

    image = root / "image"
    image.mkdir(parents=True, exist_ok=True)
    code = words_to_bytes(text)
    size = text_size if text_size is not None else len(code)
    (image / "text.bin").write_bytes(code)
    sections = [
        {"name": ".text", "address": hex(TEXT), "size": size, "file": "text.bin", "executable": True}
    ]
    manifest = {"base": hex(BASE), "image_size": hex(IMAGE_SIZE), "entry_point": hex(TEXT)}
    if pdata:
        records = runtime_functions(pdata)
        (image / "pdata.bin").write_bytes(records)
        sections.append(
            {"name": ".pdata", "address": hex(PDATA), "size": len(records), "file": "pdata.bin"}
        )
        manifest["exception_directory"] = {"address": hex(PDATA), "size": len(records)}
    manifest["sections"] = sections
    (image / "manifest.json").write_text(json.dumps(manifest, indent=2), "utf-8")

    config = root / "game.toml"
    config.write_text(
        'project_name = "game"\n'
        'file_path = "image/manifest.json"\n'
        'out_directory_path = "out"\n' + extra_config,
        "utf-8",
    )
    return config


__all__ = [
    "BASE",
    "TEXT",
    "PDATA",
    "RDATA",
    "IMAGE_SIZE",
    "BLR",
    "BCTR",
    "NOP",
    "EIEIO",
    "b",
    "bl",
    "bc",
    "li",
    "addi",
    "lis",
    "lwz",
    "stw",
    "cmpwi",
    "cmplwi",
    "add",
    "lwzx",
    "mtctr",
    "slwi",
    "fadd",
    "vaddfp",
    "words_to_bytes",
    "write_project",
    "runtime_functions",
    "make_binary",
    "make_view",
    "make_context",
    "sealed_function",
]
