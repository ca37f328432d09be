import copy
import logging

import pytest

from ppc_image import BASE, BLR, IMAGE_SIZE, NOP, make_binary, words_to_bytes
from ppcrecomp.binary_view import BinaryView
from ppcrecomp.code_region import CodeRegion, RangeSet
from ppcrecomp.loader import LoadedSection, LoadedSymbol, SymbolKind


def test_view_reads_big_endian_words() -> None:
    view = BinaryView.from_loaded(make_binary([NOP, BLR]))

    assert view.read_u32(BASE) == NOP
    assert view.read_u32(BASE + 4) == BLR
    assert view.read_u16(BASE + 4) == 0x4E80
    assert view.read_u8(BASE + 7) == 0x20
    assert view.read_u32(BASE + 8) is None
    assert view.read_u32(BASE - 4) is None
    assert view.is_executable(BASE)
    assert view.find_section(BASE + 4).name == ".text"


def test_unmapped_and_oversized_sections_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    binary = make_binary([BLR])
    binary.sections.append(LoadedSection(".bss", BASE + 0x8000, 0x100, None, writable=True))
    binary.sections.append(
        LoadedSection(".tail", BASE + IMAGE_SIZE - 4, 8, bytes(8))
    )

    with caplog.at_level(logging.WARNING, logger="ppcrecomp.binary_view"):
        view = BinaryView.from_loaded(binary)

    assert [section.name for section in view.sections] == [".text"]
    assert view.find_section_by_name(".bss") is None
    warnings = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert any(".bss" in message for message in warnings)
    assert any(".tail" in message for message in warnings)


def test_view_copies_section_bytes() -> None:
    data = bytearray(words_to_bytes([BLR]))
    binary = make_binary([])
    binary.sections[0] = LoadedSection(".text", BASE, 4, data, executable=True)

    view = BinaryView.from_loaded(binary)
    data[0:4] = bytes(4)

    assert view.read_u32(BASE) == BLR


def test_view_refuses_copies() -> None:
    view = BinaryView.from_loaded(make_binary([BLR]))

    with pytest.raises(TypeError):
        copy.copy(view)
    with pytest.raises(TypeError):
        copy.deepcopy(view)


def test_import_range_spans_to_section_end() -> None:
    binary = make_binary([BLR], text_size=0x100)
    binary.symbols.extend(
        [
            LoadedSymbol("xboxkrnl.exe@12", BASE + 0xF0, kind=SymbolKind.IMPORT),
            LoadedSymbol("xboxkrnl.exe@7", BASE + 0xE0, kind=SymbolKind.IMPORT),
            LoadedSymbol("main", BASE, kind=SymbolKind.FUNCTION),
        ]
    )

    view = BinaryView.from_loaded(binary)

    assert [symbol.address for symbol in view.imports] == [BASE + 0xE0, BASE + 0xF0]
    assert view.import_range == (BASE + 0xE0, BASE + 0x100)
    assert view.in_import_range(BASE + 0xFC)
    assert not view.in_import_range(BASE)


def test_section_words_respect_alignment_and_bounds() -> None:
    view = BinaryView.from_loaded(make_binary([NOP, BLR, NOP]))
    section = view.sections[0]

    assert list(section.words(BASE + 2, BASE + 12)) == [(BASE + 4, BLR), (BASE + 8, NOP)]


def test_code_region_rejects_inverted_bounds() -> None:
    region = CodeRegion(BASE, BASE + 8)

    assert region.size == 8
    assert region.contains(BASE + 4)
    assert not region.contains(BASE + 8)
    assert region.overlaps(CodeRegion(BASE + 4, BASE + 12))
    assert not region.overlaps(CodeRegion(BASE + 8, BASE + 12))
    with pytest.raises(ValueError):
        CodeRegion(BASE + 8, BASE)


def test_range_set_merges_overlapping_and_adjacent_ranges() -> None:
    ranges = RangeSet()
    ranges.add(BASE + 0x20, 8)
    ranges.add(BASE, 4)
    ranges.add(BASE + 4, 4)
    ranges.add(BASE + 0x1C, 0x10)
    ranges.add(BASE + 0x40, 4)

    assert ranges.items() == [(BASE, 8), (BASE + 0x1C, 0x10), (BASE + 0x40, 4)]
    assert len(ranges) == 3
    assert BASE + 4 in ranges
    assert ranges.contains(BASE + 0x28)
    assert not ranges.contains(BASE + 8)
    assert not ranges.contains(BASE + 0x2C)
    assert not ranges.contains(BASE - 4)

    ranges.add(BASE + 8, 0x38)

    assert list(ranges) == [(BASE, BASE + 0x44)]
