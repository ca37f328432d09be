from ppc_image import BASE, BLR, NOP, RDATA, bl, make_context, make_view
from ppcrecomp.analysis.scan import find_data_regions, scan_phase, segment_section
from ppcrecomp.code_region import CodeRegion


def test_scan_splits_sections_at_zero_words() -> None:
    ctx = make_context([NOP, BLR, 0, 0, 0, 0, NOP, BLR, 0, 0, 0, 0, NOP, BLR])

    scan_phase(ctx)

    assert ctx.scan.code_regions == [
        CodeRegion(BASE, BASE + 0x08),
        CodeRegion(BASE + 0x18, BASE + 0x20),
        CodeRegion(BASE + 0x30, BASE + 0x38),
    ]
    assert ctx.scan.region_for(BASE + 0x1C) == CodeRegion(BASE + 0x18, BASE + 0x20)
    assert ctx.scan.region_for(BASE + 0x10) is None


def test_scan_collects_call_targets() -> None:
    ctx = make_context([bl(BASE, BASE + 0x10), BLR, 0, 0, BLR])

    scan_phase(ctx)

    assert ctx.scan.call_targets == {BASE + 0x10}
    assert ctx.scan.indirect_sites == set()


def test_scope_record_after_handler_is_skipped() -> None:
    handler = 0x82000400
    text = [NOP, BLR, 0, handler, RDATA, NOP, BLR]
    section = make_view(text).sections[0]

    assert segment_section(section, {handler}) == [
        CodeRegion(BASE, BASE + 0x08),
        CodeRegion(BASE + 0x14, BASE + 0x1C),
    ]
    assert segment_section(section, set()) == [
        CodeRegion(BASE, BASE + 0x08),
        CodeRegion(BASE + 0x0C, BASE + 0x1C),
    ]


def test_scan_stops_at_export_table() -> None:
    section = make_view([NOP, BLR, NOP, BLR]).sections[0]

    assert segment_section(section, set(), export_table=BASE + 8) == [CodeRegion(BASE, BASE + 8)]


def test_long_padding_runs_are_data_regions() -> None:
    text = [NOP, BLR] + [0] * 4 + [NOP, BLR] + [0xFFFFFFFF] * 2 + [0] * 2 + [NOP]
    section = make_view(text).sections[0]

    assert find_data_regions(section, 4) == [
        CodeRegion(BASE + 0x08, BASE + 0x18),
        CodeRegion(BASE + 0x20, BASE + 0x30),
    ]
    assert find_data_regions(section, 5) == []
