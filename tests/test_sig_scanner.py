import pytest

from ppc_image import BASE, BLR, NOP, RDATA, make_view, words_to_bytes
from ppcrecomp.sig_scanner import Signature, SignatureScanner, detect_helpers


def test_exact_signature_matches_every_occurrence() -> None:
    view = make_view([NOP, BLR, NOP, NOP, BLR])
    scanner = SignatureScanner(view)

    assert scanner.scan(Signature.exact("nop_blr", [NOP, BLR])) == [BASE, BASE + 12]
    assert scanner.scan_first(Signature.exact("blr", [BLR])) == BASE + 4
    assert scanner.scan_first(Signature.exact("missing", [0x7C0802A6])) is None


def test_mask_ignores_register_fields() -> None:
    li_r3 = 0x38600005
    li_r4 = 0x38800007
    view = make_view([li_r3, BLR, li_r4, BLR])
    any_li = Signature("li", (0x38000000, BLR), (0xFC1F0000, 0xFFFFFFFF))

    assert SignatureScanner(view).scan(any_li) == [BASE, BASE + 8]


def test_entry_offset_moves_the_reported_address() -> None:
    view = make_view([NOP, NOP, BLR])
    signature = Signature.exact("tail", [NOP, BLR], entry_offset=1)

    assert SignatureScanner(view).scan(signature) == [BASE + 8]


def test_only_executable_sections_are_scanned() -> None:
    view = make_view([NOP], rdata=words_to_bytes([BLR]))

    assert view.read_u32(RDATA) == BLR
    assert SignatureScanner(view).scan(Signature.exact("blr", [BLR])) == []


def test_pattern_and_mask_must_agree() -> None:
    with pytest.raises(ValueError):
        Signature("bad", (NOP, BLR), (0xFFFFFFFF,))
    with pytest.raises(ValueError):
        Signature("empty", (), ())


def test_detect_helpers_finds_register_14_entries() -> None:
    view = make_view([NOP, 0xE9C1FF68, NOP, 0x3960FEE0, 0x7DCB61CE, BLR])

    found = detect_helpers(view)

    assert found == {"restgprlr_14": BASE + 4, "savevmx_14": BASE + 12}
