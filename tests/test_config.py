import json
from pathlib import Path

import pytest

from ppcrecomp.config import RecompilerConfig
from ppcrecomp.errors import BinaryLoadError, ConfigError
from ppcrecomp.loader import ManifestLoader, SymbolKind


def test_load_toml_config(tmp_path: Path) -> None:
    path = tmp_path / "game.toml"
    path.write_text(
        "\n".join(
            [
                'project_name = "game"',
                'file_path = "image/manifest.json"',
                'out_directory_path = "out"',
                "skip_lr = true",
                "cr_as_local = true",
                "setjmp_address = 0x82100000",
                'restgprlr_14_address = "0x82200000"',
                "indirect_calls = [0x82000100]",
                "",
                "[functions]",
                '"0x82001000" = { size = 0x40, name = "main_loop" }',
                '"0x82001800" = { parent = 0x82001000, end = 0x82001820 }',
                "",
                "[[invalid_instructions]]",
                "address = 0x82003000",
                "size = 8",
                "",
                "[[switch_tables]]",
                "address = 0x82001020",
                "register = 3",
                "labels = [0x82001028, 0x82001030]",
                "",
                "[analysis]",
                "data_region_threshold = 8",
                "",
                "[recompiler]",
                "functions_per_file = 10",
            ]
        ),
        "utf-8",
    )

    config = RecompilerConfig.load(path)

    assert config.project_name == "game"
    assert config.skip_lr and config.cr_as_local
    assert not config.ctr_as_local
    assert config.setjmp_address == 0x82100000
    assert config.helper_addresses == {"restgprlr_14": 0x82200000}
    assert config.indirect_calls == {0x82000100}
    assert config.functions[0x82001000].size == 0x40
    assert config.functions[0x82001000].name == "main_loop"
    chunk = config.functions[0x82001800]
    assert chunk.is_chunk
    assert chunk.get_size(0x82001800) == 0x20
    assert config.invalid_instructions == {0x82003000: 8}
    assert config.switch_tables[0x82001020].labels == [0x82001028, 0x82001030]
    assert config.data_region_threshold == 8
    assert config.functions_per_file == 10
    assert config.out_directory == tmp_path / "out"
    assert config.image_path == tmp_path / "image" / "manifest.json"
    assert config.validate().valid


def test_load_json_config_with_hex_strings(tmp_path: Path) -> None:
    path = tmp_path / "game.json"
    payload = {
        "file_path": "manifest.json",
        "functions": {"0x82000000": {"size": "0x10"}},
        "analysis": {"exception_handler_funcs": ["0x82000400"]},
    }
    path.write_text(json.dumps(payload), "utf-8")

    config = RecompilerConfig.load(path)

    assert config.functions[0x82000000].size == 0x10
    assert config.exception_handler_funcs == [0x82000400]


def test_size_and_end_together_are_rejected() -> None:
    config = RecompilerConfig.from_mapping(
        {
            "file_path": "x",
            "functions": {
                "0x82000000": {"size": 0x10, "end": 0x82000010},
                "0x82000100": {"end": 0x82000100},
            },
        }
    )

    assert config.functions == {}


def test_validation_reports_alignment_and_overlap() -> None:
    config = RecompilerConfig.from_mapping(
        {
            "file_path": "x",
            "longjmp_address": 0x82000002,
            "functions": {
                "0x82000000": {"size": 0x20},
                "0x82000010": {"size": 0x10},
                "0x82000041": {"size": 0x4},
                "0x82000100": {"parent": 0x82009000, "size": 0x8},
            },
        }
    )

    validation = config.validate()

    assert not validation.valid
    assert any("longjmp" in error for error in validation.errors)
    assert any("0x82000041" in error for error in validation.errors)
    assert any("overlapping" in error for error in validation.errors)
    assert any("0x82009000" in warning for warning in validation.warnings)


def test_unreadable_config_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        RecompilerConfig.load(tmp_path / "missing.toml")

    broken = tmp_path / "broken.toml"
    broken.write_text("project_name = ", "utf-8")
    with pytest.raises(ConfigError):
        RecompilerConfig.load(broken)

    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", "utf-8")
    with pytest.raises(ConfigError):
        RecompilerConfig.load(listing)


def test_manifest_loader_reads_sections_and_symbols(tmp_path: Path) -> None:
    (tmp_path / "text.bin").write_bytes(bytes.fromhex("4E800020"))
    (tmp_path / "image.bin").write_bytes(bytes(range(16)))
    manifest = tmp_path / "manifest.json"
    manifest.write_text(
        json.dumps(
            {
                "base": "0x82000000",
                "image_size": "0x10000",
                "entry_point": "0x82000000",
                "image": "image.bin",
                "sections": [
                    {"name": ".text", "address": "0x82000000", "size": 8, "file": "text.bin",
                     "executable": True},
                    {"name": ".rdata", "address": "0x82004000", "size": 4, "offset": 8},
                    {"name": ".bss", "address": "0x82008000", "size": 16},
                ],
                "symbols": [
                    {"name": "xboxkrnl.exe@1", "address": "0x82000100", "kind": "import"}
                ],
                "exception_directory": {"address": "0x82002000", "size": 16},
            }
        ),
        "utf-8",
    )

    binary = ManifestLoader().load(manifest)

    text, rdata, bss = binary.sections
    assert text.data == bytes.fromhex("4E800020") + bytes(4)
    assert text.executable
    assert rdata.data == bytes([8, 9, 10, 11])
    assert bss.data is None
    assert binary.symbols[0].kind is SymbolKind.IMPORT
    assert binary.exception_directory == (0x82002000, 16)


def test_manifest_loader_errors(tmp_path: Path) -> None:
    with pytest.raises(BinaryLoadError):
        ManifestLoader().load(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{", "utf-8")
    with pytest.raises(BinaryLoadError):
        ManifestLoader().load(bad)

    incomplete = tmp_path / "incomplete.json"
    incomplete.write_text(json.dumps({"image_size": 16}), "utf-8")
    with pytest.raises(BinaryLoadError):
        ManifestLoader().load(incomplete)
