"""Project configuration for a recompilation run.

Configuration files are TOML (``.toml``) or JSON (anything else) documents
with the same key layout::

    project_name = "game"
    file_path = "image/manifest.json"
    out_directory_path = "generated"

    [functions]
    "0x82001000" = { size = 0x40, name = "main_loop" }
    "0x82001800" = { parent = 0x82001000, end = 0x82001820 }

    [analysis]
    data_region_threshold = 16

Hexadecimal addresses may be written as TOML integers or as strings.
"""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from .constants import (
    DEFAULT_DATA_REGION_THRESHOLD,
    DEFAULT_FUNCTIONS_PER_FILE,
    DEFAULT_LARGE_FUNCTION_THRESHOLD,
    DEFAULT_MAX_JUMP_EXTENSION,
    DEFAULT_MMIO_LIS_THRESHOLD,
    DEFAULT_MMIO_ORIS_THRESHOLD,
    DEFAULT_PROJECT_NAME,
    HELPER_KINDS,
)
from .errors import ConfigError
from .loader import parse_int

logger = logging.getLogger(__name__)


@dataclass
class FunctionConfig:
    """Explicit function boundary.  ``size`` and ``end`` are exclusive."""

    size: int = 0
    end: int = 0
    name: str = ""
    parent: int = 0

    @property
    def is_chunk(self) -> bool:
        return self.parent != 0

    def get_size(self, address: int) -> int:
        if self.size:
            return self.size
        if self.end:
            return self.end - address
        return 0


@dataclass
class SwitchTableConfig:
    address: int
    register: int
    labels: List[int]


@dataclass
class ConfigValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class RecompilerConfig:
    project_name: str = DEFAULT_PROJECT_NAME
    file_path: str = ""
    out_directory_path: str = "generated"

    skip_lr: bool = False
    skip_msr: bool = False
    ctr_as_local: bool = False
    xer_as_local: bool = False
    reserved_as_local: bool = False
    cr_as_local: bool = False
    non_argument_as_local: bool = False
    non_volatile_as_local: bool = False

    setjmp_address: int = 0
    longjmp_address: int = 0
    helper_addresses: Dict[str, int] = field(default_factory=dict)

    functions: Dict[int, FunctionConfig] = field(default_factory=dict)
    invalid_instructions: Dict[int, int] = field(default_factory=dict)
    indirect_calls: Set[int] = field(default_factory=set)
    switch_tables: Dict[int, SwitchTableConfig] = field(default_factory=dict)
    export_names: Dict[str, str] = field(default_factory=dict)

    max_jump_extension: int = DEFAULT_MAX_JUMP_EXTENSION
    data_region_threshold: int = DEFAULT_DATA_REGION_THRESHOLD
    large_function_threshold: int = DEFAULT_LARGE_FUNCTION_THRESHOLD
    exception_handler_funcs: List[int] = field(default_factory=list)

    functions_per_file: int = DEFAULT_FUNCTIONS_PER_FILE
    mmio_lis_threshold: int = DEFAULT_MMIO_LIS_THRESHOLD
    mmio_oris_threshold: int = DEFAULT_MMIO_ORIS_THRESHOLD

    config_dir: Path = field(default_factory=Path)

    # ------------------------------------------------------------------
    # loading
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, path: Path) -> "RecompilerConfig":
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"cannot read config {path}: {exc}") from exc
        try:
            if path.suffix.lower() == ".toml":
                document = tomllib.loads(raw.decode("utf-8"))
            else:
                document = json.loads(raw.decode("utf-8"))
        except (tomllib.TOMLDecodeError, ValueError) as exc:
            raise ConfigError(f"failed to parse config {path}: {exc}") from exc
        if not isinstance(document, Mapping):
            raise ConfigError(f"config {path} must contain a table at the top level")

        config = cls.from_mapping(document)
        config.config_dir = path.parent
        return config

    @classmethod
    def from_mapping(cls, document: Mapping[str, Any]) -> "RecompilerConfig":
        config = cls()
        try:
            config._apply(document)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid config value: {exc}") from exc
        return config

    def _apply(self, document: Mapping[str, Any]) -> None:
        self.project_name = str(document.get("project_name", self.project_name))
        self.file_path = str(document.get("file_path", self.file_path))
        self.out_directory_path = str(document.get("out_directory_path", self.out_directory_path))
        if not self.file_path:
            logger.error("missing required field: file_path")

        for key in (
            "skip_lr",
            "skip_msr",
            "ctr_as_local",
            "xer_as_local",
            "reserved_as_local",
            "cr_as_local",
            "non_argument_as_local",
            "non_volatile_as_local",
        ):
            if key in document:
                setattr(self, key, bool(document[key]))

        self.setjmp_address = parse_int(document.get("setjmp_address", 0))
        self.longjmp_address = parse_int(document.get("longjmp_address", 0))
        for kind in HELPER_KINDS:
            key = f"{kind}_address"
            if key in document:
                self.helper_addresses[kind] = parse_int(document[key])

        for key, value in dict(document.get("functions", {})).items():
            address = parse_int(key)
            if not isinstance(value, Mapping):
                logger.error("invalid [functions] entry at 0x%08X: expected table", address)
                continue
            entry = FunctionConfig(
                size=parse_int(value.get("size", 0)),
                end=parse_int(value.get("end", 0)),
                name=str(value.get("name", "")),
                parent=parse_int(value.get("parent", 0)),
            )
            if entry.size and entry.end:
                logger.error("function 0x%08X: cannot specify both 'size' and 'end'", address)
                continue
            if entry.end and entry.end <= address:
                logger.error(
                    "function 0x%08X: 'end' (0x%08X) must be greater than address",
                    address,
                    entry.end,
                )
                continue
            self.functions[address] = entry
        if self.functions:
            chunks = sum(1 for entry in self.functions.values() if entry.is_chunk)
            logger.info(
                "loaded %d function configs (%d standalone, %d chunks)",
                len(self.functions),
                len(self.functions) - chunks,
                chunks,
            )

        for entry in document.get("invalid_instructions", []):
            start = entry.get("address", entry.get("data"))
            if start is None or "size" not in entry:
                logger.error("[[invalid_instructions]] entry needs 'address' and 'size'")
                continue
            self.invalid_instructions[parse_int(start)] = parse_int(entry["size"])

        self.indirect_calls = {parse_int(value) for value in document.get("indirect_calls", [])}

        for entry in document.get("switch_tables", []):
            missing = [key for key in ("address", "register", "labels") if key not in entry]
            if missing:
                logger.error("[[switch_tables]] entry is missing %s", ", ".join(missing))
                continue
            labels = [parse_int(label) for label in entry["labels"]]
            address = parse_int(entry["address"])
            if not labels:
                logger.error("empty 'labels' array in [[switch_tables]] at 0x%08X", address)
                continue
            self.switch_tables[address] = SwitchTableConfig(
                address=address, register=parse_int(entry["register"]), labels=labels
            )

        self.export_names = {
            str(key): str(value) for key, value in dict(document.get("export_names", {})).items()
        }

        analysis = document.get("analysis", {})
        self.max_jump_extension = parse_int(
            analysis.get("max_jump_extension", self.max_jump_extension)
        )
        self.data_region_threshold = parse_int(
            analysis.get("data_region_threshold", self.data_region_threshold)
        )
        self.large_function_threshold = parse_int(
            analysis.get("large_function_threshold", self.large_function_threshold)
        )
        self.exception_handler_funcs = [
            parse_int(value) for value in analysis.get("exception_handler_funcs", [])
        ]

        recompiler = document.get("recompiler", {})
        self.functions_per_file = parse_int(
            recompiler.get("functions_per_file", self.functions_per_file)
        )
        self.mmio_lis_threshold = parse_int(
            recompiler.get("mmio_lis_threshold", self.mmio_lis_threshold)
        )
        self.mmio_oris_threshold = parse_int(
            recompiler.get("mmio_oris_threshold", self.mmio_oris_threshold)
        )

    # ------------------------------------------------------------------
    # derived values
    # ------------------------------------------------------------------
    def resolve(self, relative: str) -> Path:
        return self.config_dir / relative

    @property
    def out_directory(self) -> Path:
        return self.resolve(self.out_directory_path)

    @property
    def image_path(self) -> Optional[Path]:
        return self.resolve(self.file_path) if self.file_path else None

    def validate(self) -> ConfigValidation:
        result = ConfigValidation()

        for label, address in (
            ("longjmp", self.longjmp_address),
            ("setjmp", self.setjmp_address),
            *self.helper_addresses.items(),
        ):
            if address and address & 3:
                result.errors.append(f"{label} address 0x{address:08X} is not 4-byte aligned")

        for address in sorted(self.functions):
            if address & 3:
                result.errors.append(f"function address 0x{address:08X} is not 4-byte aligned")

        standalone = sorted(
            (address, entry.get_size(address))
            for address, entry in self.functions.items()
            if not entry.is_chunk
        )
        for (prev_address, prev_size), (address, size) in zip(standalone, standalone[1:]):
            if address < prev_address + prev_size:
                result.errors.append(
                    f"overlapping boundaries: 0x{prev_address:08X}+0x{prev_size:X}"
                    f" overlaps 0x{address:08X}+0x{size:X}"
                )

        for address, entry in self.functions.items():
            if entry.is_chunk and entry.parent not in self.functions:
                result.warnings.append(
                    f"chunk 0x{address:08X} names parent 0x{entry.parent:08X}"
                    " which is not a configured function"
                )

        if self.functions_per_file <= 0:
            result.errors.append("functions_per_file must be positive")
        if not self.file_path:
            result.warnings.append("file_path is empty")
        if not self.out_directory_path:
            result.warnings.append("out_directory_path is empty")
        return result


__all__ = ["FunctionConfig", "SwitchTableConfig", "ConfigValidation", "RecompilerConfig"]
