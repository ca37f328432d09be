"""Generated file set and its all-or-nothing commit to disk.

:class:`OutputBuffer` keeps every generated file in memory keyed by file
name.  :meth:`OutputBuffer.flush` writes them in two phases: each file is
first written to a hidden temporary next to its destination, and only when
every temporary exists are they renamed into place.  Any failure removes
what this flush created and raises :class:`~ppcrecomp.errors.OutputError`.

The ``render_*`` helpers produce the fixed files of a project:

* ``{project}_config.h``: image and code ranges;
* ``{project}_init.h``: one ``PPC_EXTERN_FUNC`` per import and function;
* ``{project}_recomp.N.cpp``: function bodies in batches;
* ``{project}_init.cpp``: the null terminated guest to host mapping table;
* ``CMakeLists.txt``: a static library over the ``.cpp`` files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from ..errors import OutputError
from .writer import CodeWriter

logger = logging.getLogger(__name__)

BANNER = "//" + "=" * 77


class OutputBuffer:
    """Generated files waiting for :meth:`flush`."""

    def __init__(self) -> None:
        self._files: Dict[str, str] = {}

    def add(self, name: str, text: str) -> None:
        if name in self._files:
            raise ValueError(f"duplicate output file {name}")
        self._files[name] = text

    def get(self, name: str) -> str:
        return self._files[name]

    def names(self) -> List[str]:
        return sorted(self._files)

    def __contains__(self, name: object) -> bool:
        return name in self._files

    def __len__(self) -> int:
        return len(self._files)

    # ------------------------------------------------------------------
    # commit
    # ------------------------------------------------------------------
    @staticmethod
    def _unchanged(path: Path, text: str) -> bool:
        if not path.is_file():
            return False
        try:
            return path.read_text("utf-8") == text
        except (OSError, UnicodeDecodeError):
            return False

    @staticmethod
    def _roll_back(
        staged: List[Tuple[Path, Path]],
        committed: List[Path],
        backups: List[Tuple[Path, Path]],
    ) -> None:
        for temporary, _ in staged:
            temporary.unlink(missing_ok=True)
        for target in committed:
            target.unlink(missing_ok=True)
        for backup, target in backups:
            try:
                backup.replace(target)
            except OSError as exc:
                logger.error("could not restore %s from %s: %s", target, backup, exc)

    def flush(self, directory: Path) -> List[str]:
        """Write every file under ``directory``; returns the file names.

        Files whose current content is identical are left untouched so
        downstream builds do not see a new timestamp.  Replaced files are
        moved aside until every rename succeeded and put back on failure, so
        the directory keeps the previous run.
        """

        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputError(f"cannot create output directory {directory}: {exc}") from exc

        staged: List[Tuple[Path, Path]] = []
        backups: List[Tuple[Path, Path]] = []
        committed: List[Path] = []
        try:
            for name in self.names():
                target = directory / name
                text = self._files[name]
                if self._unchanged(target, text):
                    logger.debug("%s unchanged", name)
                    continue
                temporary = directory / f".{name}.tmp"
                staged.append((temporary, target))
                temporary.write_text(text, "utf-8")
            for temporary, target in staged:
                if target.is_file():
                    backup = directory / f".{target.name}.bak"
                    target.replace(backup)
                    backups.append((backup, target))
                temporary.replace(target)
                committed.append(target)
        except OSError as exc:
            self._roll_back(staged, committed, backups)
            raise OutputError(f"failed to write output to {directory}: {exc}") from exc

        for backup, _ in backups:
            backup.unlink(missing_ok=True)

        logger.info(
            "wrote %d of %d files to %s", len(committed), len(self._files), directory
        )
        return self.names()


# ---------------------------------------------------------------------------
# file renderers
# ---------------------------------------------------------------------------


def _banner(writer: CodeWriter, title: str) -> None:
    writer.write_line(BANNER)
    writer.write_line(f"// {title}")
    writer.write_line(BANNER)
    writer.write_line()


def render_config_header(
    project: str, image_base: int, image_size: int, code_base: int, code_size: int
) -> str:
    writer = CodeWriter()
    writer.write_line("#pragma once")
    _banner(writer, f"{project} configuration")
    writer.write_line(f"#define PPC_IMAGE_BASE 0x{image_base:08X}ull")
    writer.write_line(f"#define PPC_IMAGE_SIZE 0x{image_size:X}ull")
    writer.write_line(f"#define PPC_CODE_BASE 0x{code_base:08X}ull")
    writer.write_line(f"#define PPC_CODE_SIZE 0x{code_size:X}ull")
    return writer.render()


def render_init_header(project: str, imports: Sequence[str], functions: Sequence[str]) -> str:
    writer = CodeWriter()
    writer.write_line("#pragma once")
    _banner(writer, f"{project} function declarations")
    writer.write_line(f'#include "{project}_config.h"')
    writer.write_line("#include <ppc_context.h>")
    writer.write_line()
    if imports:
        writer.write_comment("imports")
        writer.write_lines([f"PPC_EXTERN_FUNC({name});" for name in imports])
        writer.write_line()
    writer.write_comment("recompiled functions")
    writer.write_lines([f"PPC_EXTERN_FUNC({name});" for name in functions])
    return writer.render()


def render_recomp_source(project: str, index: int, bodies: Iterable[Tuple[int, str]]) -> str:
    writer = CodeWriter()
    _banner(writer, f"{project} recompiled functions (part {index})")
    writer.write_line(f'#include "{project}_init.h"')
    for address, code in bodies:
        writer.write_line()
        writer.write_comment(f"function at 0x{address:08X}")
        writer.write_lines(code.rstrip("\n").split("\n"))
    return writer.render()


def render_init_source(project: str, mappings: Sequence[Tuple[int, str]]) -> str:
    writer = CodeWriter()
    _banner(writer, f"{project} function mapping")
    writer.write_line(f'#include "{project}_init.h"')
    writer.write_line()
    with writer.block("PPCFuncMapping PPCFuncMappings[] =", "};"):
        for address, name in sorted(mappings):
            writer.write_line(f"{{ 0x{address:08X}, {name} }},")
        writer.write_line("{ 0, nullptr }")
    return writer.render()


def render_cmake(project: str, sources: Sequence[str]) -> str:
    library = f"{project}_recompiled"
    lines = [
        f"# {project} recompiled code library",
        "cmake_minimum_required(VERSION 3.20)",
        f"project({library})",
        "",
        "set(CMAKE_CXX_STANDARD 20)",
        "set(CMAKE_CXX_STANDARD_REQUIRED ON)",
        "",
        f"add_library({library} STATIC",
        *(f"    {source}" for source in sources),
        ")",
        "",
        f"target_include_directories({library} PUBLIC ${{CMAKE_CURRENT_SOURCE_DIR}})",
        "",
        "if(WIN32)",
        f"    target_compile_options({library} PRIVATE /fp:strict /EHa)",
        "else()",
        f"    target_compile_options({library} PRIVATE -fno-strict-aliasing -ffp-model=strict -msse4.1)",
        "endif()",
        "",
        f"target_precompile_headers({library} PUBLIC {project}_init.h)",
    ]
    return "\n".join(lines) + "\n"


__all__ = [
    "OutputBuffer",
    "render_config_header",
    "render_init_header",
    "render_recomp_source",
    "render_init_source",
    "render_cmake",
]
