"""Drive :func:`recompile_function` over the sealed graph and batch output."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..context import PipelineContext
from ..errors import AnalysisError
from ..function_graph import FunctionNode
from .function import RecompiledFunction, recompile_function
from .output import (
    OutputBuffer,
    render_cmake,
    render_config_header,
    render_init_header,
    render_init_source,
    render_recomp_source,
)

logger = logging.getLogger(__name__)


@dataclass
class RecompileResult:
    ok: bool
    written: List[str] = field(default_factory=list)
    functions: int = 0
    instructions: int = 0
    errors: Sequence[AnalysisError] = ()
    suppressed: Sequence[AnalysisError] = ()
    unimplemented: Counter = field(default_factory=Counter)
    warnings: List[str] = field(default_factory=list)

    def describe(self) -> str:
        if not self.ok:
            return f"not recompiled: {len(self.errors)} analysis errors"
        text = f"{self.functions} functions, {self.instructions} instructions, {len(self.written)} files"
        if self.suppressed:
            text += f", {len(self.suppressed)} errors suppressed"
        if self.unimplemented:
            text += f", {sum(self.unimplemented.values())} unimplemented instructions"
        return text


class Recompiler:
    """Emits every sealed function of ``ctx`` into an :class:`OutputBuffer`."""

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx
        self.config = ctx.config

    def functions_to_emit(self) -> List[FunctionNode]:
        """Sealed functions with a body of their own; chunks ride with their owner."""

        graph = self.ctx.graph
        return [
            node
            for node in graph.sealed()
            if not node.is_import and graph.owner_of(node) is node
        ]

    def imports(self) -> List[FunctionNode]:
        return [node for node in self.ctx.graph.sealed() if node.is_import and node.entry]

    def recompile_all(self) -> List[RecompiledFunction]:
        results = []
        for node in self.functions_to_emit():
            results.append(recompile_function(self.ctx, node))
        return results

    def code_range(self) -> Tuple[int, int]:
        sections = self.ctx.binary.executable_sections()
        if not sections:
            return 0, 0
        start = min(section.base for section in sections)
        end = max(section.end for section in sections)
        return start, end - start

    def build_output(self, functions: Sequence[RecompiledFunction]) -> OutputBuffer:
        config = self.config
        project = config.project_name
        per_file = max(1, config.functions_per_file)
        binary = self.ctx.binary
        imports = self.imports()

        buffer = OutputBuffer()
        code_base, code_size = self.code_range()
        buffer.add(
            f"{project}_config.h",
            render_config_header(project, binary.base, binary.image_size, code_base, code_size),
        )
        buffer.add(
            f"{project}_init.h",
            render_init_header(
                project, [node.name for node in imports], [func.name for func in functions]
            ),
        )

        sources: List[str] = []
        for index, first in enumerate(range(0, len(functions), per_file)):
            batch = functions[first:first + per_file]
            name = f"{project}_recomp.{index}.cpp"
            buffer.add(name, render_recomp_source(project, index, [(f.entry, f.code) for f in batch]))
            sources.append(name)

        mappings = [(func.entry, func.name) for func in functions]
        mappings.extend((node.entry, node.name) for node in imports)
        buffer.add(f"{project}_init.cpp", render_init_source(project, mappings))
        sources.append(f"{project}_init.cpp")
        buffer.add("CMakeLists.txt", render_cmake(project, sources))
        return buffer

    def recompile(self, force: bool = False, *, out_directory: Optional[str] = None) -> RecompileResult:
        """Emit and commit every function.

        Without ``force`` nothing is generated while the error collector holds
        entries.  With ``force`` the entries are reported back as suppressed
        and unresolved targets become runtime traps.
        """

        errors = self.ctx.errors
        if errors.has_errors and not force:
            logger.error(
                "refusing to recompile with %d analysis errors (use force to override)", len(errors)
            )
            return RecompileResult(ok=False, errors=errors.entries)

        started = time.perf_counter()
        functions = self.recompile_all()
        buffer = self.build_output(functions)
        directory = self.config.resolve(out_directory) if out_directory else self.config.out_directory
        written = buffer.flush(directory)

        result = RecompileResult(
            ok=True,
            written=written,
            functions=len(functions),
            suppressed=errors.entries if force else (),
        )
        for func in functions:
            result.instructions += func.instructions
            result.unimplemented.update(func.unimplemented)
            result.warnings.extend(func.warnings)
        if result.suppressed:
            logger.warning("forced output with %d suppressed errors", len(result.suppressed))
        logger.info(
            "recompile complete: %s in %.2f s", result.describe(), time.perf_counter() - started
        )
        return result


__all__ = ["RecompileResult", "Recompiler"]
