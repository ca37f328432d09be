"""End-to-end orchestration: configuration, image, analysis, recompilation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .analysis import AnalysisResult, analyze
from .binary_view import BinaryView
from .config import RecompilerConfig
from .context import PipelineContext
from .errors import BinaryLoadError, ConfigError
from .loader import BinaryLoader, ManifestLoader
from .recompiler import RecompileResult, Recompiler

logger = logging.getLogger(__name__)


def recompile(
    ctx: PipelineContext, force: bool = False, *, out_directory: Optional[str] = None
) -> RecompileResult:
    """Emit every sealed function of an analysed context."""

    return Recompiler(ctx).recompile(force, out_directory=out_directory)


@dataclass
class PipelineResult:
    analysis: AnalysisResult
    recompile: Optional[RecompileResult] = None

    @property
    def ok(self) -> bool:
        if self.recompile is None:
            return self.analysis.ok
        return self.recompile.ok


class CodegenPipeline:
    """Configuration file in, generated C++ project out."""

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx

    @classmethod
    def create(
        cls, config_path: Path, loader: Optional[BinaryLoader] = None
    ) -> "CodegenPipeline":
        config = RecompilerConfig.load(Path(config_path))
        validation = config.validate()
        for warning in validation.warnings:
            logger.warning("config: %s", warning)
        if not validation.valid:
            raise ConfigError("invalid configuration: " + "; ".join(validation.errors))

        image_path = config.image_path
        if image_path is None:
            raise BinaryLoadError("configuration does not name an image (file_path)")
        binary = (loader or ManifestLoader()).load(image_path)
        view = BinaryView.from_loaded(binary)
        return cls(PipelineContext.create(view, config))

    def analyze(self) -> AnalysisResult:
        return analyze(self.ctx)

    def run(
        self,
        force: bool = False,
        *,
        analyze_only: bool = False,
        out_directory: Optional[str] = None,
    ) -> PipelineResult:
        analysis = self.analyze()
        result = PipelineResult(analysis)
        if analyze_only:
            return result
        result.recompile = recompile(self.ctx, force, out_directory=out_directory)
        return result


__all__ = ["PipelineResult", "CodegenPipeline", "analyze", "recompile"]
