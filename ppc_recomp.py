#!/usr/bin/env python3
"""Command-line interface for the PowerPC static recompiler."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from ppcrecomp import CodegenError, CodegenPipeline


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("config", type=Path, help="Project configuration (.toml or .json)")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Write output even when analysis recorded errors",
    )
    parser.add_argument(
        "--analyze-only",
        action="store_true",
        help="Stop after analysis and print the diagnostics report",
    )
    parser.add_argument(
        "--out",
        default=None,
        help="Override out_directory_path from the configuration",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log per-item decisions")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    return parser.parse_args(argv)


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[Sequence[str]] = None) -> int:
    start_time = time.perf_counter()
    args = parse_args(argv)
    configure_logging(args)

    if not args.config.exists():
        raise SystemExit(f"missing config file: {args.config}")

    try:
        pipeline = CodegenPipeline.create(args.config)
        result = pipeline.run(args.force, analyze_only=args.analyze_only, out_directory=args.out)
    except CodegenError as exc:
        raise SystemExit(f"error: {exc}") from exc

    errors = pipeline.ctx.errors
    if errors.has_errors:
        errors.print_report(sys.stderr)
    print(f"analysis: {result.analysis.describe()}")
    if result.recompile is not None:
        print(f"recompile: {result.recompile.describe()}")
        for name, count in sorted(result.recompile.unimplemented.items()):
            print(f"  unimplemented {name}: {count}")

    total_time = time.perf_counter() - start_time
    print(f"total execution time: {total_time:.2f}s")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
