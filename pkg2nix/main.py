#!/usr/bin/env python3
"""Entry point for pkg2nix."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .builder import NixBuilder
from .converter import ConversionResult, RecipeConverter
from .knowledge import get_knowledge_base
from .utils import Pkg2NixError, format_dependency_list, setup_logging


def _print_report(result: ConversionResult) -> None:
    metadata = result.metadata
    print(f"Package: {metadata.name}")
    print(f"Version: {metadata.version}")
    print(f"Architecture: {metadata.architecture}")
    print(f"Resolved dependencies: {format_dependency_list(result.packages)}")
    print(f"Missing dependencies: {format_dependency_list(result.missing)}")
    if result.recipe_path is not None:
        print(f"Recipe written to: {result.recipe_path}")


def run_cli(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Run conversion in terminal mode."""
    try:
        knowledge = get_knowledge_base(Path(args.knowledge_base) if args.knowledge_base else None)
        converter = RecipeConverter(knowledge=knowledge, logger=logger)

        print(f"Converting: {args.source}")
        result = converter.convert(
            args.source,
            skip_deps=args.skip_deps,
            upstream=args.upstream,
            output_path=Path(args.output) if args.output else None,
        )
        _print_report(result)

        if args.nixpkgs:
            upstream_recipe = result.recipe if args.upstream else converter.render_recipe(result, upstream=True)
            target = NixBuilder(logger).place_in_nixpkgs(Path(args.nixpkgs), result.metadata.name, upstream_recipe)
            print(f"Placed upstream recipe: {target}")
            if args.pr:
                message = NixBuilder(logger).open_pull_request(
                    Path(args.nixpkgs), result.metadata.name, result.metadata.version, log_callback=print
                )
                print(f"Opened pull request: {message}")

        if args.build and result.recipe_path is not None:
            print("Running nix-build test...")
            build_result = NixBuilder(logger).build(result.recipe_path, upstream=args.upstream, log_callback=print)
            if not build_result.success:
                print(f"Build failed: {build_result.message}")
                return 1
            print("Build successful.")

        return 0

    except Pkg2NixError as exc:
        logger.error("Operation failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 2


def run_gui(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Run GTK mode."""
    try:
        from .gui import launch_gui
    except Exception as exc:  # pragma: no cover - runtime dependency branch
        print(f"GUI dependencies unavailable: {exc}", file=sys.stderr)
        if not args.source:
            return 2
        print("Falling back to CLI mode.")
        return run_cli(args, logger)

    knowledge = get_knowledge_base(Path(args.knowledge_base) if args.knowledge_base else None)
    return launch_gui(args.source, knowledge=knowledge, logger=logger)


def build_parser() -> argparse.ArgumentParser:
    """Build command-line parser."""
    parser = argparse.ArgumentParser(
        prog="pkg2nix",
        description="Convert .deb packages and AppImages into Nix recipes.",
    )
    parser.add_argument("source", nargs="?", help="URL or path of a .deb or .AppImage file")
    parser.add_argument("--skip-deps", action="store_true", help="Do not resolve dependencies")
    parser.add_argument("--knowledge-base", metavar="PATH", help="Library mapping file (JSON or YAML)")
    parser.add_argument("--upstream", action="store_true", help="Render a callPackage-style recipe for nixpkgs")
    parser.add_argument("-o", "--output", metavar="FILE", help="Recipe path (default: ./default.nix)")
    parser.add_argument("--build", action="store_true", help="Test the recipe with nix-build")
    parser.add_argument("--nixpkgs", metavar="PATH", help="Also write the recipe into a nixpkgs checkout")
    parser.add_argument("--pr", action="store_true", help="Commit the nixpkgs recipe on a new branch and open a PR with gh")
    parser.add_argument("--gui", action="store_true", help="Open the GTK interface")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Program entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = setup_logging("pkg2nix", logging.DEBUG if args.verbose else logging.INFO)

    if args.gui:
        return run_gui(args, logger)

    if not args.source:
        parser.error("source is required unless --gui is given")
    if args.pr and not args.nixpkgs:
        parser.error("--pr requires --nixpkgs")

    return run_cli(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
