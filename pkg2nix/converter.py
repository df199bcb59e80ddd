#!/usr/bin/env python3
"""Conversion pipeline turning .deb/AppImage inputs into Nix recipes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .extractor import ArchiveExtractor, PackageMetadata, detect_package_format, has_supported_suffix
from .fetcher import FetchedSource, SourceFetcher, source_filename
from .index import NameIndex, NixLocateIndex
from .knowledge import KnowledgeBase, get_knowledge_base
from .preflight import ensure_tools, required_tools
from .reconcile import reconcile
from .renderer import RecipeRenderer, build_header
from .resolver import DependencyResolver, ResolutionResult
from .scanner import BinaryInspector, PatchelfInspector, scan
from .utils import LogCallback, Pkg2NixError, ValidationError, temporary_workspace

DEFAULT_RECIPE_NAME = "default.nix"


@dataclass
class ConversionResult:
    """Everything produced by one conversion run."""

    metadata: PackageMetadata
    source: FetchedSource
    package_format: str
    packages: list[str]
    missing: list[str]
    recipe: str = ""
    recipe_path: Optional[Path] = None


class RecipeConverter:
    """Fetch, unpack, scan, resolve and render a package into a Nix recipe."""

    def __init__(
        self,
        knowledge: Optional[KnowledgeBase] = None,
        index: Optional[NameIndex] = None,
        inspector: Optional[BinaryInspector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("pkg2nix.converter")
        self.knowledge = knowledge if knowledge is not None else get_knowledge_base()
        self.index = index if index is not None else NixLocateIndex(self.logger)
        self.inspector = inspector if inspector is not None else PatchelfInspector(self.logger)
        self.extractor = ArchiveExtractor(self.logger)
        self.fetcher = SourceFetcher(self.logger)
        self.resolver = DependencyResolver(self.knowledge, self.index, self.logger)

    def validate_source(self, source: str) -> None:
        if not source or not source.strip():
            raise ValidationError("Input cannot be empty")
        if not has_supported_suffix(source_filename(source)):
            raise ValidationError(f"Supported inputs end in .deb or .AppImage: {source}")

    def resolve_dependencies(
        self,
        root: Path,
        metadata: PackageMetadata,
        log_callback: LogCallback = None,
    ) -> ResolutionResult:
        """Scan the payload and resolve both linked and declared dependencies."""
        required, bundled = scan(root, self.inspector)
        self.logger.info("Found %d required libraries, %d bundled files", len(required), len(bundled))
        if log_callback:
            log_callback(f"Scanned payload: {len(required)} required libraries")

        result = self.resolver.resolve(required, bundled, log_callback=log_callback)
        if metadata.depends:
            result = result.merge(self.resolver.resolve_declared(metadata.depends, log_callback=log_callback))
        return result

    def convert(
        self,
        source: str,
        skip_deps: bool = False,
        upstream: bool = False,
        output_path: Optional[Path] = None,
        write: bool = True,
        log_callback: LogCallback = None,
    ) -> ConversionResult:
        """Convert ``source`` (URL or path) and write the recipe."""
        self.validate_source(source)

        with temporary_workspace("pkg2nix-download-", self.logger) as download_dir:
            fetched = self.fetcher.fetch(source, download_dir, log_callback)
            package_format = detect_package_format(fetched.path)
            scan_binaries = not skip_deps and isinstance(self.inspector, PatchelfInspector)
            ensure_tools(required_tools(package_format, scan_binaries), self.logger)

            with self.extractor.open(fetched.path, log_callback) as extracted:
                metadata = extracted.metadata
                if log_callback:
                    log_callback(f"Metadata: {metadata.name} v{metadata.version} ({metadata.architecture})")

                if skip_deps:
                    self.logger.info("Skipping dependency resolution.")
                    resolution = ResolutionResult()
                else:
                    resolution = self.resolve_dependencies(extracted.root, metadata, log_callback)

        result = ConversionResult(
            metadata=metadata,
            source=fetched,
            package_format=package_format,
            packages=reconcile(resolution.resolved, log=self.logger),
            missing=list(resolution.missing),
        )
        result.recipe = self.render_recipe(result, upstream=upstream)

        if write:
            result.recipe_path = self.write_recipe(result.recipe, output_path or Path.cwd() / DEFAULT_RECIPE_NAME)
            if log_callback:
                log_callback(f"Wrote {result.recipe_path}")

        return result

    def render_recipe(self, result: ConversionResult, upstream: bool = False) -> str:
        """Render the recipe text for a finished conversion."""
        renderer = RecipeRenderer(upstream=upstream)
        return renderer.render(
            result.package_format,
            {
                "header": build_header(result.package_format, result.packages, upstream),
                "package_name": result.metadata.name,
                "version": result.metadata.version,
                "source_url": result.source.url,
                "content_hash": result.source.sri_hash,
                "resolved_package_list": result.packages,
                "description": result.metadata.description,
                "architecture": result.metadata.architecture,
            },
        )

    def write_recipe(self, recipe: str, path: Path) -> Path:
        path = path.expanduser().resolve()
        try:
            path.write_text(recipe, encoding="utf-8")
        except OSError as exc:
            raise Pkg2NixError(f"Failed to write recipe {path}: {exc}") from exc
        self.logger.info("Wrote recipe: %s", path)
        return path
