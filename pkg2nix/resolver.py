#!/usr/bin/env python3
"""Resolve shared libraries and Debian package names to nixpkgs attributes.

Two entry points share one knowledge base and one name index:

* :meth:`DependencyResolver.resolve` works on sonames scanned from binaries
  (system library → explicit mapping → bundled copy → index → missing).
* :meth:`DependencyResolver.resolve_name` works on declared package names
  such as ``libgtk-3-0`` (exact mapping → version-stripped → ``lib``-stripped
  → index lookups for guessed filenames).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .index import NameIndex, NullIndex, pick_candidate
from .knowledge import KnowledgeBase
from .utils import LogCallback, PackageNotFoundError

LIBRARY_NAME_RE = re.compile(r"^lib(.+?)[-.]?(\d+(?:\.\d+)*)$")
VERSION_SUFFIX_RE = re.compile(r"[-0-9.]+$")


@dataclass(frozen=True)
class ResolutionResult:
    """Sorted outcome of a resolution pass."""

    resolved: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()

    @classmethod
    def finalize(cls, resolved: Iterable[str], missing: Iterable[str]) -> "ResolutionResult":
        return cls(tuple(sorted(set(resolved))), tuple(sorted(set(missing))))

    def merge(self, other: "ResolutionResult") -> "ResolutionResult":
        return ResolutionResult.finalize(self.resolved + other.resolved, self.missing + other.missing)


def guess_filenames(package_name: str) -> list[str]:
    """Guess shared-object filenames shipped by a Debian library package.

    ``libssl3`` gives ``libssl.so.3`` and ``libssl.so``; ``libfoo-dev``
    gives ``libfoo-dev.so``; names without a ``lib`` prefix give nothing.
    """
    match = LIBRARY_NAME_RE.match(package_name)
    if match:
        core, version = match.group(1), match.group(2)
        return [f"lib{core}.so.{version}", f"lib{core}.so"]
    if package_name.startswith("lib"):
        return [f"{package_name}.so"]
    return []


class DependencyResolver:
    """Map library and package names onto nixpkgs attribute paths."""

    def __init__(
        self,
        knowledge: KnowledgeBase,
        index: Optional[NameIndex] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.knowledge = knowledge
        self.index: NameIndex = index if index is not None else NullIndex()
        self.logger = logger or logging.getLogger("pkg2nix.resolver")

    def lookup(self, filename: str) -> Optional[str]:
        """Ask the index which attribute ships ``filename``."""
        return pick_candidate(self.index.locate(filename))

    def resolve(
        self,
        required: Iterable[str],
        bundled: Iterable[str],
        log_callback: LogCallback = None,
    ) -> ResolutionResult:
        """Resolve scanned sonames against the knowledge base and index."""
        bundled_set = set(bundled)
        resolved: set[str] = set()
        missing: list[str] = []

        for lib in sorted(set(required)):
            if self.knowledge.is_system_lib(lib):
                continue

            mapped = self.knowledge.pkg_for_lib(lib)
            if mapped is not None:
                resolved.add(mapped)
                continue

            if lib in bundled_set:
                self.logger.debug("Bundled in payload: %s", lib)
                continue

            found = self.lookup(lib)
            if found:
                self.logger.info("Found '%s' in package '%s' via index", lib, found)
                if log_callback:
                    log_callback(f"{lib} -> {found} (nix-locate)")
                resolved.add(found)
                continue

            self.logger.warning("Unresolved library: %s", lib)
            missing.append(lib)

        return ResolutionResult.finalize(resolved, missing)

    def resolve_name(self, name: str) -> str:
        """Resolve a declared package name, raising PackageNotFoundError."""
        direct = self.knowledge.pkg_for_source(name)
        if direct is not None:
            return direct

        cleaned = VERSION_SUFFIX_RE.sub("", name)
        if cleaned != name:
            found = self.knowledge.pkg_for_source(cleaned)
            if found is not None:
                return found

        if cleaned.startswith("lib"):
            found = self.knowledge.pkg_for_source(cleaned[len("lib"):])
            if found is not None:
                return found

        guesses = guess_filenames(name)
        if guesses:
            self.logger.debug("Trying to resolve '%s' using the index", name)
            for filename in guesses:
                found = self.lookup(filename)
                if found:
                    self.logger.info("Found '%s' in package '%s' via index", filename, found)
                    return found

        raise PackageNotFoundError(f"'{name}' not found in knowledge base or via nix-locate.")

    def resolve_declared(
        self,
        groups: Sequence[Sequence[str]],
        log_callback: LogCallback = None,
    ) -> ResolutionResult:
        """Resolve Debian Depends groups; the first resolvable alternative wins."""
        resolved: set[str] = set()
        missing: list[str] = []

        for group in groups:
            alternatives = [name for name in group if name]
            if not alternatives:
                continue

            for name in alternatives:
                try:
                    found = self.resolve_name(name)
                except PackageNotFoundError:
                    continue
                self.logger.info("Dependency found: %s -> %s", name, found)
                if log_callback:
                    log_callback(f"{name} -> {found}")
                resolved.add(found)
                break
            else:
                label = " | ".join(alternatives)
                self.logger.warning("No match for declared dependency '%s'", label)
                missing.append(label)

        return ResolutionResult.finalize(resolved, missing)
