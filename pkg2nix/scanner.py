#!/usr/bin/env python3
"""Collect dynamic-link requirements and bundled files from an extracted payload."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from .extractor import ELF_MAGIC
from .utils import capture_stdout


class BinaryInspector(Protocol):
    """Anything that can list the DT_NEEDED entries of a file."""

    def print_needed(self, path: Path) -> list[str]:
        ...


def is_elf_file(path: Path) -> bool:
    try:
        with path.open("rb") as handle:
            return handle.read(4) == ELF_MAGIC
    except OSError:
        return False


class PatchelfInspector:
    """Read DT_NEEDED entries with ``patchelf --print-needed``."""

    def __init__(self, logger: Optional[logging.Logger] = None, binary: str = "patchelf") -> None:
        self.logger = logger or logging.getLogger("pkg2nix.scanner")
        self.binary = binary

    def print_needed(self, path: Path) -> list[str]:
        if not is_elf_file(path):
            return []

        returncode, lines = capture_stdout([self.binary, "--print-needed", str(path)], self.logger)
        if returncode != 0:
            self.logger.debug("No dynamic section in %s", path)
            return []
        return lines


def _link_counts_as_bundled(link: Path, root_real: str) -> bool:
    """A link that leaves the payload counts by name; one inside it must reach a file."""
    target = os.path.realpath(link)
    if os.path.commonpath([root_real, target]) != root_real:
        return True
    return os.path.isfile(target)


def scan(root: Path, inspector: BinaryInspector) -> tuple[set[str], set[str]]:
    """Walk ``root`` and return ``(required, bundled)`` filename sets.

    Directory symlinks are never followed, so link cycles cannot recurse;
    unreadable directories are skipped. Symlinks are never inspected. A
    link whose target lies inside ``root`` is bundled only when that target
    is a regular file. A link pointing outside ``root`` is bundled by name,
    whatever the host has at the target path.
    """
    required: set[str] = set()
    bundled: set[str] = set()
    root_real = os.path.realpath(root)

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        for dirname in dirnames:
            link = Path(dirpath) / dirname
            if link.is_symlink() and _link_counts_as_bundled(link, root_real):
                bundled.add(dirname)

        for filename in filenames:
            path = Path(dirpath) / filename
            if path.is_symlink():
                if _link_counts_as_bundled(path, root_real):
                    bundled.add(filename)
                continue
            if not path.is_file():
                continue

            bundled.add(filename)
            try:
                needed = inspector.print_needed(path)
            except OSError:
                continue
            for line in needed:
                stripped = line.strip()
                if stripped:
                    required.add(stripped)

    return required, bundled
