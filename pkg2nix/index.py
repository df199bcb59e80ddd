#!/usr/bin/env python3
"""Lookup of nixpkgs attributes that ship a given file, backed by nix-locate."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Protocol

from .utils import capture_stdout, command_exists

NIX_LOCATE = "nix-locate"
OUTPUT_SUFFIXES = frozenset({"out", "lib", "bin", "dev"})
_ATTR_PREFIX_RE = re.compile(r"^(?:nixpkgs\.|legacyPackages\.[^.]+\.)")


class NameIndex(Protocol):
    """Anything that can list candidate attribute paths for a filename."""

    def locate(self, filename: str) -> list[str]:
        ...


def pick_candidate(lines: Iterable[str]) -> Optional[str]:
    """Choose the attribute path to use from raw index output.

    The first non-blank line without a parenthesized annotation wins.
    Channel prefixes (``nixpkgs.``, ``legacyPackages.<system>.``) and a
    trailing output name such as ``.out`` or ``.lib`` are removed.
    """
    for line in lines:
        candidate = line.strip()
        if not candidate or "(" in candidate:
            continue

        candidate = candidate.split()[0]
        candidate = _ATTR_PREFIX_RE.sub("", candidate)
        parts = [part for part in candidate.split(".") if part]
        if len(parts) > 1 and parts[-1] in OUTPUT_SUFFIXES:
            parts = parts[:-1]
        if parts:
            return ".".join(parts)
    return None


class NixLocateIndex:
    """Query nix-index's database through the nix-locate command."""

    def __init__(self, logger: Optional[logging.Logger] = None, binary: str = NIX_LOCATE) -> None:
        self.logger = logger or logging.getLogger("pkg2nix.index")
        self.binary = binary
        self._available: Optional[bool] = None

    @property
    def available(self) -> bool:
        if self._available is None:
            self._available = command_exists(self.binary)
            if not self._available:
                self.logger.warning(
                    "%s not found; resolving from the knowledge base only. "
                    "Install nix-index and run nix-index to enable lookups.",
                    self.binary,
                )
        return self._available

    def locate(self, filename: str) -> list[str]:
        if not filename or not self.available:
            return []

        # --at-root would match from the start of each path, where a bare soname never appears.
        cmd = [self.binary, "--top-level", "--minimal", "--whole-name", filename]
        returncode, lines = capture_stdout(cmd, self.logger)
        if returncode != 0:
            self.logger.debug("%s exited with %d for %s", self.binary, returncode, filename)
            return []
        return [line.strip() for line in lines if line.strip()]


class NullIndex:
    """Index that never finds anything; used when lookups are disabled."""

    def locate(self, filename: str) -> list[str]:
        return []
