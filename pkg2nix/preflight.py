#!/usr/bin/env python3
"""Check that the external tools a conversion needs are reachable."""

from __future__ import annotations

import logging
from typing import Optional

from .extractor import FORMAT_DEB
from .index import NIX_LOCATE
from .utils import ToolMissingError, command_exists

# Tool name -> nixpkgs attribute providing it.
TOOL_PACKAGES = {
    "ar": "binutils",
    "patchelf": "patchelf",
    "nix-build": "nix",
    "git": "git",
    "gh": "gh",
    NIX_LOCATE: "nix-index",
}


def required_tools(package_format: str, scan_binaries: bool = True) -> list[str]:
    tools: list[str] = []
    if package_format == FORMAT_DEB:
        tools.append("ar")
    if scan_binaries:
        tools.append("patchelf")
    return tools


def ensure_tools(tools: list[str], logger: Optional[logging.Logger] = None) -> None:
    """Raise ToolMissingError naming every absent tool and how to get it."""
    missing = [tool for tool in tools if not command_exists(tool)]
    if not missing:
        return

    packages = " ".join(sorted({TOOL_PACKAGES.get(tool, tool) for tool in missing}))
    message = (
        f"Required tools not found in PATH: {', '.join(missing)}. "
        f"Run inside `nix-shell -p {packages}` or install them first."
    )
    if logger:
        logger.error(message)
    raise ToolMissingError(message)
