#!/usr/bin/env python3
"""Test-build generated recipes and place them into a nixpkgs checkout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .preflight import ensure_tools
from .utils import BuildError, CommandExecutionError, LogCallback, run_command


@dataclass
class BuildResult:
    """Structured result of a nix-build attempt."""

    success: bool
    returncode: int
    message: str


def by_name_path(nixpkgs_path: Path, package_name: str) -> Path:
    """Location of a package under nixpkgs' ``pkgs/by-name`` layout."""
    shard = package_name[:2].lower()
    return nixpkgs_path / "pkgs" / "by-name" / shard / package_name / "package.nix"


class NixBuilder:
    """Run nix-build on a recipe and explain common failures."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("pkg2nix.builder")

    def build(self, recipe_path: Path, upstream: bool = False, log_callback: LogCallback = None) -> BuildResult:
        """Build ``recipe_path`` without creating a result symlink.

        callPackage-style recipes are instantiated against ``<nixpkgs>``.
        """
        recipe_path = recipe_path.expanduser().resolve()
        if not recipe_path.exists():
            raise BuildError(f"Recipe does not exist: {recipe_path}")
        ensure_tools(["nix-build"], self.logger)

        if upstream:
            expression = f"with import <nixpkgs> {{}}; callPackage {recipe_path} {{}}"
            command = ["nix-build", "--no-out-link", "-E", expression]
        else:
            command = ["nix-build", "--no-out-link", str(recipe_path)]
        if log_callback:
            log_callback(f"Building with: {' '.join(command)}")

        returncode, output_lines = run_command(
            command,
            self.logger,
            cwd=recipe_path.parent,
            log_callback=log_callback,
            check=False,
        )

        output = "\n".join(output_lines).lower()

        if returncode == 0:
            return BuildResult(True, returncode, "Build completed successfully")

        if "hash mismatch" in output:
            return BuildResult(
                False,
                returncode,
                "Source hash mismatch. The download changed since the recipe was generated.",
            )

        if "auto-patchelf could not satisfy dependency" in output or "could not satisfy dependency" in output:
            return BuildResult(
                False,
                returncode,
                "autoPatchelfHook found unresolved libraries. Add the missing packages to buildInputs.",
            )

        if "undefined variable" in output or ("attribute" in output and "missing" in output):
            return BuildResult(
                False,
                returncode,
                "The recipe references a package attribute that does not exist in nixpkgs.",
            )

        if "cannot download" in output or "unable to download" in output:
            return BuildResult(
                False,
                returncode,
                "The package source could not be downloaded.",
            )

        return BuildResult(False, returncode, "nix-build returned an error; review logs for details")

    def place_in_nixpkgs(self, nixpkgs_path: Path, package_name: str, content: str) -> Path:
        """Write ``content`` as ``pkgs/by-name/<xx>/<name>/package.nix``."""
        nixpkgs_path = nixpkgs_path.expanduser().resolve()
        if not (nixpkgs_path / "pkgs").is_dir():
            raise BuildError(f"Not a nixpkgs checkout: {nixpkgs_path}")

        target = by_name_path(nixpkgs_path, package_name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise BuildError(f"Failed to write {target}: {exc}") from exc

        self.logger.info("Created file: %s", target)
        return target

    def open_pull_request(
        self,
        nixpkgs_path: Path,
        package_name: str,
        version: str,
        base_branch: str = "master",
        log_callback: LogCallback = None,
    ) -> str:
        """Commit a placed recipe on ``init-<name>`` and open a pull request with gh.

        The recipe must already exist at its ``pkgs/by-name`` location.
        Returns the commit message, which is also used as the PR title.
        """
        nixpkgs_path = nixpkgs_path.expanduser().resolve()
        package_file = by_name_path(nixpkgs_path, package_name)
        if not package_file.is_file():
            raise BuildError(f"Recipe not placed in nixpkgs checkout: {package_file}")
        ensure_tools(["git", "gh"], self.logger)

        message = f"init: {package_name} {version}"
        commands = [
            ["git", "checkout", base_branch],
            ["git", "pull"],
            ["git", "checkout", "-b", f"init-{package_name}"],
            ["git", "add", str(package_file.parent.relative_to(nixpkgs_path))],
            ["git", "commit", "-m", message],
            ["gh", "pr", "create", "--fill", "--title", message],
        ]
        for command in commands:
            if log_callback:
                log_callback(f"Running: {' '.join(command)}")
            try:
                run_command(command, self.logger, cwd=nixpkgs_path, log_callback=log_callback)
            except CommandExecutionError as exc:
                raise BuildError(f"Pull request for {package_name} failed: {exc}") from exc

        self.logger.info("Opened pull request: %s", message)
        return message
