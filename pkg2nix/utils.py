#!/usr/bin/env python3
"""Utility helpers for pkg2nix."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from tarfile import TarFile, TarInfo
from typing import Callable, Iterable, Iterator, Optional

LogCallback = Optional[Callable[[str], None]]
ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~]|[\(\)][0-9A-Za-z])")


class Pkg2NixError(Exception):
    """Base exception for all pkg2nix errors."""


class ValidationError(Pkg2NixError):
    """Raised when input validation fails."""


class CommandExecutionError(Pkg2NixError):
    """Raised when a subprocess returns a non-zero exit status."""


class FetchError(Pkg2NixError):
    """Raised when the input package cannot be downloaded, read, or hashed."""


class ExtractionError(Pkg2NixError):
    """Raised when the package format is unknown or unpacking fails."""


class ToolMissingError(Pkg2NixError):
    """Raised when a required external tool is not on PATH."""


class PackageNotFoundError(Pkg2NixError):
    """Raised when a dependency name resolves to no nixpkgs attribute."""


class BuildError(Pkg2NixError):
    """Raised when the generated recipe cannot be built or placed."""


def setup_logging(name: str = "pkg2nix", level: int = logging.INFO) -> logging.Logger:
    """Create and configure a logger with consistent formatting."""
    logger = logging.getLogger(name)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    logger.setLevel(level)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(stream_handler)
    return logger


def create_temp_dir(prefix: str = "pkg2nix-") -> Path:
    """Create a uniquely named temporary directory for workspace operations."""
    return Path(tempfile.mkdtemp(prefix=prefix))


def cleanup_dir(path: Path, logger: Optional[logging.Logger] = None) -> None:
    """Best-effort temporary directory cleanup."""
    try:
        shutil.rmtree(path, ignore_errors=False)
    except FileNotFoundError:
        return
    except OSError as exc:  # pragma: no cover - best effort cleanup
        if logger:
            logger.warning("Failed to cleanup %s: %s", path, exc)


@contextmanager
def temporary_workspace(
    prefix: str = "pkg2nix-",
    logger: Optional[logging.Logger] = None,
) -> Iterator[Path]:
    """Yield a fresh temp directory that is removed on every exit path."""
    workspace = create_temp_dir(prefix)
    try:
        yield workspace
    finally:
        cleanup_dir(workspace, logger)


def command_exists(binary: str) -> bool:
    """Return True if a binary is available in PATH."""
    return shutil.which(binary) is not None


def sanitize_package_name(name: str) -> str:
    """Convert a package name into a Nix-friendly pname token."""
    cleaned = re.sub(r"[^a-zA-Z0-9._+-]", "-", name).strip("-._").lower()
    return cleaned or "generated-package"


def sanitize_version(version: str) -> str:
    """Drop a Debian epoch and whitespace from a version string.

    ``1:2.4.0-1ubuntu1`` becomes ``2.4.0-1ubuntu1``.
    """
    if not version:
        return "1.0.0"

    no_epoch = version.strip().split(":", 1)[-1]
    cleaned = re.sub(r"\s+", "", no_epoch)
    return cleaned or "1.0.0"


def parse_debian_depends(depends_field: str) -> list[tuple[str, ...]]:
    """Parse a Debian Depends field into dependency groups.

    Each group keeps its ``|`` alternatives in declared order, stripped of
    version constraints and architecture qualifiers.

    Example input:
    "libc6 (>= 2.34), libgtk-3-0 | libgtk-3-1"
    """
    groups: list[tuple[str, ...]] = []
    if not depends_field:
        return groups

    for raw_item in depends_field.split(","):
        item = raw_item.strip()
        if not item:
            continue

        alternatives: list[str] = []
        for alt in item.split("|"):
            no_version = re.sub(r"\s*\(.*?\)", "", alt).strip()
            no_version = re.sub(r"\s*\[.*?\]", "", no_version).strip()
            no_arch = no_version.split(":", 1)[0].strip()
            if no_arch:
                alternatives.append(no_arch)
        if alternatives:
            groups.append(tuple(alternatives))

    return groups


def _is_inside(destination: Path, target_path: Path) -> bool:
    destination_root = destination.resolve()
    return str(target_path).startswith(str(destination_root) + os.sep) or target_path == destination_root


def _is_safe_tar_target(destination: Path, member_name: str) -> bool:
    """Check if a tar member path stays inside destination directory."""
    normalized_name = member_name.lstrip("/")
    return _is_inside(destination, (destination / normalized_name).resolve())


def _extract_regular_file(
    tar: TarFile,
    member: TarInfo,
    destination: Path,
) -> None:
    """Extract a single regular file from a tar archive safely."""
    target = (destination / member.name.lstrip("/")).resolve()
    target.parent.mkdir(parents=True, exist_ok=True)

    extracted = tar.extractfile(member)
    if extracted is None:
        raise ExtractionError(f"Unable to read tar member: {member.name}")

    with extracted, target.open("wb") as output:
        shutil.copyfileobj(extracted, output)

    mode = member.mode & 0o777
    if mode:
        target.chmod(mode)


def _extract_symlink(member: TarInfo, destination: Path, logger: Optional[logging.Logger]) -> None:
    """Recreate a symlink whose target stays inside destination."""
    link_path = destination / member.name.lstrip("/")
    if member.linkname.startswith("/"):
        resolved_target = (destination / member.linkname.lstrip("/")).resolve()
    else:
        resolved_target = (link_path.parent / member.linkname).resolve()

    if not _is_inside(destination, resolved_target):
        if logger:
            logger.warning("Skipping symlink escaping payload: %s -> %s", member.name, member.linkname)
        return

    link_path.parent.mkdir(parents=True, exist_ok=True)
    if link_path.is_symlink() or link_path.exists():
        return
    link_path.symlink_to(os.path.relpath(resolved_target, link_path.parent.resolve()))


def safe_extract_tar(
    tar: TarFile,
    destination: Path,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Safely extract a tar archive.

    Security constraints:
    - Prevent path traversal
    - Keep symlinks only when they point inside the payload
    - Skip hardlinks/devices/FIFOs
    - Extract only directories, regular files and internal symlinks
    """
    destination.mkdir(parents=True, exist_ok=True)

    for member in tar.getmembers():
        if not _is_safe_tar_target(destination, member.name):
            raise ExtractionError(f"Unsafe archive path detected: {member.name}")

        if member.issym():
            _extract_symlink(member, destination, logger)
            continue

        if member.islnk() or member.isdev() or member.isfifo():
            if logger:
                logger.warning("Skipping unsafe archive member: %s", member.name)
            continue

        target = (destination / member.name.lstrip("/")).resolve()

        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
            mode = member.mode & 0o777
            if mode:
                target.chmod(mode | 0o700)
            continue

        if member.isfile():
            _extract_regular_file(tar, member, destination)
            continue

        if logger:
            logger.warning("Skipping unsupported archive member type: %s", member.name)


def strip_ansi_escapes(text: str) -> str:
    """Remove ANSI terminal escape codes from a log line."""
    return ANSI_ESCAPE_RE.sub("", text)


def run_command(
    cmd: list[str],
    logger: logging.Logger,
    cwd: Optional[Path] = None,
    env: Optional[dict[str, str]] = None,
    log_callback: LogCallback = None,
    check: bool = True,
) -> tuple[int, list[str]]:
    """Run a command and stream combined stdout/stderr line-by-line."""
    logger.debug("Running command: %s", " ".join(cmd))

    process_env = os.environ.copy()
    if env:
        process_env.update(env)
    process_env.setdefault("TERM", "xterm-256color")

    try:
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except OSError as exc:
        raise CommandExecutionError(f"Could not start {cmd[0]}: {exc}") from exc

    output_lines: list[str] = []
    assert process.stdout is not None

    for line in iter(process.stdout.readline, ""):
        raw = line.rstrip("\n")
        stripped = strip_ansi_escapes(raw).strip()
        output_lines.append(stripped)
        if stripped:
            logger.info(stripped)
            if log_callback:
                log_callback(stripped)

    process.wait()

    if check and process.returncode != 0:
        joined = "\n".join(output_lines)
        raise CommandExecutionError(
            f"Command failed with exit code {process.returncode}: {' '.join(cmd)}\n{joined}"
        )

    return process.returncode, output_lines


def capture_stdout(
    cmd: list[str],
    logger: logging.Logger,
    cwd: Optional[Path] = None,
) -> tuple[int, list[str]]:
    """Run a query command quietly and return its stdout lines.

    Stderr is discarded. A command that cannot be started reports
    return code 127 and no output instead of raising.
    """
    logger.debug("Querying: %s", " ".join(cmd))
    try:
        completed = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as exc:
        logger.debug("Could not start %s: %s", cmd[0], exc)
        return 127, []

    return completed.returncode, completed.stdout.splitlines()


def format_dependency_list(items: Iterable[str]) -> str:
    """Format dependency names for readable display."""
    unique = sorted(set(items))
    return ", ".join(unique) if unique else "none"
