#!/usr/bin/env python3
"""Format detection, metadata parsing and payload extraction for .deb and AppImage inputs."""

from __future__ import annotations

import logging
import re
import shutil
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .utils import (
    CommandExecutionError,
    ExtractionError,
    LogCallback,
    ValidationError,
    capture_stdout,
    command_exists,
    parse_debian_depends,
    run_command,
    safe_extract_tar,
    sanitize_package_name,
    sanitize_version,
    temporary_workspace,
)

DEB_MAGIC = b"!<arch>\n"
ELF_MAGIC = b"\x7fELF"
FORMAT_DEB = "deb"
FORMAT_APPIMAGE = "appimage"
SUPPORTED_SUFFIXES = (".deb", ".appimage")

ARCHITECTURE_MAP = {
    "amd64": "x86_64-linux",
    "arm64": "aarch64-linux",
    "i386": "i686-linux",
    "armhf": "armv7l-linux",
}

# e_machine values from the ELF header.
ELF_MACHINE_MAP = {
    0x03: "i686-linux",
    0x28: "armv7l-linux",
    0x3E: "x86_64-linux",
    0xB7: "aarch64-linux",
}


@dataclass(frozen=True)
class PackageMetadata:
    """Metadata of the package being converted."""

    name: str
    version: str
    architecture: str
    description: str
    depends: tuple[tuple[str, ...], ...] = ()
    source_format: str = FORMAT_DEB


@dataclass(frozen=True)
class ExtractedPackage:
    """Metadata plus the directory holding the unpacked payload."""

    metadata: PackageMetadata
    root: Path


def normalize_architecture(code: str) -> str:
    """Translate a Debian architecture code into a Nix system double."""
    arch = code.strip()
    return ARCHITECTURE_MAP.get(arch.lower(), arch)


def has_supported_suffix(name: str) -> bool:
    return name.lower().endswith(SUPPORTED_SUFFIXES)


def detect_package_format(path: Path) -> str:
    """Detect the container format from the file's leading bytes."""
    try:
        with path.open("rb") as handle:
            magic = handle.read(8)
    except OSError as exc:
        raise ExtractionError(f"Cannot read {path}: {exc}") from exc

    if magic.startswith(DEB_MAGIC):
        return FORMAT_DEB
    if magic.startswith(ELF_MAGIC):
        return FORMAT_APPIMAGE
    raise ExtractionError(f"Unknown file type: {path.name} is neither a .deb archive nor an AppImage")


def _elf_architecture(path: Path) -> Optional[str]:
    try:
        with path.open("rb") as handle:
            header = handle.read(20)
    except OSError:
        return None
    if len(header) < 20 or not header.startswith(ELF_MAGIC):
        return None
    byteorder = "little" if header[5] == 1 else "big"
    return ELF_MACHINE_MAP.get(int.from_bytes(header[18:20], byteorder))


class ArchiveExtractor:
    """Unpack supported inputs into a temporary directory tree."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("pkg2nix.extractor")

    def _normalize_archive_member_name(self, member_name: str) -> str:
        """Normalize archive member paths without stripping significant dots."""
        cleaned = member_name.lstrip("/")
        if cleaned.startswith("./"):
            cleaned = cleaned[2:]
        return cleaned

    def validate_input_file(self, input_path: Path) -> str:
        """Validate a candidate input file and return its detected format."""
        if not input_path.exists() or not input_path.is_file():
            raise ValidationError(f"File does not exist: {input_path}")
        return detect_package_format(input_path)

    @contextmanager
    def open(self, input_path: Path, log_callback: LogCallback = None) -> Iterator[ExtractedPackage]:
        """Extract ``input_path`` and yield the result; the tree is removed afterwards."""
        input_path = input_path.expanduser().resolve()
        package_format = self.validate_input_file(input_path)

        with temporary_workspace("pkg2nix-extract-", self.logger) as workspace:
            if package_format == FORMAT_DEB:
                extracted = self._extract_deb(input_path, workspace, log_callback)
            else:
                extracted = self._extract_appimage(input_path, workspace, log_callback)
            self.logger.info(
                "Extracted %s %s (%s) into %s",
                extracted.metadata.name,
                extracted.metadata.version,
                extracted.metadata.architecture,
                extracted.root,
            )
            yield extracted

    def inspect_metadata(self, input_path: Path, log_callback: LogCallback = None) -> PackageMetadata:
        """Extract metadata only."""
        with self.open(input_path, log_callback) as extracted:
            return extracted.metadata

    # Debian archives

    def _extract_deb(self, deb_path: Path, workspace: Path, log_callback: LogCallback) -> ExtractedPackage:
        members_dir = workspace / "members"
        members_dir.mkdir()
        control_archive, data_archive = self._extract_deb_members(deb_path, members_dir, log_callback)
        control_text = self._read_control_file(control_archive, members_dir)
        metadata = self._parse_control_metadata(control_text, deb_path)

        root = workspace / "root"
        try:
            with self._open_tar_archive(data_archive, members_dir) as tar:
                safe_extract_tar(tar, root, self.logger)
        except tarfile.TarError as exc:
            raise ExtractionError(f"Failed to unpack {data_archive.name}: {exc}") from exc

        return ExtractedPackage(metadata=metadata, root=root)

    def _extract_deb_members(self, deb_path: Path, temp_dir: Path, log_callback: LogCallback = None) -> tuple[Path, Path]:
        """Extract control and data members using ar."""
        if not command_exists("ar"):
            raise ExtractionError("ar (binutils) is required to unpack .deb archives")

        try:
            _, listing = run_command(["ar", "t", str(deb_path)], self.logger, log_callback=log_callback)
        except CommandExecutionError as exc:
            raise ExtractionError(f"Failed to list .deb members: {exc}") from exc

        control_member = next((line.strip() for line in listing if line.startswith("control.tar")), None)
        data_member = next((line.strip() for line in listing if line.startswith("data.tar")), None)

        if not control_member or not data_member:
            raise ExtractionError(".deb is missing control.tar or data.tar archive")

        try:
            run_command(["ar", "x", str(deb_path)], self.logger, cwd=temp_dir, log_callback=log_callback)
        except CommandExecutionError as exc:
            raise ExtractionError(f"Failed to unpack .deb members: {exc}") from exc

        control_archive = temp_dir / control_member
        data_archive = temp_dir / data_member

        if not control_archive.exists() or not data_archive.exists():
            raise ExtractionError("Failed to extract .deb members")

        return control_archive, data_archive

    @contextmanager
    def _open_tar_archive(self, archive_path: Path, temp_dir: Path):
        """Open tar archives including .tar.zst by decompressing to temp when needed."""
        try:
            tar = tarfile.open(archive_path, mode="r:*")
        except tarfile.ReadError:
            tar = None

        if tar is not None:
            try:
                yield tar
            finally:
                tar.close()
            return

        if archive_path.name.endswith(".tar.zst") or archive_path.suffix == ".zst":
            if not command_exists("zstd"):
                raise ExtractionError("zstd is required to process .tar.zst archives")

            decompressed = temp_dir / f"{archive_path.name}.decompressed.tar"
            try:
                run_command(
                    ["zstd", "-d", "-f", "-q", str(archive_path), "-o", str(decompressed)],
                    self.logger,
                )
            except CommandExecutionError as exc:
                raise ExtractionError(f"Failed to decompress {archive_path.name}: {exc}") from exc

            tar = tarfile.open(decompressed, mode="r:")
            try:
                yield tar
            finally:
                tar.close()
                decompressed.unlink(missing_ok=True)
            return

        raise ExtractionError(f"Unsupported tar format: {archive_path.name}")

    def _read_control_file(self, control_archive: Path, temp_dir: Path) -> str:
        """Read the Debian control file from control.tar.* archive."""
        with self._open_tar_archive(control_archive, temp_dir) as tar:
            control_member = None
            for member in tar.getmembers():
                cleaned = self._normalize_archive_member_name(member.name)
                if cleaned == "control" and member.isfile():
                    control_member = member
                    break

            if control_member is None:
                raise ExtractionError("Could not locate control metadata in control.tar")

            extracted = tar.extractfile(control_member)
            if extracted is None:
                raise ExtractionError("Failed to read control metadata file")

            return extracted.read().decode("utf-8", errors="replace")

    def _parse_control_metadata(self, control_text: str, source_path: Path) -> PackageMetadata:
        """Parse key fields from Debian control metadata.

        Only the synopsis line of ``Description`` is kept; the extended
        description does not fit ``meta.description``.
        """
        fields: dict[str, str] = {}
        current_key: Optional[str] = None

        for line in control_text.splitlines():
            if not line.strip():
                continue

            if line[0].isspace() and current_key:
                if current_key != "description":
                    fields[current_key] = f"{fields[current_key]} {line.strip()}".strip()
                continue

            if ":" not in line:
                continue

            key, value = line.split(":", 1)
            normalized_key = key.strip().lower()
            fields[normalized_key] = value.strip()
            current_key = normalized_key

        name = sanitize_package_name(fields.get("package", source_path.stem))
        version = sanitize_version(fields.get("version", ""))
        architecture = normalize_architecture(fields.get("architecture", ""))
        description = fields.get("description", "") or f"Converted Debian package {name}"

        depends_raw = ", ".join(
            value for value in (fields.get("pre-depends", ""), fields.get("depends", "")) if value
        )

        return PackageMetadata(
            name=name,
            version=version,
            architecture=architecture,
            description=description,
            depends=tuple(parse_debian_depends(depends_raw)),
            source_format=FORMAT_DEB,
        )

    # AppImages

    def _extract_appimage(self, appimage_path: Path, workspace: Path, log_callback: LogCallback) -> ExtractedPackage:
        """Unpack an AppImage with its own ``--appimage-extract`` runtime."""
        runner = workspace / "package.AppImage"
        shutil.copy2(appimage_path, runner)
        runner.chmod(0o755)

        returncode, _ = capture_stdout([str(runner), "--appimage-extract"], self.logger, cwd=workspace)
        if returncode != 0:
            raise ExtractionError(f"AppImage extraction failed with exit code {returncode}")

        root = workspace / "squashfs-root"
        if not root.is_dir():
            raise ExtractionError("AppImage extraction produced no squashfs-root directory")
        runner.unlink(missing_ok=True)

        metadata = self._parse_appimage_metadata(appimage_path, root)
        if log_callback:
            log_callback(f"Unpacked AppImage payload for {metadata.name}")
        return ExtractedPackage(metadata=metadata, root=root)

    def _parse_appimage_metadata(self, source_path: Path, root: Optional[Path] = None) -> PackageMetadata:
        """Infer package metadata from an AppImage filename and payload."""
        base_name = source_path.name[: -len(".AppImage")] if has_supported_suffix(source_path.name) else source_path.stem
        tokens = [token for token in re.split(r"[-_]+", base_name) if token]

        version_index = next((idx for idx, token in enumerate(tokens) if token[:1].isdigit()), None)

        if version_index is None:
            package_name = sanitize_package_name(base_name) if tokens else "generated-app"
            version_text = "1.0.0"
        else:
            package_name = sanitize_package_name("-".join(tokens[:version_index]) or "generated-app")
            version_text = tokens[version_index]

        lower_name = base_name.lower()
        if any(marker in lower_name for marker in ("x86_64", "amd64", "x64")):
            architecture = "x86_64-linux"
        elif any(marker in lower_name for marker in ("aarch64", "arm64")):
            architecture = "aarch64-linux"
        else:
            architecture = _elf_architecture(source_path) or "x86_64-linux"

        description = self._desktop_comment(root) if root is not None else None

        return PackageMetadata(
            name=package_name,
            version=version_text,
            architecture=architecture,
            description=description or f"Repackaged AppImage application from {source_path.name}",
            source_format=FORMAT_APPIMAGE,
        )

    def _desktop_comment(self, root: Path) -> Optional[str]:
        """Return the Comment= entry of the AppImage's top-level .desktop file."""
        for desktop_file in sorted(root.glob("*.desktop")):
            try:
                text = desktop_file.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            for line in text.splitlines():
                if line.startswith("Comment="):
                    comment = line.split("=", 1)[1].strip()
                    if comment:
                        return comment
        return None
