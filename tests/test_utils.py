"""Helpers shared across the pipeline."""

from __future__ import annotations

import io
import logging
import tarfile
from pathlib import Path

import pytest

from pkg2nix.utils import (
    CommandExecutionError,
    ExtractionError,
    capture_stdout,
    format_dependency_list,
    parse_debian_depends,
    run_command,
    safe_extract_tar,
    sanitize_package_name,
    sanitize_version,
    temporary_workspace,
)

logger = logging.getLogger("pkg2nix.tests")


class TestSanitizers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Demo App", "demo-app"),
            ("my_tool+", "my_tool+"),
            ("Foo Bar_2", "foo-bar_2"),
            ("--", "generated-package"),
            ("", "generated-package"),
        ],
    )
    def test_package_name(self, raw: str, expected: str) -> None:
        assert sanitize_package_name(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("1:2.4.0-1ubuntu1", "2.4.0-1ubuntu1"), ("3.0", "3.0"), ("", "1.0.0"), (" 1.2 ", "1.2")],
    )
    def test_version(self, raw: str, expected: str) -> None:
        assert sanitize_version(raw) == expected


class TestDebianDepends:
    def test_groups_and_alternatives(self) -> None:
        field = "libc6 (>= 2.34), libgtk-3-0 | libgtk-3-1 (>= 3.0), python3:any, libfoo [amd64]"
        assert parse_debian_depends(field) == [
            ("libc6",),
            ("libgtk-3-0", "libgtk-3-1"),
            ("python3",),
            ("libfoo",),
        ]

    def test_empty(self) -> None:
        assert parse_debian_depends("") == []
        assert parse_debian_depends(" , ,") == []


def _tar_with(members: list[tarfile.TarInfo], contents: dict[str, bytes]) -> tarfile.TarFile:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for member in members:
            data = contents.get(member.name)
            if data is not None:
                member.size = len(data)
                tar.addfile(member, io.BytesIO(data))
            else:
                tar.addfile(member)
    buffer.seek(0)
    return tarfile.open(fileobj=buffer, mode="r")


def _symlink(name: str, target: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    return info


class TestSafeExtract:
    def test_regular_files_and_internal_symlinks(self, tmp_path: Path) -> None:
        lib = tarfile.TarInfo("usr/lib/libfoo.so.1.2")
        lib.mode = 0o644
        tar = _tar_with(
            [lib, _symlink("usr/lib/libfoo.so.1", "libfoo.so.1.2"), _symlink("usr/lib/abs.so", "/usr/lib/libfoo.so.1.2")],
            {"usr/lib/libfoo.so.1.2": b"ELF"},
        )
        dest = tmp_path / "out"
        safe_extract_tar(tar, dest, logger)

        assert (dest / "usr/lib/libfoo.so.1.2").read_bytes() == b"ELF"
        assert (dest / "usr/lib/libfoo.so.1").is_symlink()
        assert (dest / "usr/lib/libfoo.so.1").read_bytes() == b"ELF"
        assert (dest / "usr/lib/abs.so").resolve() == (dest / "usr/lib/libfoo.so.1.2").resolve()

    def test_escaping_symlink_skipped(self, tmp_path: Path) -> None:
        tar = _tar_with([_symlink("evil", "../../etc/passwd")], {})
        dest = tmp_path / "out"
        safe_extract_tar(tar, dest, logger)
        assert not (dest / "evil").is_symlink()

    def test_path_traversal_rejected(self, tmp_path: Path) -> None:
        tar = _tar_with([tarfile.TarInfo("../escape")], {"../escape": b"x"})
        with pytest.raises(ExtractionError, match="Unsafe archive path"):
            safe_extract_tar(tar, tmp_path / "out", logger)
        assert not (tmp_path / "escape").exists()

    def test_hardlinks_skipped(self, tmp_path: Path) -> None:
        link = tarfile.TarInfo("hard")
        link.type = tarfile.LNKTYPE
        link.linkname = "target"
        tar = _tar_with([link], {})
        dest = tmp_path / "out"
        safe_extract_tar(tar, dest, logger)
        assert not (dest / "hard").exists()


class TestWorkspace:
    def test_removed_after_success(self) -> None:
        with temporary_workspace("pkg2nix-test-") as workspace:
            (workspace / "file").write_text("x")
        assert not workspace.exists()

    def test_removed_after_error(self) -> None:
        with pytest.raises(ValueError):
            with temporary_workspace("pkg2nix-test-") as workspace:
                raise ValueError("boom")
        assert not workspace.exists()


class TestCommands:
    def test_capture_stdout(self) -> None:
        returncode, lines = capture_stdout(["sh", "-c", "echo one; echo two >&2; echo three"], logger)
        assert returncode == 0
        assert lines == ["one", "three"]

    def test_capture_missing_binary(self) -> None:
        assert capture_stdout(["definitely-not-a-real-binary"], logger) == (127, [])

    def test_run_command_collects_output(self) -> None:
        seen: list[str] = []
        returncode, lines = run_command(["sh", "-c", "echo hello"], logger, log_callback=seen.append)
        assert returncode == 0
        assert lines == ["hello"]
        assert seen == ["hello"]

    def test_run_command_failure(self) -> None:
        with pytest.raises(CommandExecutionError, match="exit code 4"):
            run_command(["sh", "-c", "exit 4"], logger)

    def test_run_command_unchecked(self) -> None:
        returncode, _ = run_command(["sh", "-c", "exit 4"], logger, check=False)
        assert returncode == 4

    def test_run_command_missing_binary(self) -> None:
        with pytest.raises(CommandExecutionError):
            run_command(["definitely-not-a-real-binary"], logger)


def test_format_dependency_list() -> None:
    assert format_dependency_list(["zlib", "gtk3", "zlib"]) == "gtk3, zlib"
    assert format_dependency_list([]) == "none"
