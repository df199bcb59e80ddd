"""Fakes and archive builders shared by the test modules."""

from __future__ import annotations

import io
import os
import tarfile
from pathlib import Path


class FakeInspector:
    """Returns canned DT_NEEDED lists keyed by file name."""

    def __init__(self, needed: dict[str, list[str]] | None = None, failing: set[str] | None = None) -> None:
        self.needed = needed or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    def print_needed(self, path: Path) -> list[str]:
        self.calls.append(path.name)
        if path.name in self.failing:
            raise OSError("unreadable")
        return list(self.needed.get(path.name, []))


class FakeIndex:
    """Returns canned nix-locate lines keyed by file name."""

    def __init__(self, results: dict[str, list[str]] | None = None) -> None:
        self.results = results or {}
        self.queries: list[str] = []

    def locate(self, filename: str) -> list[str]:
        self.queries.append(filename)
        return list(self.results.get(filename, []))


def install_fake_tools(bin_dir: Path, log_file: Path, names: list[str], failing: set[str] | None = None) -> None:
    """Write shell stand-ins that append their argv to ``log_file``.

    Tools listed in ``failing`` exit with status 1 after logging.
    """
    bin_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        status = 1 if failing and name in failing else 0
        script = bin_dir / name
        script.write_text(
            f"#!/bin/sh\necho \"{name} $*\" >> \"{log_file}\"\nexit {status}\n",
            encoding="utf-8",
        )
        os.chmod(script, 0o755)


def _tar_bytes(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def _ar_member(name: str, content: bytes) -> bytes:
    header = (
        f"{name:<16}"
        f"{0:<12}"
        f"{0:<6}"
        f"{0:<6}"
        f"{'100644':<8}"
        f"{len(content):<10}"
        "`\n"
    ).encode("ascii")
    padding = b"\n" if len(content) % 2 else b""
    return header + content + padding


def build_deb(path: Path, control: str, payload: dict[str, bytes]) -> Path:
    """Write a minimal but valid .deb archive."""
    data = b"!<arch>\n"
    data += _ar_member("debian-binary", b"2.0\n")
    data += _ar_member("control.tar.gz", _tar_bytes({"./control": control.encode("utf-8")}))
    data += _ar_member("data.tar.gz", _tar_bytes(payload))
    path.write_bytes(data)
    return path


SAMPLE_CONTROL = """Package: Demo-App
Version: 1:2.4.0-1
Architecture: amd64
Maintainer: Someone <someone@example.invalid>
Depends: libc6 (>= 2.34), libgtk-3-0 | libgtk-3-1, libunknownthing7
Description: Demo application for tests
 A longer description that spans
 more than one line.
"""
