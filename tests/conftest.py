"""Shared fixtures for pkg2nix tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from pkg2nix.knowledge import KnowledgeBase, reset_knowledge_base


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Fresh knowledge base cache, no config files and a scratch working directory."""
    monkeypatch.delenv("PKG2NIX_LIBRARIES", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)
    reset_knowledge_base()
    yield
    reset_knowledge_base()
    logging.getLogger("pkg2nix").handlers.clear()


@pytest.fixture
def empty_kb() -> KnowledgeBase:
    return KnowledgeBase.build()


@pytest.fixture
def sample_kb() -> KnowledgeBase:
    return KnowledgeBase.build(
        system_libs={"libc.so.6", "libm.so.6"},
        lib_to_pkg={
            "libfoo.so.2": "foo-pkg",
            "libX11.so.6": "xorg.libX11",
            "libQt5Core.so.5": "qt5.qtbase",
            "libQt6Core.so.6": "qt6.qtbase",
        },
        source_to_pkg={
            "libgtk-3-0": "gtk3",
            "zlib1g": "zlib",
            "ssl": "openssl",
        },
    )
