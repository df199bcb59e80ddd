#!/usr/bin/env python3
"""Library and package-name knowledge base used by the dependency resolver."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

LIBRARIES_FILE_NAME = "libraries.json"
LIBRARIES_ENV_VAR = "PKG2NIX_LIBRARIES"

logger = logging.getLogger("pkg2nix.knowledge")

DEFAULT_SYSTEM_LIBS = frozenset(
    {
        "ld-linux-x86-64.so.2",
        "ld-linux-aarch64.so.1",
        "ld-linux.so.2",
        "libc.so.6",
        "libdl.so.2",
        "libgcc_s.so.1",
        "libm.so.6",
        "libpthread.so.0",
        "libresolv.so.2",
        "librt.so.1",
        "libstdc++.so.6",
        "libutil.so.1",
    }
)

DEFAULT_LIB_TO_PKG = {
    # GTK / GUI
    "libgtk-3.so.0": "gtk3",
    "libgdk-3.so.0": "gtk3",
    "libgtk-x11-2.0.so.0": "gtk2",
    "libglib-2.0.so.0": "glib",
    "libgobject-2.0.so.0": "glib",
    "libgio-2.0.so.0": "glib",
    "libgmodule-2.0.so.0": "glib",
    "libpango-1.0.so.0": "pango",
    "libpangocairo-1.0.so.0": "pango",
    "libpangoft2-1.0.so.0": "pango",
    "libcairo.so.2": "cairo",
    "libcairo-gobject.so.2": "cairo",
    "libgdk_pixbuf-2.0.so.0": "gdk-pixbuf",
    "libatk-1.0.so.0": "at-spi2-atk",
    "libatk-bridge-2.0.so.0": "at-spi2-atk",
    "libatspi.so.0": "at-spi2-core",
    "libnotify.so.4": "libnotify",
    "libsecret-1.so.0": "libsecret",
    # Qt
    "libQt5Core.so.5": "qt5.qtbase",
    "libQt5Gui.so.5": "qt5.qtbase",
    "libQt5Widgets.so.5": "qt5.qtbase",
    "libQt5DBus.so.5": "qt5.qtbase",
    "libQt5Network.so.5": "qt5.qtbase",
    "libQt5X11Extras.so.5": "qt5.qtx11extras",
    "libQt6Core.so.6": "qt6.qtbase",
    "libQt6Gui.so.6": "qt6.qtbase",
    "libQt6Widgets.so.6": "qt6.qtbase",
    "libQt6DBus.so.6": "qt6.qtbase",
    # X11
    "libX11.so.6": "xorg.libX11",
    "libX11-xcb.so.1": "xorg.libX11",
    "libXcomposite.so.1": "xorg.libXcomposite",
    "libXcursor.so.1": "xorg.libXcursor",
    "libXdamage.so.1": "xorg.libXdamage",
    "libXext.so.6": "xorg.libXext",
    "libXfixes.so.3": "xorg.libXfixes",
    "libXi.so.6": "xorg.libXi",
    "libXrandr.so.2": "xorg.libXrandr",
    "libXrender.so.1": "xorg.libXrender",
    "libXScrnSaver.so.1": "xorg.libXScrnSaver",
    "libXss.so.1": "xorg.libXScrnSaver",
    "libXtst.so.6": "xorg.libXtst",
    "libxcb.so.1": "xorg.libxcb",
    "libxcb-dri3.so.0": "xorg.libxcb",
    "libxkbcommon.so.0": "libxkbcommon",
    "libxkbfile.so.1": "xorg.libxkbfile",
    "libxshmfence.so.1": "libxshmfence",
    # OpenGL / graphics
    "libgbm.so.1": "mesa",
    "libdrm.so.2": "libdrm",
    "libGL.so.1": "libglvnd",
    "libEGL.so.1": "libglvnd",
    "libGLESv2.so.2": "libglvnd",
    "libvulkan.so.1": "vulkan-loader",
    # Sound / media
    "libasound.so.2": "alsa-lib",
    "libpulse.so.0": "libpulseaudio",
    # Core / utils
    "libnss3.so": "nss",
    "libnssutil3.so": "nss",
    "libsmime3.so": "nss",
    "libnspr4.so": "nspr",
    "libplc4.so": "nspr",
    "libplds4.so": "nspr",
    "libcups.so.2": "cups",
    "libdbus-1.so.3": "dbus",
    "libexpat.so.1": "expat",
    "libudev.so.1": "systemd",
    "libz.so.1": "zlib",
    "libuuid.so.1": "libuuid",
    "libfontconfig.so.1": "fontconfig",
    "libfreetype.so.6": "freetype",
    "libcurl.so.4": "curl",
    "libcurl-gnutls.so.4": "curl",
    "libssl.so.3": "openssl",
    "libcrypto.so.3": "openssl",
}

DEFAULT_SOURCE_TO_PKG = {
    # Basic system libraries
    "libc6": "glibc",
    "libasound2": "alsa-lib",
    "ca-certificates": "cacert",
    "libglib2.0-0": "glib",
    "libgcc-s1": "gcc.cc.lib",
    "libstdc++6": "gcc.cc.lib",
    "zlib1g": "zlib",
    # Graphics stack and sound
    "libatk-bridge2.0-0": "at-spi2-atk",
    "libatspi2.0-0": "at-spi2-core",
    "libatk1.0-0": "atk",
    "libcairo2": "cairo",
    "libcups2": "cups",
    "libdbus-1-3": "dbus",
    "libexpat1": "expat",
    "libgbm1": "libgbm",
    "libgtk-3-0": "gtk3",
    "libpango-1.0-0": "pango",
    "libudev1": "systemd",
    "libvulkan1": "vulkan-loader",
    "fonts-liberation": "liberation_ttf",
    # X11
    "libx11-6": "xorg.libX11",
    "libx11-xcb1": "xorg.libX11",
    "libxcb1": "xorg.libxcb",
    "libxcomposite1": "xorg.libXcomposite",
    "libxdamage1": "xorg.libXdamage",
    "libxext6": "xorg.libXext",
    "libxfixes3": "xorg.libXfixes",
    "libxkbcommon0": "libxkbcommon",
    "libxrandr2": "xorg.libXrandr",
    "libxss1": "xorg.libXScrnSaver",
    "libxtst6": "xorg.libXtst",
    # Network and security
    "libcurl4": "curl",
    "libcurl3-gnutls": "curl",
    "libnspr4": "nspr",
    "libnss3": "nss",
    "libssl3": "openssl",
    "libssl1.1": "openssl_1_1",
    # Qt
    "libqt5core5a": "qt5.qtbase",
    "libqt5gui5": "qt5.qtbase",
    "libqt5widgets5": "qt5.qtbase",
    "libqt5dbus5": "qt5.qtbase",
    "libqt5network5": "qt5.qtbase",
    "libqt5qml5": "qt5.qtdeclarative",
    "libqt5quick5": "qt5.qtdeclarative",
    "libqt5webchannel5": "qt5.qtwebchannel",
    "libqt5websockets5": "qt5.qtwebsockets",
    "libqt5x11extras5": "qt5.qtx11extras",
    "libqt6core6": "qt6.qtbase",
    "libqt6gui6": "qt6.qtbase",
    "libqt6widgets6": "qt6.qtbase",
    "libqt6dbus6": "qt6.qtbase",
    # Utilities
    "xdg-utils": "xdg-utils",
    "wget": "wget",
    "jq": "jq",
    "squashfs-tools": "squashfsTools",
    "binutils": "binutils",
    # Desktop
    "libnotify4": "libnotify",
    "libsecret-1-0": "libsecret",
    "libuuid1": "libuuid",
    "libdrm2": "libdrm",
    "libgconf-2-4": "gconf",
}

# Accepted spellings for each table in an external knowledge base file.
_TABLE_KEYS = {
    "system_libs": ("system_libs",),
    "lib_to_pkg": ("lib_to_pkg_map", "lib_to_pkg"),
    "source_to_pkg": ("deb_to_pkg_map", "source_to_pkg"),
}


class KnowledgeBaseFormatError(ValueError):
    """Raised when a knowledge base file does not have the expected shape."""


def _frozen_mapping(data: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class KnowledgeBase:
    """Immutable lookup tables for library and package-name resolution."""

    system_libs: frozenset[str] = frozenset()
    lib_to_pkg: Mapping[str, str] = field(default_factory=lambda: _frozen_mapping({}))
    source_to_pkg: Mapping[str, str] = field(default_factory=lambda: _frozen_mapping({}))
    origin: str = "<empty>"

    @classmethod
    def build(
        cls,
        system_libs=(),
        lib_to_pkg: Optional[Mapping[str, str]] = None,
        source_to_pkg: Optional[Mapping[str, str]] = None,
        origin: str = "<memory>",
    ) -> "KnowledgeBase":
        """Build a knowledge base from plain Python collections."""
        return cls(
            system_libs=frozenset(system_libs),
            lib_to_pkg=_frozen_mapping(lib_to_pkg or {}),
            source_to_pkg=_frozen_mapping(source_to_pkg or {}),
            origin=origin,
        )

    def is_system_lib(self, name: str) -> bool:
        return name in self.system_libs

    def pkg_for_lib(self, name: str) -> Optional[str]:
        return self.lib_to_pkg.get(name)

    def pkg_for_source(self, name: str) -> Optional[str]:
        return self.source_to_pkg.get(name)


def default_knowledge_base() -> KnowledgeBase:
    """Return the compiled-in knowledge base."""
    return KnowledgeBase.build(
        DEFAULT_SYSTEM_LIBS,
        DEFAULT_LIB_TO_PKG,
        DEFAULT_SOURCE_TO_PKG,
        origin="<built-in>",
    )


def candidate_paths(explicit: Optional[Path] = None) -> list[Path]:
    """Return knowledge base file locations in lookup order."""
    if explicit is not None:
        return [explicit.expanduser()]

    paths: list[Path] = []
    env_path = os.environ.get(LIBRARIES_ENV_VAR)
    if env_path:
        paths.append(Path(env_path).expanduser())
    paths.append(Path.cwd() / LIBRARIES_FILE_NAME)

    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    paths.append(Path(config_home) / "pkg2nix" / LIBRARIES_FILE_NAME)
    return paths


def _pick_table(data: Mapping[str, Any], table: str) -> Optional[Any]:
    for key in _TABLE_KEYS[table]:
        if key in data:
            return data[key]
    return None


def _as_string_mapping(value: Any, table: str) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise KnowledgeBaseFormatError(f"'{table}' must be a mapping")
    result: dict[str, str] = {}
    for key, target in value.items():
        if not isinstance(key, str) or not isinstance(target, str):
            raise KnowledgeBaseFormatError(f"'{table}' entries must map strings to strings")
        if not key or not target:
            raise KnowledgeBaseFormatError(f"'{table}' has an empty name in entry {key!r}: {target!r}")
        result[key] = target
    return result


def parse_knowledge_base(data: Any, origin: str) -> KnowledgeBase:
    """Build a knowledge base from parsed file content.

    The file replaces the built-in knowledge base as a whole: a table it
    does not define is empty, never filled from the built-in tables.
    """
    if not isinstance(data, Mapping):
        raise KnowledgeBaseFormatError("top level must be a mapping")

    system_libs: Any = _pick_table(data, "system_libs")
    if system_libs is None:
        system_libs = ()
    elif not isinstance(system_libs, list) or not all(isinstance(item, str) for item in system_libs):
        raise KnowledgeBaseFormatError("'system_libs' must be a list of strings")

    lib_to_pkg = _pick_table(data, "lib_to_pkg")
    source_to_pkg = _pick_table(data, "source_to_pkg")

    return KnowledgeBase.build(
        system_libs,
        {} if lib_to_pkg is None else _as_string_mapping(lib_to_pkg, "lib_to_pkg"),
        {} if source_to_pkg is None else _as_string_mapping(source_to_pkg, "source_to_pkg"),
        origin=origin,
    )


def load_knowledge_base(path: Optional[Path] = None) -> KnowledgeBase:
    """Load the knowledge base, falling back to built-in tables on any failure."""
    for candidate in candidate_paths(path):
        if not candidate.is_file():
            continue
        try:
            with candidate.open(encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
            knowledge = parse_knowledge_base(data, origin=str(candidate))
        except (OSError, yaml.YAMLError, KnowledgeBaseFormatError) as exc:
            logger.warning("Failed to load libraries config %s: %s. Using defaults.", candidate, exc)
            return default_knowledge_base()

        logger.info(
            "Loaded knowledge base from %s (%d system libs, %d library mappings)",
            candidate,
            len(knowledge.system_libs),
            len(knowledge.lib_to_pkg),
        )
        return knowledge

    if path is not None:
        logger.warning("Libraries config not found: %s. Using defaults.", path)
    else:
        logger.debug("No libraries config found, using built-in knowledge base")
    return default_knowledge_base()


_cached: Optional[KnowledgeBase] = None


def get_knowledge_base(path: Optional[Path] = None) -> KnowledgeBase:
    """Return the process-wide knowledge base, loading it on first use."""
    global _cached
    if _cached is None:
        _cached = load_knowledge_base(path)
    return _cached


def reset_knowledge_base() -> None:
    """Forget the cached knowledge base."""
    global _cached
    _cached = None
