#!/usr/bin/env python3
"""Render Nix recipes for converted packages.

Templates use ``@name@`` placeholders, the same convention as nixpkgs'
``substituteAll``. Any placeholder without a value renders empty.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

from .extractor import FORMAT_APPIMAGE, FORMAT_DEB

PLACEHOLDER_RE = re.compile(r"@([a-z_]+)@")

LOCAL_HEADER = "{ pkgs ? import <nixpkgs> {} }:"

# Libraries Electron-style apps dlopen at runtime without declaring them.
RUNTIME_LIBRARIES = ("libglvnd", "mesa", "libdrm", "vulkan-loader", "libxkbcommon")

DEB_BUILD_TOOLS = ("autoPatchelfHook", "dpkg", "makeWrapper")
DEB_UPSTREAM_ARGS = ("lib", "stdenv", "fetchurl") + DEB_BUILD_TOOLS
APPIMAGE_UPSTREAM_ARGS = ("lib", "appimageTools", "fetchurl")

DEB_TEMPLATE = """@header@

@prefix@stdenv.mkDerivation rec {
  pname = "@package_name@";
  version = "@version@";

  src = @prefix@fetchurl {
    url = "@source_url@";
    hash = "@content_hash@";
  };

  nativeBuildInputs = [
@native_inputs@
  ];

  buildInputs = [
@build_inputs@
  ];

  unpackPhase = ''
    runHook preUnpack
    dpkg-deb -x $src .
    runHook postUnpack
  '';

  installPhase = ''
    runHook preInstall

    mkdir -p $out
    if [ -d usr ]; then cp -r usr/. $out/; fi
    if [ -d opt ]; then mkdir -p $out/opt && cp -r opt/. $out/opt/; fi

    for bin in $out/bin/*; do
      if [ -f "$bin" ] && [ -x "$bin" ]; then
        wrapProgram "$bin" \\
          --prefix LD_LIBRARY_PATH : "${@prefix@lib.makeLibraryPath [ @runtime_libraries@ ]}"
      fi
    done

    runHook postInstall
  '';

  meta = {
    description = "@description@";
    platforms = [ "@architecture@" ];
    sourceProvenance = [ @prefix@lib.sourceTypes.binaryNativeCode ];
  };
}
"""

APPIMAGE_TEMPLATE = """@header@

@prefix@appimageTools.wrapType2 rec {
  pname = "@package_name@";
  version = "@version@";

  src = @prefix@fetchurl {
    url = "@source_url@";
    hash = "@content_hash@";
  };

  extraPkgs = pkgs: [
@extra_pkgs@
  ];

  meta = {
    description = "@description@";
    platforms = [ "@architecture@" ];
    sourceProvenance = [ @prefix@lib.sourceTypes.binaryNativeCode ];
  };
}
"""

TEMPLATES = {
    FORMAT_DEB: DEB_TEMPLATE,
    FORMAT_APPIMAGE: APPIMAGE_TEMPLATE,
}


def nix_string(value: str) -> str:
    """Escape text for use inside a double-quoted Nix string."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")


def top_level_attribute(package: str) -> str:
    """``xorg.libX11`` is reached through the ``xorg`` callPackage argument."""
    return package.split(".", 1)[0]


def build_header(package_format: str, packages: Sequence[str], upstream: bool) -> str:
    """Return the function header of the recipe."""
    if not upstream:
        return LOCAL_HEADER

    if package_format == FORMAT_APPIMAGE:
        base_args = list(APPIMAGE_UPSTREAM_ARGS)
        extra: set[str] = set()
    else:
        base_args = list(DEB_UPSTREAM_ARGS)
        extra = {top_level_attribute(pkg) for pkg in packages} | set(RUNTIME_LIBRARIES)

    args = base_args + sorted(extra - set(base_args))
    return "{ " + ", ".join(args) + " }:"


def _package_lines(packages: Sequence[str], prefix: str, indent: str = "    ") -> str:
    return "\n".join(f"{indent}{prefix}{pkg}" for pkg in packages)


class RecipeRenderer:
    """Fill recipe templates from converted package data.

    ``fields`` carries ``header``, ``package_name``, ``version``,
    ``source_url``, ``content_hash``, ``resolved_package_list``,
    ``description`` and ``architecture``.
    """

    def __init__(self, upstream: bool = False) -> None:
        self.upstream = upstream

    @property
    def prefix(self) -> str:
        return "" if self.upstream else "pkgs."

    def render(self, package_format: str, fields: Mapping[str, Any]) -> str:
        template = TEMPLATES.get(package_format, DEB_TEMPLATE)
        packages = list(fields.get("resolved_package_list") or ())

        values: dict[str, str] = {
            "header": str(fields.get("header") or ""),
            "package_name": nix_string(str(fields.get("package_name") or "")),
            "version": nix_string(str(fields.get("version") or "")),
            "source_url": nix_string(str(fields.get("source_url") or "")),
            "content_hash": str(fields.get("content_hash") or ""),
            "description": nix_string(str(fields.get("description") or "")),
            "architecture": str(fields.get("architecture") or ""),
            "prefix": self.prefix,
            "native_inputs": _package_lines(DEB_BUILD_TOOLS, self.prefix),
            "build_inputs": _package_lines(packages, self.prefix),
            "extra_pkgs": _package_lines(packages, "pkgs."),
            "runtime_libraries": " ".join(f"{self.prefix}{pkg}" for pkg in RUNTIME_LIBRARIES),
        }

        return PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), ""), template)
