"""nix-locate output handling."""

from __future__ import annotations

import logging

import pytest

from pkg2nix import index as index_module
from pkg2nix.index import NixLocateIndex, NullIndex, pick_candidate


class TestPickCandidate:
    @pytest.mark.parametrize(
        ("lines", "expected"),
        [
            (["zlib.out"], "zlib"),
            (["nixpkgs.libpng.out"], "libpng"),
            (["legacyPackages.x86_64-linux.xorg.libX11.out"], "xorg.libX11"),
            (["openssl_3.lib"], "openssl_3"),
            (["(steam.out)", "libdrm.out"], "libdrm"),
            (["", "  ", "mesa"], "mesa"),
            (["gtk3.dev  /nix/store/...-gtk3-dev/lib/libgtk-3.so"], "gtk3"),
            (["out"], "out"),
            ([], None),
            (["(only.annotated)"], None),
        ],
    )
    def test_pick(self, lines: list[str], expected: str) -> None:
        assert pick_candidate(lines) == expected


class TestNixLocateIndex:
    def test_unavailable_binary_warns_once(self, caplog: pytest.LogCaptureFixture) -> None:
        index = NixLocateIndex(binary="definitely-not-a-real-nix-locate")
        with caplog.at_level(logging.WARNING, logger="pkg2nix.index"):
            assert index.locate("libfoo.so.1") == []
            assert index.locate("libbar.so.2") == []

        warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "definitely-not-a-real-nix-locate" in warnings[0].getMessage()

    def test_empty_filename(self) -> None:
        index = NixLocateIndex(binary="definitely-not-a-real-nix-locate")
        assert index.locate("") == []
        assert index._available is None

    def test_matches_soname_as_whole_basename(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[list[str]] = []

        def fake_capture(cmd, logger, cwd=None):
            calls.append(cmd)
            return 0, ["zlib.out", "  "]

        monkeypatch.setattr(index_module, "command_exists", lambda binary: True)
        monkeypatch.setattr(index_module, "capture_stdout", fake_capture)

        assert NixLocateIndex().locate("libz.so.1") == ["zlib.out"]
        assert calls == [["nix-locate", "--top-level", "--minimal", "--whole-name", "libz.so.1"]]


def test_null_index_finds_nothing() -> None:
    assert NullIndex().locate("libc.so.6") == []
