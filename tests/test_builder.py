"""nix-build wrapper and nixpkgs placement."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pkg2nix import builder
from pkg2nix.builder import NixBuilder, by_name_path
from pkg2nix.utils import BuildError, ToolMissingError

from .helpers import install_fake_tools


@pytest.fixture
def recipe(tmp_path: Path) -> Path:
    path = tmp_path / "default.nix"
    path.write_text("{ pkgs ? import <nixpkgs> {} }: pkgs.hello\n", encoding="utf-8")
    return path


@pytest.fixture
def fake_build(monkeypatch: pytest.MonkeyPatch):
    """Replace nix-build with canned output; returns the recorded commands."""
    calls: list[list[str]] = []
    outcome = {"returncode": 0, "lines": []}

    def fake_run_command(cmd, logger, cwd=None, log_callback=None, check=True):
        calls.append(cmd)
        return outcome["returncode"], list(outcome["lines"])

    monkeypatch.setattr(builder, "ensure_tools", lambda tools, logger=None: None)
    monkeypatch.setattr(builder, "run_command", fake_run_command)
    return calls, outcome


class TestBuild:
    def test_local_recipe(self, recipe: Path, fake_build) -> None:
        calls, _ = fake_build
        result = NixBuilder().build(recipe)

        assert result.success
        assert calls == [["nix-build", "--no-out-link", str(recipe.resolve())]]

    def test_upstream_recipe_uses_callpackage(self, recipe: Path, fake_build) -> None:
        calls, _ = fake_build
        NixBuilder().build(recipe, upstream=True)

        command = calls[0]
        assert command[:3] == ["nix-build", "--no-out-link", "-E"]
        assert f"callPackage {recipe.resolve()} {{}}" in command[3]

    @pytest.mark.parametrize(
        ("line", "fragment"),
        [
            ("error: hash mismatch in fixed-output derivation", "hash mismatch"),
            ("auto-patchelf could not satisfy dependency libfoo.so.1", "autoPatchelfHook"),
            ("error: undefined variable 'libfoo'", "does not exist in nixpkgs"),
            ("error: attribute 'libX12' missing", "does not exist in nixpkgs"),
            ("error: cannot download demo.deb from any mirror", "could not be downloaded"),
            ("something else entirely", "review logs"),
        ],
    )
    def test_failure_classification(self, recipe: Path, fake_build, line: str, fragment: str) -> None:
        _, outcome = fake_build
        outcome.update(returncode=1, lines=[line])

        result = NixBuilder().build(recipe)

        assert not result.success
        assert result.returncode == 1
        assert fragment in result.message

    def test_missing_recipe(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError):
            NixBuilder().build(tmp_path / "absent.nix")


class TestPlaceInNixpkgs:
    def test_by_name_layout(self, tmp_path: Path) -> None:
        assert by_name_path(tmp_path, "Demo-App") == tmp_path / "pkgs" / "by-name" / "de" / "Demo-App" / "package.nix"

    def test_writes_package_file(self, tmp_path: Path) -> None:
        checkout = tmp_path / "nixpkgs"
        (checkout / "pkgs").mkdir(parents=True)

        target = NixBuilder().place_in_nixpkgs(checkout, "demo-app", "{ lib }: null\n")

        assert target == checkout.resolve() / "pkgs" / "by-name" / "de" / "demo-app" / "package.nix"
        assert target.read_text(encoding="utf-8") == "{ lib }: null\n"

    def test_rejects_non_checkout(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError, match="Not a nixpkgs checkout"):
            NixBuilder().place_in_nixpkgs(tmp_path, "demo-app", "")


@pytest.fixture
def checkout(tmp_path: Path) -> Path:
    path = tmp_path / "nixpkgs"
    (path / "pkgs").mkdir(parents=True)
    return path


@pytest.fixture
def git_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put stand-in git and gh executables first on PATH; returns their call log."""
    bin_dir = tmp_path / "bin"
    log_file = tmp_path / "git.log"
    install_fake_tools(bin_dir, log_file, ["git", "gh"])
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return log_file


class TestOpenPullRequest:
    def test_commits_on_init_branch_and_opens_pr(self, checkout: Path, git_log: Path) -> None:
        nix_builder = NixBuilder()
        nix_builder.place_in_nixpkgs(checkout, "demo-app", "{ lib }: null\n")

        message = nix_builder.open_pull_request(checkout, "demo-app", "2.4.0-1")

        assert message == "init: demo-app 2.4.0-1"
        assert git_log.read_text(encoding="utf-8").splitlines() == [
            "git checkout master",
            "git pull",
            "git checkout -b init-demo-app",
            "git add pkgs/by-name/de/demo-app",
            "git commit -m init: demo-app 2.4.0-1",
            "gh pr create --fill --title init: demo-app 2.4.0-1",
        ]

    def test_failing_command_raises_build_error(self, tmp_path: Path, checkout: Path, git_log: Path) -> None:
        install_fake_tools(tmp_path / "bin", git_log, ["gh"], failing={"gh"})
        nix_builder = NixBuilder()
        nix_builder.place_in_nixpkgs(checkout, "demo-app", "{ lib }: null\n")

        with pytest.raises(BuildError, match="Pull request for demo-app failed"):
            nix_builder.open_pull_request(checkout, "demo-app", "2.4.0-1")
        assert git_log.read_text(encoding="utf-8").splitlines()[-1].startswith("gh pr create")

    def test_requires_placed_recipe(self, checkout: Path, git_log: Path) -> None:
        with pytest.raises(BuildError, match="Recipe not placed"):
            NixBuilder().open_pull_request(checkout, "demo-app", "2.4.0-1")
        assert not git_log.exists()

    def test_missing_gh_is_reported(self, checkout: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PATH", str(checkout))
        nix_builder = NixBuilder()
        nix_builder.place_in_nixpkgs(checkout, "demo-app", "{ lib }: null\n")

        with pytest.raises(ToolMissingError, match="gh"):
            nix_builder.open_pull_request(checkout, "demo-app", "2.4.0-1")
