#!/usr/bin/env python3
"""Obtain the input package locally and compute the hash used by fetchurl."""

from __future__ import annotations

import base64
import hashlib
import logging
import shutil
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .utils import FetchError, LogCallback, ValidationError

USER_AGENT = "Mozilla/5.0"
REMOTE_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class FetchedSource:
    """A package file available on disk together with its recipe source data."""

    path: Path
    url: str
    sri_hash: str


def is_remote(source: str) -> bool:
    return urllib.parse.urlparse(source).scheme in REMOTE_SCHEMES


def source_filename(source: str) -> str:
    """Return the file name portion of a URL or path."""
    if is_remote(source):
        path = urllib.parse.urlparse(source).path
        return urllib.parse.unquote(path.rstrip("/").rsplit("/", 1)[-1])
    return Path(source).name


def sri_sha256(path: Path) -> str:
    """Hash a file in the ``sha256-<base64>`` form accepted by fetchurl."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(65536), b""):
                digest.update(chunk)
    except OSError as exc:
        raise FetchError(f"Failed to hash {path}: {exc}") from exc
    return "sha256-" + base64.b64encode(digest.digest()).decode("ascii")


class SourceFetcher:
    """Download remote packages into a workspace; accept local paths as-is."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("pkg2nix.fetcher")

    def fetch(self, source: str, workspace: Path, log_callback: LogCallback = None) -> FetchedSource:
        if is_remote(source):
            path = self._download(source, workspace, log_callback)
            url = source
        else:
            path = Path(source).expanduser().resolve()
            if not path.is_file():
                raise ValidationError(f"File does not exist: {source}")
            url = path.as_uri()

        sri_hash = sri_sha256(path)
        self.logger.info("Hashed %s: %s", path.name, sri_hash)
        return FetchedSource(path=path, url=url, sri_hash=sri_hash)

    def _download(self, url: str, workspace: Path, log_callback: LogCallback = None) -> Path:
        filename = source_filename(url) or "downloaded-package"
        dest = workspace / filename

        self.logger.info("Downloading %s", url)
        if log_callback:
            log_callback(f"Downloading {url}")

        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(request) as response, dest.open("wb") as output:  # nosec B310
                shutil.copyfileobj(response, output)
        except (urllib.error.HTTPError, urllib.error.URLError, OSError) as exc:
            dest.unlink(missing_ok=True)
            raise FetchError(f"Download failed: {url} - {exc}") from exc

        self.logger.info("Saved %s (%d bytes)", dest, dest.stat().st_size)
        return dest
