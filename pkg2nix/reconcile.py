#!/usr/bin/env python3
"""Drop mutually exclusive toolkit generations from a resolved package set."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

# (newer prefix, older prefix): when both are present the older family goes.
CONFLICT_RULES: tuple[tuple[str, str], ...] = (
    ("qt6.", "qt5."),
    ("kdePackages.", "libsForQt5."),
)

logger = logging.getLogger("pkg2nix.reconcile")


def reconcile(
    resolved: Iterable[str],
    rules: Sequence[tuple[str, str]] = CONFLICT_RULES,
    log: Optional[logging.Logger] = None,
) -> list[str]:
    """Return ``resolved`` sorted, without the older member of any conflict."""
    log = log or logger
    packages = set(resolved)

    for newer, older in rules:
        has_newer = any(pkg.startswith(newer) for pkg in packages)
        dropped = {pkg for pkg in packages if pkg.startswith(older)}
        if has_newer and dropped:
            log.warning(
                "Detected both %s* and %s* dependencies. Removing %s to avoid conflicts.",
                newer,
                older,
                ", ".join(sorted(dropped)),
            )
            packages -= dropped

    return sorted(packages)
