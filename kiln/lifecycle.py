# kiln/lifecycle.py
"""
lifecycle.py - per-package lifecycle states

A Run records the last stage a package reached during one build, install or
uninstall. When a KilnError escapes the run, the error is tagged with that
stage (and the package name) before it propagates; nothing is rolled back.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from kiln.errors import KilnError
from kiln.logging import get_logger

logger = get_logger("lifecycle")


class Stage(str, Enum):
    LOADED = "loaded"
    # build
    SOURCED = "sourced"
    BUILT = "built"
    ARCHIVED = "archived"
    STORED = "stored"
    # install
    PRE_INSTALL = "pre_install"
    EXTRACTED = "extracted"
    LEDGERED = "ledgered"
    POST_INSTALLED = "post_installed"
    # uninstall
    PRE_UNINSTALL = "pre_uninstall"
    FILES_REMOVED = "files_removed"
    DIRS_REMOVED = "dirs_removed"
    LEDGER_CLEARED = "ledger_cleared"
    POST_UNINSTALLED = "post_uninstalled"


class Run:
    """Context manager tracking one package through one orchestration."""

    def __init__(self, action: str, package: str):
        self.action = action
        self.package = package
        self.stage: Optional[Stage] = None

    def advance(self, stage: Stage) -> None:
        logger.debug("%s %s: %s", self.action, self.package, stage.value)
        self.stage = stage

    def __enter__(self) -> "Run":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if isinstance(exc, KilnError):
            if exc.package is None:
                exc.package = self.package
            if exc.stage is None:
                exc.stage = self.stage
            logger.debug("%s %s aborted after %s", self.action, self.package,
                         self.stage.value if self.stage else "start")
        return False
