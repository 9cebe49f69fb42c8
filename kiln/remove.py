# kiln/remove.py
"""
remove.py - ledger-driven package removal

Features:
- No ledger -> warning, nothing removed (not an error)
- pre_uninstall / post_uninstall callbacks from the stored descriptor copy
- Plain files removed like `rm -f`; missing ones are ignored
- Directories removed deepest-first (reverse lexicographic order), only when
  they still exist, are real directories (never symlinks) and are empty;
  a directory still holding other files is left in place
"""

from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import List, Optional

from kiln.cache import BuildCache
from kiln.config import EngineConfig
from kiln.errors import ValidationError
from kiln.ledger import Ledger
from kiln.lifecycle import Run, Stage
from kiln.logging import get_logger
from kiln.meta import Descriptor, MetaLoader, strip_pkg_suffix
from kiln.sandbox import CallbackRunner

logger = get_logger("remove")


def _remove_file(path: str) -> bool:
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        logger.warning("not removing %s: it is a directory", path)
        return False
    try:
        p.unlink()
    except FileNotFoundError:
        return False
    return True


def _remove_dir(path: str) -> bool:
    p = Path(path.rstrip("/") or "/")
    if p.is_symlink() or not p.is_dir():
        return False
    try:
        p.rmdir()
    except OSError as e:
        if e.errno not in (errno.ENOTEMPTY, errno.EEXIST, errno.EBUSY):
            raise
        logger.debug("keeping %s: %s", p, os.strerror(e.errno))
        return False
    return True


class Remover:
    def __init__(self, config: EngineConfig, cache: BuildCache, ledger: Ledger,
                 runner: CallbackRunner, loader: MetaLoader):
        self.config = config
        self.cache = cache
        self.ledger = ledger
        self.runner = runner
        self.loader = loader

    def _descriptor(self, name: str) -> Optional[Descriptor]:
        path = self.cache.descriptor_path(name)
        try:
            return self.loader.load(path)
        except ValidationError as e:
            logger.warning("%s: %s, uninstall callbacks skipped", name, e)
            return None

    def uninstall(self, name: str) -> bool:
        """Remove everything the ledger of `name` lists. False when it was not installed."""
        name = strip_pkg_suffix(name)
        if not self.ledger.is_installed(name):
            logger.warning("%s is not installed", name)
            return False

        root = self.config.root
        with Run("uninstall", name) as run:
            desc = self._descriptor(name)
            run.advance(Stage.LOADED)
            logger.info("Uninstalling %s...", name)
            if desc:
                self.runner.run(desc, "pre_uninstall", root)
            run.advance(Stage.PRE_UNINSTALL)

            removed: List[str] = [f for f in self.ledger.files(name) if _remove_file(f)]
            run.advance(Stage.FILES_REMOVED)

            for d in sorted(self.ledger.dirs(name), reverse=True):
                if _remove_dir(d):
                    removed.append(d)
            run.advance(Stage.DIRS_REMOVED)

            self.ledger.remove(name)
            run.advance(Stage.LEDGER_CLEARED)

            if desc:
                self.runner.run(desc, "post_uninstall", root)
            run.advance(Stage.POST_UNINSTALLED)
        logger.info("Uninstalled %s!", name)
        logger.debug("%s: %d paths removed", name, len(removed))
        return True
