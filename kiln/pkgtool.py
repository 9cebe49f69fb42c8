# kiln/pkgtool.py
"""
pkgtool.py - install built packages into the target root

Features:
- Refuses packages whose current archive is missing or corrupt (corrupt ones are removed)
- Replace semantics: an installed package is fully uninstalled before reinstalling
- pre_install / post_install callbacks run with the target root as working directory;
  they are skipped with a warning when no descriptor copy exists for the current version
- The ledger is captured from the archive member list rebased onto the root,
  not from walking the filesystem after extraction
"""

from __future__ import annotations

from typing import List, Optional

from kiln.cache import BuildCache
from kiln.config import EngineConfig
from kiln.errors import IntegrityError, StateError, ValidationError
from kiln.ledger import Ledger
from kiln.lifecycle import Run, Stage
from kiln.logging import get_logger
from kiln.meta import Descriptor, MetaLoader, strip_pkg_suffix
from kiln.remove import Remover
from kiln.sandbox import CallbackRunner

logger = get_logger("pkgtool")


class PkgTool:
    def __init__(self, config: EngineConfig, cache: BuildCache, ledger: Ledger,
                 runner: CallbackRunner, loader: MetaLoader, remover: Remover):
        self.config = config
        self.cache = cache
        self.ledger = ledger
        self.runner = runner
        self.loader = loader
        self.remover = remover

    @property
    def root_prefix(self) -> str:
        return str(self.config.root).rstrip("/") + "/"

    def _descriptor(self, name: str) -> Optional[Descriptor]:
        try:
            return self.loader.load(self.cache.descriptor_path(name))
        except ValidationError as e:
            logger.warning("%s: %s, install callbacks skipped", name, e)
            return None

    def install(self, name: str) -> List[str]:
        """Install the current version of `name`; returns the new ledger entries."""
        name = strip_pkg_suffix(name)
        if not self.cache.is_built(name):
            raise StateError(f"{name} has not been built!", package=name)
        if self.ledger.is_installed(name):
            self.remover.uninstall(name)

        desc = self._descriptor(name)
        version = self.cache.current_version(name)
        root = self.config.root
        archive = self.cache.archive_path(name)
        with Run("install", name) as run:
            run.advance(Stage.LOADED)
            logger.info("Installing %s %s...", name, version)
            if desc:
                self.runner.run(desc, "pre_install", root)
            run.advance(Stage.PRE_INSTALL)

            if not self.cache.checksummer.check_sidecar(self.cache.sidecar_path(name)):
                self.cache.discard_corrupt(name)
                raise IntegrityError(f"{archive}: archive does not match its checksum", package=name)
            self.cache.codec.unpack(archive, root)
            run.advance(Stage.EXTRACTED)

            entries = self.cache.codec.list_members(archive, prefix=self.root_prefix)
            self.ledger.write(name, entries)
            run.advance(Stage.LEDGERED)

            if desc:
                self.runner.run(desc, "post_install", root)
            run.advance(Stage.POST_INSTALLED)
        logger.info("Installed %s!", name)
        return entries
