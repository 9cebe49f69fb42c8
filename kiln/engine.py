# kiln/engine.py
"""
engine.py - lifecycle engine facade

Wires the cache, ledger, fetcher, callback runner and the build/install/remove
orchestrations around one EngineConfig. Every collaborator can be injected, so
tests run against their own root with fake transports.

Multi-package calls process packages strictly in order and stop at the first
error (the error propagates; later packages are not touched).
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Union

from kiln.archive import TarCodec
from kiln.buildsystem import BuildSystem
from kiln.cache import BuildCache
from kiln.checksum import Checksummer
from kiln.config import EngineConfig
from kiln.fetcher import Fetcher, GitClient, HttpDownloader
from kiln.ledger import Ledger
from kiln.logging import get_logger
from kiln.meta import Descriptor, MetaLoader, strip_pkg_suffix
from kiln.pkgtool import PkgTool
from kiln.remove import Remover
from kiln.sandbox import CallbackRunner

logger = get_logger("engine")


class LifecycleEngine:
    def __init__(self, config: EngineConfig, *, fetcher: Optional[Fetcher] = None,
                 codec: Optional[TarCodec] = None, checksummer: Optional[Checksummer] = None,
                 runner: Optional[CallbackRunner] = None):
        self.config = config
        self.cache = BuildCache(config, codec=codec, checksummer=checksummer)
        self.ledger = Ledger(config)
        self.loader = MetaLoader(config.data_dir)
        self.runner = runner or CallbackRunner(config)
        self.fetcher = fetcher or Fetcher(config.root, downloader=HttpDownloader(config.http_timeout),
                                          git=GitClient())
        self.builder = BuildSystem(config, self.cache, self.fetcher, self.runner)
        self.remover = Remover(config, self.cache, self.ledger, self.runner, self.loader)
        self.pkgtool = PkgTool(config, self.cache, self.ledger, self.runner, self.loader, self.remover)

    # -----------------------------
    # orchestrations
    # -----------------------------
    def build(self, *descriptors: Union[str, Path, Descriptor]) -> List[Path]:
        """Build each descriptor (path, directory, name or Descriptor value)."""
        archives: List[Path] = []
        for item in descriptors:
            desc = item if isinstance(item, Descriptor) else self.loader.load_arg(item)
            archives.append(self.builder.build(desc))
        return archives

    def install(self, *names: str) -> None:
        for name in names:
            self.pkgtool.install(name)

    def uninstall(self, *names: str) -> List[str]:
        """Returns the names that were installed and are now removed."""
        return [strip_pkg_suffix(name) for name in names if self.remover.uninstall(name)]

    # -----------------------------
    # queries
    # -----------------------------
    def list_installed(self) -> List[str]:
        return self.ledger.installed()

    def files(self, *names: str) -> List[str]:
        out: List[str] = []
        for name in names:
            name = strip_pkg_suffix(name)
            if not self.ledger.is_installed(name):
                logger.warning("%s is not installed", name)
                continue
            out.extend(self.ledger.files(name))
        return out

    def version(self, *names: str) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for name in names:
            name = strip_pkg_suffix(name)
            current = self.cache.current_version(name)
            if current is None:
                logger.warning("%s has not been built", name)
                continue
            out[name] = current
        return out

    def is_built(self, name: str, version: Optional[str] = None) -> bool:
        return self.cache.is_built(strip_pkg_suffix(name), version)

    def is_installed(self, name: str) -> bool:
        return self.ledger.is_installed(strip_pkg_suffix(name))
