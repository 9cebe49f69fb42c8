# kiln/buildsystem.py
"""
buildsystem.py - build orchestration

API:
  bs = BuildSystem(config, cache, fetcher, runner)
  archive = bs.build(descriptor)

Steps for one package:
  1. already built (archive verifies against its sidecar) -> relink current version, done
  2. fetch every source not already present and verified in the cache snapshot,
     verify each source that has a checksum (mismatch aborts before building)
  3. mirror the snapshot into a fresh <name>-<version>.XXXX.source dir, unpack tar sources
  4. prepare (cwd = SRCDIR)
  5. build in a fresh <name>-<version>.XXXX.build dir (cwd = DESTDIR)
  6. drop SRCDIR, pack DESTDIR into the cache, write the sidecar, drop DESTDIR
  7. store the descriptor copy and point the current-version links at this version

A failed step leaves everything as it was when the step failed; scratch dirs of
failed builds stay in the tmp dir for inspection.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import List

from kiln.archive import is_tar_source
from kiln.cache import BuildCache
from kiln.config import EngineConfig
from kiln.errors import IntegrityError
from kiln.fetcher import Fetcher, parse_locator
from kiln.lifecycle import Run, Stage
from kiln.logging import get_logger
from kiln.meta import Descriptor
from kiln.sandbox import CallbackRunner

logger = get_logger("buildsystem")


class BuildSystem:
    def __init__(self, config: EngineConfig, cache: BuildCache, fetcher: Fetcher, runner: CallbackRunner):
        self.config = config
        self.cache = cache
        self.fetcher = fetcher
        self.runner = runner

    def _scratch(self, desc: Descriptor, kind: str) -> Path:
        tmp_dir = Path(self.config.tmp_dir)
        tmp_dir.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{desc.name}-{desc.version}.", suffix=f".{kind}", dir=str(tmp_dir)))

    # -----------------------------
    # sources
    # -----------------------------
    def fetch_sources(self, desc: Descriptor, snapshot: Path) -> List[str]:
        """Bring every source into `snapshot`; return their local names in order."""
        checksummer = self.cache.checksummer
        names: List[str] = []
        for i, raw in enumerate(desc.sources):
            loc = parse_locator(raw)
            expected = desc.checksum_for(i)
            local = snapshot / loc.local_name
            if expected and local.exists() and checksummer.verify(local, expected):
                logger.debug("%s: %s already cached", desc.name, loc.local_name)
            else:
                self.fetcher.fetch(loc, snapshot, desc.pkg_dir)
                if expected and not checksummer.verify(local, expected):
                    raise IntegrityError(f"{loc.local_name}: File does not match {checksummer.algorithm}sum!",
                                         package=desc.name)
            names.append(loc.local_name)
        return names

    def populate_srcdir(self, desc: Descriptor, snapshot: Path, srcdir: Path) -> None:
        logger.info("Copying cached sources to %s...", srcdir)

        def _skip_artifacts(d, entries):
            if Path(d) != snapshot:
                return []
            return [e for e in entries if self.cache.is_artifact(e)]

        shutil.copytree(snapshot, srcdir, symlinks=True, dirs_exist_ok=True, ignore=_skip_artifacts)
        for raw in desc.sources:
            loc = parse_locator(raw)
            src = srcdir / loc.local_name
            if not src.is_file() or not is_tar_source(loc.local_name):
                continue
            logger.info("Extracting %s...", loc.local_name)
            if loc.dest:
                self.cache.codec.unpack_source(src, srcdir / loc.dest, strip=1)
            else:
                self.cache.codec.unpack_source(src, srcdir)

    # -----------------------------
    # build
    # -----------------------------
    def build(self, desc: Descriptor) -> Path:
        name, version = desc.name, desc.version
        with Run("build", name) as run:
            run.advance(Stage.LOADED)
            logger.info("Loading %s...", desc.file_name)
            if self.cache.is_built(name, version):
                logger.info("%s has already been built!", name)
                self.cache.link_current(name, version)
                return self.cache.archive_path(name, version)

            snapshot = self.cache.snapshot(name, version)
            self.fetch_sources(desc, snapshot)
            run.advance(Stage.SOURCED)

            srcdir = self._scratch(desc, "source")
            self.populate_srcdir(desc, snapshot, srcdir)
            self.runner.run(desc, "prepare", srcdir, self.runner.build_env(desc, srcdir))

            builddir = self._scratch(desc, "build")
            logger.info("Building %s...", desc.file_name)
            self.runner.run(desc, "build", builddir, self.runner.build_env(desc, srcdir, builddir))
            run.advance(Stage.BUILT)
            shutil.rmtree(srcdir)

            logger.info("Archiving %s...", name)
            packed = snapshot / f".{self.cache.archive_name}.{os.getpid()}"
            self.cache.codec.pack(builddir, packed)
            run.advance(Stage.ARCHIVED)
            shutil.rmtree(builddir)

            archive = self.cache.store_build_artifact(name, version, packed)
            self.cache.store_descriptor(desc)
            self.cache.link_current(name, version)
            run.advance(Stage.STORED)
            logger.info("%s %s built", name, version)
            return archive
