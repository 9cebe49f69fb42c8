# kiln/cache.py
"""
cache.py - on-disk build cache keyed by (name, version)

Layout under the target root R:
    R/var/lib/pkg/<name>/<version>/<name>.pkg      descriptor copy
    R/var/lib/pkg/<name>/<name>.pkg                -> <version>/<name>.pkg
    R/var/cache/pkg/<name>/<version>/              source snapshot
    R/var/cache/pkg/<name>/<version>/pkg.<ext>     build archive
    R/var/cache/pkg/<name>/<version>/pkg.<ext>.md5 checksum sidecar
    R/var/cache/pkg/<name>/pkg.<ext>[.md5]         -> <version>/pkg.<ext>[.md5]

Features:
- verify_archive(): read-only integrity check of a cached archive against its sidecar
- discard_corrupt(): deletes an archive that failed verification
- is_built(): verify + discard, the self-healing check used by build and install
- Current-version pointers are version-relative symlinks replaced atomically;
  a pointer whose file does not exist for the new version is removed, not left stale
"""

from __future__ import annotations

import filecmp
import os
import shutil
from pathlib import Path
from typing import Optional

from kiln.archive import TarCodec
from kiln.checksum import Checksummer
from kiln.config import EngineConfig
from kiln.logging import get_logger
from kiln.meta import PKG_SUFFIX, Descriptor

logger = get_logger("cache")


def _symlink_replace(target: str, link: Path) -> None:
    """Point `link` at `target`, replacing any existing entry in one rename."""
    tmp = link.with_name(f".{link.name}.{os.getpid()}.tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(target, tmp)
    os.replace(tmp, link)


class BuildCache:
    def __init__(self, config: EngineConfig, codec: Optional[TarCodec] = None,
                 checksummer: Optional[Checksummer] = None):
        self.config = config
        self.codec = codec or TarCodec(config.compression)
        self.checksummer = checksummer or Checksummer(config.digest)

    # -----------------------------
    # paths
    # -----------------------------
    @property
    def archive_name(self) -> str:
        return f"pkg.{self.codec.ext}"

    @property
    def sidecar_name(self) -> str:
        return self.archive_name + self.checksummer.sidecar_suffix

    def snapshot(self, name: str, version: str) -> Path:
        """Durable per-version directory where fetched sources accumulate."""
        path = self.config.cache_dir / name / version
        path.mkdir(parents=True, exist_ok=True)
        return path

    def archive_path(self, name: str, version: Optional[str] = None) -> Path:
        base = self.config.cache_dir / name
        return (base / version if version else base) / self.archive_name

    def sidecar_path(self, name: str, version: Optional[str] = None) -> Path:
        base = self.config.cache_dir / name
        return (base / version if version else base) / self.sidecar_name

    def descriptor_path(self, name: str, version: Optional[str] = None) -> Path:
        base = self.config.data_dir / name
        return (base / version if version else base) / f"{name}{PKG_SUFFIX}"

    def is_artifact(self, fname: str) -> bool:
        """True for cache files that are build outputs rather than fetched sources."""
        bare = fname.lstrip(".")
        return bare == self.archive_name or bare.startswith(f"{self.archive_name}.")

    # -----------------------------
    # integrity
    # -----------------------------
    def verify_archive(self, name: str, version: Optional[str] = None) -> bool:
        archive = self.archive_path(name, version)
        if not archive.exists():
            return False
        return self.checksummer.check_sidecar(self.sidecar_path(name, version))

    def discard_corrupt(self, name: str, version: Optional[str] = None) -> None:
        archive = self.archive_path(name, version)
        if not archive.exists():
            return
        real = archive.resolve()
        logger.warning("%s: removing corrupt archive %s", name, real)
        real.unlink()
        sidecar = self.sidecar_path(name, version)
        if sidecar.exists():
            sidecar.resolve().unlink()

    def is_built(self, name: str, version: Optional[str] = None) -> bool:
        """
        True when the archive (current version if `version` is None) exists and
        matches its sidecar. A mismatching archive is deleted before returning False.
        """
        if not self.archive_path(name, version).exists():
            return False
        if self.verify_archive(name, version):
            return True
        self.discard_corrupt(name, version)
        return False

    # -----------------------------
    # storing
    # -----------------------------
    def store_build_artifact(self, name: str, version: str, archive: Path) -> Path:
        """Move a packed archive into the version's cache slot and write its sidecar."""
        dest = self.archive_path(name, version)
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(archive, dest)
        self.checksummer.write_sidecar(dest, self.sidecar_path(name, version))
        logger.debug("stored %s", dest)
        return dest

    def store_descriptor(self, desc: Descriptor) -> Optional[Path]:
        dest = self.descriptor_path(desc.name, desc.version)
        if desc.path is None:
            logger.debug("%s: descriptor has no file, nothing to store", desc.name)
            return None
        src = Path(desc.path)
        if dest.exists() and (src.resolve() == dest.resolve() or filecmp.cmp(src, dest, shallow=False)):
            return dest
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".tmp")
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
        return dest

    def link_current(self, name: str, version: str) -> None:
        pairs = (
            (self.descriptor_path(name), self.descriptor_path(name, version)),
            (self.archive_path(name), self.archive_path(name, version)),
            (self.sidecar_path(name), self.sidecar_path(name, version)),
        )
        for link, target in pairs:
            if not target.exists():
                if link.is_symlink():
                    logger.debug("%s: dropping stale pointer %s", name, link)
                    link.unlink()
                continue
            link.parent.mkdir(parents=True, exist_ok=True)
            _symlink_replace(os.path.relpath(target, link.parent), link)
        logger.debug("%s: current version -> %s", name, version)

    # -----------------------------
    # queries
    # -----------------------------
    def current_version(self, name: str) -> Optional[str]:
        for link in (self.archive_path(name), self.descriptor_path(name)):
            if link.is_symlink():
                return Path(os.readlink(link)).parts[0]
        return None
