# kiln/archive.py
"""
archive.py - tar codec for build archives and source tarballs

Features:
- pack(): whole-tree archive of a build directory (dotfiles included, members named ./...)
  written to a temporary name and moved into place only once complete
- unpack(): extraction into a target root that keeps existing directories and
  directory symlinks (like `tar --keep-directory-symlink`) and refuses to turn
  a directory into a file or a file into a directory
- list_members(): archive member paths rebased onto a prefix, directories
  marked by a trailing "/" (same shape as `tar -tf`)
- unpack_source(): in-place extraction of upstream tarballs with optional
  leading-component stripping
"""

from __future__ import annotations

import os
import re
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Iterator, List

from kiln.errors import ArchiveError
from kiln.logging import get_logger

logger = get_logger("archive")

COMPRESSIONS = ("gz", "bz2", "xz")
_TAR_SOURCE_RE = re.compile(r".*\.(tar(\.(gz|bz2|xz|lzma))?|tgz|tbz2?|txz)$")


def is_tar_source(name: str) -> bool:
    return bool(_TAR_SOURCE_RE.match(name))


def _clean_name(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return "" if name == "." else name


def _strip_components(members: List[tarfile.TarInfo], count: int) -> Iterator[tarfile.TarInfo]:
    for member in members:
        comps = _clean_name(member.name).split("/", count)
        if len(comps) <= count or not comps[count]:
            continue
        attrs = {"name": comps[count]}
        if member.islnk():
            link = _clean_name(member.linkname).split("/", count)
            if len(link) <= count:
                continue
            attrs["linkname"] = link[count]
        yield member.replace(**attrs, deep=False)


class TarCodec:
    """Packs/unpacks the installable tree of a package as a compressed tarball."""

    def __init__(self, compression: str = "xz"):
        if compression not in COMPRESSIONS:
            raise ValueError(f"Unsupported compression method: {compression}")
        self.compression = compression

    @property
    def ext(self) -> str:
        return f"tar.{self.compression}"

    # -----------------------------
    # pack
    # -----------------------------
    def pack(self, source_dir: Path, archive_path: Path) -> None:
        source_dir = Path(source_dir)
        archive_path = Path(archive_path)
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{archive_path.name}.", dir=str(archive_path.parent))
        os.close(fd)
        try:
            with tarfile.open(tmp, f"w:{self.compression}") as tar:
                tar.add(str(source_dir), arcname=".")
            os.replace(tmp, archive_path)
        except (OSError, tarfile.TarError) as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise ArchiveError(f"Could not pack {source_dir} into {archive_path}: {e}") from e
        logger.debug("packed %s -> %s", source_dir, archive_path)

    # -----------------------------
    # listing
    # -----------------------------
    def members(self, archive_path: Path) -> List[tarfile.TarInfo]:
        try:
            with tarfile.open(str(archive_path), "r:*") as tar:
                return tar.getmembers()
        except (OSError, tarfile.TarError) as e:
            raise ArchiveError(f"Could not read {archive_path}: {e}") from e

    def list_members(self, archive_path: Path, prefix: str = "/") -> List[str]:
        """
        Member paths with the leading "./" replaced by `prefix`; directory
        entries end with "/". The archive root itself is not listed.
        """
        out: List[str] = []
        for member in self.members(archive_path):
            name = _clean_name(member.name.lstrip("/"))
            if not name.strip():
                continue
            if member.isdir() and not name.endswith("/"):
                name += "/"
            out.append(prefix + name)
        return out

    # -----------------------------
    # unpack
    # -----------------------------
    def unpack(self, archive_path: Path, dest_dir: Path) -> None:
        dest_dir = Path(dest_dir)
        try:
            with tarfile.open(str(archive_path), "r:*") as tar:
                for member in tar.getmembers():
                    self._extract_member(tar, member, dest_dir)
        except tarfile.TarError as e:
            raise ArchiveError(f"Could not unpack {archive_path}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"Could not unpack {archive_path} into {dest_dir}: {e}") from e

    def _extract_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo, dest_dir: Path) -> None:
        rel = _clean_name(member.name)
        if not rel:
            return
        if PurePosixPath(rel).is_absolute() or ".." in PurePosixPath(rel).parts:
            raise ArchiveError(f"Refusing unsafe member path: {member.name}")
        target = dest_dir / rel
        if member.isdir():
            if target.is_dir():
                # existing directory or symlink to one: keep it as is
                return
            if target.exists() or target.is_symlink():
                raise ArchiveError(f"Refusing to replace {target} with a directory")
        else:
            if target.is_dir() and not target.is_symlink():
                raise ArchiveError(f"Refusing to replace directory {target} with a file")
            if target.is_symlink() or target.exists():
                target.unlink()
        tar.extract(member, path=str(dest_dir), filter="fully_trusted")

    def unpack_source(self, archive_path: Path, dest_dir: Path, strip: int = 0) -> None:
        """Extract an upstream source tarball, optionally stripping leading components."""
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(str(archive_path), "r:*") as tar:
                members = tar.getmembers()
                if strip:
                    members = list(_strip_components(members, strip))
                tar.extractall(path=str(dest_dir), members=members, filter="tar")
        except (OSError, tarfile.TarError) as e:
            raise ArchiveError(f"Could not extract {archive_path}: {e}") from e
