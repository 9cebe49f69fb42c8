# kiln/checksum.py
"""
checksum.py - content digests for fetched sources and build archives

Features:
- file_digest(): chunked digest of a file with any hashlib algorithm (md5 by default)
- Checksummer.verify(): case-insensitive hex comparison, returns bool, never raises on mismatch
  or on an unreadable path (missing file, directory)
- Sidecar files in the conventional "<hex>  <filename>" format written by md5sum,
  and a check against them equivalent to `md5sum --quiet --check`
"""

from __future__ import annotations

import os
import hashlib
from pathlib import Path
from typing import Optional, Tuple, Union

from kiln.logging import get_logger

logger = get_logger("checksum")

PathLike = Union[str, os.PathLike]

DEFAULT_ALGORITHM = "md5"

def file_digest(path: PathLike, algorithm: str = DEFAULT_ALGORITHM) -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()

def parse_sidecar(sidecar: PathLike) -> Tuple[str, str]:
    """Return (digest, filename) from the first line of a sidecar file."""
    lines = Path(sidecar).read_text(encoding="utf-8").splitlines()
    line = lines[0] if lines else ""
    parts = line.strip().split(None, 1)
    if len(parts) != 2:
        raise ValueError(f"{sidecar}: malformed checksum line: {line!r}")
    digest, fname = parts
    # md5sum marks binary mode with a leading '*'
    return digest, fname.lstrip("*")


class Checksummer:
    """Digest port used by the cache and the build orchestration."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM):
        hashlib.new(algorithm)  # unknown algorithms fail here, not mid-build
        self.algorithm = algorithm

    @property
    def sidecar_suffix(self) -> str:
        return f".{self.algorithm}"

    def digest(self, path: PathLike) -> str:
        return file_digest(path, self.algorithm)

    def verify(self, path: PathLike, expected: str) -> bool:
        """True when the digest of `path` equals `expected` (hex, any case)."""
        try:
            actual = self.digest(path)
        except OSError as e:
            logger.debug("cannot digest %s: %s", path, e)
            return False
        ok = actual.lower() == expected.strip().lower()
        if not ok:
            logger.debug("digest mismatch for %s: expected %s, got %s", path, expected, actual)
        return ok

    def sidecar_for(self, path: PathLike) -> Path:
        return Path(f"{os.fspath(path)}{self.sidecar_suffix}")

    def write_sidecar(self, path: PathLike, sidecar: Optional[PathLike] = None) -> Path:
        """Write "<hex>  <basename>" next to `path` (or at `sidecar`)."""
        path = Path(path)
        sidecar = Path(sidecar) if sidecar else self.sidecar_for(path)
        tmp = sidecar.with_name(sidecar.name + ".tmp")
        tmp.write_text(f"{self.digest(path)}  {path.name}\n", encoding="utf-8")
        os.replace(tmp, sidecar)
        return sidecar

    def check_sidecar(self, sidecar: PathLike) -> bool:
        """
        Verify the file named in `sidecar`. Relative names resolve against the
        directory the sidecar really lives in (symlinks followed), so a
        "current" alias checks the versioned archive it points at.
        """
        sidecar = Path(sidecar)
        if not sidecar.exists():
            return False
        try:
            digest, fname = parse_sidecar(sidecar)
        except ValueError as e:
            logger.warning("%s", e)
            return False
        target = Path(fname)
        if not target.is_absolute():
            target = sidecar.resolve().parent / target
        return self.verify(target, digest)
