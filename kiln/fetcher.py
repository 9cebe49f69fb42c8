# kiln/fetcher.py
"""
fetcher.py - source fetching for kiln builds

Features:
- Locator parsing into one of three variants:
    GitLocator      scheme://host/path/repo.git:ref
    HttpLocator     scheme://anything-else
    LocalLocator    plain path (absolute = under the target root, relative = next to the descriptor)
  Any locator may end in "::<dest>" to ask for tar sources to be unpacked into
  ./<dest> with their first path component stripped.
- Transport ports (HttpDownloader, GitClient) injected into Fetcher so tests can
  replace them; real implementations use requests and the git CLI
- Idempotent git handling: an existing checkout is shallow-fetched and reset to
  the fetched head, otherwise a shallow single-branch clone is made
- Every failure surfaces as FetchError naming the locator
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import urlsplit

import requests

from kiln.errors import FetchError
from kiln.logging import get_logger

logger = get_logger("fetcher")

_DEST_SEP = "::"
_GIT_RE = re.compile(r"^(?P<scheme>[^:]+)://(?P<repo>[^:]+\.git):(?P<ref>.*)$")
_NET_RE = re.compile(r"^[^:]+://[^:]+.*$")

# -----------------------------------------------------------------------
# Locators
# -----------------------------------------------------------------------
@dataclass(frozen=True)
class GitLocator:
    raw: str
    scheme: str
    repo: str
    ref: str
    dest: Optional[str] = None

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.repo}"

    @property
    def local_name(self) -> str:
        base = os.path.basename(self.repo)
        if base.endswith(".git"):
            base = base[: -len(".git")]
        return f"{base}-{self.ref.replace('/', '_')}"


@dataclass(frozen=True)
class HttpLocator:
    raw: str
    url: str
    dest: Optional[str] = None

    @property
    def local_name(self) -> str:
        return os.path.basename(urlsplit(self.url).path.rstrip("/"))


@dataclass(frozen=True)
class LocalLocator:
    raw: str
    path: str
    dest: Optional[str] = None

    @property
    def local_name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


Locator = Union[GitLocator, HttpLocator, LocalLocator]


def parse_locator(raw: str) -> Locator:
    """Classify a source string. Scheme-bearing strings that fit no variant are rejected."""
    if not isinstance(raw, str) or not raw.strip():
        raise FetchError(f"Invalid locator: {raw!r}")
    text = raw.strip()
    dest = None
    if _DEST_SEP in text:
        text, dest = text.rsplit(_DEST_SEP, 1)
        dest = dest.strip("/")
        if not dest or "/" in dest or dest in (".", ".."):
            raise FetchError(f"Invalid locator destination: {raw}")

    m = _GIT_RE.match(text)
    if m:
        if not m.group("ref"):
            raise FetchError(f"Invalid locator (missing ref): {raw}")
        return GitLocator(raw=raw, scheme=m.group("scheme"), repo=m.group("repo"), ref=m.group("ref"), dest=dest)
    if _NET_RE.match(text):
        loc = HttpLocator(raw=raw, url=text, dest=dest)
        if not loc.local_name:
            raise FetchError(f"Invalid locator (no file name in URL): {raw}")
        return loc
    if "://" in text:
        raise FetchError(f"Invalid locator: {raw}")
    loc = LocalLocator(raw=raw, path=text, dest=dest)
    if not loc.local_name:
        raise FetchError(f"Invalid locator: {raw}")
    return loc

# -----------------------------------------------------------------------
# Transports
# -----------------------------------------------------------------------
class HttpDownloader:
    """Download a URL to a file, following redirects, replacing the file atomically."""

    def __init__(self, timeout: int = 30, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def download(self, url: str, out_path: Path) -> None:
        tmp = out_path.with_name(out_path.name + ".part")
        try:
            with self.session.get(url, stream=True, timeout=self.timeout, allow_redirects=True) as resp:
                resp.raise_for_status()
                with open(tmp, "wb") as f:
                    for chunk in resp.iter_content(1024 * 1024):
                        f.write(chunk)
        except requests.RequestException as e:
            if tmp.exists():
                tmp.unlink()
            raise FetchError(f"Could not download {url}: {e}") from e
        os.replace(tmp, out_path)


class GitClient:
    """Thin wrapper over the git CLI; only shallow, single-ref operations."""

    def __init__(self, git: str = "git"):
        self.git = git

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> None:
        cmd = [self.git] + args
        logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
        try:
            subprocess.run(cmd, cwd=str(cwd) if cwd else None, check=True,
                           stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except FileNotFoundError as e:
            raise FetchError(f"git executable not found: {self.git}") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip().splitlines()
            raise FetchError(f"git {args[0]} failed: {detail[-1] if detail else e}") from e

    def clone(self, url: str, ref: str, dest: Path) -> None:
        self._run(["clone", "--depth", "1", "--single-branch", "--branch", ref, url, str(dest)])
        self.update_submodules(dest)

    def sync(self, dest: Path, ref: str) -> None:
        self._run(["fetch", "--depth", "1", "origin", ref], cwd=dest)
        self._run(["checkout", "--force", "FETCH_HEAD"], cwd=dest)
        self.update_submodules(dest)

    def update_submodules(self, dest: Path) -> None:
        self._run(["submodule", "update", "--init", "--recursive", "--depth", "1"], cwd=dest)

# -----------------------------------------------------------------------
# Fetcher
# -----------------------------------------------------------------------
class Fetcher:
    """
    Resolve locators into local files/directories inside a working directory
    (the package's cache snapshot).
    """

    def __init__(self, root: Path, downloader: Optional[HttpDownloader] = None, git: Optional[GitClient] = None):
        self.root = Path(root)
        self.downloader = downloader or HttpDownloader()
        self.git = git or GitClient()

    def fetch(self, locator: Union[str, Locator], workdir: Path, pkg_dir: Path) -> str:
        """Fetch `locator` into `workdir`; return the local name it landed under."""
        loc = parse_locator(locator) if isinstance(locator, str) else locator
        workdir = Path(workdir)
        workdir.mkdir(parents=True, exist_ok=True)
        logger.info("Fetching %s...", loc.raw)
        if isinstance(loc, GitLocator):
            self._fetch_git(loc, workdir)
        elif isinstance(loc, HttpLocator):
            self.downloader.download(loc.url, workdir / loc.local_name)
        else:
            self._fetch_local(loc, workdir, Path(pkg_dir))
        logger.info("%s -> %s", loc.raw, loc.local_name)
        return loc.local_name

    def _fetch_git(self, loc: GitLocator, workdir: Path) -> None:
        checkout = workdir / loc.local_name
        if (checkout / ".git").exists():
            self.git.sync(checkout, loc.ref)
        else:
            if checkout.exists():
                shutil.rmtree(checkout)
            self.git.clone(loc.url, loc.ref, checkout)

    def _fetch_local(self, loc: LocalLocator, workdir: Path, pkg_dir: Path) -> None:
        if loc.path.startswith("/"):
            src = self.root / loc.path.lstrip("/")
        else:
            src = pkg_dir / loc.path
        dst = workdir / loc.local_name
        if not src.exists():
            raise FetchError(f"Local source not found: {src}")
        if dst.exists() and dst.resolve() == src.resolve():
            return
        try:
            if src.is_dir():
                if dst.exists():
                    shutil.rmtree(dst)
                shutil.copytree(src, dst, symlinks=True, copy_function=shutil.copy)
            else:
                if dst.is_symlink() or dst.exists():
                    dst.unlink()
                # permission bits only, no ownership/timestamps
                shutil.copy(src, dst)
        except OSError as e:
            raise FetchError(f"Could not copy {src}: {e}") from e
