from __future__ import annotations

import io
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest

from kiln.config import EngineConfig
from kiln.engine import LifecycleEngine
from kiln.errors import FetchError
from kiln.fetcher import Fetcher


class FakeDownloader:
    """Serves canned bytes per URL and records every download."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.calls: List[str] = []

    def download(self, url: str, out_path: Path) -> None:
        self.calls.append(url)
        if url not in self.files:
            raise FetchError(f"Could not download {url}: 404")
        Path(out_path).write_bytes(self.files[url])


class FakeGit:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []

    def clone(self, url: str, ref: str, dest: Path) -> None:
        self.calls.append(("clone", ref))
        (dest / ".git").mkdir(parents=True)
        (dest / "README").write_text(f"{url}@{ref}\n", encoding="utf-8")

    def sync(self, dest: Path, ref: str) -> None:
        self.calls.append(("sync", ref))


def make_tarball(entries: Dict[str, str], compression: str = "gz") -> bytes:
    """In-memory tarball with the given file name -> text entries."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=f"w:{compression}") as tar:
        for name, text in entries.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, root: Path) -> EngineConfig:
    return EngineConfig(root=root, tmp_dir=tmp_path / "tmp", jobs=2)


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def engine(config: EngineConfig, downloader: FakeDownloader, git: FakeGit) -> LifecycleEngine:
    fetcher = Fetcher(config.root, downloader=downloader, git=git)
    return LifecycleEngine(config, fetcher=fetcher)


@pytest.fixture
def write_pkg(tmp_path: Path) -> Callable[..., Path]:
    """Write <tmp>/pkgs/<name>/<name>.pkg with the given YAML body."""

    def _write(name: str, body: str) -> Path:
        pkg_dir = tmp_path / "pkgs" / name
        pkg_dir.mkdir(parents=True, exist_ok=True)
        path = pkg_dir / f"{name}.pkg"
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def tarball() -> Callable[..., bytes]:
    return make_tarball
