from __future__ import annotations

import os
from pathlib import Path

import pytest

from kiln.cache import BuildCache
from kiln.config import EngineConfig
from kiln.meta import MetaLoader


@pytest.fixture
def cache(config: EngineConfig) -> BuildCache:
    return BuildCache(config)


def _store(cache: BuildCache, tmp_path: Path, version: str, payload: bytes = b"archive") -> Path:
    packed = tmp_path / f"packed-{version}"
    packed.write_bytes(payload)
    return cache.store_build_artifact("demo", version, packed)


def test_layout_under_root(cache: BuildCache, root: Path) -> None:
    assert cache.archive_path("demo", "1.0") == root / "var/cache/pkg/demo/1.0/pkg.tar.xz"
    assert cache.sidecar_path("demo") == root / "var/cache/pkg/demo/pkg.tar.xz.md5"
    assert cache.descriptor_path("demo", "1.0") == root / "var/lib/pkg/demo/1.0/demo.pkg"
    assert cache.snapshot("demo", "1.0").is_dir()


def test_not_built_until_archive_and_sidecar_exist(cache: BuildCache, tmp_path: Path) -> None:
    assert cache.is_built("demo", "1.0") is False

    _store(cache, tmp_path, "1.0")

    assert cache.is_built("demo", "1.0") is True
    assert cache.is_built("demo") is False  # no current link yet


def test_corrupt_archive_is_discarded(cache: BuildCache, tmp_path: Path) -> None:
    archive = _store(cache, tmp_path, "1.0")
    archive.write_bytes(b"bit rot")

    assert cache.verify_archive("demo", "1.0") is False
    assert archive.exists()

    assert cache.is_built("demo", "1.0") is False
    assert not archive.exists()


def test_link_current_uses_version_relative_symlinks(cache: BuildCache, tmp_path: Path, write_pkg) -> None:
    desc = MetaLoader(cache.config.data_dir).load(write_pkg("demo", "name: demo\nversion: '1.0'\nbuild: 'true'\n"))
    _store(cache, tmp_path, "1.0")
    cache.store_descriptor(desc)

    cache.link_current("demo", "1.0")

    assert os.readlink(cache.archive_path("demo")) == "1.0/pkg.tar.xz"
    assert os.readlink(cache.sidecar_path("demo")) == "1.0/pkg.tar.xz.md5"
    assert os.readlink(cache.descriptor_path("demo")) == "1.0/demo.pkg"
    assert cache.is_built("demo") is True
    assert cache.current_version("demo") == "1.0"

    _store(cache, tmp_path, "2.0", b"newer")
    cache.link_current("demo", "2.0")

    assert cache.current_version("demo") == "2.0"
    assert cache.archive_path("demo").read_bytes() == b"newer"
    assert cache.is_built("demo") is True


def test_store_descriptor_skips_identical_copy(cache: BuildCache, write_pkg) -> None:
    path = write_pkg("demo", "name: demo\nversion: '1.0'\nbuild: 'true'\n")
    desc = MetaLoader(cache.config.data_dir).load(path)

    stored = cache.store_descriptor(desc)
    first_inode = stored.stat().st_ino
    cache.store_descriptor(desc)

    assert stored.read_text() == path.read_text()
    assert stored.stat().st_ino == first_inode


def test_build_artifacts_are_not_sources(cache: BuildCache) -> None:
    assert cache.is_artifact("pkg.tar.xz")
    assert cache.is_artifact("pkg.tar.xz.md5")
    assert cache.is_artifact(".pkg.tar.xz.1234")
    assert cache.is_artifact("..pkg.tar.xz.1234.k3j2x")
    assert not cache.is_artifact("demo-1.0.tar.gz")


def test_link_current_drops_pointer_without_target(cache: BuildCache, tmp_path: Path, write_pkg) -> None:
    cache.store_descriptor(MetaLoader(cache.config.data_dir).load(write_pkg("demo", 'name: demo\nversion: "1.0"\n')))
    _store(cache, tmp_path, "1.0")
    cache.link_current("demo", "1.0")
    assert cache.descriptor_path("demo").is_symlink()

    _store(cache, tmp_path, "2.0")
    cache.link_current("demo", "2.0")

    assert not cache.descriptor_path("demo").is_symlink()
    assert os.readlink(cache.archive_path("demo")) == "2.0/pkg.tar.xz"
    assert cache.current_version("demo") == "2.0"
