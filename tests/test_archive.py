from __future__ import annotations

import os
from pathlib import Path

import pytest

from kiln.archive import TarCodec, is_tar_source
from kiln.errors import ArchiveError


@pytest.fixture
def build_tree(tmp_path: Path) -> Path:
    tree = tmp_path / "build"
    (tree / "usr" / "bin").mkdir(parents=True)
    (tree / "usr" / "bin" / "tool").write_text("#!/bin/sh\n")
    (tree / ".hidden").write_text("dotfile")
    return tree


def test_pack_includes_dotfiles_and_lists_rebased_members(tmp_path: Path, build_tree: Path) -> None:
    codec = TarCodec("xz")
    archive = tmp_path / "out" / "pkg.tar.xz"

    codec.pack(build_tree, archive)

    assert archive.exists()
    assert set(codec.list_members(archive)) == {"/.hidden", "/usr/", "/usr/bin/", "/usr/bin/tool"}
    assert set(codec.list_members(archive, prefix="/mnt/root/")) == {
        "/mnt/root/.hidden",
        "/mnt/root/usr/",
        "/mnt/root/usr/bin/",
        "/mnt/root/usr/bin/tool",
    }
    assert not [p for p in archive.parent.iterdir() if p.name != "pkg.tar.xz"]


def test_unpack_keeps_directory_symlinks(tmp_path: Path, build_tree: Path) -> None:
    codec = TarCodec("gz")
    archive = tmp_path / "pkg.tar.gz"
    codec.pack(build_tree, archive)
    dest = tmp_path / "root"
    (dest / "real_usr").mkdir(parents=True)
    os.symlink("real_usr", dest / "usr")

    codec.unpack(archive, dest)

    assert (dest / "usr").is_symlink()
    assert (dest / "real_usr" / "bin" / "tool").read_text() == "#!/bin/sh\n"
    assert (dest / ".hidden").read_text() == "dotfile"


def test_unpack_refuses_to_replace_directory_with_file(tmp_path: Path, build_tree: Path) -> None:
    codec = TarCodec("gz")
    archive = tmp_path / "pkg.tar.gz"
    codec.pack(build_tree, archive)
    dest = tmp_path / "root"
    (dest / ".hidden").mkdir(parents=True)

    with pytest.raises(ArchiveError):
        codec.unpack(archive, dest)


def test_unpack_overwrites_existing_files(tmp_path: Path, build_tree: Path) -> None:
    codec = TarCodec("bz2")
    archive = tmp_path / "pkg.tar.bz2"
    codec.pack(build_tree, archive)
    dest = tmp_path / "root"
    dest.mkdir()
    (dest / ".hidden").write_text("old")

    codec.unpack(archive, dest)

    assert (dest / ".hidden").read_text() == "dotfile"


def test_unpack_source_strips_leading_component(tmp_path: Path, tarball) -> None:
    src = tmp_path / "demo-1.0.tar.gz"
    src.write_bytes(tarball({"demo-1.0/configure": "echo ok\n", "demo-1.0/src/main.c": "int main;\n"}))

    TarCodec().unpack_source(src, tmp_path / "demo", strip=1)

    assert (tmp_path / "demo" / "configure").read_text() == "echo ok\n"
    assert (tmp_path / "demo" / "src" / "main.c").exists()


def test_tar_source_detection() -> None:
    assert is_tar_source("demo-1.0.tar.gz")
    assert is_tar_source("x.tar")
    assert is_tar_source("y.tgz")
    assert not is_tar_source("fix.patch")
    assert not is_tar_source("pkg.tar.xz.md5")


def test_unknown_compression_is_rejected() -> None:
    with pytest.raises(ValueError):
        TarCodec("zip")
