from __future__ import annotations

import hashlib
import os
from pathlib import Path

from kiln.checksum import Checksummer, file_digest, parse_sidecar


def test_verify_is_case_insensitive_and_reports_mismatch(tmp_path: Path) -> None:
    target = tmp_path / "src.tar.gz"
    target.write_bytes(b"payload")
    expected = hashlib.md5(b"payload").hexdigest()
    summer = Checksummer()

    assert file_digest(target) == expected
    assert summer.verify(target, expected.upper()) is True
    assert summer.verify(target, "0" * 32) is False
    assert summer.verify(tmp_path / "missing", expected) is False


def test_sidecar_uses_md5sum_format(tmp_path: Path) -> None:
    archive = tmp_path / "pkg.tar.xz"
    archive.write_bytes(b"archive bytes")
    summer = Checksummer()

    sidecar = summer.write_sidecar(archive)

    assert sidecar == tmp_path / "pkg.tar.xz.md5"
    assert sidecar.read_text() == f"{hashlib.md5(b'archive bytes').hexdigest()}  pkg.tar.xz\n"
    assert summer.check_sidecar(sidecar) is True

    archive.write_bytes(b"tampered")
    assert summer.check_sidecar(sidecar) is False


def test_sidecar_behind_symlink_checks_the_real_archive(tmp_path: Path) -> None:
    version_dir = tmp_path / "1.0"
    version_dir.mkdir()
    archive = version_dir / "pkg.tar.xz"
    archive.write_bytes(b"v1")
    summer = Checksummer()
    summer.write_sidecar(archive)
    os.symlink("1.0/pkg.tar.xz.md5", tmp_path / "pkg.tar.xz.md5")

    assert summer.check_sidecar(tmp_path / "pkg.tar.xz.md5") is True


def test_missing_or_malformed_sidecar_fails(tmp_path: Path) -> None:
    summer = Checksummer()
    assert summer.check_sidecar(tmp_path / "nope.md5") is False

    bad = tmp_path / "bad.md5"
    bad.write_text("")
    assert summer.check_sidecar(bad) is False


def test_parse_sidecar_strips_binary_marker(tmp_path: Path) -> None:
    sidecar = tmp_path / "x.md5"
    sidecar.write_text("abc123 *x.bin\n")

    assert parse_sidecar(sidecar) == ("abc123", "x.bin")


def test_verify_of_a_directory_is_a_mismatch(tmp_path: Path) -> None:
    checkout = tmp_path / "lib-v1"
    checkout.mkdir()

    assert Checksummer().verify(checkout, "0" * 32) is False
