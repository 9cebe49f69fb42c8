from __future__ import annotations

from pathlib import Path

import pytest

from kiln.errors import ValidationError
from kiln.meta import Callback, Descriptor, MetaLoader

DEMO = """\
name: demo
version: 1.0
sources:
  - https://example.org/demo-1.0.tar.gz::demo
  - fix.patch
md5sums:
  - 0123456789abcdef0123456789abcdef
prepare: patch -p1 < fix.patch
build: |
  echo built > "$DESTDIR/X"
"""


def _snapshot(path: Path) -> set:
    return {str(p) for p in path.rglob("*")}


def test_load_parses_fields_and_callbacks(tmp_path: Path, write_pkg) -> None:
    path = write_pkg("demo", DEMO)

    desc = MetaLoader(tmp_path / "data").load(path)

    assert desc.name == "demo"
    assert desc.version == "1.0"
    assert desc.sources == ("https://example.org/demo-1.0.tar.gz::demo", "fix.patch")
    assert desc.checksum_for(0) == "0123456789abcdef0123456789abcdef"
    assert desc.checksum_for(1) is None
    assert desc.prepare.script == "patch -p1 < fix.patch"
    assert desc.build.script.startswith("echo built")
    assert desc.pre_install is None
    assert desc.pkg_dir == path.parent


@pytest.mark.parametrize(
    "body",
    [
        "version: '1'\nbuild: 'true'\n",
        "name: x\nbuild: 'true'\n",
        "name: x\nversion: '1'\n",
        "name: x\nversion: ''\nbuild: 'true'\n",
        "name: x\nversion: '1'\nbuild: 'true'\nsources: [1, 2]\n",
        "- just\n- a list\n",
    ],
)
def test_invalid_descriptors_fail_without_touching_disk(tmp_path: Path, write_pkg, body: str) -> None:
    path = write_pkg("x", body)
    before = _snapshot(tmp_path)

    with pytest.raises(ValidationError):
        MetaLoader(tmp_path / "data").load(path)

    assert _snapshot(tmp_path) == before


def test_missing_descriptor_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        MetaLoader(tmp_path / "data").load_arg(tmp_path / "ghost")


def test_resolve_directory_and_suffix(tmp_path: Path, write_pkg) -> None:
    path = write_pkg("demo", DEMO)
    loader = MetaLoader(tmp_path / "data")

    assert loader.resolve(path.parent) == path
    assert loader.resolve(path.parent / "demo") == path
    assert loader.resolve(path) == path


def test_resolve_falls_back_to_previously_built_copy(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data = tmp_path / "data"
    stored = data / "demo" / "demo.pkg"
    stored.parent.mkdir(parents=True)
    stored.write_text(DEMO)
    monkeypatch.chdir(tmp_path)

    assert MetaLoader(data).resolve("demo") == stored
    assert MetaLoader(data).load_arg("demo.pkg").name == "demo"


def test_programmatic_descriptor_with_callable() -> None:
    desc = Descriptor(name="py", version="2", build=Callback("build", func=lambda ctx: 0))

    assert desc.callback("build").func is not None
    assert desc.callback("post_install") is None
    with pytest.raises(ValidationError):
        Callback("build")
