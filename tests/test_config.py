from __future__ import annotations

from pathlib import Path

import pytest

from kiln import config as kiln_config
from kiln.config import EngineConfig


@pytest.fixture(autouse=True)
def no_ambient_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("KILN_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


def test_file_values_merge_over_defaults(tmp_path: Path) -> None:
    cfg_file = tmp_path / "kiln.yaml"
    cfg_file.write_text("root: ~/sysroot\nbuild:\n  jobs: '3'\n")

    cfg = kiln_config.load(str(cfg_file), environ={})
    ec = EngineConfig.from_config(cfg)

    assert cfg.path == cfg_file
    assert ec.root == tmp_path / "home" / "sysroot"
    assert ec.jobs == 3
    assert ec.compression == "xz"
    assert ec.shell == ["/bin/sh", "-e", "-c"]
    assert ec.data_dir == ec.root / "var/lib/pkg"
    assert ec.cache_dir == ec.root / "var/cache/pkg"


def test_environment_overrides_file(tmp_path: Path) -> None:
    cfg_file = tmp_path / "kiln.yaml"
    cfg_file.write_text("root: /somewhere\n")
    environ = {"ROOT": str(tmp_path / "r"), "SKIP_TESTS": "yes", "KILN_JOBS": "5", "KILN_TMPDIR": str(tmp_path / "t")}

    ec = EngineConfig.from_config(kiln_config.load(str(cfg_file), environ=environ))

    assert ec.root == tmp_path / "r"
    assert ec.skip_tests is True
    assert ec.jobs == 5
    assert ec.tmp_dir == tmp_path / "t"


def test_kiln_root_wins_over_root() -> None:
    cfg = kiln_config.load(environ={"KILN_ROOT": "/a", "ROOT": "/b"})

    assert cfg.get("root") == "/a"


def test_invalid_structure_is_fatal_on_request(tmp_path: Path) -> None:
    cfg_file = tmp_path / "kiln.yaml"
    cfg_file.write_text("pkgtool:\n  compression: zip\n")

    assert kiln_config.load(str(cfg_file), environ={}).get("pkgtool.compression") == "zip"
    with pytest.raises(ValueError):
        kiln_config.load(str(cfg_file), fatal=True, environ={})


def test_engine_config_overrides(tmp_path: Path) -> None:
    ec = kiln_config.get_engine_config(str(tmp_path / "missing.yaml"), root=tmp_path / "r", jobs=7)

    assert ec.root == tmp_path / "r"
    assert ec.jobs == 7
