# kiln/config.py
# -*- coding: utf-8 -*-
"""
kiln configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit path, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types
- Environment overrides for the target root, test skipping, parallelism and scratch dir
- Validate structure and types, warn or error (fatal optional)
- EngineConfig: the explicit configuration struct handed to the lifecycle engine,
  so every engine instance (and every test) can work against its own root
"""

from __future__ import annotations

import os
import json
import tempfile
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from kiln.logging import get_logger

logger = get_logger("config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "root": "/",
    "tmp_dir": None,  # None -> tempfile.gettempdir()
    "logging": {
        "level": "INFO",
        "file": None,
        "color": True,
        "max_size": "10M",
    },
    "build": {
        "jobs": os.cpu_count() or 1,
        "skip_tests": False,
        "usr_lib_dir": "/usr/lib",
        "usr_bin_dir": "/usr/bin",
        "shell": ["/bin/sh", "-e", "-c"],
    },
    "pkgtool": {
        "compression": "xz",
        "digest": "md5",
    },
    "fetcher": {
        "http_timeout": 30,
    },
}

_TRUE_STRINGS = ("1", "true", "yes", "on")

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS and env
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur


@dataclass
class EngineConfig:
    """Everything the lifecycle engine needs to know about its environment."""
    root: Path = Path("/")
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    skip_tests: bool = False
    jobs: int = os.cpu_count() or 1
    compression: str = "xz"
    digest: str = "md5"
    shell: List[str] = field(default_factory=lambda: ["/bin/sh", "-e", "-c"])
    http_timeout: int = 30
    usr_lib_dir: str = "/usr/lib"
    usr_bin_dir: str = "/usr/bin"

    def __post_init__(self):
        self.root = Path(self.root).absolute()
        self.tmp_dir = Path(self.tmp_dir).absolute()

    @property
    def data_dir(self) -> Path:
        return self.root / "var" / "lib" / "pkg"

    @property
    def cache_dir(self) -> Path:
        return self.root / "var" / "cache" / "pkg"

    @classmethod
    def from_config(cls, cfg: Config) -> "EngineConfig":
        return cls(
            root=Path(cfg.get("root") or "/"),
            tmp_dir=Path(cfg.get("tmp_dir") or tempfile.gettempdir()),
            skip_tests=bool(cfg.get("build.skip_tests", False)),
            jobs=int(cfg.get("build.jobs", 1)),
            compression=str(cfg.get("pkgtool.compression", "xz")),
            digest=str(cfg.get("pkgtool.digest", "md5")),
            shell=list(cfg.get("build.shell") or DEFAULTS["build"]["shell"]),
            http_timeout=int(cfg.get("fetcher.http_timeout", 30)),
            usr_lib_dir=str(cfg.get("build.usr_lib_dir", "/usr/lib")),
            usr_bin_dir=str(cfg.get("build.usr_bin_dir", "/usr/bin")),
        )

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _as_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in _TRUE_STRINGS

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("KILN_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "kiln.yaml",
        Path.cwd() / "kiln.yml",
        Path.cwd() / "kiln.json",
        Path.home() / ".config" / "kiln" / "config.yaml",
        Path("/etc") / "kiln" / "config.yaml",
    ])
    return candidates

def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def _load_file(path: Path) -> Dict[str, Any]:
    txt = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(txt)
    else:
        # YAML is a superset of JSON, so anything else goes through PyYAML
        data = yaml.safe_load(txt)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config: {path} must contain a mapping, got {type(data).__name__}")
    return data

def _apply_env(cfg: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    """Environment wins over files: KILN_ROOT/ROOT, SKIP_TESTS, KILN_JOBS, KILN_TMPDIR."""
    out = deepcopy(cfg)
    root = environ.get("KILN_ROOT") or environ.get("ROOT")
    if root:
        out["root"] = root
    if "SKIP_TESTS" in environ:
        out.setdefault("build", {})["skip_tests"] = _as_bool(environ["SKIP_TESTS"])
    if environ.get("KILN_JOBS"):
        out.setdefault("build", {})["jobs"] = environ["KILN_JOBS"]
    if environ.get("KILN_TMPDIR"):
        out["tmp_dir"] = environ["KILN_TMPDIR"]
    return out

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    for key in ("root", "tmp_dir"):
        if out.get(key):
            out[key] = _expand_path(out[key])
    log_cfg = out.get("logging")
    if isinstance(log_cfg, dict) and log_cfg.get("file"):
        log_cfg["file"] = _expand_path(log_cfg["file"])
    build = out.get("build")
    if isinstance(build, dict):
        try:
            build["jobs"] = int(build.get("jobs", 1))
        except (TypeError, ValueError):
            logger.warning("config: build.jobs is not an integer: %r", build.get("jobs"))
            build["jobs"] = 1
        build["skip_tests"] = _as_bool(build.get("skip_tests", False))
    fetch = out.get("fetcher")
    if isinstance(fetch, dict):
        try:
            fetch["http_timeout"] = int(fetch.get("http_timeout", 30))
        except (TypeError, ValueError):
            logger.warning("config: fetcher.http_timeout is not an integer: %r", fetch.get("http_timeout"))
            fetch["http_timeout"] = 30
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    build = cfg.get("build", {})
    if not isinstance(build.get("jobs"), int) or build.get("jobs") < 1:
        issues.append("build.jobs must be integer >= 1")
    shell = build.get("shell")
    if not isinstance(shell, list) or not shell or not all(isinstance(s, str) for s in shell):
        issues.append("build.shell must be a non-empty list of strings")
    if cfg.get("pkgtool", {}).get("compression") not in ("gz", "bz2", "xz"):
        issues.append("pkgtool.compression must be one of gz, bz2, xz")
    return (len(issues) == 0, issues)

# ----------------------------
# Loading
# ----------------------------
def load(explicit_path: Optional[str] = None, fatal: bool = False,
         environ: Optional[Dict[str, str]] = None) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    global _CONFIG
    environ = os.environ if environ is None else environ
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            try:
                raw = _load_file(cfg_path)
            except (OSError, ValueError, yaml.YAMLError) as e:
                if fatal:
                    raise
                logger.warning("config: file found but could not be parsed: %s (%s)", cfg_path, e)
        elif explicit_path:
            msg = f"config: {explicit_path} does not exist"
            if fatal:
                raise ValueError(msg)
            logger.warning(msg)
        merged = _apply_env(_deep_merge(DEFAULTS, raw), dict(environ))
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                raise ValueError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def get_engine_config(explicit_path: Optional[str] = None, **overrides: Any) -> EngineConfig:
    """Build an EngineConfig from files + env, with keyword overrides on top."""
    cfg = load(explicit_path) if explicit_path else get_config()
    ec = EngineConfig.from_config(cfg)
    for k, v in overrides.items():
        if v is not None:
            setattr(ec, k, v)
    ec.__post_init__()
    return ec
