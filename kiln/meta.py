# kiln/meta.py
"""
meta.py - loader and validator for .pkg package descriptors

Features:
- Parse <name>.pkg descriptors (YAML mapping) into immutable Descriptor values
- Validation before any side effect: name, version and a build callback are required
- Callbacks: shell script text (the usual case) or Python callables for programmatic use
- Descriptor resolution: directory -> dir/<dir>.pkg, ".pkg" suffix added when missing,
  fallback to the copy stored by a previous build under var/lib/pkg/<name>/<name>.pkg
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from kiln.errors import ValidationError
from kiln.logging import get_logger

logger = get_logger("meta")

PKG_SUFFIX = ".pkg"

BUILD_CALLBACKS = ("prepare", "build")
INSTALL_CALLBACKS = ("pre_install", "post_install")
UNINSTALL_CALLBACKS = ("pre_uninstall", "post_uninstall")
LIFECYCLE_CALLBACKS = BUILD_CALLBACKS + INSTALL_CALLBACKS + UNINSTALL_CALLBACKS

KNOWN_KEYS = ("name", "version", "sources", "checksums", "md5sums", "description") + LIFECYCLE_CALLBACKS

_NAME_RE = re.compile(r"^[A-Za-z0-9_+@][A-Za-z0-9_+.@-]*$")


def strip_pkg_suffix(name: str) -> str:
    """Drop a trailing ".pkg" from a package argument."""
    return name[: -len(PKG_SUFFIX)] if name.endswith(PKG_SUFFIX) else name


# -----------------------
# Data models
# -----------------------
@dataclass(frozen=True)
class CallbackContext:
    """What a Python callback gets: the callback name, working dir and environment."""
    name: str
    cwd: Path
    env: Mapping[str, str]


@dataclass(frozen=True)
class Callback:
    """
    One lifecycle step. Exactly one of `script` (shell text) or `func`
    (callable taking a CallbackContext and returning an exit status) is set.
    """
    name: str
    script: Optional[str] = None
    func: Optional[Callable[[CallbackContext], Optional[int]]] = None

    def __post_init__(self):
        if (self.script is None) == (self.func is None):
            raise ValidationError(f"callback {self.name} needs either a script or a function")


@dataclass(frozen=True)
class Descriptor:
    name: str
    version: str
    build: Callback
    sources: Tuple[str, ...] = ()
    checksums: Tuple[str, ...] = ()
    prepare: Optional[Callback] = None
    pre_install: Optional[Callback] = None
    post_install: Optional[Callback] = None
    pre_uninstall: Optional[Callback] = None
    post_uninstall: Optional[Callback] = None
    description: str = ""
    path: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def pkg_dir(self) -> Path:
        return self.path.parent if self.path else Path.cwd()

    @property
    def file_name(self) -> str:
        return f"{self.name}{PKG_SUFFIX}"

    def callback(self, name: str) -> Optional[Callback]:
        if name not in LIFECYCLE_CALLBACKS:
            raise KeyError(name)
        return getattr(self, name)

    def checksum_for(self, index: int) -> Optional[str]:
        """Checksums are index-aligned with sources; missing entries are unchecked."""
        if index < len(self.checksums) and self.checksums[index]:
            return self.checksums[index]
        return None

    # -----------------------
    # construction from parsed data
    # -----------------------
    @classmethod
    def from_mapping(cls, data: Any, path: Optional[Path] = None) -> "Descriptor":
        where = str(path.name if path else "<descriptor>")
        if not isinstance(data, dict):
            raise ValidationError(f"{where}: descriptor must be a mapping")

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"{where}: Package needs a name variable!")
        if not _NAME_RE.match(name):
            raise ValidationError(f"{where}: invalid package name {name!r}")
        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, (str, int, float)) or not str(version).strip():
            raise ValidationError(f"{where}: Package needs a version variable!", package=name)
        version = str(version).strip()
        if "/" in version or version in (".", ".."):
            raise ValidationError(f"{where}: invalid version {version!r}", package=name)

        sources = _str_list(data.get("sources"), "sources", where, name)
        if "checksums" in data and "md5sums" in data:
            raise ValidationError(f"{where}: use either checksums or md5sums, not both", package=name)
        checksums = _str_list(data.get("checksums", data.get("md5sums")), "checksums", where, name)

        callbacks: Dict[str, Callback] = {}
        for cb_name in LIFECYCLE_CALLBACKS:
            val = data.get(cb_name)
            if val is None:
                continue
            if callable(val):
                callbacks[cb_name] = Callback(cb_name, func=val)
            elif isinstance(val, str) and val.strip():
                callbacks[cb_name] = Callback(cb_name, script=val)
            else:
                raise ValidationError(f"{where}: {cb_name} must be a non-empty script", package=name)
        if "build" not in callbacks:
            raise ValidationError(f"{where}: Package needs a build function!", package=name)

        unknown = [k for k in data if k not in KNOWN_KEYS]
        if unknown:
            logger.warning("%s: ignoring unknown keys: %s", where, ", ".join(sorted(map(str, unknown))))

        return cls(
            name=name,
            version=version,
            sources=tuple(sources),
            checksums=tuple(checksums),
            description=str(data.get("description") or ""),
            path=Path(path).absolute() if path else None,
            extra={k: data[k] for k in unknown},
            **callbacks,
        )


def _str_list(val: Any, key: str, where: str, name: str) -> List[str]:
    if val is None:
        return []
    if isinstance(val, str):
        val = [val]
    if not isinstance(val, (list, tuple)) or not all(isinstance(v, str) for v in val):
        raise ValidationError(f"{where}: {key} must be a list of strings", package=name)
    return [v.strip() for v in val]

# -----------------------
# MetaLoader
# -----------------------
class MetaLoader:
    """Finds descriptor files and turns them into Descriptor values."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def stored_path(self, name: str) -> Path:
        """Current-version copy kept by the build cache."""
        return self.data_dir / name / f"{name}{PKG_SUFFIX}"

    def resolve(self, arg: Union[str, os.PathLike]) -> Path:
        p = Path(arg)
        if p.is_dir():
            p = p.absolute()
            return p / f"{p.name}{PKG_SUFFIX}"
        fname = p.name if p.name.endswith(PKG_SUFFIX) else f"{p.name}{PKG_SUFFIX}"
        candidate = (p.parent / fname).absolute()
        if not candidate.is_file():
            stored = self.stored_path(fname[: -len(PKG_SUFFIX)])
            if stored.is_file():
                logger.info("Using previously built %s...", fname)
                return stored
        return candidate

    def load(self, path: Union[str, os.PathLike]) -> Descriptor:
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"missing {path}!")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ValidationError(f"{path.name}: cannot parse descriptor: {e}") from e
        except OSError as e:
            raise ValidationError(f"{path}: cannot read descriptor: {e}") from e
        desc = Descriptor.from_mapping(data, path=path)
        logger.debug("loaded %s %s from %s", desc.name, desc.version, path)
        return desc

    def load_arg(self, arg: Union[str, os.PathLike]) -> Descriptor:
        return self.load(self.resolve(arg))
