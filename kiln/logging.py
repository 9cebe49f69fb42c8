# kiln/logging.py
# -*- coding: utf-8 -*-
"""
kiln logging

Features:
 - Single "kiln" logger tree; modules obtain a LoggerAdapter via get_logger()
 - Console color formatter (stderr, so command output on stdout stays clean)
 - Optional rotating file handler (size given in human units: 10M, 512K)
 - Module-level configurable log levels (module_levels)
 - Thread-safe reconfiguration from a merged config dict
"""

from __future__ import annotations

import sys
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

_logger = logging.getLogger("kiln.logging")

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = None, datefmt: str = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# Console handler bound to whatever sys.stderr is at emit time
# ----------------------
class StderrHandler(logging.StreamHandler):
    def __init__(self):
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass

# ----------------------
# Module-level filter for per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {m: getattr(logging, lvl.upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "kiln_module", None)
        if mod and mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

# ----------------------
# KilnLogger (singleton)
# ----------------------
class KilnLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("kiln")
        self._root.propagate = False
        self._handlers: List[logging.Handler] = []
        self._module_filter: Optional[ModuleLevelFilter] = None
        self._apply_config({})
        self._inited = True

    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()
            if self._module_filter is not None:
                self._root.removeFilter(self._module_filter)

            self._module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})
            self._root.addFilter(self._module_filter)

            level = getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO)

            # console handler
            console_cfg = cfg.get("console", {"enabled": True}) or {}
            if console_cfg.get("enabled", True):
                ch = StderrHandler()
                ch.setLevel(level)
                fmt = cfg.get("format") or "[%(levelname)s] [%(kiln_module)s] %(message)s"
                color = bool(cfg.get("color", True)) and sys.stderr.isatty()
                ch.setFormatter(ColorFormatter(fmt, datefmt=cfg.get("datefmt", "%H:%M:%S"), color=color))
                self._root.addHandler(ch)
                self._handlers.append(ch)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                max_bytes = _parse_size(cfg.get("max_size", "10M"))
                backups = int(cfg.get("backups", 5))
                fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes or 10 * 1024 * 1024,
                                                          backupCount=backups, encoding="utf-8")
                fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(kiln_module)s] %(message)s"))
                self._root.addHandler(fh)
                self._handlers.append(fh)

            # the root logger passes everything its handlers might want
            handler_levels = [h.level for h in self._handlers] or [level]
            self._root.setLevel(min(handler_levels))

    def configure(self, cfg: Optional[Dict[str, Any]] = None):
        """(Re)apply the 'logging' section of a merged config."""
        self._apply_config(cfg or {})
        _logger.debug("logging: configuration applied")

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'kiln_module' into records."""
        return logging.LoggerAdapter(self._root, {"kiln_module": module_name})

# ----------------------
# Helper parse size (public)
# ----------------------
def _parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mul in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mul)
        return int(float(ss))
    except ValueError:
        _logger.debug("logging: parse size failed for %s", s)
        return None

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = KilnLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def configure(cfg: Optional[Dict[str, Any]] = None):
    return _GLOBAL_LOGGER.configure(cfg)
