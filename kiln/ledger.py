# kiln/ledger.py
"""
ledger.py - installed-file ledger

One file per installed package at R/var/lib/pkg/<name>/files, one absolute path
per line, directories ending in "/". The presence of that file is what makes a
package count as installed.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List

from kiln.config import EngineConfig
from kiln.logging import get_logger

logger = get_logger("ledger")

LEDGER_NAME = "files"


class Ledger:
    def __init__(self, config: EngineConfig):
        self.config = config

    def path(self, name: str) -> Path:
        return self.config.data_dir / name / LEDGER_NAME

    def is_installed(self, name: str) -> bool:
        return self.path(name).is_file()

    def write(self, name: str, entries: Iterable[str]) -> Path:
        """Write the whole ledger under a temporary name, then rename it into place."""
        dest = self.path(name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(f".{LEDGER_NAME}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8", errors="surrogateescape") as f:
                for entry in entries:
                    f.write(entry + "\n")
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        os.replace(tmp, dest)
        logger.debug("%s: ledger written to %s", name, dest)
        return dest

    def read(self, name: str) -> List[str]:
        text = self.path(name).read_text(encoding="utf-8", errors="surrogateescape")
        return [line for line in text.splitlines() if line.strip()]

    def files(self, name: str) -> List[str]:
        return [e for e in self.read(name) if not e.endswith("/")]

    def dirs(self, name: str) -> List[str]:
        return [e for e in self.read(name) if e.endswith("/")]

    def remove(self, name: str) -> None:
        self.path(name).unlink()

    def installed(self) -> List[str]:
        base = self.config.data_dir
        if not base.is_dir():
            return []
        return sorted(p.name for p in base.iterdir() if (p / LEDGER_NAME).is_file())
