# kiln/sandbox.py
"""
sandbox.py - execution of descriptor lifecycle callbacks

Features:
- Each callback gets its own log file in the scratch dir
  (<name>-<version>.XXXX.<callback>.log); stdout and stderr both land there
- Log is removed when the callback succeeds and kept (and reported) when it fails
- Shell callbacks run through the configured shell (default `/bin/sh -e -c`)
- Python callbacks run in-process with stdout/stderr redirected to the same log
- Environment contract: ROOT, PKGDIR, NAME, VERSION, SKIP_TESTS, JOBS, MAKEFLAGS for
  every callback; SRCDIR for build-phase callbacks; DESTDIR, USRLIBDIR, USRBINDIR for build
"""

from __future__ import annotations

import os
import subprocess
import tempfile
import traceback
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Dict, Mapping, Optional

from kiln.config import EngineConfig
from kiln.errors import CallbackError
from kiln.logging import get_logger
from kiln.meta import Callback, CallbackContext, Descriptor

logger = get_logger("sandbox")


class CallbackRunner:
    def __init__(self, config: EngineConfig):
        self.config = config

    # -----------------------------
    # environment
    # -----------------------------
    def base_env(self, desc: Descriptor) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            "ROOT": str(self.config.root),
            "PKGDIR": str(desc.pkg_dir),
            "NAME": desc.name,
            "VERSION": desc.version,
            "SKIP_TESTS": "true" if self.config.skip_tests else "false",
            "JOBS": str(self.config.jobs),
            "MAKEFLAGS": f"-j{self.config.jobs}",
        })
        return env

    def build_env(self, desc: Descriptor, srcdir: Path, destdir: Optional[Path] = None) -> Dict[str, str]:
        env = self.base_env(desc)
        env["SRCDIR"] = str(srcdir)
        if destdir is not None:
            env.update({
                "DESTDIR": str(destdir),
                "USRLIBDIR": self.config.usr_lib_dir,
                "USRBINDIR": self.config.usr_bin_dir,
            })
        return env

    # -----------------------------
    # execution
    # -----------------------------
    def run(self, desc: Descriptor, name: str, cwd: Path, env: Optional[Mapping[str, str]] = None) -> bool:
        """
        Run the `name` callback of `desc` if it has one. Returns False when the
        descriptor does not define it, True on success; raises CallbackError otherwise.
        """
        cb = desc.callback(name)
        if cb is None:
            return False
        env = dict(env) if env is not None else self.base_env(desc)
        tmp_dir = Path(self.config.tmp_dir)
        tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, log_path = tempfile.mkstemp(prefix=f"{desc.name}-{desc.version}.", suffix=f".{name}.log", dir=str(tmp_dir))
        logger.info("Running %s...", name)
        with os.fdopen(fd, "w", encoding="utf-8") as log:
            rc = self._invoke(cb, Path(cwd), env, log, desc, log_path)
        if rc != 0:
            raise CallbackError(f"{name} failed (status {rc}), see {log_path}", package=desc.name,
                                callback=name, log_path=log_path, returncode=rc)
        os.remove(log_path)
        return True

    def _invoke(self, cb: Callback, cwd: Path, env: Dict[str, str], log, desc: Descriptor, log_path: str) -> int:
        if cb.script is not None:
            log.flush()
            try:
                proc = subprocess.run(list(self.config.shell) + [cb.script], cwd=str(cwd), env=env,
                                      stdin=subprocess.DEVNULL, stdout=log, stderr=subprocess.STDOUT)
            except OSError as e:
                raise CallbackError(f"{cb.name}: cannot start {self.config.shell[0]}: {e}", package=desc.name,
                                    callback=cb.name, log_path=log_path) from e
            return proc.returncode
        ctx = CallbackContext(name=cb.name, cwd=cwd, env=env)
        prev = os.getcwd()
        os.chdir(cwd)
        try:
            with redirect_stdout(log), redirect_stderr(log):
                rc = cb.func(ctx)
        except Exception as e:
            log.write(traceback.format_exc())
            raise CallbackError(f"{cb.name} raised {e!r}, see {log_path}", package=desc.name,
                                callback=cb.name, log_path=log_path) from e
        finally:
            os.chdir(prev)
        return int(rc or 0)
