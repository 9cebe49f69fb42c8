#!/usr/bin/env python3
# kiln/cli.py
"""
kiln CLI - thin command dispatcher over the lifecycle engine

Usage:
  kiln [--root R] [--config F] [-v] build <descriptor>...
  kiln [--root R] install <package>...
  kiln [--root R] uninstall <package>...
  kiln [--root R] list
  kiln [--root R] files <package>...
  kiln [--root R] version <package>...
  kiln help

Packages are processed in argument order; the first error stops the run and
exits with status 1.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from kiln import __version__
from kiln import config as kiln_config
from kiln import logging as kiln_logging
from kiln.config import EngineConfig
from kiln.engine import LifecycleEngine
from kiln.errors import KilnError
from kiln.logging import get_logger
from kiln.meta import strip_pkg_suffix

logger = get_logger("cli")

console = Console()
err_console = Console(stderr=True)

# -----------------------
# Output helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {escape(msg)}", soft_wrap=True)

def print_err(msg: str):
    err_console.print(f"[bold red]✖[/] {escape(msg)}", highlight=False, soft_wrap=True)

def print_plain(text: str):
    """Machine-readable lines (package names, paths): no markup, no wrapping."""
    console.print(text, markup=False, highlight=False, soft_wrap=True)

# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="kiln", description="kiln source package manager")
    ap.add_argument("--root", help="target root (default: / or $KILN_ROOT / $ROOT)")
    ap.add_argument("--config", help="config file (YAML or JSON)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="cmd")

    p_build = sub.add_parser("build", help="build packages from descriptors")
    p_build.add_argument("descriptors", nargs="+", metavar="descriptor")
    p_install = sub.add_parser("install", help="install built packages")
    p_install.add_argument("packages", nargs="+", metavar="package")
    p_uninstall = sub.add_parser("uninstall", help="remove installed packages")
    p_uninstall.add_argument("packages", nargs="+", metavar="package")
    sub.add_parser("list", help="list installed packages")
    p_files = sub.add_parser("files", help="list files owned by installed packages")
    p_files.add_argument("packages", nargs="+", metavar="package")
    p_version = sub.add_parser("version", help="show the current built version")
    p_version.add_argument("packages", nargs="+", metavar="package")
    sub.add_parser("help", help="show this help")
    return ap

def make_engine(args: argparse.Namespace) -> LifecycleEngine:
    cfg = kiln_config.load(args.config)
    log_cfg = dict(cfg.get("logging") or {})
    if args.verbose:
        log_cfg["level"] = "DEBUG"
    kiln_logging.configure(log_cfg)
    ec = EngineConfig.from_config(cfg)
    if args.root:
        ec.root = args.root
        ec.__post_init__()
    logger.debug("root=%s tmp_dir=%s", ec.root, ec.tmp_dir)
    return LifecycleEngine(ec)

# -----------------------
# Dispatch
# -----------------------
def run(engine: LifecycleEngine, args: argparse.Namespace) -> None:
    if args.cmd == "build":
        for desc in args.descriptors:
            archive = engine.build(desc)[0]
            print_ok(f"{desc}: {archive}")
    elif args.cmd == "install":
        for pkg in args.packages:
            engine.install(pkg)
            print_ok(f"Installed {strip_pkg_suffix(pkg)}")
    elif args.cmd == "uninstall":
        for pkg in args.packages:
            if engine.uninstall(pkg):
                print_ok(f"Uninstalled {strip_pkg_suffix(pkg)}")
    elif args.cmd == "list":
        for name in engine.list_installed():
            print_plain(name)
    elif args.cmd == "files":
        for path in engine.files(*args.packages):
            print_plain(path)
    elif args.cmd == "version":
        for name, version in engine.version(*args.packages).items():
            print_plain(f"{name} {version}")

def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if args.cmd in (None, "help"):
        parser.print_help()
        return 0 if args.cmd == "help" else 1

    try:
        run(make_engine(args), args)
    except KilnError as e:
        where = f" (after {e.stage.value})" if e.stage else ""
        print_err(f"{e.package + ': ' if e.package else ''}{e}{where}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
