"""The root command: finds deployer and tester binaries and hands over to them."""

from __future__ import annotations

import argparse
import os
import shutil
import sys
from typing import Callable, NoReturn, Sequence

from kubetest2 import process

BINARY_NAME = "kubetest2"
GIT_TAG = ""

USAGE_LONG = f"""{BINARY_NAME} is a tool for kubernetes end to end testing.

It orchestrates creating clusters, building kubernetes, deleting clusters, running tests, etc.

{BINARY_NAME} should be called with a deployer like: '{BINARY_NAME} kind --help'"""


class NotFoundError(LookupError):
    """A deployer or tester binary is not on PATH."""


def find_deployer(name: str) -> str:
    """Return the path of the binary implementing the named deployer."""
    binary = f"{BINARY_NAME}-{name}"
    path = shutil.which(binary)
    if path is None:
        raise NotFoundError(
            f'"{binary}" not found in PATH, could not locate "{name}" deployer'
        )
    return path


def find_tester(name: str) -> str:
    """Return the path of the binary implementing the named tester."""
    binary = f"{BINARY_NAME}-tester-{name}"
    path = shutil.which(binary)
    if path is None:
        raise NotFoundError(
            f'"{binary}" not found in PATH, could not locate "{name}" tester'
        )
    return path


def _scan_path(
    prefix: str, exclude_prefix: str | None, find: Callable[[str], str]
) -> dict[str, str]:
    found: dict[str, str] = {}
    for directory in os.environ.get("PATH", "").split(os.pathsep):
        directory = directory or "."
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            continue
        for entry in entries:
            try:
                if entry.is_dir():
                    continue
            except OSError:
                continue
            file_name = entry.name
            if not file_name.startswith(prefix):
                continue
            if exclude_prefix and file_name.startswith(exclude_prefix):
                continue
            name = file_name[len(prefix):]
            if name in found:
                continue
            try:
                found[name] = find(name)
            except NotFoundError:
                continue
    return found


def find_deployers() -> dict[str, str]:
    """Map each deployer name on PATH to the first matching binary."""
    return _scan_path(f"{BINARY_NAME}-", f"{BINARY_NAME}-tester-", find_deployer)


def find_testers() -> dict[str, str]:
    """Map each tester name on PATH to the first matching binary."""
    return _scan_path(f"{BINARY_NAME}-tester-", None, find_tester)


def usage_text() -> str:
    """Return usage text listing the deployers and testers found on PATH."""
    lines = ["Usage:", f"  {BINARY_NAME} [deployer] [flags]", "", "Detected Deployers:"]
    lines.extend(f"  {name}" for name in sorted(find_deployers()))
    lines.extend(["", "Detected Testers:"])
    lines.extend(f"  {name}" for name in sorted(find_testers()))
    lines.extend(["", f"For more help, run {BINARY_NAME} [deployer] --help", ""])
    return "\n".join(lines)


def _print_help() -> None:
    sys.stderr.write(f"{USAGE_LONG}\n\n{usage_text()}")


class _QuietParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ValueError(message)


def _help_or_version(arg: str) -> tuple[bool, bool]:
    parser = _QuietParser(prog=BINARY_NAME, add_help=False, allow_abbrev=False)
    parser.add_argument("-h", "--help", action="store_true")
    parser.add_argument("-v", "--version", action="store_true")
    try:
        namespace, _ = parser.parse_known_args([arg])
    except (ValueError, argparse.ArgumentError):
        return False, False
    return namespace.help, namespace.version


def run(argv: Sequence[str]) -> None:
    """Run the root command, raising NotFoundError or ProcessError on failure."""
    args = list(argv)
    sys.stderr.write(f"Running {BINARY_NAME} version: {GIT_TAG}\n")
    if not args:
        _print_help()
        return

    if len(args) == 1:
        wants_help, wants_version = _help_or_version(args[0])
        if wants_help:
            _print_help()
            return
        if wants_version:
            sys.stdout.write(f"{BINARY_NAME} version {GIT_TAG}\n")
            return

    deployer_name = args[0]
    try:
        deployer = find_deployer(deployer_name)
    except NotFoundError:
        sys.stderr.write(
            f'Error: could not find kubetest2 deployer "{deployer_name}"\n\n'
        )
        sys.stderr.write(usage_text())
        raise
    process.execute(deployer, args[1:], dict(os.environ))


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the root command; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        run(argv)
    except (NotFoundError, process.ProcessError):
        return 1
    return 0