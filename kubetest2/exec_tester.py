"""Tester that runs its arguments as a command."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field
from typing import Sequence

from kubetest2 import process

USAGE = """kubetest2 --test=exec --  [TestCommand] [TestArgs]
  TestCommand: the command to invoke for testing
  TestArgs:    arguments passed to test command
"""

_SPECIAL = r"[*#$@!?\-0-9]"
_VARIABLE = re.compile(
    r"\$(?:"
    rf"\{{(?P<braced_special>{_SPECIAL})\}}"
    r"|\{(?P<braced>[^}]*)\}"
    r"|(?P<bad>\{)"
    rf"|(?P<special>{_SPECIAL})"
    r"|(?P<name>[A-Za-z0-9_]*)"
    r")"
)

_TRUE = {"1", "t", "T", "true", "TRUE", "True"}


def _expand(text: str) -> str:
    """Replace ``$var`` and ``${var}`` with environment values; unset is empty."""

    def substitute(match: re.Match[str]) -> str:
        name = (
            match.group("braced_special")
            or match.group("braced")
            or match.group("special")
            or match.group("name")
        )
        if name:
            return os.environ.get(name, "")
        if match.group("braced") is not None or match.group("bad") is not None:
            # invalid syntax is dropped
            return ""
        return "$"

    return _VARIABLE.sub(substitute, text)


def expand_env(args: Sequence[str]) -> list[str]:
    """Expand environment variables in each argument.

    An argument containing ``\\$`` is not expanded; the backslash is removed
    instead, so a literal dollar can be passed through.
    """
    return [
        arg.replace("\\$", "$") if "\\$" in arg else _expand(arg) for arg in args
    ]


def _is_help(arg: str) -> bool:
    if arg in ("-h", "--help"):
        return True
    for prefix in ("--help=", "-h="):
        if arg.startswith(prefix):
            return arg[len(prefix):] in _TRUE
    return False


@dataclass
class ExecTester:
    """Runs the given command and arguments as the test."""

    argv: list[str] = field(default_factory=list)

    def execute(self, argv: Sequence[str]) -> None:
        """Handle the tester's arguments and run the test.

        With no arguments, or only a help flag first, usage is printed.
        """
        args = list(argv)
        if not args or _is_help(args[0]):
            sys.stdout.write(USAGE)
            return
        self.argv = args
        self.test()

    def test(self) -> None:
        """Run the command, raising ProcessError if it fails."""
        expanded = expand_env(self.argv)
        if not expanded:
            raise ValueError("no test command given")
        process.execute_junit(expanded[0], expanded[1:], dict(os.environ))


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the exec tester; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        ExecTester().execute(argv)
    except Exception as exc:
        sys.stderr.write(f"failed to run exec tester: {exc}\n")
        return 1
    return 0