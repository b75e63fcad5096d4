"""Command line handling shared by every deployer binary."""

from __future__ import annotations

import argparse
import dataclasses
import io
import os
import sys
import uuid
from dataclasses import dataclass
from typing import Callable, NoReturn, Sequence

from kubetest2 import app, artifacts, execution, shim
from kubetest2.types import Deployer, IncorrectUsage, Options, Tester

NewDeployer = Callable[
    [Options], "tuple[Deployer, argparse.ArgumentParser | None]"
]


class _ParseError(Exception):
    """A flag could not be parsed."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise _ParseError(message)


def _new_parser(
    prog: str, parents: Sequence[argparse.ArgumentParser] = ()
) -> _Parser:
    return _Parser(
        prog=prog, add_help=False, allow_abbrev=False, parents=list(parents)
    )


def _option_actions(parser: argparse.ArgumentParser) -> list[argparse.Action]:
    return [
        action
        for action in parser._actions
        if action.option_strings and action.help != argparse.SUPPRESS
    ]


def split_args(args: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split at the first bare ``--`` into deployer and tester arguments."""
    args = list(args)
    if "--" in args:
        index = args.index("--")
        return args[:index], args[index + 1:]
    return args, []


@dataclass
class RunOptions(Options):
    """Values of the common flags."""

    help: bool = False
    build: bool = False
    up: bool = False
    down: bool = False
    test: str = ""
    skip_test_junit_report_flag: bool = False
    runid: str = ""

    def help_requested(self) -> bool:
        return self.help

    def should_build(self) -> bool:
        return self.build

    def should_up(self) -> bool:
        return self.up

    def should_down(self) -> bool:
        return self.down

    def should_test(self) -> bool:
        return self.test != ""

    def skip_test_junit_report(self) -> bool:
        return self.skip_test_junit_report_flag

    def run_id(self) -> str:
        return self.runid

    def run_dir(self) -> str:
        return os.path.join(artifacts.base_dir(), self.run_id())

    def _apply(self, namespace: argparse.Namespace) -> None:
        for spec in dataclasses.fields(self):
            if hasattr(namespace, spec.name):
                setattr(self, spec.name, getattr(namespace, spec.name))


def build_parser(deployer_name: str) -> argparse.ArgumentParser:
    """Return a parser for the common flags, including ``--artifacts``."""
    parser = _new_parser(deployer_name)
    parser.add_argument(
        "-h", "--help", dest="help", action="store_true", help="display help"
    )
    parser.add_argument("--build", action="store_true", help="build kubernetes")
    parser.add_argument(
        "--up", action="store_true", help="provision the test cluster"
    )
    parser.add_argument(
        "--down", action="store_true", help="tear down the test cluster"
    )
    parser.add_argument(
        "--test",
        default="",
        metavar="string",
        help="test type to run, if unset no tests will run",
    )
    parser.add_argument(
        "--skip-test-junit-report",
        dest="skip_test_junit_report_flag",
        action="store_true",
        help="skip reporting the test step as a JUnit test case, should be set "
        "to true when solely relying on the tester binary to generate it's own junit.",
    )
    # reuse the CI job id when there is one
    default_run_id = os.environ.get("PROW_JOB_ID") or str(uuid.uuid4())
    parser.add_argument(
        "--run-id",
        dest="runid",
        default=default_run_id,
        metavar="string",
        help="unique identifier for a kubetest2 run",
    )
    artifacts.bind_flags(parser)
    return parser


def _type_name(action: argparse.Action) -> str:
    if isinstance(action.metavar, str):
        return action.metavar
    if action.type is int:
        return "int"
    return "string"


def _flag_usages(parser: argparse.ArgumentParser) -> str:
    """Render one line per option, sorted by name."""
    rows: list[tuple[str, str]] = []

    def sort_key(action: argparse.Action) -> str:
        longs = [s for s in action.option_strings if s.startswith("--")]
        return (longs or action.option_strings)[0].lstrip("-")

    for action in sorted(_option_actions(parser), key=sort_key):
        longs = [s for s in action.option_strings if s.startswith("--")]
        shorts = [s for s in action.option_strings if not s.startswith("--")]
        if longs and shorts:
            head = f"  {shorts[0]}, {longs[0]}"
        elif longs:
            head = f"      {longs[0]}"
        else:
            head = f"  {shorts[0]}"
        text = action.help or ""
        if action.nargs != 0:
            head += f" {_type_name(action)}"
            default = action.default
            if default not in (None, "", 0, False):
                shown = f'"{default}"' if isinstance(default, str) else str(default)
                text += f" (default {shown})"
        rows.append((head, text))
    if not rows:
        return ""
    width = max(len(head) for head, _ in rows)
    return "".join(f"{head.ljust(width)}   {text}\n" for head, text in rows)


@dataclass
class Usage:
    """Everything needed to show usage for a deployer and tester."""

    deployer_name: str
    kubetest2_flags: argparse.ArgumentParser
    deployer_flags: argparse.ArgumentParser | None = None
    tester_name: str = ""
    tester_usage: str = ""

    def render(self) -> str:
        """Return the complete usage text."""
        if self.deployer_flags is not None:
            deployer_usage = _flag_usages(self.deployer_flags)
        else:
            deployer_usage = f"  NONE - {self.deployer_name} has no flags"
        tester_usage = self.tester_usage or f"  NONE - {self.tester_name} has no usage"

        text = (
            "Usage:\n"
            f"  kubetest2 {self.deployer_name} [Flags] [DeployerFlags] -- [TesterArgs]\n"
            "\n"
            "Flags:\n"
            f"{_flag_usages(self.kubetest2_flags)}\n"
            f"DeployerFlags({self.deployer_name}):\n"
            f"{deployer_usage}\n"
        )
        if self.tester_name:
            text += f"TesterArgs({self.tester_name}):\n{tester_usage}\n"
        return text


def _check_conflicts(
    common: argparse.ArgumentParser, deployer_flags: argparse.ArgumentParser
) -> None:
    taken = {s for action in _option_actions(common) for s in action.option_strings}
    for action in _option_actions(deployer_flags):
        for option in action.option_strings:
            if option in taken:
                kind = "flag" if option.startswith("--") else "shorthand flag"
                raise ValueError(
                    f'kubetest2 common {kind} "{option.lstrip("-")}" '
                    "re-registered by deployer"
                )


def _tester_usage(tester_path: str, tester_args: Sequence[str]) -> str:
    cmd = execution.command(tester_path, "--help", *tester_args)
    stderr = io.BytesIO()
    cmd.stderr = stderr
    try:
        out = execution.output(cmd)
    except execution.CommandError as exc:
        raise execution.CommandError(
            stderr.getvalue().decode("utf-8", "replace"),
            returncode=exc.returncode,
        ) from exc
    return out.decode("utf-8", "replace")


def run(
    deployer_name: str, new_deployer: NewDeployer, argv: Sequence[str]
) -> None:
    """Parse ``argv`` for ``deployer_name`` and perform the run.

    Raises IncorrectUsage for invalid flags, after printing the error and
    the usage text.
    """
    args = list(argv)
    out = sys.stderr
    opts = RunOptions()
    common = build_parser(deployer_name)

    out.write(f"Running deployer {deployer_name} version: {shim.GIT_TAG}\n")

    deployer_args, tester_args = split_args(args)
    usage = Usage(deployer_name=deployer_name, kubetest2_flags=common)

    parse_error: Exception | None = None
    try:
        namespace, _ = common.parse_known_args(deployer_args)
    except _ParseError as exc:
        parse_error = exc
        namespace, _ = common.parse_known_args([])
    opts._apply(namespace)

    tester = Tester()
    if opts.test:
        try:
            tester_path = shim.find_tester(opts.test)
        except shim.NotFoundError as exc:
            raise shim.NotFoundError(
                f"unable to find tester {opts.test}: {exc}"
            ) from exc
        out.write(f"Running tester {opts.test} version: {shim.GIT_TAG}\n")
        usage.tester_usage = _tester_usage(tester_path, tester_args)
        usage.tester_name = opts.test
        tester = Tester(tester_path=tester_path, tester_args=tester_args)

    deployer, deployer_flags = new_deployer(opts)
    usage.deployer_flags = deployer_flags

    parents: list[argparse.ArgumentParser] = [common]
    deployer_dests: set[str] = set()
    if deployer_flags is not None:
        _check_conflicts(common, deployer_flags)
        parents.append(deployer_flags)
        deployer_dests = {action.dest for action in _option_actions(deployer_flags)}

    combined = _new_parser(deployer_name, parents)
    try:
        namespace, extras = combined.parse_known_args(deployer_args)
        unknown = next(
            (extra for extra in extras if extra.startswith("-") and extra != "-"),
            None,
        )
        if unknown is not None:
            raise _ParseError(f"unknown flag: {unknown}")
    except _ParseError as exc:
        if parse_error is None:
            parse_error = exc
    else:
        opts._apply(namespace)
        for dest in deployer_dests:
            setattr(deployer, dest, getattr(namespace, dest))

    if not args or opts.help_requested():
        out.write(usage.render())
        return

    if parse_error is not None:
        if isinstance(parse_error, IncorrectUsage):
            error = parse_error
            out.write(error.help_text())
        else:
            message = f"Error: {parse_error}"
            error = IncorrectUsage(message)
            out.write(message)
        out.write("\n\n")
        out.write(usage.render())
        raise error from parse_error

    app.real_main(opts, deployer, tester)


def main(
    deployer_name: str,
    new_deployer: NewDeployer,
    argv: Sequence[str] | None = None,
) -> int:
    """Entry point of a deployer binary; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        run(deployer_name, new_deployer, argv)
    except IncorrectUsage:
        # already printed together with the usage
        return 1
    except Exception as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1
    return 0