"""Tester that runs clusterloader2 scale tests."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Sequence

from kubetest2 import execution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Suite:
    """Configuration files of a well-known testing setup."""

    test_configs: tuple[str, ...] = ()
    test_overrides: tuple[str, ...] = ()


_SUITES = {
    "load": Suite(test_configs=("testing/load/config.yaml",)),
    "density": Suite(test_configs=("testing/density/config.yaml",)),
    "node-throughput": Suite(test_configs=("testing/node-throughput/config.yaml",)),
}


def get_suite(name: str) -> Suite | None:
    """Return the named well-known suite, or None if there is none."""
    return _SUITES.get(name)


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ValueError(message)


@dataclass
class ClusterLoader2Tester:
    """Runs clusterloader2 from a checkout of the perf-tests repository."""

    suites: str = ""
    test_overrides: str = ""
    test_configs: str = ""
    provider: str = "skeleton"
    kube_config: str = field(default_factory=lambda: os.environ.get("KUBECONFIG", ""))
    repo_root: str = ""
    nodes: int = 0

    def command_args(self) -> list[str]:
        """Arguments to ``go`` that run clusterloader2."""
        configs = self.test_configs.split(",")
        overrides = self.test_overrides.split(",")
        for name in self.suites.split(","):
            suite = get_suite(name)
            if suite is not None:
                configs.extend(suite.test_configs)
                overrides.extend(suite.test_overrides)

        args = [
            f"--provider={self.provider}",
            f"--kubeconfig={self.kube_config}",
            "--report-dir="
            + os.path.join(os.environ.get("ARTIFACTS", ""), "clusterloader2"),
        ]
        args += [f"--testconfig={config}" for config in configs if config]
        args += [f"--testoverrides={override}" for override in overrides if override]
        return ["run", "cmd/clusterloader.go", *args]

    def test(self) -> None:
        """Run clusterloader2, raising CommandError if it fails."""
        if not self.repo_root:
            raise ValueError("required path to kubernetes/perf-tests repository")
        args = self.command_args()
        cmd = execution.command("go", *args)
        execution.inherit_output(cmd)
        cmd.cwd = os.path.join(self.repo_root, "clusterloader2")
        logger.debug("running clusterloader2 %s", args[2:])
        cmd.run()

    def _parser(self) -> _Parser:
        parser = _Parser(prog="clusterloader2", add_help=False, allow_abbrev=False)
        options = [
            ("--suites", "suites", "Comma separated list of standard scale testing suites e.g. load, density"),
            ("--test-overrides", "test_overrides", "Comma separated list of paths to the config override files. The latter overrides take precedence over changes in former files."),
            ("--test-configs", "test_configs", "Comma separated list of paths to test config files."),
            ("--provider", "provider", "The type of cluster provider used (e.g gke, gce, skeleton)"),
            ("--kube-config", "kube_config", "Path to kubeconfig. If specified will override the path exposed by the kubetest2 deployer."),
            ("--repo-root", "repo_root", "Path to repository root of kubernetes/perf-tests"),
        ]
        for flag, dest, text in options:
            parser.add_argument(
                flag, dest=dest, default=getattr(self, dest), metavar="string", help=text
            )
        parser.add_argument(
            "--nodes",
            dest="nodes",
            type=int,
            default=self.nodes,
            metavar="int",
            help="Number of nodes in the cluster. 0 will auto-detect schedulable nodes.",
        )
        parser.add_argument("-h", "--help", dest="help", action="store_true")
        return parser

    def execute(self, argv: Sequence[str]) -> None:
        """Parse the tester's flags and run the test, or print help."""
        parser = self._parser()
        try:
            namespace, extras = parser.parse_known_args(list(argv))
            unknown = [extra for extra in extras if extra.startswith("-") and extra != "-"]
            if unknown:
                raise ValueError(f"unknown flag: {unknown[0]}")
        except ValueError as exc:
            raise ValueError(f"failed to parse flags: {exc}") from exc

        if namespace.help:
            sys.stdout.write(parser.format_help())
            return

        for name in (
            "suites", "test_overrides", "test_configs", "provider",
            "kube_config", "repo_root", "nodes",
        ):
            setattr(self, name, getattr(namespace, name))
        self.test()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the clusterloader2 tester; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        ClusterLoader2Tester().execute(argv)
    except Exception as exc:
        sys.stderr.write(f"failed to run clusterloader2 tester: {exc}\n")
        return 1
    return 0