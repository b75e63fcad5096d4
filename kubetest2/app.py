"""Core control flow of a run: build, bring a cluster up, test, tear it down."""

from __future__ import annotations

import logging
import os
from typing import Callable, TextIO

from kubetest2 import execution
from kubetest2.metadata import Writer
from kubetest2.types import (
    Deployer,
    DeployerWithKubeconfig,
    DeployerWithPostTester,
    Options,
    Tester,
)

logger = logging.getLogger(__name__)

SUITE_NAME = "kubetest2"
RUNNER_FILE = "junit_runner.xml"


def real_main(opts: Options, deployer: Deployer, tester: Tester) -> None:
    """Run the selected steps, recording each in ``junit_runner.xml``.

    Build failures stop the run before the cluster is touched. Once past
    the build, tearing down happens last even if bringing up or testing
    fails. The first error encountered is the one raised.
    """
    run_dir = opts.run_dir()
    logger.info("RunDir for this run: %r", run_dir)
    os.makedirs(run_dir, exist_ok=True)

    runner_path = os.path.join(run_dir, RUNNER_FILE)
    try:
        junit_runner = open(runner_path, "w", encoding="utf-8")
    except OSError as exc:
        raise OSError(f"could not create runner output: {exc}") from exc
    writer = Writer(SUITE_NAME, junit_runner)

    succeeded = False
    try:
        logger.info("ID for this run: %r", opts.run_id())
        _run_steps(opts, deployer, tester, writer)
        succeeded = True
    finally:
        _finalize(writer, junit_runner, raise_errors=succeeded)


def _finalize(writer: Writer, stream: TextIO, raise_errors: bool) -> None:
    """Write out the metadata and close the file, keeping the first error."""
    steps: list[Callable[[], object]] = [
        writer.finish,
        stream.flush,
        lambda: os.fsync(stream.fileno()),
        stream.close,
    ]
    first: Exception | None = None
    for step in steps:
        try:
            step()
        except Exception as exc:
            if first is None:
                first = exc
    if first is not None and raise_errors:
        raise first


def _run_steps(
    opts: Options, deployer: Deployer, tester: Tester, writer: Writer
) -> None:
    if opts.should_build():
        writer.wrap_step("Build", deployer.build)

    try:
        if opts.should_up():
            writer.wrap_step("Up", deployer.up)
        if opts.should_test():
            _run_tester(opts, deployer, tester, writer)
    except BaseException:
        if opts.should_down():
            try:
                writer.wrap_step("Down", deployer.down)
            except Exception as exc:
                logger.error("Down failed after an earlier error: %s", exc)
        raise

    if opts.should_down():
        writer.wrap_step("Down", deployer.down)


def _tester_env(opts: Options, deployer: Deployer) -> dict[str, str]:
    run_dir = opts.run_dir()
    env = dict(os.environ)
    # the run dir goes on PATH so that locally built binaries are found
    env["PATH"] = run_dir + os.pathsep + os.environ.get("PATH", "")
    env["ARTIFACTS"] = run_dir
    env["KUBETEST2_RUN_DIR"] = run_dir
    env["KUBETEST2_RUN_ID"] = opts.run_id()
    if isinstance(deployer, DeployerWithKubeconfig):
        try:
            env["KUBECONFIG"] = deployer.kubeconfig()
        except Exception as exc:
            logger.debug("deployer provided no kubeconfig: %s", exc)
    return env


def _run_tester(
    opts: Options, deployer: Deployer, tester: Tester, writer: Writer
) -> None:
    cmd = execution.command(tester.tester_path, *tester.tester_args)
    execution.inherit_output(cmd)
    cmd.env = _tester_env(opts, deployer)

    test_error: Exception | None = None
    try:
        if opts.skip_test_junit_report():
            cmd.run()
        else:
            writer.wrap_step("Test", cmd.run)
    except Exception as exc:
        test_error = exc

    if isinstance(deployer, DeployerWithPostTester):
        deployer.post_test(test_error)
    if test_error is not None:
        raise test_error