# kubetest2

A framework for running Kubernetes end-to-end tests. A run goes through
the steps you ask for: build, bring a cluster up, run a tester, tear the
cluster down. Each step is recorded as a JUnit test case in
`junit_runner.xml` under the run's directory inside the artifacts
directory.

## Installation

```
pip install .
```

## Commands

- `kubetest2`: the entry point. It finds a deployer binary named
  `kubetest2-<deployer>` on `PATH` and runs it with the remaining arguments,
  passing on signals it receives. Run it without arguments, or with
  `--help`, to list the deployers and testers it finds on `PATH`.
  `--version` prints the version.
- `kubetest2-tester-exec`: a tester that runs its arguments as a command.
  `$VAR` and `${VAR}` in the arguments are expanded from the environment;
  an argument containing `\$` is passed with the backslash removed instead.
- `kubetest2-tester-ginkgo`: a tester that runs the Kubernetes e2e suite
  with ginkgo. It downloads the test package with `gsutil`, or, with
  `--use-built-binaries`, uses `e2e.test`, `ginkgo` and `kubectl` from the
  run directory.
- `kubetest2-tester-clusterloader2`: a tester that runs clusterloader2 with
  `go run` from a perf-tests checkout given by `--repo-root`. The suites
  `load`, `density` and `node-throughput` are known by name.

## What is not included

This package ships no deployer. `kubetest2 <deployer>` only works when a
`kubetest2-<deployer>` binary is on `PATH`. To write one in Python, pass a
name and a factory to `kubetest2.cli.main`:

```python
import argparse
from kubetest2 import cli
from kubetest2.types import Deployer


class MyDeployer(Deployer):
    def __init__(self, opts):
        self.opts = opts

    def up(self): ...
    def down(self): ...
    def is_up(self): return True
    def dump_cluster_logs(self): ...
    def build(self): ...


def new_deployer(opts):
    flags = argparse.ArgumentParser(add_help=False)
    return MyDeployer(opts), flags


raise SystemExit(cli.main("mine", new_deployer))
```

The factory returns the deployer and an `argparse.ArgumentParser` of its own
flags, or `None`. Parsed values of those flags are set as attributes on the
deployer. A deployer that also derives from `DeployerWithKubeconfig` has its
`kubeconfig()` passed to the tester as `KUBECONFIG`. One that derives from
`DeployerWithPostTester` has `post_test()` called after the tester.

## Example

```
kubetest2 mine --up --down --test=exec -- kubectl get all -A
```

Everything before the first bare `--` goes to kubetest2 and the deployer.
Everything after it goes to the tester.

### Common flags

| Flag | Meaning |
| --- | --- |
| `--build` | build Kubernetes |
| `--up` | provision the test cluster |
| `--down` | tear down the test cluster |
| `--test NAME` | tester to run (`kubetest2-tester-NAME`); no test runs if unset |
| `--skip-test-junit-report` | do not record the test step as a JUnit case |
| `--run-id ID` | unique id of the run (default: `$PROW_JOB_ID` or a new UUID) |
| `--artifacts DIR` | top-level artifacts directory (default: `${ARTIFACTS:-./_artifacts}`) |
| `-h`, `--help` | show the usage of kubetest2, the deployer and the tester |

A build failure stops the run. After that, `--down` runs last even if
bringing the cluster up or testing fails.

## Environment passed to testers

The tester runs with `ARTIFACTS` and `KUBETEST2_RUN_DIR` set to the run
directory and `KUBETEST2_RUN_ID` set to the run id. The run directory is
placed at the front of `PATH`.

## As a library

- `kubetest2.metadata.Writer` records steps with `wrap_step()` and writes
  JUnit XML with `finish()`.
- `kubetest2.process.execute` runs a command attached to this process's
  stdio. `kubetest2.process.execute_junit` also captures the output and
  attaches it to the `ProcessError` it raises on failure.
- `kubetest2.execution` builds commands (`command`, `raw_command`) and
  collects their output (`output`, `output_lines`, `combined_output_lines`).
- `kubetest2.kubectl.api_server_url()` asks kubectl for the API server URL
  of the current context.