"""Common interfaces shared by deployers, testers and the runner."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class IncorrectUsage(Exception):
    """Raised when the user supplied invalid arguments or flags.

    The runner prints the help text alongside the usage instead of
    reporting it as an ordinary error.
    """

    def __init__(self, help_text: str) -> None:
        super().__init__(help_text)
        self._help_text = help_text

    def help_text(self) -> str:
        """Return the text to show the user."""
        return self._help_text

    def __str__(self) -> str:
        return self._help_text


class Options(ABC):
    """Common options supplied by the runner to every deployer."""

    @abstractmethod
    def help_requested(self) -> bool:
        """True if help text should be shown instead of running."""

    @abstractmethod
    def should_build(self) -> bool:
        """True if the deployer's build step will be called."""

    @abstractmethod
    def should_up(self) -> bool:
        """True if the deployer's up step will be called."""

    @abstractmethod
    def should_down(self) -> bool:
        """True if the deployer's down step will be called."""

    @abstractmethod
    def should_test(self) -> bool:
        """True if a tester will be run."""

    @abstractmethod
    def skip_test_junit_report(self) -> bool:
        """True if the test step should not be reported as a JUnit case."""

    @abstractmethod
    def run_id(self) -> str:
        """Unique identifier of this run."""

    @abstractmethod
    def run_dir(self) -> str:
        """Directory for run-specific output files."""


class Deployer(ABC):
    """Lifecycle of a test cluster.

    Any exception raised by these methods that offers a ``system_out()``
    method has that output recorded in the runner's JUnit metadata.
    """

    @abstractmethod
    def up(self) -> None:
        """Provision a new cluster for testing."""

    @abstractmethod
    def down(self) -> None:
        """Tear down the test cluster, if any."""

    @abstractmethod
    def is_up(self) -> bool:
        """Return True if a test cluster is provisioned."""

    @abstractmethod
    def dump_cluster_logs(self) -> None:
        """Export logs from the cluster; may be called more than once."""

    @abstractmethod
    def build(self) -> None:
        """Build Kubernetes in the format the deployer consumes."""


class DeployerWithKubeconfig(Deployer):
    """A deployer that can report the path of its kubeconfig file."""

    @abstractmethod
    def kubeconfig(self) -> str:
        """Return the path to a kubeconfig file for the cluster."""


class DeployerWithProvider(Deployer):
    """A deployer that names the provider string legacy testers expect."""

    @abstractmethod
    def provider(self) -> str:
        """Return the Kubernetes provider name."""


class DeployerWithPostTester(Deployer):
    """A deployer with behaviour that runs after the tester completes."""

    @abstractmethod
    def post_test(self, test_error: BaseException | None) -> None:
        """Run after the tester; ``test_error`` is what the tester raised."""


@dataclass
class Tester:
    """The tester binary to run during the test phase, with its arguments."""

    tester_path: str = ""
    tester_args: list[str] = field(default_factory=list)