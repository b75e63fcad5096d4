"""Orchestration of Kubernetes end-to-end test runs: the runner, testers and JUnit metadata."""

__version__ = "0.1.0"