"""Queries answered through kubectl."""

from __future__ import annotations

import sys

from kubetest2 import execution

KUBECTL = "kubectl"


def _exec_and_result(command: str, *args: str) -> str:
    cmd = execution.command(command, *args)
    cmd.stderr = sys.stderr
    return execution.output(cmd).decode("utf-8", "replace")


def api_server_url() -> str:
    """Return the URL of the API server of the current kubectl context."""
    try:
        context = _exec_and_result(
            KUBECTL, "config", "view", "-o", 'jsonpath="{.current-context}"'
        )
    except execution.CommandError as exc:
        raise execution.CommandError(
            f"Could not get kube context: {exc}", returncode=exc.returncode
        ) from exc

    try:
        cluster_name = _exec_and_result(
            KUBECTL, "config", "view", "-o",
            f'jsonpath="{{.contexts[?(@.name == {context})].context.cluster}}"',
        )
    except execution.CommandError as exc:
        raise execution.CommandError(
            f"Could not get cluster name: {exc}", returncode=exc.returncode
        ) from exc

    return _exec_and_result(
        KUBECTL, "config", "view", "-o",
        f"jsonpath={{.clusters[?(@.name == {cluster_name})].cluster.server}}",
    )