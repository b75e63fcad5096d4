"""Location of the directory where run artifacts are written."""

from __future__ import annotations

import argparse
import os
from typing import Any, Sequence

_base_dir = ""

ARTIFACTS_HELP = (
    "top-level directory to put artifacts under for each kubetest2 run, "
    'defaulting to "${ARTIFACTS:-./_artifacts}". If using the ginkgo tester, '
    "this must be an absolute path."
)


def default_artifacts_dir() -> str:
    """Return ``$ARTIFACTS`` if set, otherwise ``./_artifacts``, as an absolute path."""
    path = os.environ.get("ARTIFACTS")
    if path is not None:
        return os.path.abspath(path)
    return os.path.abspath("_artifacts")


def base_dir() -> str:
    """Return the directory artifacts (including metadata files) are written to."""
    return _base_dir or default_artifacts_dir()


def set_base_dir(path: str | os.PathLike[str]) -> None:
    """Set the artifacts directory; an empty value restores the default."""
    global _base_dir
    _base_dir = os.fspath(path)


class _BaseDirAction(argparse.Action):
    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: argparse.Namespace,
        values: str | Sequence[Any] | None,
        option_string: str | None = None,
    ) -> None:
        value = values if isinstance(values, str) else ""
        set_base_dir(value)
        setattr(namespace, self.dest, value)


def bind_flags(parser: argparse.ArgumentParser) -> None:
    """Register ``--artifacts`` on ``parser``; parsing it sets the base directory."""
    default = default_artifacts_dir()
    set_base_dir(default)
    parser.add_argument(
        "--artifacts",
        action=_BaseDirAction,
        default=default,
        metavar="string",
        help=ARTIFACTS_HELP,
    )