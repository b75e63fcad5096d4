"""Building and running external commands."""

from __future__ import annotations

import io
import logging
import os
import shlex
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


def _split_lines(data: bytes) -> list[str]:
    """Split output into lines, dropping newlines and trailing carriage returns."""
    if not data:
        return []
    lines = data.decode("utf-8", "replace").split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class CommandError(Exception):
    """A command could not be started or did not exit successfully."""

    def __init__(
        self, message: str, *, returncode: int | None = None, output: bytes = b""
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output

    @property
    def lines(self) -> list[str]:
        """The captured output, split into lines."""
        return _split_lines(self.output)


def _env_dict(env: Sequence[str] | Mapping[str, str] | None) -> dict[str, str] | None:
    if env is None:
        return None
    if isinstance(env, Mapping):
        return dict(env)
    result: dict[str, str] = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if sep:
            result[key] = value
    return result


def _has_fileno(stream: Any) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


def _output_target(stream: Any) -> tuple[Any, Any]:
    """Return (what to hand to subprocess, where to deliver captured data)."""
    if stream is None:
        return subprocess.DEVNULL, None
    if isinstance(stream, int):
        return stream, None
    if _has_fileno(stream):
        stream.flush()
        return stream, None
    return subprocess.PIPE, stream


def _deliver(sink: Any, data: bytes | None) -> None:
    if sink is None or not data:
        return
    if isinstance(sink, io.TextIOBase):
        sink.write(data.decode("utf-8", "replace"))
        return
    try:
        sink.write(data)
    except TypeError:
        sink.write(data.decode("utf-8", "replace"))


def _exit_message(returncode: int) -> str:
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    return f"exit status {returncode}"


@dataclass
class Cmd:
    """A command to run, with its environment, streams and working directory.

    ``env`` is a list of ``key=value`` strings (later entries win) or a
    mapping; ``None`` inherits the current environment. Streams left as
    ``None`` are connected to the null device.
    """

    name: str
    args: list[str] = field(default_factory=list)
    env: Sequence[str] | Mapping[str, str] | None = None
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None
    cwd: str | os.PathLike[str] | None = None
    timeout: float | None = None

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]

    def run(self) -> None:
        """Run the command to completion, raising CommandError on failure."""
        kwargs: dict[str, Any] = {}
        if self.stdin is None:
            kwargs["stdin"] = subprocess.DEVNULL
        elif isinstance(self.stdin, int) or _has_fileno(self.stdin):
            kwargs["stdin"] = self.stdin
        else:
            data = self.stdin.read()
            kwargs["input"] = data.encode() if isinstance(data, str) else data

        out_target, out_sink = _output_target(self.stdout)
        if self.stderr is self.stdout and out_sink is not None:
            err_target, err_sink = subprocess.STDOUT, None
        else:
            err_target, err_sink = _output_target(self.stderr)

        try:
            completed = subprocess.run(
                self.argv,
                stdout=out_target,
                stderr=err_target,
                env=_env_dict(self.env),
                cwd=self.cwd,
                timeout=self.timeout,
                check=False,
                **kwargs,
            )
        except subprocess.TimeoutExpired as exc:
            _deliver(out_sink, exc.stdout)
            _deliver(err_sink, exc.stderr)
            raise CommandError(
                f"{self.name}: timed out after {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise CommandError(str(exc)) from exc

        _deliver(out_sink, completed.stdout)
        _deliver(err_sink, completed.stderr)
        if completed.returncode != 0:
            raise CommandError(
                _exit_message(completed.returncode), returncode=completed.returncode
            )


def command(name: str, *args: str) -> Cmd:
    """Create a command from a program name and its arguments."""
    logger.debug("⚙️ %s %s", name, " ".join(args))
    return Cmd(name, list(args))


def raw_command(raw: str) -> Cmd:
    """Create a command from a shell-quoted string.

    If the string cannot be split, it is used whole as the program name.
    """
    try:
        parts = shlex.split(raw)
    except ValueError:
        parts = []
    if not parts:
        return command(raw)
    return command(*parts)


def output(cmd: Cmd) -> bytes:
    """Run ``cmd`` and return its stdout.

    On failure the captured output is attached to the CommandError.
    """
    buffer = io.BytesIO()
    cmd.stdout = buffer
    try:
        cmd.run()
    except CommandError as exc:
        exc.output = buffer.getvalue()
        raise
    return buffer.getvalue()


def output_lines(cmd: Cmd) -> list[str]:
    """Run ``cmd`` and return its stdout split into lines."""
    return _split_lines(output(cmd))


def combined_output_lines(cmd: Cmd) -> list[str]:
    """Run ``cmd`` and return stdout and stderr together, split into lines."""
    buffer = io.BytesIO()
    cmd.stdout = buffer
    cmd.stderr = buffer
    try:
        cmd.run()
    except CommandError as exc:
        exc.output = buffer.getvalue()
        raise
    return _split_lines(buffer.getvalue())


def set_output(cmd: Cmd, stdout: Any, stderr: Any) -> None:
    """Send the command's stdout and stderr to the given streams."""
    cmd.stdout = stdout
    cmd.stderr = stderr


def inherit_output(cmd: Cmd) -> None:
    """Send the command's output to this process's stdout and stderr."""
    cmd.stderr = sys.stderr
    cmd.stdout = sys.stdout


def no_output(cmd: Cmd) -> None:
    """Discard all output of the command."""
    cmd.stdout = subprocess.DEVNULL
    cmd.stderr = subprocess.DEVNULL