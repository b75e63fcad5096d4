"""Run child processes the way an exec would: inheriting stdio, forwarding signals."""

from __future__ import annotations

import codecs
import signal
import subprocess
import sys
import threading
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import IO, Any

from kubetest2.metadata import JUnitError

_FORWARDED_SIGNALS = tuple(
    sig
    for sig in (
        getattr(signal, name, None)
        for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT", "SIGUSR1", "SIGUSR2")
    )
    if sig is not None
)


class ProcessError(JUnitError):
    """A child process could not be started or did not exit successfully."""

    def __init__(
        self, message: str, system_out: str = "", returncode: int | None = None
    ) -> None:
        super().__init__(message, system_out)
        self.returncode = returncode


def _environment(env: Sequence[str] | Mapping[str, str] | None) -> dict[str, str] | None:
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


def _exit_message(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"signal: {name}"
    return f"exit status {returncode}"


def _inherited(stream: Any) -> Any:
    """Return ``stream`` if a child can write to it directly, else None (fd inherit)."""
    try:
        stream.flush()
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None
    return stream


class _SignalForwarder:
    """Forward catchable signals to a child process while active."""

    def __init__(self) -> None:
        self.process: subprocess.Popen[bytes] | None = None
        self._previous: dict[int, Any] = {}

    def _handle(self, signum: int, frame: Any) -> None:
        if self.process is not None and self.process.poll() is None:
            try:
                self.process.send_signal(signum)
            except OSError:
                pass

    def __enter__(self) -> _SignalForwarder:
        if threading.current_thread() is threading.main_thread():
            for sig in _FORWARDED_SIGNALS:
                try:
                    self._previous[sig] = signal.signal(sig, self._handle)
                except (OSError, ValueError):
                    continue
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()


def _wait(
    forwarder: _SignalForwarder,
    argv: list[str],
    env: dict[str, str] | None,
    timeout: float | None,
    stdout: Any,
    stderr: Any,
    on_started: Any = None,
) -> int:
    with forwarder:
        try:
            proc = subprocess.Popen(
                argv, stdin=None, stdout=stdout, stderr=stderr, env=env
            )
        except OSError as exc:
            raise ProcessError(str(exc)) from exc
        forwarder.process = proc
        if on_started is not None:
            on_started(proc)
        try:
            return proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            raise


def execute(
    argv0: str,
    args: Sequence[str],
    env: Sequence[str] | Mapping[str, str] | None,
) -> None:
    """Run ``argv0`` with ``args`` attached to this process's stdio.

    Signals received meanwhile are passed on to the child. Raises
    ProcessError if it cannot be started or exits unsuccessfully.
    """
    returncode = _wait(
        _SignalForwarder(),
        [argv0, *args],
        _environment(env),
        None,
        _inherited(sys.stdout),
        _inherited(sys.stderr),
    )
    if returncode != 0:
        raise ProcessError(_exit_message(returncode), returncode=returncode)


class _Tee:
    """Copy a child's pipe to a stream while recording it."""

    def __init__(self, pipe: IO[bytes], sink: Any, record: bytearray, lock: threading.Lock):
        self._pipe = pipe
        self._sink = sink
        self._record = record
        self._lock = lock
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")
        self.thread = threading.Thread(target=self._pump, daemon=True)

    def _pump(self) -> None:
        read = getattr(self._pipe, "read1", self._pipe.read)
        while True:
            chunk = read(65536)
            if not chunk:
                break
            with self._lock:
                self._record.extend(chunk)
            self._emit(self._decoder.decode(chunk))
        self._emit(self._decoder.decode(b"", final=True))
        self._pipe.close()

    def _emit(self, text: str) -> None:
        if not text:
            return
        try:
            self._sink.write(text)
            self._sink.flush()
        except (OSError, ValueError):
            pass


def execute_junit(
    argv0: str,
    args: Sequence[str],
    env: Sequence[str] | Mapping[str, str] | None,
    timeout: float | None = None,
) -> None:
    """Like :func:`execute`, but also capture the output.

    On failure the raised ProcessError carries the combined output as its
    ``system_out()``. With ``timeout`` the child is killed once it expires.
    """
    record = bytearray()
    lock = threading.Lock()
    tees: list[_Tee] = []

    def start_tees(proc: subprocess.Popen[bytes]) -> None:
        assert proc.stdout is not None and proc.stderr is not None
        tees.extend(
            [
                _Tee(proc.stdout, sys.stdout, record, lock),
                _Tee(proc.stderr, sys.stderr, record, lock),
            ]
        )
        for tee in tees:
            tee.thread.start()

    def captured() -> str:
        for tee in tees:
            tee.thread.join()
        with lock:
            return bytes(record).decode("utf-8", "replace")

    try:
        returncode = _wait(
            _SignalForwarder(),
            [argv0, *args],
            _environment(env),
            timeout,
            subprocess.PIPE,
            subprocess.PIPE,
            start_tees,
        )
    except subprocess.TimeoutExpired as exc:
        raise ProcessError(
            f"{argv0}: timed out after {timeout}s", captured()
        ) from exc

    system_out = captured()
    if returncode != 0:
        raise ProcessError(_exit_message(returncode), system_out, returncode)