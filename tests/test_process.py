import os
import sys

import pytest

from kubetest2 import process
from kubetest2.metadata import JUnitError


def _python(code):
    return sys.executable, ["-c", code]


def test_execute_success_inherits_output(capfd):
    argv0, args = _python("print('hello from child')")
    assert process.execute(argv0, args, dict(os.environ)) is None
    out, _ = capfd.readouterr()
    assert "hello from child" in out


def test_execute_failure_reports_exit_status():
    argv0, args = _python("import sys; sys.exit(3)")
    with pytest.raises(process.ProcessError) as info:
        process.execute(argv0, args, dict(os.environ))
    assert str(info.value) == "exit status 3"
    assert info.value.returncode == 3


def test_execute_missing_binary():
    with pytest.raises(process.ProcessError):
        process.execute("/nonexistent/kubetest2-binary", [], None)


def test_execute_junit_tees_output(capsys):
    argv0, args = _python(
        "import sys; print('out line'); print('err line', file=sys.stderr)"
    )
    process.execute_junit(argv0, args, dict(os.environ))
    captured = capsys.readouterr()
    assert "out line" in captured.out
    assert "err line" in captured.err


def test_execute_junit_failure_carries_system_out(capsys):
    argv0, args = _python(
        "import sys; print('out line'); sys.stdout.flush();"
        " print('err line', file=sys.stderr); sys.exit(2)"
    )
    with pytest.raises(process.ProcessError) as info:
        process.execute_junit(argv0, args, dict(os.environ))
    assert isinstance(info.value, JUnitError)
    assert "out line" in info.value.system_out()
    assert "err line" in info.value.system_out()
    assert info.value.returncode == 2


def test_execute_junit_passes_env_list():
    argv0, args = _python(
        "import os, sys; print(os.environ['KT2_VALUE']); sys.exit(1)"
    )
    env = [f"{k}={v}" for k, v in os.environ.items()] + ["KT2_VALUE=marker-value"]
    with pytest.raises(process.ProcessError) as info:
        process.execute_junit(argv0, args, env)
    assert "marker-value" in info.value.system_out()


def test_execute_junit_timeout_kills_child():
    argv0, args = _python("import time; print('started', flush=True); time.sleep(30)")
    with pytest.raises(process.ProcessError) as info:
        process.execute_junit(argv0, args, dict(os.environ), timeout=1.0)
    assert "timed out" in str(info.value)
    assert "started" in info.value.system_out()


def test_execute_junit_missing_binary_has_empty_output():
    with pytest.raises(process.ProcessError) as info:
        process.execute_junit("/nonexistent/kubetest2-binary", [], None)
    assert info.value.system_out() == ""