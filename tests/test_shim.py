import os
import stat

import pytest

from kubetest2 import shim


def _make_exec(path, body="#!/bin/sh\nexit 0\n"):
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def bin_dir(tmp_path, monkeypatch):
    directory = tmp_path / "bin"
    directory.mkdir()
    _make_exec(directory / "kubetest2-foo")
    _make_exec(directory / "kubetest2-tester-bar")
    (directory / "kubetest2-somedir").mkdir()
    (directory / "kubetest2-noexec").write_text("data")
    (directory / "unrelated").write_text("data")
    monkeypatch.setenv("PATH", str(directory))
    return directory


def test_find_deployer(bin_dir):
    assert shim.find_deployer("foo") == str(bin_dir / "kubetest2-foo")


def test_find_deployer_missing(bin_dir):
    with pytest.raises(shim.NotFoundError) as info:
        shim.find_deployer("missing")
    assert '"kubetest2-missing"' in str(info.value)


def test_find_tester(bin_dir):
    assert shim.find_tester("bar") == str(bin_dir / "kubetest2-tester-bar")
    with pytest.raises(shim.NotFoundError):
        shim.find_tester("foo")


def test_find_deployers_excludes_testers_dirs_and_nonexec(bin_dir):
    assert shim.find_deployers() == {"foo": str(bin_dir / "kubetest2-foo")}


def test_find_testers(bin_dir):
    assert shim.find_testers() == {"bar": str(bin_dir / "kubetest2-tester-bar")}


def test_first_match_on_path_wins(tmp_path, monkeypatch):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    _make_exec(first / "kubetest2-foo")
    _make_exec(second / "kubetest2-foo")
    _make_exec(second / "kubetest2-baz")
    missing = tmp_path / "missing"
    monkeypatch.setenv("PATH", os.pathsep.join([str(missing), str(first), str(second)]))
    assert shim.find_deployers() == {
        "foo": str(first / "kubetest2-foo"),
        "baz": str(second / "kubetest2-baz"),
    }


def test_usage_text_lists_binaries(bin_dir):
    text = shim.usage_text()
    assert "Detected Deployers:\n  foo\n" in text
    assert "Detected Testers:\n  bar\n" in text
    assert "For more help, run kubetest2 [deployer] --help" in text


def test_main_without_args_prints_help(bin_dir, capsys):
    assert shim.main([]) == 0
    err = capsys.readouterr().err
    assert "kubetest2 is a tool for kubernetes end to end testing." in err
    assert "  foo" in err


def test_main_help_flag(bin_dir, capsys):
    assert shim.main(["-h"]) == 0
    assert "Detected Deployers:" in capsys.readouterr().err


def test_main_version(bin_dir, capsys):
    assert shim.main(["--version"]) == 0
    assert f"kubetest2 version {shim.GIT_TAG}" in capsys.readouterr().out


def test_main_missing_deployer(bin_dir, capsys):
    assert shim.main(["missing"]) == 1
    err = capsys.readouterr().err
    assert 'Error: could not find kubetest2 deployer "missing"' in err
    assert "Detected Deployers:" in err


def test_run_missing_deployer_raises(bin_dir):
    with pytest.raises(shim.NotFoundError):
        shim.run(["missing", "--up"])


def test_main_runs_deployer_with_remaining_args(bin_dir, tmp_path, capfd):
    record = tmp_path / "record.txt"
    _make_exec(
        bin_dir / "kubetest2-rec",
        f'#!/bin/sh\nprintf "%s|" "$@" > "{record}"\n',
    )
    assert shim.main(["rec", "--up", "value"]) == 0
    assert record.read_text() == "--up|value|"


def test_main_failing_deployer(bin_dir, capfd):
    _make_exec(bin_dir / "kubetest2-bad", "#!/bin/sh\nexit 4\n")
    assert shim.main(["bad"]) == 1