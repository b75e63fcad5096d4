import argparse
import os
import uuid
import xml.etree.ElementTree as ET

import pytest

from kubetest2 import artifacts, cli, shim, types


class _Deployer(types.Deployer):
    def __init__(self, opts):
        self.opts = opts
        self.calls = []
        self.cluster_name = None

    def up(self):
        self.calls.append("up")

    def down(self):
        self.calls.append("down")

    def is_up(self):
        return "up" in self.calls

    def dump_cluster_logs(self):
        self.calls.append("logs")

    def build(self):
        self.calls.append("build")


def _factory(created, extra=None):
    def new_deployer(opts):
        deployer = _Deployer(opts)
        created.append(deployer)
        parser = argparse.ArgumentParser(add_help=False)
        parser.add_argument(
            "--cluster-name",
            dest="cluster_name",
            default="kind-default",
            help="the kind cluster --name",
        )
        if extra:
            parser.add_argument(extra, action="store_true")
        return deployer, parser

    return new_deployer


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.setenv("ARTIFACTS", str(tmp_path / "artifacts"))
    monkeypatch.setenv("PROW_JOB_ID", "job-1")
    yield
    artifacts.set_base_dir("")


@pytest.mark.parametrize(
    "args, expected",
    [
        (["a", "--", "b", "c"], (["a"], ["b", "c"])),
        (["a", "--"], (["a"], [])),
        (["a", "b"], (["a", "b"], [])),
        (["--"], ([], [])),
        (["a", "--", "b", "--", "c"], (["a"], ["b", "--", "c"])),
        ([], ([], [])),
    ],
)
def test_split_args(args, expected):
    assert cli.split_args(args) == expected


def test_run_options_queries(tmp_path):
    artifacts.set_base_dir(str(tmp_path))
    opts = cli.RunOptions(up=True, test="exec", runid="r7")
    assert opts.should_up() is True
    assert opts.should_down() is False
    assert opts.should_test() is True
    assert opts.run_id() == "r7"
    assert opts.run_dir() == os.path.join(str(tmp_path), "r7")
    assert cli.RunOptions().should_test() is False


def test_build_parser_uses_job_id_default():
    namespace, _ = cli.build_parser("kind").parse_known_args([])
    assert namespace.runid == "job-1"
    assert namespace.test == ""
    assert namespace.up is False


def test_build_parser_generates_uuid_without_job_id(monkeypatch):
    monkeypatch.setenv("PROW_JOB_ID", "")
    namespace, _ = cli.build_parser("kind").parse_known_args([])
    assert uuid.UUID(namespace.runid).version == 4


def test_build_parser_artifacts_sets_base_dir(tmp_path):
    target = str(tmp_path / "elsewhere")
    cli.build_parser("kind").parse_known_args(["--artifacts", target])
    assert artifacts.base_dir() == target


def test_usage_with_tester_without_usage():
    usage = cli.Usage(
        deployer_name="kind",
        kubetest2_flags=cli.build_parser("kind"),
        tester_name="exec",
    )
    assert usage.render().endswith("TesterArgs(exec):\n  NONE - exec has no usage\n")


def test_run_up_and_down(tmp_path):
    created = []
    cli.run("kind", _factory(created), ["--up", "--down", "--cluster-name", "c1"])
    deployer = created[0]
    assert deployer.calls == ["up", "down"]
    assert deployer.cluster_name == "c1"
    assert deployer.opts.run_id() == "job-1"
    runner = tmp_path / "artifacts" / "job-1" / "junit_runner.xml"
    names = [c.get("name") for c in ET.parse(runner).getroot().findall("testcase")]
    assert names == ["Up", "Down"]


def test_run_applies_deployer_defaults():
    created = []
    cli.run("kind", _factory(created), ["--up"])
    assert created[0].cluster_name == "kind-default"


def test_run_artifacts_flag(tmp_path):
    created = []
    out_dir = tmp_path / "out"
    cli.run("kind", _factory(created), ["--up", "--artifacts", str(out_dir)])
    assert (out_dir / "job-1" / "junit_runner.xml").is_file()


def test_run_without_args_prints_usage(capsys):
    created = []
    cli.run("kind", _factory(created), [])
    assert created[0].calls == []
    err = capsys.readouterr().err
    assert "DeployerFlags(kind):" in err
    assert "--cluster-name" in err


def test_run_help_prints_usage(capsys):
    created = []
    cli.run("kind", _factory(created), ["--up", "--help"])
    assert created[0].calls == []
    assert "Flags:" in capsys.readouterr().err


def test_run_unknown_flag_is_incorrect_usage(capsys):
    created = []
    with pytest.raises(types.IncorrectUsage) as info:
        cli.run("kind", _factory(created), ["--up", "--bogus"])
    assert info.value.help_text().startswith("Error: ")
    assert "--bogus" in info.value.help_text()
    assert created[0].calls == []
    assert "Usage:" in capsys.readouterr().err


def test_run_missing_value_is_incorrect_usage():
    with pytest.raises(types.IncorrectUsage):
        cli.run("kind", _factory([]), ["--up", "--test"])


def test_deployer_reregistering_common_flag():
    with pytest.raises(ValueError, match='common flag "up" re-registered'):
        cli.run("kind", _factory([], extra="--up"), ["--down"])


def test_deployer_reregistering_shorthand():
    with pytest.raises(ValueError, match='shorthand flag "h" re-registered'):
        cli.run("kind", _factory([], extra="-h"), ["--down"])


def test_missing_tester(tmp_path, monkeypatch):
    empty = tmp_path / "bin"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))
    with pytest.raises(shim.NotFoundError, match="unable to find tester nope"):
        cli.run("kind", _factory([]), ["--test", "nope"])


def test_main_exit_codes():
    assert cli.main("kind", _factory([]), ["--up", "--bogus"]) == 1
    assert cli.main("kind", _factory([]), ["--help"]) == 0
    assert cli.main("kind", _factory([]), ["--up"]) == 0


def test_main_reports_other_errors(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("PATH", str(tmp_path))
    assert cli.main("kind", _factory([]), ["--test", "nope"]) == 1
    assert "Error: unable to find tester nope" in capsys.readouterr().err