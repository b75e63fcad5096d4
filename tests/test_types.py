import pytest

from kubetest2.types import (
    Deployer,
    DeployerWithKubeconfig,
    DeployerWithPostTester,
    IncorrectUsage,
    Options,
    Tester,
)


class _Deployer(DeployerWithKubeconfig):
    def __init__(self):
        self.calls = []

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

    def kubeconfig(self):
        return "/tmp/kubeconfig"


def test_incorrect_usage_carries_help_text():
    err = IncorrectUsage("bad flags")
    assert err.help_text() == "bad flags"
    assert str(err) == "bad flags"


def test_options_is_abstract():
    with pytest.raises(TypeError):
        Options()


def test_deployer_is_abstract():
    with pytest.raises(TypeError):
        Deployer()


def test_post_tester_is_abstract():
    with pytest.raises(TypeError):
        DeployerWithPostTester()


def test_kubeconfig_deployer_needs_all_methods():
    with pytest.raises(TypeError):
        DeployerWithKubeconfig()
    d = _Deployer()
    d.up()
    assert d.is_up() is True
    assert d.kubeconfig() == "/tmp/kubeconfig"


def test_tester_defaults_are_independent():
    first = Tester()
    second = Tester()
    first.tester_args.append("--flag")
    assert first.tester_path == ""
    assert second.tester_args == []


def test_tester_fields():
    tester = Tester("/bin/tester", ["a", "b"])
    assert tester.tester_path == "/bin/tester"
    assert tester.tester_args == ["a", "b"]