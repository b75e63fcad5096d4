import json
import os
import sys

import pytest

from kubetest2.clusterloader2 import ClusterLoader2Tester, get_suite, main


def test_known_suites():
    assert get_suite("load").test_configs == ("testing/load/config.yaml",)
    assert get_suite("density").test_configs == ("testing/density/config.yaml",)
    assert get_suite("node-throughput").test_configs == (
        "testing/node-throughput/config.yaml",
    )
    assert get_suite("load").test_overrides == ()


def test_unknown_suite():
    assert get_suite("nope") is None


def test_defaults(monkeypatch):
    monkeypatch.setenv("KUBECONFIG", "/home/u/kc")
    tester = ClusterLoader2Tester()
    assert tester.provider == "skeleton"
    assert tester.kube_config == "/home/u/kc"
    assert tester.nodes == 0


def test_command_args(monkeypatch, tmp_path):
    monkeypatch.setenv("ARTIFACTS", str(tmp_path))
    tester = ClusterLoader2Tester(
        suites="load",
        test_configs="a.yaml,b.yaml",
        test_overrides="o.yaml",
        kube_config="/kc",
    )
    assert tester.command_args() == [
        "run",
        "cmd/clusterloader.go",
        "--provider=skeleton",
        "--kubeconfig=/kc",
        "--report-dir=" + os.path.join(str(tmp_path), "clusterloader2"),
        "--testconfig=a.yaml",
        "--testconfig=b.yaml",
        "--testconfig=testing/load/config.yaml",
        "--testoverrides=o.yaml",
    ]


def test_command_args_skip_empty_entries(monkeypatch):
    monkeypatch.delenv("ARTIFACTS", raising=False)
    tester = ClusterLoader2Tester(kube_config="")
    args = tester.command_args()
    assert not any(a.startswith("--testconfig") for a in args)
    assert "--report-dir=clusterloader2" in args


def test_test_requires_repo_root():
    with pytest.raises(ValueError, match="perf-tests"):
        ClusterLoader2Tester().test()


def test_execute_help(capsys):
    tester = ClusterLoader2Tester()
    tester.execute(["--help"])
    out = capsys.readouterr().out
    assert "--repo-root" in out
    assert "--test-configs" in out


def test_execute_unknown_flag():
    with pytest.raises(ValueError, match="failed to parse flags"):
        ClusterLoader2Tester().execute(["--bogus"])


def test_execute_runs_go_in_repo(monkeypatch, tmp_path):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    record = tmp_path / "go.json"
    script = bindir / "go"
    script.write_text(
        f"#!{sys.executable}\nimport json, os, sys\n"
        f"json.dump({{'argv': sys.argv[1:], 'cwd': os.getcwd()}}, open({str(record)!r}, 'w'))\n"
    )
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bindir) + os.pathsep + os.environ.get("PATH", ""))
    repo = tmp_path / "perf"
    (repo / "clusterloader2").mkdir(parents=True)

    tester = ClusterLoader2Tester()
    tester.execute(["--repo-root", str(repo), "--suites", "density", "--nodes", "5"])

    data = json.loads(record.read_text())
    assert data["argv"] == tester.command_args()
    assert os.path.realpath(data["cwd"]) == os.path.realpath(repo / "clusterloader2")
    assert tester.nodes == 5


def test_main_reports_failure(capsys):
    assert main([]) == 1
    assert "failed to run clusterloader2 tester" in capsys.readouterr().err