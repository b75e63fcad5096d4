"""Tester that runs the Kubernetes e2e suite with ginkgo."""

from __future__ import annotations

import argparse
import hashlib
import logging
import os
import platform
import shlex
import shutil
import sys
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Sequence

from kubetest2 import artifacts, execution

logger = logging.getLogger(__name__)

_E2E_MEMBER = "kubernetes/test/bin/e2e.test"
_GINKGO_MEMBER = "kubernetes/test/bin/ginkgo"
_LOCAL_BINARIES = ("e2e.test", "ginkgo", "kubectl")

_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE = {"0", "f", "F", "false", "FALSE", "False"}

_ARCHES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def _go_os() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


def _go_arch() -> str:
    machine = platform.machine()
    return _ARCHES.get(machine.lower(), machine.lower())


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        local = os.environ.get("LocalAppData", "")
        if not local:
            raise RuntimeError("%LocalAppData% is not defined")
        return local
    home = os.environ.get("HOME", "")
    if sys.platform == "darwin":
        if not home:
            raise RuntimeError("$HOME is not defined")
        return os.path.join(home, "Library", "Caches")
    xdg = os.environ.get("XDG_CACHE_HOME", "")
    if xdg:
        return xdg
    if not home:
        raise RuntimeError("neither $XDG_CACHE_HOME nor $HOME are defined")
    return os.path.join(home, ".cache")


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {value!r}")


def sha256sum(path: str | os.PathLike[str]) -> str:
    """Return the hex-encoded SHA-256 digest of the file at ``path``."""
    digest = hashlib.sha256()
    with open(path, "rb") as stream:
        for chunk in iter(lambda: stream.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ValueError(message)


@dataclass
class GinkgoTester:
    """Runs ``e2e.test`` through ginkgo against the current cluster."""

    flake_attempts: int = 1
    extra_ginkgo_args: str = ""
    parallel: int = 1
    skip_regex: str = ""
    focus_regex: str = ""
    test_package_version: str = ""
    test_package_bucket: str = "kubernetes-release"
    test_package_dir: str = "release"
    test_package_marker: str = "latest.txt"
    test_args: str = ""
    use_built_binaries: bool = False

    kubeconfig_path: str = ""
    run_dir: str = ""
    e2e_test_path: str = ""
    ginkgo_path: str = ""
    kubectl_path: str = ""

    def ginkgo_args(self) -> list[str]:
        """Arguments to the ginkgo binary, including those passed to e2e.test."""
        try:
            extra_e2e = shlex.split(self.test_args)
        except ValueError as exc:
            raise ValueError(f"error parsing --test-args: {exc}") from exc
        e2e_args = [
            f"--kubeconfig={self.kubeconfig_path}",
            f"--kubectl-path={self.kubectl_path}",
            f"--ginkgo.flakeAttempts={self.flake_attempts}",
            f"--ginkgo.skip={self.skip_regex}",
            f"--ginkgo.focus={self.focus_regex}",
            f"--report-dir={artifacts.base_dir()}",
            *extra_e2e,
        ]
        try:
            extra_ginkgo = shlex.split(self.extra_ginkgo_args)
        except ValueError as exc:
            raise ValueError(f"error parsing --ginkgo-args: {exc}") from exc
        return [
            *extra_ginkgo,
            f"--nodes={self.parallel}",
            self.e2e_test_path,
            "--",
            *e2e_args,
        ]

    def test(self) -> None:
        """Prepare the binaries and run ginkgo, raising CommandError on failure."""
        self._pretest_setup()
        args = self.ginkgo_args()
        logger.info("Running ginkgo test as %s %s", self.ginkgo_path, args)
        cmd = execution.command(self.ginkgo_path, *args)
        execution.inherit_output(cmd)
        cmd.run()

    def _pretest_setup(self) -> None:
        config = os.environ.get("KUBECONFIG", "")
        if config:
            # ginkgo changes its working directory, so a relative path breaks
            if not os.path.isabs(config):
                config = os.path.abspath(config)
                logger.info(
                    "Ginkgo tester received a non-absolute path for KUBECONFIG. "
                    "Updating to: %s",
                    config,
                )
            self.kubeconfig_path = config
        else:
            try:
                home = Path.home()
            except (RuntimeError, KeyError) as exc:
                raise RuntimeError(f"failed to find home directory: {exc}") from exc
            self.kubeconfig_path = str(home / ".kube" / "config")
        logger.info("Using kubeconfig at %s", self.kubeconfig_path)

        if self.use_built_binaries:
            self._validate_local_binaries()
            return
        try:
            self.acquire_test_package()
        except Exception as exc:
            raise RuntimeError(
                f"failed to get ginkgo test package from published releases: {exc}"
            ) from exc

    def _validate_local_binaries(self) -> None:
        logger.debug("checking existing test binaries ...")
        for binary in _LOCAL_BINARIES:
            path = os.path.join(self.run_dir, binary)
            try:
                os.stat(path)
            except OSError as exc:
                raise RuntimeError(f"failed to validate {binary}:{exc}") from exc
            logger.debug("found existing %s at %s", binary, path)
        self.e2e_test_path = os.path.join(self.run_dir, "e2e.test")
        self.ginkgo_path = os.path.join(self.run_dir, "ginkgo")
        self.kubectl_path = os.path.join(self.run_dir, "kubectl")

    def _parser(self) -> _Parser:
        parser = _Parser(prog="ginkgo", add_help=False, allow_abbrev=False)
        string_options = [
            ("--ginkgo-args", "extra_ginkgo_args",
             "Additional arguments supported by the ginkgo binary."),
            ("--skip-regex", "skip_regex", "Regular expression of jobs to skip."),
            ("--focus-regex", "focus_regex", "Regular expression of jobs to focus on."),
            ("--test-package-version", "test_package_version",
             "The ginkgo tester uses a test package made during the kubernetes build. "
             "The tester downloads this test package from one of the release tars "
             "published to GCS. Defaults to latest. Use "
             '"gsutil ls gs://kubernetes-release/release/" to find release names. '
             "Example: v1.20.0-alpha.0"),
            ("--test-package-bucket", "test_package_bucket",
             "The bucket which release tars will be downloaded from to acquire the "
             "test package. Defaults to the main kubernetes project bucket."),
            ("--test-package-dir", "test_package_dir",
             "The directory in the bucket which represents the type of release. "
             "Default to the release directory."),
            ("--test-package-marker", "test_package_marker",
             "The version marker in the directory containing the package version to "
             "download when unspecified. Defaults to latest.txt."),
            ("--test-args", "test_args",
             "Additional arguments supported by the e2e test framework."),
        ]
        parser.add_argument(
            "--flake-attempts", dest="flake_attempts", type=int,
            default=self.flake_attempts, metavar="int",
            help="Make up to this many attempts to run each spec.",
        )
        parser.add_argument(
            "--parallel", dest="parallel", type=int, default=self.parallel,
            metavar="int", help="Run this many tests in parallel at once.",
        )
        for flag, dest, text in string_options:
            parser.add_argument(
                flag, dest=dest, default=getattr(self, dest), metavar="string", help=text
            )
        parser.add_argument(
            "--use-built-binaries", dest="use_built_binaries", nargs="?",
            const=True, type=_parse_bool, default=self.use_built_binaries,
            help="determines whether to use binaries built by the deployer instead "
            "of extracting the test tars from GCS.",
        )
        parser.add_argument("-h", "--help", dest="help", action="store_true")
        return parser

    def execute(self, argv: Sequence[str]) -> None:
        """Parse the tester's flags and run the test, or print help."""
        parser = self._parser()
        try:
            namespace, extras = parser.parse_known_args(list(argv))
            unknown = [e for e in extras if e.startswith("-") and e != "-"]
            if unknown:
                raise ValueError(f"unknown flag: {unknown[0]}")
        except ValueError as exc:
            raise ValueError(f"failed to parse flags: {exc}") from exc

        if namespace.help:
            sys.stdout.write(parser.format_help())
            return

        for name in (
            "flake_attempts", "extra_ginkgo_args", "parallel", "skip_regex",
            "focus_regex", "test_package_version", "test_package_bucket",
            "test_package_dir", "test_package_marker", "test_args",
            "use_built_binaries",
        ):
            setattr(self, name, getattr(namespace, name))

        self._init_run_dir()
        self.test()

    def _init_run_dir(self) -> None:
        run_dir = os.environ.get("KUBETEST2_RUN_DIR")
        if run_dir is not None:
            self.run_dir = run_dir
            return
        try:
            self.run_dir = os.getcwd()
        except OSError as exc:
            raise RuntimeError(f"failed to set run dir: {exc}") from exc

    def acquire_test_package(self) -> None:
        """Download and unpack ginkgo, e2e.test and kubectl into the artifacts dir."""
        if not self.test_package_version:
            marker = (
                f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
                f"{self.test_package_marker}"
            )
            try:
                lines = execution.output_lines(execution.command("gsutil", "cat", marker))
            except execution.CommandError as exc:
                raise RuntimeError(f"failed to get latest release name: {exc}") from exc
            if not lines:
                raise RuntimeError("getting latest release name had no output")
            self.test_package_version = lines[0]
            logger.info(
                "Test package version was not specified. Defaulting to version from %s: %s",
                self.test_package_marker,
                self.test_package_version,
            )

        release_tar = f"kubernetes-test-{_go_os()}-{_go_arch()}.tar.gz"
        try:
            download_dir = _user_cache_dir()
        except RuntimeError as exc:
            raise RuntimeError(f"failed to get user cache directory: {exc}") from exc
        os.makedirs(download_dir, exist_ok=True)
        download_path = os.path.join(download_dir, release_tar)

        self._ensure_release_tar(download_path, release_tar)
        self._extract_binaries(download_path)

        self.kubectl_path = os.path.join(artifacts.base_dir(), "kubectl")
        self._ensure_kubectl(self.kubectl_path)

    def _extract_binaries(self, download_path: str) -> None:
        base = artifacts.base_dir()
        os.makedirs(base, exist_ok=True)
        self.e2e_test_path = os.path.join(base, "e2e.test")
        self.ginkgo_path = os.path.join(base, "ginkgo")
        wanted = {_E2E_MEMBER: self.e2e_test_path, _GINKGO_MEMBER: self.ginkgo_path}
        extracted: set[str] = set()

        try:
            archive = tarfile.open(download_path, "r:gz")
        except OSError as exc:
            raise RuntimeError(
                f"failed to open downloaded tar at {download_path}: {exc}"
            ) from exc
        except tarfile.TarError as exc:
            raise RuntimeError(f"failed to create gzip reader: {exc}") from exc

        with archive:
            try:
                for member in archive:
                    if len(extracted) == len(wanted):
                        break
                    dest = wanted.get(member.name)
                    if not dest:
                        continue
                    source = archive.extractfile(member)
                    if source is None:
                        continue
                    self._write_executable(source, dest, member.name)
                    extracted.add(member.name)
            except (tarfile.TarError, EOFError, OSError) as exc:
                if isinstance(exc, RuntimeError):
                    raise
                raise RuntimeError(f"error during tar read: {exc}") from exc

        for name in wanted:
            if name not in extracted:
                raise RuntimeError(f"failed to find {name} in {download_path}")

    @staticmethod
    def _write_executable(source: object, dest: str, member_name: str) -> None:
        try:
            out = open(dest, "wb")
        except OSError as exc:
            raise RuntimeError(f"error creating file at {dest}: {exc}") from exc
        with out:
            try:
                os.chmod(dest, 0o700)
            except OSError as exc:
                raise RuntimeError(f"failed to make {dest} executable: {exc}") from exc
            try:
                shutil.copyfileobj(source, out)  # type: ignore[arg-type]
            except (OSError, tarfile.TarError) as exc:
                raise RuntimeError(
                    f"error reading data from tar with header name {member_name}: {exc}"
                ) from exc

    def _ensure_kubectl(self, download_path: str) -> None:
        remote = (
            f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
            f"{self.test_package_version}/bin/{_go_os()}/{_go_arch()}/kubectl"
        )
        if os.path.exists(download_path):
            logger.info("Found existing kubectl at %s", download_path)
            try:
                self._compare_sha(download_path, remote)
            except RuntimeError as exc:
                logger.warning("%s", exc)
            else:
                logger.info("Validated hash for existing kubectl at %s", download_path)
                return

        cmd = execution.command("gsutil", "cp", remote, download_path)
        execution.inherit_output(cmd)
        try:
            cmd.run()
        except execution.CommandError as exc:
            raise RuntimeError(
                f"failed to download kubectl for release {self.test_package_version}: {exc}"
            ) from exc
        try:
            os.chmod(download_path, 0o700)
        except OSError as exc:
            raise RuntimeError(
                f"failed to make {download_path} executable: {exc}"
            ) from exc

    def _ensure_release_tar(self, download_path: str, release_tar: str) -> None:
        remote = (
            f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
            f"{self.test_package_version}/{release_tar}"
        )
        if os.path.exists(download_path):
            logger.info("Found existing tar at %s", download_path)
            try:
                self._compare_sha(download_path, remote)
            except RuntimeError as exc:
                logger.warning("%s", exc)
            else:
                logger.info("Validated hash for existing tar at %s", download_path)
                return

        cmd = execution.command("gsutil", "cp", remote, download_path)
        execution.inherit_output(cmd)
        try:
            cmd.run()
        except execution.CommandError as exc:
            raise RuntimeError(
                f"failed to download release tar {release_tar} for release "
                f"{self.test_package_version}: {exc}"
            ) from exc

    def _compare_sha(self, download_path: str, remote_path: str) -> None:
        cmd = execution.command("gsutil", "cat", f"{remote_path}.sha256")
        try:
            expected_bytes = execution.output(cmd)
        except execution.CommandError as exc:
            raise RuntimeError(
                f"failed to get sha256 for file {remote_path} for release "
                f"{self.test_package_version}: {exc}"
            ) from exc
        expected = expected_bytes.decode("utf-8", "replace").removesuffix("\n")
        try:
            actual = sha256sum(download_path)
        except OSError as exc:
            raise RuntimeError(
                f"failed to compute sha256 for {download_path!r}: {exc}"
            ) from exc
        if actual != expected:
            raise RuntimeError("sha256 does not match")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ginkgo tester; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        GinkgoTester().execute(argv)
    except Exception as exc:
        sys.stderr.write(f"failed to run ginkgo tester: {exc}\n")
        return 1
    return 0