[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubetest2"
version = "0.1.0"
description = "Orchestrates Kubernetes end-to-end testing: build, cluster up, test, cluster down, with JUnit metadata."
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "e2e", "testing", "ginkgo", "clusterloader2", "junit"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kubetest2 = "kubetest2.shim:main"
kubetest2-tester-exec = "kubetest2.exec_tester:main"
kubetest2-tester-clusterloader2 = "kubetest2.clusterloader2:main"
kubetest2-tester-ginkgo = "kubetest2.ginkgo:main"

[tool.hatch.build.targets.wheel]
packages = ["kubetest2"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
