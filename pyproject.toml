[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "svcproxy"
version = "0.1.0"
description = "Service proxy client toolkit: change-tracking stores, full-state sinks, service event diffing, nftables rule fragments, conntrack cleanup and a round-robin load balancer"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "service-proxy",
    "nftables",
    "load-balancer",
    "conntrack",
    "diff",
    "endpoints",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Firewalls",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["svcproxy"]

[tool.hatch.build.targets.sdist]
include = ["svcproxy", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
