[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "k8sdns"
version = "0.1.0"
description = "dnsmasq supervision, dnsmasq cache metrics, DNS health probes and end-to-end test helpers for cluster DNS"
requires-python = ">=3.10"
keywords = ["dns", "dnsmasq", "kubernetes", "metrics", "prometheus", "health-check", "sidecar"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Networking",
]
dependencies = [
    "dnspython>=2.3",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["k8sdns"]

[tool.hatch.build.targets.sdist]
include = ["k8sdns", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
