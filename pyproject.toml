[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "configpolicy"
version = "0.1.0"
description = "Comparison, status, encryption-key and reconciliation helpers for Kubernetes configuration and operator policies"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "policy", "compliance", "operator", "olm", "quantity"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["configpolicy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
