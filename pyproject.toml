[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ddcstake"
version = "0.1.0"
description = "In-memory model of stake bonding, unbonding and cluster participation for storage node providers"
requires-python = ">=3.10"
dependencies = []
keywords = ["staking", "ledger", "bonding", "storage nodes", "cluster"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ddcstake"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
