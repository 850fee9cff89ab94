[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "quantbot"
version = "0.1.0"
description = "Building blocks for a futures trading bot: market data feeds, simulated execution, metrics and SQLite persistence"
requires-python = ">=3.10"
dependencies = []
keywords = ["trading", "futures", "backtesting", "metrics", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Financial and Insurance Industry",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["quantbot"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
