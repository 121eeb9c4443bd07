[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ammstate"
version = "0.1.0"
description = "Track automated market maker pool state from chain logs, with reorg unwinding and JSON checkpoints."
requires-python = ">=3.10"
dependencies = []
keywords = ["amm", "uniswap", "erc4626", "defi", "state", "checkpoint", "reorg", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Office/Business :: Financial :: Investment",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["ammstate"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
