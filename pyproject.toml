[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rollupnode"
version = "0.1.0"
description = "Rollup node core: batch encoding, deposit derivation, L1/L2 sync and the block-derivation driver"
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["rollup", "ethereum", "layer-2", "rlp", "deposits", "derivation"]
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
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["rollupnode"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
