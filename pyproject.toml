[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "levelkit"
version = "0.1.0"
description = "Building blocks of a LevelDB-style storage engine: key comparers, write batches and a reference-counted node cache with LRU eviction."
requires-python = ">=3.10"
dependencies = []
keywords = ["leveldb", "key-value", "cache", "lru", "write-batch", "comparator"]
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
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["levelkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
