[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftkv"
version = "0.1.0"
description = "A simplified Raft consensus node and key-value store with an in-process cluster simulation"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "key-value", "distributed", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
raftkv-sim = "raftkv.simulation:main"

[tool.hatch.build.targets.wheel]
packages = ["raftkv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
