[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "boltkit"
version = "0.1.0"
description = "Page-level toolkit for B+tree key/value database files: page layout, freelist and meta pages"
requires-python = ">=3.10"
dependencies = []
keywords = ["database", "key-value", "b+tree", "freelist", "pages", "meta"]
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
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["boltkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
