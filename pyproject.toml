[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zstdseek"
version = "0.7.3"
description = "Write and randomly read Zstandard files in the seekable format"
requires-python = ">=3.10"
dependencies = [
    "zstandard",
]
keywords = ["zstd", "zstandard", "seekable", "compression", "random-access", "seek-table"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Compression",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
zstdseek = "zstdseek.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["zstdseek"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
