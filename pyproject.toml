[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "linftree"
version = "0.1.0"
description = "A compact linear file-tree store with fast name search and a keyword index"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "file search", "index", "file tree"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Text Processing :: Indexing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["linftree"]

[tool.pytest.ini_options]
addopts = "-ra"
