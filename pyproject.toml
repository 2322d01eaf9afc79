[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "pbkv"
version = "0.1.0"
description = "Primary/backup replicated key/value service coordinated by a view service"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed-systems",
    "replication",
    "primary-backup",
    "key-value",
    "fault-tolerance",
    "rpc",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
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
pbc = "pbkv.cli:pbc_main"
pbd = "pbkv.cli:pbd_main"
viewd = "pbkv.cli:viewd_main"

[tool.setuptools.packages.find]
include = ["pbkv*"]

[tool.pytest.ini_options]
addopts = "-ra"
