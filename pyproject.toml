[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hornetstore"
version = "0.1.0"
description = "Building blocks for a Nostr relay's storage: events and filters, versioned key/value trees, Merkle DAG leaves, relay statistics and sync bookkeeping"
requires-python = ">=3.10"
dependencies = [
    "cbor2",
    "bcrypt",
]
keywords = ["nostr", "relay", "merkle-dag", "storage", "negentropy", "statistics", "sqlite"]
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
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hornetstore"]

[tool.pytest.ini_options]
addopts = "-ra"
